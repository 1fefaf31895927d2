"""
Batch inscriptions through a commit/reveal transaction pair.

This package provides:
- the transaction, outpoint and satpoint data model
- ordinals envelope encoding
- batch configuration, output policies and batch files
- reveal planning, fee estimation and Taproot script-path signing
- commit funding and fee accounting

The engine that ties these together lives in ``inscribe.engine``; it is not
imported here so that the validator rules can depend on the data model.
"""

from .exceptions import (
    InscribeError,
    ConfigurationError,
    InscriptionStateError,
    FundingError,
    InsufficientFundsError,
    ProtocolLimitError,
    DustError,
    WeightLimitError,
    FeeError,
    InvariantError,
    BroadcastError,
    TransactionParseError,
)
from .transaction import (
    OutPoint,
    SatPoint,
    InscriptionId,
    TxIn,
    TxOut,
    Transaction,
    SEQUENCE_ENABLE_RBF_NO_LOCKTIME,
)
from .address import Chain, address_to_script, script_to_address, dust_value
from .envelope import Inscription, append_batch_reveal_script
from .fees import FeeRate
from .batch import (
    Batch,
    Mode,
    ParentInfo,
    SameSat,
    SharedOutput,
    SeparateOutputs,
    output_policy,
    DEFAULT_POSTAGE,
)

__version__ = "0.1.0"
__all__ = [
    # Exceptions
    "InscribeError",
    "ConfigurationError",
    "InscriptionStateError",
    "FundingError",
    "InsufficientFundsError",
    "ProtocolLimitError",
    "DustError",
    "WeightLimitError",
    "FeeError",
    "InvariantError",
    "BroadcastError",
    "TransactionParseError",

    # Data model
    "OutPoint",
    "SatPoint",
    "InscriptionId",
    "TxIn",
    "TxOut",
    "Transaction",
    "SEQUENCE_ENABLE_RBF_NO_LOCKTIME",
    "Chain",
    "address_to_script",
    "script_to_address",
    "dust_value",
    "Inscription",
    "append_batch_reveal_script",
    "FeeRate",

    # Batches
    "Batch",
    "Mode",
    "ParentInfo",
    "SameSat",
    "SharedOutput",
    "SeparateOutputs",
    "output_policy",
    "DEFAULT_POSTAGE",
]
