"""
Cryptographic operations for Taproot inscription commitments.

This package provides:
- secp256k1 key handling, WIF import/export and BIP341 tweaking
- BIP340 Schnorr signatures
- single-leaf Taproot script commitments
- commit transaction recovery keys

Dependencies:
- coincurve: Fast secp256k1 operations
- bitcoinlib: WIF and script encoding helpers
"""

from .exceptions import (
    CryptoError,
    InvalidKeyError,
    InvalidSignatureError,
    CommitmentError,
    TweakError,
    DescriptorError,
)
from .keys import (
    PrivateKey,
    PublicKey,
    tagged_hash,
    lift_x,
    compute_taproot_tweak,
    taproot_output_script,
)
from .signatures import (
    SchnorrSignature,
    SCHNORR_SIGNATURE_SIZE,
    sign_schnorr,
    verify_schnorr,
)
from .commitments import (
    TaprootCommitment,
    TAPROOT_LEAF_TAPSCRIPT,
    tap_leaf_hash,
    reveal_script_prefix,
)
from .recovery import (
    TweakedKeyPair,
    RECOVERY_KEY_LABEL,
    backup_recovery_key,
    describe_recovery_key,
    recovery_descriptor,
    load_or_create_temporary_key,
)

__version__ = "0.1.0"
__all__ = [
    # Exceptions
    "CryptoError",
    "InvalidKeyError",
    "InvalidSignatureError",
    "CommitmentError",
    "TweakError",
    "DescriptorError",

    # Keys
    "PrivateKey",
    "PublicKey",
    "tagged_hash",
    "lift_x",
    "compute_taproot_tweak",
    "taproot_output_script",

    # Signatures
    "SchnorrSignature",
    "SCHNORR_SIGNATURE_SIZE",
    "sign_schnorr",
    "verify_schnorr",

    # Commitments
    "TaprootCommitment",
    "TAPROOT_LEAF_TAPSCRIPT",
    "tap_leaf_hash",
    "reveal_script_prefix",

    # Recovery
    "TweakedKeyPair",
    "RECOVERY_KEY_LABEL",
    "backup_recovery_key",
    "describe_recovery_key",
    "recovery_descriptor",
    "load_or_create_temporary_key",
]
