"""
Fee Estimation

Reveal transaction fees must be fixed before the commit transaction that
funds them exists, and before the reveal can be signed. The witness of the
commit input is known up to its signature, so sizes are computed from
witness lengths: every input gets a 64-byte Schnorr signature placeholder,
and the commit input additionally carries the reveal script and control block.
"""

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence

from crypto.signatures import SCHNORR_SIGNATURE_SIZE

from .exceptions import FeeError
from .transaction import Transaction, WITNESS_SCALE_FACTOR
from .utils import compact_size_len


logger = logging.getLogger(__name__)

# outpoint, empty script_sig length, sequence
TXIN_BASE_SIZE = 36 + 1 + 4


@dataclass(frozen=True)
class FeeRate:
    """Fee rate in satoshis per virtual byte."""
    sat_per_vb: float

    def __post_init__(self):
        if not math.isfinite(self.sat_per_vb) or self.sat_per_vb < 0:
            raise ValueError(f"invalid fee rate: {self.sat_per_vb}")

    @classmethod
    def parse(cls, text: str) -> 'FeeRate':
        return cls(float(text))

    def fee(self, vsize: int) -> int:
        """Fee in satoshis for ``vsize`` virtual bytes, rounded up."""
        return math.ceil(self.sat_per_vb * vsize)

    def __str__(self) -> str:
        return f"{self.sat_per_vb} sat/vB"


def estimate_vsize(input_count: int, output_script_lengths: Sequence[int],
                   witness_item_lengths: Sequence[Sequence[int]]) -> int:
    """
    Virtual size of a transaction described only by its shape.

    Inputs are assumed to have empty script_sigs.

    Args:
        input_count: Number of inputs
        output_script_lengths: Length of each output script
        witness_item_lengths: Per input, the length of each witness stack item

    Returns:
        Virtual size in vbytes
    """
    if len(witness_item_lengths) != input_count:
        raise ValueError("need one witness stack description per input")

    base_size = (
        4
        + compact_size_len(input_count)
        + input_count * TXIN_BASE_SIZE
        + compact_size_len(len(output_script_lengths))
        + sum(8 + compact_size_len(length) + length for length in output_script_lengths)
        + 4
    )

    witness_size = 0
    if any(witness_item_lengths):
        witness_size = 2
        for items in witness_item_lengths:
            witness_size += compact_size_len(len(items))
            witness_size += sum(compact_size_len(length) + length for length in items)

    weight = base_size * WITNESS_SCALE_FACTOR + witness_size
    return math.ceil(weight / WITNESS_SCALE_FACTOR)


def reveal_witness_lengths(input_count: int, commit_input: int, script_len: int,
                           control_block_len: int) -> List[List[int]]:
    """Witness item lengths of a signed reveal transaction."""
    lengths = []
    for index in range(input_count):
        if index == commit_input:
            lengths.append([SCHNORR_SIGNATURE_SIZE, script_len, control_block_len])
        else:
            lengths.append([SCHNORR_SIGNATURE_SIZE])
    return lengths


def reveal_vsize(input_count: int, output_script_lengths: Sequence[int], commit_input: int,
                 script_len: int, control_block_len: int) -> int:
    """Virtual size of a signed reveal transaction, from lengths alone."""
    return estimate_vsize(
        input_count,
        output_script_lengths,
        reveal_witness_lengths(input_count, commit_input, script_len, control_block_len),
    )


def dummy_witness_transaction(tx: Transaction, commit_input: int, script: bytes,
                              control_block: bytes) -> Transaction:
    """
    Clone ``tx`` with placeholder witnesses of signed size.

    Args:
        tx: Unsigned reveal transaction
        commit_input: Index of the input spending the commitment
        script: Reveal script
        control_block: Control block for the script-path spend

    Returns:
        Transaction whose size matches the signed reveal
    """
    sized = tx.copy()
    dummy_signature = bytes(SCHNORR_SIGNATURE_SIZE)
    for index, txin in enumerate(sized.inputs):
        if index == commit_input:
            txin.witness = [dummy_signature, script, control_block]
        else:
            txin.witness = [dummy_signature]
    return sized


def estimate_reveal_fee(tx: Transaction, commit_input: int, script: bytes,
                        control_block: bytes, fee_rate: FeeRate) -> int:
    """
    Minimum fee for the reveal transaction at ``fee_rate``.

    Args:
        tx: Unsigned reveal transaction
        commit_input: Index of the input spending the commitment
        script: Reveal script
        control_block: Control block
        fee_rate: Reveal fee rate

    Returns:
        Fee in satoshis
    """
    vsize = dummy_witness_transaction(tx, commit_input, script, control_block).vsize
    fee = fee_rate.fee(vsize)
    logger.debug(f"Reveal transaction estimated at {vsize} vB, fee {fee} sats at {fee_rate}")
    return fee


def effective_reveal_fee(estimated: int, requested: Optional[int]) -> int:
    """
    Fee actually used for the reveal: the explicit request if it covers the estimate.

    Args:
        estimated: Computed minimum fee
        requested: Caller supplied fee, if any

    Returns:
        Fee in satoshis
    """
    if requested is None:
        return estimated
    if requested < estimated:
        raise FeeError(f"requested reveal_fee is too small; should be at least {estimated}")
    return max(requested, estimated)
