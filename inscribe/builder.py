"""
Reveal Transaction Assembly

Input order:  [parent outpoint] commit input, extra reveal inputs
Output order: [parent passthrough] inscription outputs, [commitment change]

The commit input starts as the null outpoint and is resolved once the commit
transaction exists, or taken directly from a pre-existing commitment.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .address import dust_value
from .batch import Batch
from .exceptions import FundingError, InvariantError
from .transaction import (
    OutPoint,
    SEQUENCE_ENABLE_RBF_NO_LOCKTIME,
    Transaction,
    TxIn,
    TxOut,
)


logger = logging.getLogger(__name__)


@dataclass
class RevealPlan:
    """
    Inputs and outputs of a reveal transaction under construction.
    """
    inputs: List[OutPoint]
    outputs: List[TxOut]
    commit_input: int
    change_output: Optional[int] = None
    version: int = 2
    lock_time: int = 0

    def transaction(self) -> Transaction:
        """Unsigned reveal transaction with empty witnesses."""
        return Transaction(
            version=self.version,
            inputs=[TxIn(outpoint, sequence=SEQUENCE_ENABLE_RBF_NO_LOCKTIME) for outpoint in self.inputs],
            outputs=[TxOut(txout.value, txout.script_pubkey) for txout in self.outputs],
            lock_time=self.lock_time,
        )

    @property
    def commit_outpoint(self) -> OutPoint:
        return self.inputs[self.commit_input]


def reveal_outputs(batch: Batch, reveal_change: Optional[bytes] = None) -> Tuple[List[TxOut], Optional[int]]:
    """
    Outputs of the reveal transaction.

    Args:
        batch: Batch configuration
        reveal_change: Script of the change output added when spending an existing commitment

    Returns:
        Tuple of (outputs, index of the change output or None)
    """
    outputs = []
    if batch.parent_info is not None:
        outputs.append(TxOut(batch.parent_info.tx_out.value, batch.parent_info.destination))

    outputs.extend(batch.destination_outputs())

    change_output = None
    if batch.commitment is not None:
        if reveal_change is None:
            raise InvariantError("spending a commitment requires a reveal change script")
        change_output = len(outputs)
        # value is set once the reveal fee is known
        outputs.append(TxOut(0, reveal_change))

    return outputs, change_output


def reveal_inputs(batch: Batch) -> Tuple[List[OutPoint], int]:
    """
    Inputs of the reveal transaction with the commit input as a null placeholder.

    Args:
        batch: Batch configuration

    Returns:
        Tuple of (outpoints, commit input index)
    """
    inputs = []
    if batch.parent_info is not None:
        inputs.append(batch.parent_info.location.outpoint)

    commit_input = len(inputs)
    inputs.append(OutPoint.null())
    inputs.extend(batch.reveal_inputs)
    return inputs, commit_input


def plan_reveal(batch: Batch, reveal_change: Optional[bytes] = None) -> RevealPlan:
    """Assemble the reveal plan for ``batch``."""
    inputs, commit_input = reveal_inputs(batch)
    outputs, change_output = reveal_outputs(batch, reveal_change)
    logger.debug(
        f"Reveal plan: {len(inputs)} input(s), {len(outputs)} output(s), commit input {commit_input}"
    )
    return RevealPlan(inputs=inputs, outputs=outputs, commit_input=commit_input,
                      change_output=change_output)


def resolve_commit_outpoint(plan: RevealPlan, commit_tx: Transaction,
                            commit_script: bytes) -> Tuple[OutPoint, TxOut]:
    """
    Point the commit input at the output of ``commit_tx`` paying to the commitment.

    Args:
        plan: Reveal plan, updated in place
        commit_tx: Funded commit transaction
        commit_script: Commitment output script

    Returns:
        Tuple of (commit outpoint, commit output)
    """
    vout = commit_tx.find_output(commit_script)
    if vout is None:
        raise InvariantError("should find sat commit/inscription output")

    outpoint = OutPoint(commit_tx.txid, vout)
    plan.inputs[plan.commit_input] = outpoint
    return outpoint, commit_tx.outputs[vout]


def adopt_commitment(plan: RevealPlan, commitment: OutPoint, commitment_output: TxOut,
                     reveal_input_value: int, total_postage: int, reveal_fee: int) -> None:
    """
    Spend a pre-existing commitment and send what is left to the change output,
    which is dropped when it would be dust.

    Args:
        plan: Reveal plan, updated in place
        commitment: Commitment outpoint
        commitment_output: Output being spent
        reveal_input_value: Value of the extra reveal inputs
        total_postage: Value of the inscription outputs
        reveal_fee: Reveal fee
    """
    if plan.change_output is None:
        raise InvariantError("reveal plan has no change output")

    plan.inputs[plan.commit_input] = commitment

    change = commitment_output.value + reveal_input_value - total_postage - reveal_fee
    if change < 0:
        raise FundingError(
            f"commitment {commitment} holds {commitment_output.value} sats, "
            f"{total_postage + reveal_fee - reveal_input_value} needed for postage and fees"
        )

    change_script = plan.outputs[plan.change_output].script_pubkey
    if change < dust_value(change_script):
        # remainder goes to fees
        logger.info(f"Dropping reveal change of {change} sats below the dust limit")
        del plan.outputs[plan.change_output]
        plan.change_output = None
        return

    plan.outputs[plan.change_output].value = change


def reveal_prevouts(batch: Batch, commit_output: TxOut,
                    reveal_input_outputs: Sequence[TxOut] = ()) -> List[TxOut]:
    """Outputs spent by the reveal transaction, in input order."""
    prevouts = []
    if batch.parent_info is not None:
        prevouts.append(batch.parent_info.tx_out)
    prevouts.append(commit_output)
    prevouts.extend(reveal_input_outputs)
    return prevouts
