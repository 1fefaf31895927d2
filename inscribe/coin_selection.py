"""
Commit Transaction Funding

Coin selection turns a funding target into an unsigned commit transaction.
The sat being inscribed is spent by the first input and lands on the first
sat of the commitment output; outputs holding inscriptions, runes or wallet
locks are never used to pay fees.
"""

import logging
from dataclasses import dataclass, field
from typing import AbstractSet, List, Mapping, Optional, Protocol, Sequence, Tuple

from crypto.signatures import SCHNORR_SIGNATURE_SIZE

from .accounting import UtxoStore
from .address import dust_value
from .exceptions import FundingError, InsufficientFundsError
from .fees import FeeRate, estimate_vsize
from .transaction import (
    InscriptionId,
    OutPoint,
    SatPoint,
    SEQUENCE_ENABLE_RBF_NO_LOCKTIME,
    Transaction,
    TxIn,
    TxOut,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Target:
    """
    Funding target for the commitment output.

    ``allow_change`` False means every selected sat not needed for fees goes to
    the commitment output.
    """
    amount: int
    allow_change: bool = True

    @classmethod
    def value(cls, amount: int) -> 'Target':
        return cls(amount, True)

    @classmethod
    def no_change(cls, amount: int) -> 'Target':
        return cls(amount, False)


@dataclass
class FundingRequest:
    """
    Everything coin selection needs to fund a commit transaction.
    """
    satpoint: SatPoint
    inscriptions: Mapping[SatPoint, InscriptionId]
    utxos: UtxoStore
    recipient: bytes
    change: Tuple[bytes, bytes]  # (alignment, change)
    fee_rate: FeeRate
    target: Target
    locked: AbstractSet[OutPoint] = frozenset()
    runic: AbstractSet[OutPoint] = frozenset()
    force_inputs: Sequence[OutPoint] = field(default_factory=tuple)
    vsize_override: Optional[int] = None


class CoinSelector(Protocol):
    """Builds a funded, unsigned commit transaction."""

    def build_transaction(self, request: FundingRequest) -> Transaction:
        ...


class TransactionBuilder:
    """
    Largest-first coin selection for a Taproot wallet.

    Wallet inputs are sized as key-path spends with a single 64-byte signature.
    """

    def __init__(self, version: int = 2, lock_time: int = 0):
        self.version = version
        self.lock_time = lock_time

    def build_transaction(self, request: FundingRequest) -> Transaction:
        """
        Select inputs and build the commit transaction.

        Args:
            request: Funding request

        Returns:
            Unsigned commit transaction
        """
        utxos = request.utxos
        selected = self._required_inputs(request)
        fixed_outputs = self._alignment_outputs(request)
        fixed_value = sum(txout.value for txout in fixed_outputs)

        candidates = self._cardinal_candidates(request, selected)
        change_script = request.change[1]

        while True:
            input_value = sum(utxos.value(outpoint) for outpoint in selected)
            outputs = self._finish_outputs(request, selected, fixed_outputs, fixed_value,
                                           input_value, change_script)
            if outputs is not None:
                break

            if not candidates:
                needed = fixed_value + request.target.amount + self._fee(
                    request, len(selected), fixed_outputs + [TxOut(0, request.recipient)]
                )
                raise InsufficientFundsError(needed, input_value)

            selected.append(candidates.pop(0))

        tx = Transaction(
            version=self.version,
            inputs=[TxIn(outpoint, sequence=SEQUENCE_ENABLE_RBF_NO_LOCKTIME) for outpoint in selected],
            outputs=outputs,
            lock_time=self.lock_time,
        )

        logger.info(
            f"Funded commit transaction with {len(selected)} input(s), "
            f"{tx.output_value()} sats in {len(outputs)} output(s)"
        )
        return tx

    def _required_inputs(self, request: FundingRequest) -> List[OutPoint]:
        selected = [request.satpoint.outpoint]
        if request.satpoint.outpoint not in request.utxos:
            raise FundingError(f"outgoing satpoint {request.satpoint} not in wallet")

        for outpoint in request.force_inputs:
            if outpoint in selected:
                continue
            if outpoint not in request.utxos:
                raise FundingError(f"forced input {outpoint} not in wallet")
            if outpoint in request.locked:
                raise FundingError(f"forced input {outpoint} is locked")
            selected.append(outpoint)
        return selected

    def _alignment_outputs(self, request: FundingRequest) -> List[TxOut]:
        """Output carrying the sats in front of the target sat, if any."""
        offset = request.satpoint.offset
        if offset == 0:
            return []

        script = request.change[0]
        if offset < dust_value(script):
            raise FundingError(
                f"cannot move sat at {request.satpoint} to the start of an output: "
                f"offset {offset} is below the dust limit"
            )
        return [TxOut(offset, script)]

    def _cardinal_candidates(self, request: FundingRequest, selected: List[OutPoint]) -> List[OutPoint]:
        inscribed = {satpoint.outpoint for satpoint in request.inscriptions}
        candidates = [
            outpoint for outpoint, value in request.utxos.items()
            if value > 0
            and outpoint not in selected
            and outpoint not in inscribed
            and outpoint not in request.locked
            and outpoint not in request.runic
        ]
        return sorted(candidates, key=lambda outpoint: (-request.utxos.value(outpoint), outpoint))

    def _fee(self, request: FundingRequest, input_count: int, outputs: List[TxOut]) -> int:
        if request.vsize_override is not None:
            return request.fee_rate.fee(request.vsize_override)
        vsize = estimate_vsize(
            input_count,
            [len(txout.script_pubkey) for txout in outputs],
            [[SCHNORR_SIGNATURE_SIZE]] * input_count,
        )
        return request.fee_rate.fee(vsize)

    def _finish_outputs(self, request: FundingRequest, selected: List[OutPoint],
                        fixed_outputs: List[TxOut], fixed_value: int, input_value: int,
                        change_script: bytes) -> Optional[List[TxOut]]:
        """Outputs for the current selection, or None if it is insufficient."""
        target = request.target
        recipient = TxOut(target.amount, request.recipient)
        outputs = fixed_outputs + [recipient]

        if not target.allow_change:
            fee = self._fee(request, len(selected), outputs)
            if input_value < fixed_value + target.amount + fee:
                return None
            recipient.value = input_value - fixed_value - fee
            return outputs

        with_change = outputs + [TxOut(0, change_script)]
        fee_with_change = self._fee(request, len(selected), with_change)
        change_value = input_value - fixed_value - target.amount - fee_with_change
        if change_value >= dust_value(change_script):
            with_change[-1].value = change_value
            return with_change

        fee = self._fee(request, len(selected), outputs)
        if input_value >= fixed_value + target.amount + fee:
            # remainder below dust goes to fees
            return outputs
        return None
