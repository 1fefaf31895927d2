"""
Fee Accounting and Batch Reports

The ``UtxoStore`` holds the value of every output a transaction built in this
run may spend. The commit output is registered as soon as the commit
transaction exists, so the reveal fee can be computed before either
transaction is broadcast.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from .batch import Batch
from .exceptions import InvariantError
from .transaction import InscriptionId, OutPoint, SatPoint, Transaction


logger = logging.getLogger(__name__)


class UtxoStore:
    """
    Mapping of outpoint to value in satoshis, grown during construction.
    """

    def __init__(self, utxos: Optional[Mapping[OutPoint, int]] = None):
        self._values: Dict[OutPoint, int] = dict(utxos or {})

    def register_output(self, outpoint: OutPoint, value: int) -> None:
        """Make ``outpoint`` spendable for fee accounting."""
        if value < 0:
            raise InvariantError(f"negative value for {outpoint}")
        self._values[outpoint] = value

    def register_transaction(self, tx: Transaction) -> None:
        """Register every output of ``tx``."""
        txid = tx.txid
        for vout, txout in enumerate(tx.outputs):
            self.register_output(OutPoint(txid, vout), txout.value)

    def value(self, outpoint: OutPoint) -> int:
        try:
            return self._values[outpoint]
        except KeyError:
            raise InvariantError(f"value of {outpoint} is unknown")

    def get(self, outpoint: OutPoint, default: Optional[int] = None) -> Optional[int]:
        return self._values.get(outpoint, default)

    def items(self) -> Iterable[Tuple[OutPoint, int]]:
        return sorted(self._values.items())

    def __contains__(self, outpoint: OutPoint) -> bool:
        return outpoint in self._values

    def __iter__(self) -> Iterator[OutPoint]:
        return iter(sorted(self._values))

    def __len__(self) -> int:
        return len(self._values)


def calculate_fee(tx: Transaction, utxos: UtxoStore) -> int:
    """
    Realized fee of ``tx``: spent values minus created values.

    Args:
        tx: Transaction whose inputs are all known to ``utxos``
        utxos: Value store

    Returns:
        Fee in satoshis
    """
    spent = sum(utxos.value(txin.previous_output) for txin in tx.inputs)
    fee = spent - tx.output_value()
    if fee < 0:
        raise InvariantError(f"transaction {tx.txid} creates more value than it spends")
    return fee


def total_fees(commit_tx: Transaction, reveal_tx: Transaction, utxos: UtxoStore,
               fresh_commit: bool, commit_only: bool) -> int:
    """
    Fees paid by the run.

    Args:
        commit_tx: Commit transaction (a placeholder when reusing a commitment)
        reveal_tx: Reveal transaction
        utxos: Value store with the commit outputs registered
        fresh_commit: Whether ``commit_tx`` was built in this run
        commit_only: Whether the reveal transaction is withheld

    Returns:
        Commit fee plus reveal fee, each counted only if the transaction is produced
    """
    commit_fee = calculate_fee(commit_tx, utxos) if fresh_commit else 0
    reveal_fee = 0 if commit_only else calculate_fee(reveal_tx, utxos)
    logger.debug(f"Commit fee {commit_fee} sats, reveal fee {reveal_fee} sats")
    return commit_fee + reveal_fee


@dataclass
class InscriptionInfo:
    """An inscription and where it lands."""
    id: InscriptionId
    location: SatPoint

    def to_dict(self) -> Dict[str, str]:
        return {'id': str(self.id), 'location': str(self.location)}


def inscription_locations(batch: Batch, reveal_txid: str) -> List[InscriptionInfo]:
    """
    Map each inscription of ``batch`` to its satpoint in the reveal transaction.

    Args:
        batch: Batch configuration
        reveal_txid: Reveal transaction id

    Returns:
        One entry per inscription, in batch order
    """
    infos = []
    for index in range(len(batch.inscriptions)):
        vout, offset = batch.location(index)
        infos.append(InscriptionInfo(
            id=InscriptionId(reveal_txid, index),
            location=SatPoint(OutPoint(reveal_txid, vout), offset),
        ))
    return infos


@dataclass
class BatchOutput:
    """
    Report of a batch inscription run.
    """
    commit: Optional[str]
    reveal: Optional[str]
    total_fees: int
    parent: Optional[InscriptionId] = None
    commit_hex: Optional[str] = None
    reveal_hex: Optional[str] = None
    recovery_descriptor: Optional[str] = None
    inscriptions: List[InscriptionInfo] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'commit': self.commit,
            'commit_hex': self.commit_hex,
            'reveal': self.reveal,
            'reveal_hex': self.reveal_hex,
            'recovery_descriptor': self.recovery_descriptor,
            'total_fees': self.total_fees,
            'parent': str(self.parent) if self.parent else None,
            'inscriptions': [info.to_dict() for info in self.inscriptions],
        }


def batch_output(batch: Batch, commit_txid: Optional[str], reveal_txid: str, fees: int,
                 commit_hex: Optional[str] = None, reveal_hex: Optional[str] = None,
                 recovery_descriptor: Optional[str] = None) -> BatchOutput:
    """
    Assemble the report for ``batch``.

    Commit-only runs report no reveal and no inscriptions; runs that reuse an
    existing commitment report no commit.
    """
    return BatchOutput(
        commit=None if batch.commitment is not None else commit_txid,
        reveal=None if batch.commit_only else reveal_txid,
        total_fees=fees,
        parent=batch.parent_info.id if batch.parent_info else None,
        commit_hex=commit_hex,
        reveal_hex=reveal_hex,
        recovery_descriptor=recovery_descriptor,
        inscriptions=[] if batch.commit_only else inscription_locations(batch, reveal_txid),
    )
