"""
Batch Configuration

A ``Batch`` is the immutable description of one commit/reveal run. The output
allocation mode is modelled as one variant per mode, each carrying only the
destinations that mode needs, so a batch whose destination count does not fit
its mode cannot be constructed.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Tuple, Union

from .envelope import Inscription
from .exceptions import ConfigurationError
from .fees import FeeRate
from .transaction import InscriptionId, OutPoint, SatPoint, TxOut


DEFAULT_POSTAGE = 10_000


class Mode(str, Enum):
    """Output allocation modes."""
    SAME_SAT = "same-sat"
    SEPARATE_OUTPUTS = "separate-outputs"
    SHARED_OUTPUT = "shared-output"


@dataclass(frozen=True)
class SameSat:
    """All inscriptions on the first sat of a single output."""
    destination: bytes
    mode = Mode.SAME_SAT

    @property
    def destinations(self) -> Tuple[bytes, ...]:
        return (self.destination,)

    def outputs(self, postage: int, count: int) -> List[TxOut]:
        return [TxOut(postage * count, self.destination)]

    def location(self, index: int, postage: int, has_parent: bool) -> Tuple[int, int]:
        return (1 if has_parent else 0), 0


@dataclass(frozen=True)
class SharedOutput:
    """All inscriptions in one output, ``postage`` sats apart."""
    destination: bytes
    mode = Mode.SHARED_OUTPUT

    @property
    def destinations(self) -> Tuple[bytes, ...]:
        return (self.destination,)

    def outputs(self, postage: int, count: int) -> List[TxOut]:
        return [TxOut(postage * count, self.destination)]

    def location(self, index: int, postage: int, has_parent: bool) -> Tuple[int, int]:
        return (1 if has_parent else 0), index * postage


@dataclass(frozen=True)
class SeparateOutputs:
    """One output of ``postage`` sats per inscription."""
    destinations: Tuple[bytes, ...]
    mode = Mode.SEPARATE_OUTPUTS

    def outputs(self, postage: int, count: int) -> List[TxOut]:
        return [TxOut(postage, destination) for destination in self.destinations]

    def location(self, index: int, postage: int, has_parent: bool) -> Tuple[int, int]:
        return index + (1 if has_parent else 0), 0


OutputPolicy = Union[SameSat, SharedOutput, SeparateOutputs]


def output_policy(mode: Mode, destinations: Sequence[bytes], inscription_count: int) -> OutputPolicy:
    """
    Build the output variant for ``mode``.

    Args:
        mode: Output allocation mode
        destinations: Destination output scripts
        inscription_count: Number of inscriptions in the batch

    Returns:
        Output policy
    """
    mode = Mode(mode)
    if mode in (Mode.SAME_SAT, Mode.SHARED_OUTPUT):
        if len(destinations) != 1:
            raise ConfigurationError(
                f"invalid batch: {mode.value} mode requires exactly one destination, "
                f"got {len(destinations)}"
            )
        cls = SameSat if mode == Mode.SAME_SAT else SharedOutput
        return cls(destinations[0])

    if len(destinations) != inscription_count:
        raise ConfigurationError(
            f"invalid batch: {inscription_count} inscriptions but {len(destinations)} destinations"
        )
    return SeparateOutputs(tuple(destinations))


@dataclass(frozen=True)
class ParentInfo:
    """
    Parent inscription being passed through the reveal transaction.
    """
    destination: bytes
    id: InscriptionId
    location: SatPoint
    tx_out: TxOut


@dataclass(frozen=True)
class Batch:
    """
    Immutable configuration for one batch inscription run.
    """
    inscriptions: Tuple[Inscription, ...]
    outputs: OutputPolicy
    commit_fee_rate: FeeRate = FeeRate(1.0)
    reveal_fee_rate: FeeRate = FeeRate(1.0)
    postage: int = DEFAULT_POSTAGE
    parent_info: Optional[ParentInfo] = None
    satpoint: Optional[SatPoint] = None
    reinscribe: bool = False
    no_limit: bool = False
    commit_only: bool = False
    dry_run: bool = False
    no_backup: bool = False
    dump: bool = False
    no_broadcast: bool = False
    commitment: Optional[OutPoint] = None
    commitment_output: Optional[TxOut] = None
    reveal_inputs: Tuple[OutPoint, ...] = ()
    key: Optional[str] = None
    reveal_fee: Optional[int] = None
    next_inscriptions: Tuple[Inscription, ...] = ()
    force_inputs: Tuple[OutPoint, ...] = ()
    commit_vsize: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, 'inscriptions', tuple(self.inscriptions))
        object.__setattr__(self, 'reveal_inputs', tuple(self.reveal_inputs))
        object.__setattr__(self, 'next_inscriptions', tuple(self.next_inscriptions))
        object.__setattr__(self, 'force_inputs', tuple(self.force_inputs))

        if not self.inscriptions:
            raise ConfigurationError("batch must contain at least one inscription")

        if self.postage <= 0:
            raise ConfigurationError("postage must be greater than zero")

        if isinstance(self.outputs, SeparateOutputs) and len(self.outputs.destinations) != len(self.inscriptions):
            raise ConfigurationError(
                f"invalid batch: {len(self.inscriptions)} inscriptions but "
                f"{len(self.outputs.destinations)} destinations"
            )

        parent = self.parent_info.id if self.parent_info is not None else None
        for inscription in self.inscriptions:
            if inscription.parent != parent:
                raise ConfigurationError(
                    f"inscription parent {inscription.parent} does not match batch parent {parent}"
                )

        if self.reveal_fee is not None and self.reveal_fee < 0:
            raise ConfigurationError("reveal fee cannot be negative")

        # implied flags
        if self.commit_only or self.commitment is not None:
            object.__setattr__(self, 'no_backup', True)
        if self.no_broadcast:
            object.__setattr__(self, 'dump', True)

    @property
    def mode(self) -> Mode:
        return self.outputs.mode

    @property
    def destinations(self) -> Tuple[bytes, ...]:
        return self.outputs.destinations

    @property
    def total_postage(self) -> int:
        """Satoshis assigned to inscription outputs."""
        return sum(txout.value for txout in self.destination_outputs())

    def destination_outputs(self) -> List[TxOut]:
        return self.outputs.outputs(self.postage, len(self.inscriptions))

    def location(self, index: int) -> Tuple[int, int]:
        """(vout, offset) in the reveal transaction of inscription ``index``."""
        return self.outputs.location(index, self.postage, self.parent_info is not None)
