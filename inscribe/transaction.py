"""
Transaction Data Model

Outpoints, satpoints, inscription ids and a minimal segwit-aware transaction
record with the size and weight accounting used for fee estimation.
"""

import copy
import math
import struct
from dataclasses import dataclass, field
from io import BytesIO
from typing import List, Optional

from bitcoinlib.encoding import varstr

from .exceptions import TransactionParseError
from .utils import (
    double_sha256,
    parse_compact_size,
    parse_outpoint,
    serialize_compact_size,
    serialize_outpoint,
    serialize_output,
    varstr_parse,
)


SEQUENCE_ENABLE_RBF_NO_LOCKTIME = 0xfffffffd
SEQUENCE_FINAL = 0xffffffff
WITNESS_SCALE_FACTOR = 4

NULL_TXID = "00" * 32


@dataclass(frozen=True, order=True)
class OutPoint:
    """Reference to a transaction output: ``txid:vout``."""
    txid: str
    vout: int

    def __post_init__(self):
        if len(self.txid) != 64:
            raise ValueError(f"invalid txid: {self.txid}")
        bytes.fromhex(self.txid)
        if not 0 <= self.vout <= 0xffffffff:
            raise ValueError(f"invalid vout: {self.vout}")

    @classmethod
    def null(cls) -> 'OutPoint':
        """The null outpoint used by coinbase inputs and placeholders."""
        return cls(NULL_TXID, 0xffffffff)

    @classmethod
    def parse(cls, text: str) -> 'OutPoint':
        txid, sep, vout = text.partition(':')
        if not sep:
            raise ValueError(f"invalid outpoint: {text}")
        return cls(txid.lower(), int(vout))

    def is_null(self) -> bool:
        return self == OutPoint.null()

    def serialize(self) -> bytes:
        return serialize_outpoint(self.txid, self.vout)

    def __str__(self) -> str:
        return f"{self.txid}:{self.vout}"


@dataclass(frozen=True, order=True)
class SatPoint:
    """
    A specific satoshi: an outpoint and an offset within its value.

    Ordering is lexicographic by outpoint, then offset.
    """
    outpoint: OutPoint
    offset: int

    @classmethod
    def parse(cls, text: str) -> 'SatPoint':
        """Parse ``txid:vout:offset``."""
        outpoint, sep, offset = text.rpartition(':')
        if not sep:
            raise ValueError(f"invalid satpoint: {text}")
        return cls(OutPoint.parse(outpoint), int(offset))

    @classmethod
    def null(cls) -> 'SatPoint':
        """All-zero satpoint used when a pre-existing commitment replaces the commit transaction."""
        return cls(OutPoint(NULL_TXID, 0), 0)

    def __str__(self) -> str:
        return f"{self.outpoint}:{self.offset}"


@dataclass(frozen=True, order=True)
class InscriptionId:
    """Inscription identifier: the reveal txid and the inscription's index within it."""
    txid: str
    index: int = 0

    @classmethod
    def parse(cls, text: str) -> 'InscriptionId':
        txid, sep, index = text.rpartition('i')
        if not sep or len(txid) != 64:
            raise ValueError(f"invalid inscription id: {text}")
        bytes.fromhex(txid)
        return cls(txid.lower(), int(index))

    def to_bytes(self) -> bytes:
        """
        Envelope encoding: txid in little-endian byte order followed by the
        little-endian index with trailing zero bytes removed.
        """
        index = struct.pack('<I', self.index).rstrip(b'\x00')
        return bytes.fromhex(self.txid)[::-1] + index

    def __str__(self) -> str:
        return f"{self.txid}i{self.index}"


@dataclass
class TxOut:
    """Transaction output."""
    value: int
    script_pubkey: bytes

    def serialize(self) -> bytes:
        return serialize_output(self.value, self.script_pubkey)


@dataclass
class TxIn:
    """Transaction input; ``witness`` is a list of stack items."""
    previous_output: OutPoint
    script_sig: bytes = b''
    sequence: int = SEQUENCE_ENABLE_RBF_NO_LOCKTIME
    witness: List[bytes] = field(default_factory=list)

    def serialize(self) -> bytes:
        return (
            self.previous_output.serialize()
            + varstr(self.script_sig)
            + struct.pack('<I', self.sequence)
        )

    def serialize_witness(self) -> bytes:
        result = serialize_compact_size(len(self.witness))
        for item in self.witness:
            result += varstr(item)
        return result


@dataclass
class Transaction:
    """
    Bitcoin transaction with BIP144 witness serialization.
    """
    version: int = 2
    inputs: List[TxIn] = field(default_factory=list)
    outputs: List[TxOut] = field(default_factory=list)
    lock_time: int = 0

    @classmethod
    def placeholder(cls) -> 'Transaction':
        """Empty version 0 transaction standing in for a commit transaction that is not built."""
        return cls(version=0)

    def has_witness(self) -> bool:
        return any(txin.witness for txin in self.inputs)

    def serialize(self, include_witness: bool = True) -> bytes:
        """
        Serialize the transaction.

        Args:
            include_witness: Use the segwit format when any input carries a witness

        Returns:
            Raw transaction bytes
        """
        segwit = include_witness and self.has_witness()
        result = BytesIO()

        result.write(struct.pack('<i', self.version))
        if segwit:
            result.write(b'\x00\x01')

        result.write(serialize_compact_size(len(self.inputs)))
        for txin in self.inputs:
            result.write(txin.serialize())

        result.write(serialize_compact_size(len(self.outputs)))
        for txout in self.outputs:
            result.write(txout.serialize())

        if segwit:
            for txin in self.inputs:
                result.write(txin.serialize_witness())

        result.write(struct.pack('<I', self.lock_time))
        return result.getvalue()

    def hex(self) -> str:
        return self.serialize().hex()

    @property
    def txid(self) -> str:
        """Transaction ID (hash of the non-witness serialization) in display order."""
        return double_sha256(self.serialize(include_witness=False))[::-1].hex()

    @property
    def base_size(self) -> int:
        return len(self.serialize(include_witness=False))

    @property
    def total_size(self) -> int:
        return len(self.serialize(include_witness=True))

    @property
    def weight(self) -> int:
        return self.base_size * (WITNESS_SCALE_FACTOR - 1) + self.total_size

    @property
    def vsize(self) -> int:
        return math.ceil(self.weight / WITNESS_SCALE_FACTOR)

    def output_value(self) -> int:
        return sum(txout.value for txout in self.outputs)

    def copy(self) -> 'Transaction':
        return copy.deepcopy(self)

    def find_output(self, script_pubkey: bytes) -> Optional[int]:
        """Index of the first output paying to ``script_pubkey``."""
        for vout, txout in enumerate(self.outputs):
            if txout.script_pubkey == script_pubkey:
                return vout
        return None

    @classmethod
    def deserialize(cls, data: bytes) -> 'Transaction':
        """
        Parse raw transaction bytes, with or without witness data.

        Args:
            data: Raw transaction

        Returns:
            Parsed transaction
        """
        try:
            return cls._deserialize(data)
        except (ValueError, struct.error) as e:
            raise TransactionParseError(f"invalid transaction: {e}")

    @classmethod
    def _deserialize(cls, data: bytes) -> 'Transaction':
        if len(data) < 10:
            raise ValueError("transaction too short")

        version = struct.unpack('<i', data[0:4])[0]
        offset = 4

        segwit = data[4] == 0x00 and data[5] == 0x01
        if segwit:
            offset += 2

        input_count, offset = parse_compact_size(data, offset)
        inputs = []
        for _ in range(input_count):
            txid, vout, offset = parse_outpoint(data, offset)
            script_sig, offset = varstr_parse(data, offset)
            sequence = struct.unpack('<I', data[offset:offset + 4])[0]
            offset += 4
            inputs.append(TxIn(OutPoint(txid, vout), script_sig, sequence))

        output_count, offset = parse_compact_size(data, offset)
        outputs = []
        for _ in range(output_count):
            value = struct.unpack('<Q', data[offset:offset + 8])[0]
            offset += 8
            script, offset = varstr_parse(data, offset)
            outputs.append(TxOut(value, script))

        if segwit:
            for txin in inputs:
                item_count, offset = parse_compact_size(data, offset)
                for _ in range(item_count):
                    item, offset = varstr_parse(data, offset)
                    txin.witness.append(item)

        lock_time = struct.unpack('<I', data[offset:offset + 4])[0]
        offset += 4
        if offset != len(data):
            raise ValueError("trailing data after transaction")

        return cls(version=version, inputs=inputs, outputs=outputs, lock_time=lock_time)

    @classmethod
    def from_hex(cls, raw: str) -> 'Transaction':
        return cls.deserialize(bytes.fromhex(raw))
