"""
Inscription Envelopes

An inscription is carried in a script branch that never executes:

    OP_FALSE OP_IF "ord" <tag> <value> ... OP_0 <body chunks> OP_ENDIF

Several envelopes may follow a single spending-condition prefix, which is
how a batch commits to all of its inscriptions with one Taproot leaf.
"""

import logging
import mimetypes
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Union

from .exceptions import ConfigurationError
from .transaction import InscriptionId
from .utils import push_data


logger = logging.getLogger(__name__)

PROTOCOL_ID = b"ord"

CONTENT_TYPE_TAG = b'\x01'
POINTER_TAG = b'\x02'
PARENT_TAG = b'\x03'
METADATA_TAG = b'\x05'
METAPROTOCOL_TAG = b'\x07'
BODY_TAG = b''

MAX_SCRIPT_ELEMENT_SIZE = 520

OP_FALSE = 0x00
OP_IF = 0x63
OP_ENDIF = 0x68


def encode_pointer(pointer: int) -> bytes:
    """Little-endian pointer with trailing zero bytes removed."""
    return struct.pack('<Q', pointer).rstrip(b'\x00')


def guess_content_type(path: Union[str, Path]) -> str:
    """
    Content type for a file based on its extension.

    Args:
        path: Content file path

    Returns:
        Media type, with a utf-8 charset for text
    """
    content_type, _ = mimetypes.guess_type(str(path))
    if content_type is None:
        raise ConfigurationError(f"unsupported file extension for `{path}`")
    if content_type.startswith('text/'):
        content_type += ';charset=utf-8'
    return content_type


@dataclass(frozen=True)
class Inscription:
    """
    A content item committed in a reveal script.
    """
    content_type: Optional[str] = None
    body: Optional[bytes] = None
    metadata: Optional[bytes] = None
    parent: Optional[InscriptionId] = None
    pointer: Optional[int] = None
    metaprotocol: Optional[str] = None

    @classmethod
    def from_file(cls, path: Union[str, Path], parent: Optional[InscriptionId] = None,
                  pointer: Optional[int] = None, metaprotocol: Optional[str] = None,
                  metadata: Optional[bytes] = None) -> 'Inscription':
        """
        Build an inscription from a content file.

        Args:
            path: Content file
            parent: Parent inscription id
            pointer: Sat offset the inscription should land on
            metaprotocol: Metaprotocol tag
            metadata: CBOR encoded metadata

        Returns:
            Inscription
        """
        path = Path(path)
        try:
            body = path.read_bytes()
        except OSError as e:
            raise ConfigurationError(f"io error reading {path}: {e}")

        return cls(
            content_type=guess_content_type(path),
            body=body,
            metadata=metadata,
            parent=parent,
            pointer=pointer,
            metaprotocol=metaprotocol,
        )

    def append_reveal_script(self, script: bytes) -> bytes:
        """Append this inscription's envelope to ``script``."""
        envelope = bytearray([OP_FALSE, OP_IF])
        envelope += push_data(PROTOCOL_ID)

        if self.content_type is not None:
            envelope += push_data(CONTENT_TYPE_TAG) + push_data(self.content_type.encode('utf-8'))

        if self.metaprotocol is not None:
            envelope += push_data(METAPROTOCOL_TAG) + push_data(self.metaprotocol.encode('utf-8'))

        if self.parent is not None:
            envelope += push_data(PARENT_TAG) + push_data(self.parent.to_bytes())

        if self.pointer is not None:
            envelope += push_data(POINTER_TAG) + push_data(encode_pointer(self.pointer))

        if self.metadata is not None:
            for start in range(0, len(self.metadata), MAX_SCRIPT_ELEMENT_SIZE):
                chunk = self.metadata[start:start + MAX_SCRIPT_ELEMENT_SIZE]
                envelope += push_data(METADATA_TAG) + push_data(chunk)

        if self.body is not None:
            envelope += push_data(BODY_TAG)
            for start in range(0, len(self.body), MAX_SCRIPT_ELEMENT_SIZE):
                envelope += push_data(self.body[start:start + MAX_SCRIPT_ELEMENT_SIZE])

        envelope.append(OP_ENDIF)
        return script + bytes(envelope)


def append_batch_reveal_script(inscriptions: Sequence[Inscription], prefix: bytes) -> bytes:
    """
    Compose the reveal script: ``prefix`` followed by one envelope per inscription.

    Args:
        inscriptions: Inscriptions in batch order
        prefix: Spending condition, ``<pubkey> OP_CHECKSIG``

    Returns:
        Composite reveal script
    """
    script = prefix
    for inscription in inscriptions:
        script = inscription.append_reveal_script(script)
    logger.debug(f"Reveal script with {len(inscriptions)} envelope(s): {len(script)} bytes")
    return script
