"""
Tests for inscription envelopes and reveal scripts.
"""

import pytest

from inscribe.envelope import (
    Inscription,
    MAX_SCRIPT_ELEMENT_SIZE,
    append_batch_reveal_script,
    encode_pointer,
    guess_content_type,
)
from inscribe.exceptions import ConfigurationError
from inscribe.transaction import InscriptionId


PREFIX = b'\x20' + b'\x01' * 32 + b'\xac'


class TestEnvelope:
    """Test envelope encoding."""

    def test_minimal_envelope(self):
        """Content type and body between OP_FALSE OP_IF and OP_ENDIF."""
        inscription = Inscription(content_type="text/plain", body=b"hi")
        script = inscription.append_reveal_script(b"")

        assert script == (
            b'\x00\x63'
            + b'\x03ord'
            + b'\x01\x01' + b'\x0atext/plain'
            + b'\x00'
            + b'\x02hi'
            + b'\x68'
        )

    def test_body_chunks(self):
        """Bodies are pushed in chunks of at most 520 bytes."""
        body = b'\xaa' * (MAX_SCRIPT_ELEMENT_SIZE + 10)
        script = Inscription(body=body).append_reveal_script(b"")

        first_chunk = b'\x4d' + MAX_SCRIPT_ELEMENT_SIZE.to_bytes(2, 'little') + b'\xaa' * MAX_SCRIPT_ELEMENT_SIZE
        assert first_chunk in script
        assert script.endswith(b'\x0a' + b'\xaa' * 10 + b'\x68')

    def test_optional_fields(self):
        """Parent, pointer, metadata and metaprotocol get their tags."""
        parent = InscriptionId("00" * 31 + "01", 0)
        inscription = Inscription(
            content_type="text/plain",
            body=b"x",
            parent=parent,
            pointer=10_000,
            metadata=b'\xa0',
            metaprotocol="brc-20",
        )
        script = inscription.append_reveal_script(b"")

        assert b'\x01\x07' + b'\x06brc-20' in script
        assert b'\x01\x03' + b'\x20' + parent.to_bytes() in script
        assert b'\x01\x02' + b'\x02' + encode_pointer(10_000) in script
        assert b'\x01\x05' + b'\x01\xa0' in script

    def test_pointer_encoding(self):
        """Pointers are little-endian without trailing zeros."""
        assert encode_pointer(0) == b''
        assert encode_pointer(1) == b'\x01'
        assert encode_pointer(10_000) == b'\x10\x27'

    def test_batch_script(self):
        """A batch script is the prefix followed by one envelope per inscription."""
        one = Inscription(content_type="text/plain", body=b"one")
        two = Inscription(content_type="text/plain", body=b"two")

        script = append_batch_reveal_script([one, two], PREFIX)

        assert script.startswith(PREFIX)
        assert script == two.append_reveal_script(one.append_reveal_script(PREFIX))
        assert script.count(b'\x03ord') == 2


class TestContentFiles:
    """Test inscriptions built from files."""

    def test_from_file(self, content_file):
        """Text files get a utf-8 content type."""
        inscription = Inscription.from_file(content_file)
        assert inscription.content_type == "text/plain;charset=utf-8"
        assert inscription.body == b"Hello, world!"

    def test_unknown_extension(self, tmp_path):
        """Files without a known media type are rejected."""
        path = tmp_path / "content.unknownext"
        path.write_bytes(b"x")
        with pytest.raises(ConfigurationError):
            Inscription.from_file(path)

    def test_missing_file(self, tmp_path):
        """Unreadable files are configuration errors."""
        with pytest.raises(ConfigurationError):
            Inscription.from_file(tmp_path / "missing.txt")

    def test_guess_content_type(self):
        assert guess_content_type("image.png") == "image/png"
        assert guess_content_type("page.html") == "text/html;charset=utf-8"
