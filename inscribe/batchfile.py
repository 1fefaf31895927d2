"""
Batch Files and Inscribe Requests

Pydantic models for the YAML batch file and the JSON inscribe request, plus
helpers that turn user supplied metadata into CBOR.

Example batch file:

    mode: separate-outputs
    parent: 6ac5...c1a5i0
    postage: 10000
    inscriptions:
      - file: mango.avif
        metadata:
          title: Delicious Mangos
      - file: token.json
        metaprotocol: DOPEPROTOCOL-42069
        destination: bc1p...
"""

import json
import logging
from pathlib import Path
from typing import Any, List, Optional, Tuple, Union
from urllib.parse import urlparse

import requests
import yaml
from cbor2 import CBORDecodeError, CBOREncodeError, dumps, loads
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .address import Chain, address_to_script
from .batch import Mode
from .envelope import Inscription
from .exceptions import ConfigurationError
from .transaction import InscriptionId, OutPoint, SatPoint


logger = logging.getLogger(__name__)

FETCH_TIMEOUT = 30
USER_AGENT = "inscribe-batch request fetcher"


def to_cbor(value: Any) -> bytes:
    """Encode a YAML/JSON value as CBOR."""
    try:
        return dumps(value)
    except (CBOREncodeError, TypeError) as e:
        raise ConfigurationError(f"metadata cannot be encoded as CBOR: {e}") from e


def metadata_from_json_file(path: Union[str, Path]) -> bytes:
    """Read a JSON metadata file and encode it as CBOR."""
    try:
        with open(path, 'r') as f:
            value = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"failed to read metadata from {path}: {e}") from e
    return to_cbor(value)


def metadata_from_cbor_file(path: Union[str, Path]) -> bytes:
    """Read a CBOR metadata file, checking that it decodes."""
    try:
        data = Path(path).read_bytes()
    except OSError as e:
        raise ConfigurationError(f"failed to read metadata from {path}: {e}") from e

    try:
        loads(data)
    except CBORDecodeError as e:
        raise ConfigurationError(f"{path} does not contain valid CBOR: {e}") from e

    return data


def _validation_message(error: ValidationError) -> str:
    """First error of a pydantic ValidationError as ``location: message``."""
    first = error.errors()[0]
    location = '.'.join(str(part) for part in first.get('loc', ()))
    if first.get('type') == 'value_error' and 'error' in first.get('ctx', {}):
        message = str(first['ctx']['error'])
    else:
        message = first.get('msg', str(error))
    return f"{location}: {message}" if location else message


class BatchEntry(BaseModel):
    """One inscription of a batch file."""

    model_config = ConfigDict(extra='forbid')

    file: Path = Field(..., description="Content file")
    destination: Optional[str] = Field(None, description="Receiving address")
    metadata: Optional[Any] = Field(None, description="Metadata, stored as CBOR")
    metaprotocol: Optional[str] = Field(None, description="Metaprotocol tag")
    pointer: Optional[int] = Field(None, ge=0, description="Explicit sat pointer")

    def metadata_cbor(self) -> Optional[bytes]:
        if self.metadata is None:
            return None
        return to_cbor(self.metadata)


class Batchfile(BaseModel):
    """
    YAML batch file describing several inscriptions.
    """

    model_config = ConfigDict(extra='forbid')

    inscriptions: List[BatchEntry] = Field(default_factory=list)
    mode: Mode = Field(default=Mode.SEPARATE_OUTPUTS)
    parent: Optional[str] = Field(None, description="Parent inscription id")
    parent_satpoint: Optional[str] = Field(None, description="Satpoint of the parent inscription")
    postage: Optional[int] = Field(None, gt=0, description="Postage per inscription output")
    sat: Optional[int] = Field(None, ge=0, description="Sat to inscribe in same-sat mode")
    satpoint: Optional[str] = Field(None, description="Satpoint to inscribe")

    @field_validator('parent')
    @classmethod
    def validate_parent(cls, v):
        if v is not None:
            InscriptionId.parse(v)
        return v

    @field_validator('parent_satpoint', 'satpoint')
    @classmethod
    def validate_satpoint(cls, v):
        if v is not None:
            SatPoint.parse(v)
        return v

    @model_validator(mode='after')
    def validate_batch(self):
        if not self.inscriptions:
            raise ValueError("batchfile must contain at least one inscription")

        if self.mode == Mode.SHARED_OUTPUT and any(entry.destination for entry in self.inscriptions):
            raise ValueError("individual inscription destinations cannot be set in shared-output mode")

        if self.sat is not None and self.mode != Mode.SAME_SAT:
            raise ValueError("`sat` can only be set in `same-sat` mode")

        if self.sat is not None and self.satpoint is not None:
            raise ValueError("`sat` and `satpoint` cannot both be set")

        return self

    @classmethod
    def load(cls, path: Union[str, Path]) -> 'Batchfile':
        """
        Load and validate a YAML batch file.

        Args:
            path: Batch file path

        Returns:
            Batchfile
        """
        try:
            with open(path, 'r') as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"failed to read batchfile {path}: {e}") from e

        return cls.parse_data(data or {})

    @classmethod
    def parse_data(cls, data: Any) -> 'Batchfile':
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(_validation_message(e)) from e

    @property
    def parent_id(self) -> Optional[InscriptionId]:
        return InscriptionId.parse(self.parent) if self.parent else None

    def inscriptions_for(self, chain: Chain, parent_value: Optional[int] = None,
                         metadata: Optional[bytes] = None,
                         postage: int = 10_000) -> Tuple[List[Inscription], List[Optional[bytes]]]:
        """
        Build the inscriptions and destination scripts of the batch.

        Inscriptions after the first carry a pointer to the first sat of their
        output; in same-sat mode every inscription stays on the first sat.

        Args:
            chain: Chain the destination addresses must belong to
            parent_value: Value of the parent output placed in front of the inscriptions
            metadata: CBOR metadata applied to every entry, overriding entry metadata
            postage: Postage per inscription

        Returns:
            Tuple of (inscriptions, destination scripts); a ``None`` destination
            means a wallet address should be used
        """
        if metadata is not None and any(entry.metadata is not None for entry in self.inscriptions):
            raise ConfigurationError("metadata cannot be given both on the command line and in the batchfile")

        parent = self.parent_id
        base = parent_value or 0

        inscriptions = []
        for i, entry in enumerate(self.inscriptions):
            if entry.pointer is not None:
                pointer = entry.pointer
            elif i == 0 or self.mode == Mode.SAME_SAT:
                pointer = None
            else:
                pointer = base + i * postage

            inscriptions.append(Inscription.from_file(
                entry.file,
                parent=parent,
                pointer=pointer,
                metaprotocol=entry.metaprotocol,
                metadata=metadata if metadata is not None else entry.metadata_cbor(),
            ))

        if self.mode == Mode.SEPARATE_OUTPUTS:
            destinations = [
                address_to_script(entry.destination, chain) if entry.destination else None
                for entry in self.inscriptions
            ]
        else:
            destinations = [None]

        logger.debug(f"Batchfile yields {len(inscriptions)} inscription(s) in {self.mode.value} mode")
        return inscriptions, destinations


class RequestInscription(BaseModel):
    """One inscription of an inscribe request."""

    model_config = ConfigDict(extra='forbid')

    file: str = Field(..., description="URL of the content")
    utxo: str = Field(..., description="Outpoint that receives the inscription's sats")
    destination: str = Field(..., description="Receiving address")
    metadata: Optional[Any] = Field(None, description="Metadata, stored as CBOR")

    @field_validator('utxo')
    @classmethod
    def validate_utxo(cls, v):
        OutPoint.parse(v)
        return v

    @field_validator('file')
    @classmethod
    def validate_file(cls, v):
        path = urlparse(v).path
        if not Path(path).suffix:
            raise ValueError(f"URL {v} path {path} has no file extension")
        return v


class InscribeRequest(BaseModel):
    """
    JSON request to inscribe fetched content onto specific outputs.
    """

    model_config = ConfigDict(extra='forbid')

    inscriptions: List[RequestInscription] = Field(..., min_length=1)
    fees_utxos: List[str] = Field(..., description="Outpoints spent for fees")
    commit_vsize: Optional[int] = Field(None, gt=0, description="Commit vsize override")
    parent: Optional[str] = Field(None, description="Parent inscription id")
    reveal_psbt: Optional[str] = Field(None, description="Reveal PSBT, passed through untouched")

    @field_validator('fees_utxos')
    @classmethod
    def validate_fees_utxos(cls, v):
        for utxo in v:
            OutPoint.parse(utxo)
        return v

    @field_validator('parent')
    @classmethod
    def validate_parent(cls, v):
        if v is not None:
            InscriptionId.parse(v)
        return v

    @classmethod
    def parse_json(cls, text: str) -> 'InscribeRequest':
        """Parse and validate a JSON request."""
        try:
            return cls.model_validate_json(text)
        except ValidationError as e:
            raise ConfigurationError(_validation_message(e)) from e

    @property
    def parent_id(self) -> Optional[InscriptionId]:
        return InscriptionId.parse(self.parent) if self.parent else None

    @property
    def utxos(self) -> List[OutPoint]:
        return [OutPoint.parse(inscription.utxo) for inscription in self.inscriptions]

    @property
    def fee_outpoints(self) -> List[OutPoint]:
        return [OutPoint.parse(utxo) for utxo in self.fees_utxos]

    def fetch(self, directory: Union[str, Path], session: Optional[requests.Session] = None) -> List[Path]:
        """
        Download every inscription's content into ``directory``.

        Args:
            directory: Target directory
            session: HTTP session to use

        Returns:
            Downloaded file paths, in request order
        """
        session = session or requests.Session()
        session.headers.setdefault('User-Agent', USER_AGENT)

        paths = []
        for i, inscription in enumerate(self.inscriptions):
            suffix = Path(urlparse(inscription.file).path).suffix
            path = Path(directory) / f"{i}{suffix}"
            try:
                response = session.get(inscription.file, timeout=FETCH_TIMEOUT)
                response.raise_for_status()
            except requests.exceptions.RequestException as e:
                raise ConfigurationError(f"error fetching {inscription.file}: {e}") from e

            path.write_bytes(response.content)
            logger.debug(f"Fetched {inscription.file}: {len(response.content)} bytes")
            paths.append(path)
        return paths

    def inscriptions_for(self, chain: Chain, files: List[Path],
                         parent_value: Optional[int] = None,
                         postage: int = 10_000) -> Tuple[List[Inscription], List[bytes]]:
        """
        Build inscriptions from fetched ``files`` and their destination scripts.

        Args:
            chain: Chain the destinations must belong to
            files: Content files returned by ``fetch``
            parent_value: Value of the parent output placed in front of the inscriptions
            postage: Postage per inscription

        Returns:
            Tuple of (inscriptions, destination scripts)
        """
        parent = self.parent_id
        base = parent_value or 0

        inscriptions = []
        for i, (entry, path) in enumerate(zip(self.inscriptions, files)):
            inscriptions.append(Inscription.from_file(
                path,
                parent=parent,
                pointer=None if i == 0 else base + i * postage,
                metadata=to_cbor(entry.metadata) if entry.metadata is not None else None,
            ))

        destinations = [address_to_script(entry.destination, chain) for entry in self.inscriptions]
        return inscriptions, destinations

