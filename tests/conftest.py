"""
Pytest configuration and fixtures for inscribe tests.
"""

import pytest
import tempfile
from pathlib import Path
from typing import Dict, List, Sequence, Set, Tuple

from crypto.keys import PrivateKey
from inscribe.accounting import UtxoStore
from inscribe.address import Chain, script_to_address
from inscribe.batch import Batch, Mode, output_policy
from inscribe.envelope import Inscription
from inscribe.fees import FeeRate
from inscribe.transaction import InscriptionId, OutPoint, SatPoint, Transaction, TxOut


def p2tr_script(seed: int) -> bytes:
    """P2TR output script for the key derived from ``seed``."""
    key = PrivateKey(seed.to_bytes(32, 'big'))
    return b'\x51\x20' + key.public_key().x_only


def txid(n: int) -> str:
    return f"{n:064x}"


CHANGE_SCRIPT = p2tr_script(1001)
WALLET_CHANGE_SCRIPT = p2tr_script(1002)
DESTINATION_SCRIPT = p2tr_script(1003)

# rawtr descriptors from a regtest node end with an 8 character checksum
DESCRIPTOR_CHECKSUM = "abcd1234"


class FakeWallet:
    """
    In-memory wallet: unspent outputs, known transactions, and recorded
    signing, broadcast and descriptor import calls.
    """

    def __init__(self, utxos: Dict[OutPoint, int], chain: Chain = Chain.REGTEST):
        self.utxos = dict(utxos)
        self.chain = chain
        self.locked: Set[OutPoint] = set()
        self.outputs: Dict[OutPoint, TxOut] = {
            outpoint: TxOut(value, CHANGE_SCRIPT) for outpoint, value in utxos.items()
        }
        self.change_address = None
        self.signed: List[Tuple[Transaction, Sequence]] = []
        self.broadcasts: List[str] = []
        self.imported: List[dict] = []
        self.fail_reveal_broadcast = False

    def get_unspent_outputs(self):
        return dict(self.utxos)

    def get_locked_outputs(self):
        return set(self.locked)

    def get_change_address(self):
        return self.change_address or script_to_address(WALLET_CHANGE_SCRIPT, self.chain)

    def get_transaction_output(self, outpoint):
        return self.outputs[outpoint]

    def sign_transaction(self, tx, prevouts=()):
        self.signed.append((tx, list(prevouts)))
        signed = tx.copy()
        for txin in signed.inputs:
            if not txin.witness:
                txin.witness = [bytes(64)]
        return signed.hex()

    def broadcast(self, tx_hex):
        if self.fail_reveal_broadcast and self.broadcasts:
            raise RuntimeError("non-mandatory-script-verify-flag")
        self.broadcasts.append(tx_hex)
        return Transaction.from_hex(tx_hex).txid

    def decode_txid(self, tx_hex):
        return Transaction.from_hex(tx_hex).txid

    def get_descriptor_info(self, descriptor):
        return {'descriptor': descriptor, 'checksum': DESCRIPTOR_CHECKSUM}

    def import_descriptors(self, requests):
        self.imported.extend(requests)
        return [{'success': True} for _ in requests]


class FakeIndex:
    """Inscription and rune state held in memory."""

    def __init__(self, inscriptions=None, runic=None):
        self.inscriptions: Dict[SatPoint, InscriptionId] = dict(inscriptions or {})
        self.runic: Set[OutPoint] = set(runic or ())

    def get_inscriptions(self, utxos):
        return {sp: iid for sp, iid in self.inscriptions.items() if sp.outpoint in utxos}

    def get_runic_outputs(self, utxos):
        return {outpoint for outpoint in self.runic if outpoint in utxos}


@pytest.fixture(scope="session")
def test_data_dir():
    """Create temporary test data directory."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield temp_dir


@pytest.fixture
def chain():
    return Chain.REGTEST


@pytest.fixture
def funding_outpoint():
    return OutPoint(txid(1), 0)


@pytest.fixture
def utxos(funding_outpoint):
    """A wallet with one large and one small cardinal output."""
    return UtxoStore({
        funding_outpoint: 100_000,
        OutPoint(txid(2), 1): 20_000,
    })


@pytest.fixture
def change():
    return (WALLET_CHANGE_SCRIPT, CHANGE_SCRIPT)


@pytest.fixture
def text_inscription():
    return Inscription(content_type="text/plain;charset=utf-8", body=b"Hello, world!")


@pytest.fixture
def make_batch(text_inscription):
    """Factory for batches of ``count`` text inscriptions."""
    def _make(count: int = 1, mode: Mode = Mode.SEPARATE_OUTPUTS, **kwargs) -> Batch:
        inscriptions = kwargs.pop('inscriptions', [text_inscription] * count)
        destinations = kwargs.pop('destinations', None)
        if destinations is None:
            if mode == Mode.SEPARATE_OUTPUTS:
                destinations = [DESTINATION_SCRIPT] * len(inscriptions)
            else:
                destinations = [DESTINATION_SCRIPT]
        return Batch(
            inscriptions=inscriptions,
            outputs=output_policy(mode, destinations, len(inscriptions)),
            commit_fee_rate=kwargs.pop('commit_fee_rate', FeeRate(1.0)),
            reveal_fee_rate=kwargs.pop('reveal_fee_rate', FeeRate(1.0)),
            **kwargs,
        )
    return _make


@pytest.fixture
def fake_wallet(funding_outpoint):
    return FakeWallet({funding_outpoint: 100_000, OutPoint(txid(2), 1): 20_000})


@pytest.fixture
def fake_index():
    return FakeIndex()


@pytest.fixture
def content_file(tmp_path):
    path = tmp_path / "hello.txt"
    path.write_text("Hello, world!")
    return path


@pytest.fixture
def temp_path():
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def destination_script():
    return DESTINATION_SCRIPT


@pytest.fixture
def change_script():
    return CHANGE_SCRIPT


@pytest.fixture
def wallet_change_script():
    return WALLET_CHANGE_SCRIPT


@pytest.fixture
def wallet_factory():
    return FakeWallet


@pytest.fixture
def index_factory():
    return FakeIndex


@pytest.fixture
def make_txid():
    return txid


@pytest.fixture
def make_p2tr():
    return p2tr_script
