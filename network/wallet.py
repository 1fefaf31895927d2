"""
Wallet Adapter

Presents a Bitcoin Core wallet, reached through BitcoinRPCClient, as the
wallet the batch inscriber works with. Inscription and rune state comes from
a JSON state file exported by an indexer, since Bitcoin Core does not track
either.
"""

import json
import logging
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple, Union

from inscribe.accounting import UtxoStore
from inscribe.exceptions import BroadcastError, ConfigurationError
from inscribe.transaction import InscriptionId, OutPoint, SatPoint, Transaction, TxOut

from .rpc import BitcoinRPCClient


SATS_PER_BTC = Decimal(100_000_000)


def btc_to_sats(amount: Union[float, str, Decimal]) -> int:
    """Convert an RPC BTC amount to satoshis."""
    return int((Decimal(str(amount)) * SATS_PER_BTC).to_integral_value())


def sats_to_btc(value: int) -> float:
    """Convert satoshis to an RPC BTC amount."""
    return float(Decimal(value) / SATS_PER_BTC)


class RPCWallet:
    """
    Wallet operations backed by Bitcoin Core RPC.
    """

    def __init__(self, client: BitcoinRPCClient):
        self.client = client
        self.logger = logging.getLogger(__name__)
        self._transactions: Dict[str, Transaction] = {}

    def get_unspent_outputs(self) -> Dict[OutPoint, int]:
        """Unspent wallet outputs and their values in satoshis."""
        utxos = {
            OutPoint(entry['txid'], entry['vout']): btc_to_sats(entry['amount'])
            for entry in self.client.list_unspent()
        }
        self.logger.debug(f"Wallet has {len(utxos)} unspent output(s)")
        return utxos

    def get_locked_outputs(self) -> Set[OutPoint]:
        return {OutPoint(entry['txid'], entry['vout']) for entry in self.client.list_lock_unspent()}

    def get_change_address(self) -> str:
        return self.client.get_raw_change_address()

    def get_transaction_output(self, outpoint: OutPoint) -> TxOut:
        """
        Look up the output ``outpoint`` refers to.

        Args:
            outpoint: Output to look up

        Returns:
            TxOut
        """
        tx = self._transactions.get(outpoint.txid)
        if tx is None:
            tx = Transaction.from_hex(self.client.get_raw_transaction(outpoint.txid))
            self._transactions[outpoint.txid] = tx

        if outpoint.vout >= len(tx.outputs):
            raise ConfigurationError(f"output {outpoint} does not exist")
        return tx.outputs[outpoint.vout]

    def sign_transaction(self, tx: Transaction,
                         prevouts: Sequence[Tuple[OutPoint, TxOut]] = ()) -> str:
        """
        Sign the wallet's inputs of ``tx``.

        Args:
            tx: Transaction to sign; existing witnesses are kept
            prevouts: Outputs spent by ``tx`` that the wallet may not know yet

        Returns:
            Signed transaction hex
        """
        prevtxs = [
            {
                'txid': outpoint.txid,
                'vout': outpoint.vout,
                'scriptPubKey': txout.script_pubkey.hex(),
                'amount': sats_to_btc(txout.value),
            }
            for outpoint, txout in prevouts
        ]

        result = self.client.sign_raw_transaction_with_wallet(tx.hex(), prevtxs or None)
        if not result.get('complete', False):
            errors = '; '.join(error.get('error', '') for error in result.get('errors', []))
            raise BroadcastError(f"wallet failed to sign transaction {tx.txid}: {errors}")
        return result['hex']

    def broadcast(self, tx_hex: str) -> str:
        return self.client.send_raw_transaction(tx_hex)

    def decode_txid(self, tx_hex: str) -> str:
        return self.client.decode_raw_transaction(tx_hex)['txid']

    def get_descriptor_info(self, descriptor: str) -> Dict[str, Any]:
        return self.client.get_descriptor_info(descriptor)

    def import_descriptors(self, requests: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return self.client.import_descriptors(requests)


class InscriptionStateFile:
    """
    Inscription and rune state read from a JSON file:

        {
          "inscriptions": {"<txid>:<vout>:<offset>": "<txid>i<index>"},
          "runic": ["<txid>:<vout>"]
        }

    Without a file the wallet is treated as holding no inscriptions or runes.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path else None
        self.inscriptions: Dict[SatPoint, InscriptionId] = {}
        self.runic: Set[OutPoint] = set()

        if self.path is not None:
            self._load()

    def _load(self):
        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"failed to read inscription state from {self.path}: {e}") from e

        try:
            self.inscriptions = {
                SatPoint.parse(satpoint): InscriptionId.parse(inscription_id)
                for satpoint, inscription_id in data.get('inscriptions', {}).items()
            }
            self.runic = {OutPoint.parse(outpoint) for outpoint in data.get('runic', [])}
        except ValueError as e:
            raise ConfigurationError(f"invalid inscription state in {self.path}: {e}") from e

    def get_inscriptions(self, utxos: UtxoStore) -> Dict[SatPoint, InscriptionId]:
        """Known inscriptions on outputs the wallet still holds."""
        return {
            satpoint: inscription_id
            for satpoint, inscription_id in self.inscriptions.items()
            if satpoint.outpoint in utxos
        }

    def get_runic_outputs(self, utxos: UtxoStore) -> Set[OutPoint]:
        return {outpoint for outpoint in self.runic if outpoint in utxos}

    def find_inscription(self, inscription_id: InscriptionId) -> Optional[SatPoint]:
        """Satpoint of ``inscription_id``, if known."""
        for satpoint, known_id in self.inscriptions.items():
            if known_id == inscription_id:
                return satpoint
        return None
