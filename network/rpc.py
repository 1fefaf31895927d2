"""
Bitcoin Core RPC Client

JSON-RPC client for the node and wallet calls the inscriber needs: listing
and locking state of wallet outputs, signing, broadcasting, decoding and
descriptor import.
"""

import json
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import requests
from requests.auth import HTTPBasicAuth
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry


DEFAULT_PORTS = {
    "mainnet": 8332,
    "testnet": 18332,
    "signet": 38332,
    "regtest": 18443,
}

COOKIE_DIRECTORIES = {
    "mainnet": "",
    "testnet": "testnet3",
    "signet": "signet",
    "regtest": "regtest",
}


class RPCError(Exception):
    """Base exception for RPC-related errors."""

    def __init__(self, code: int, message: str, data: Optional[Any] = None):
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"RPC Error {code}: {message}")


class RPCConnectionError(RPCError):
    """Exception for RPC connection failures."""
    pass


class RPCAuthError(RPCError):
    """Exception for RPC authentication failures."""
    pass


class RPCTimeoutError(RPCError):
    """Exception for RPC timeout errors."""
    pass


@dataclass
class RPCConfig:
    """Configuration for Bitcoin Core RPC connection."""
    host: str = "localhost"
    port: Optional[int] = None
    username: Optional[str] = None
    password: Optional[str] = None
    cookie_file: Optional[str] = None
    wallet: Optional[str] = None
    chain: str = "regtest"
    timeout: int = 30
    max_retries: int = 3
    backoff_factor: float = 1.0
    use_ssl: bool = False

    def __post_init__(self):
        """Fill in chain defaults."""
        if self.port is None:
            self.port = DEFAULT_PORTS.get(self.chain, 18443)

        if not self.username and not self.cookie_file:
            self.cookie_file = self._find_cookie_file()

        if not self.username and not self.cookie_file:
            raise ValueError("Either username/password or cookie file must be provided")

    def _find_cookie_file(self) -> Optional[str]:
        """Look for the node's cookie file in the default data directory."""
        subdir = COOKIE_DIRECTORIES.get(self.chain, "")
        path = Path("~/.bitcoin").expanduser() / subdir / ".cookie"
        if path.exists():
            return str(path)
        return None

    @classmethod
    def from_env(cls, chain: str = "regtest") -> 'RPCConfig':
        """Create RPC config from environment variables."""
        port = os.getenv("BITCOIN_RPC_PORT")
        return cls(
            host=os.getenv("BITCOIN_RPC_HOST", "localhost"),
            port=int(port) if port else None,
            username=os.getenv("BITCOIN_RPC_USER"),
            password=os.getenv("BITCOIN_RPC_PASSWORD"),
            cookie_file=os.getenv("BITCOIN_RPC_COOKIE_FILE"),
            wallet=os.getenv("BITCOIN_RPC_WALLET"),
            chain=chain,
            timeout=int(os.getenv("BITCOIN_RPC_TIMEOUT", "30")),
            max_retries=int(os.getenv("BITCOIN_RPC_MAX_RETRIES", "3")),
        )


class ConnectionPool:
    """HTTP session with retries and authentication for RPC requests."""

    def __init__(self, config: RPCConfig):
        self.config = config
        self.logger = logging.getLogger(__name__)

        self.session = requests.Session()

        retry_strategy = Retry(
            total=config.max_retries,
            backoff_factor=config.backoff_factor,
            status_forcelist=[429, 502, 503, 504],
            allowed_methods=["POST"]
        )

        adapter = HTTPAdapter(max_retries=retry_strategy, pool_maxsize=4)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

        self._setup_auth()

        self._stats = {
            "total_requests": 0,
            "failed_requests": 0,
            "total_time": 0.0,
        }

    def _setup_auth(self):
        """Set up authentication for the session."""
        if self.config.username:
            self.session.auth = HTTPBasicAuth(self.config.username, self.config.password or "")
            self.logger.debug("Using basic authentication")
            return

        try:
            with open(self.config.cookie_file, 'r') as f:
                cookie_content = f.read().strip()
        except OSError as e:
            raise RPCAuthError(-1, f"Failed to read cookie file {self.config.cookie_file}: {e}")

        if ':' not in cookie_content:
            raise RPCAuthError(-1, f"Invalid cookie file format: {self.config.cookie_file}")

        username, password = cookie_content.split(':', 1)
        self.session.auth = HTTPBasicAuth(username, password)
        self.logger.debug(f"Using cookie file authentication: {self.config.cookie_file}")

    def get_url(self, wallet: bool = False) -> str:
        """RPC URL, pointing at the configured wallet for wallet calls."""
        protocol = "https" if self.config.use_ssl else "http"
        url = f"{protocol}://{self.config.host}:{self.config.port}/"
        if wallet and self.config.wallet:
            url += f"wallet/{self.config.wallet}"
        return url

    def request(self, method: str, params: List[Any], wallet: bool = False) -> Any:
        """
        Make an RPC request.

        Args:
            method: RPC method name
            params: Positional parameters
            wallet: Route the call to the configured wallet

        Returns:
            The ``result`` member of the response
        """
        start_time = time.time()

        payload = {
            "jsonrpc": "1.0",
            "method": method,
            "params": params,
            "id": f"inscribe_{int(start_time * 1000000)}"
        }

        self._stats["total_requests"] += 1

        try:
            response = self.session.post(
                self.get_url(wallet),
                data=json.dumps(payload),
                headers={"Content-Type": "application/json"},
                timeout=self.config.timeout,
            )
        except requests.exceptions.Timeout:
            self._stats["failed_requests"] += 1
            raise RPCTimeoutError(-1, f"Request timed out after {self.config.timeout}s")
        except requests.exceptions.ConnectionError as e:
            self._stats["failed_requests"] += 1
            raise RPCConnectionError(-1, f"Connection error: {e}")
        except requests.exceptions.RequestException as e:
            self._stats["failed_requests"] += 1
            raise RPCError(-1, f"Request failed: {e}")
        finally:
            self._stats["total_time"] += time.time() - start_time

        if response.status_code == 401:
            self._stats["failed_requests"] += 1
            raise RPCAuthError(response.status_code, "Authentication failed")

        # Bitcoin Core answers RPC errors with HTTP 500 and a JSON body
        try:
            response_data = response.json()
        except ValueError:
            self._stats["failed_requests"] += 1
            raise RPCConnectionError(
                response.status_code,
                f"HTTP {response.status_code}: {response.reason}"
            )

        error = response_data.get("error")
        if error:
            self._stats["failed_requests"] += 1
            raise RPCError(error.get("code", -1), error.get("message", ""), error.get("data"))

        return response_data.get("result")

    def get_stats(self) -> Dict[str, Any]:
        """Get connection pool statistics."""
        return dict(self._stats)

    def close(self):
        """Close the connection pool."""
        self.session.close()


class BitcoinRPCClient:
    """
    Bitcoin Core RPC client with the node and wallet calls used for inscribing.
    """

    def __init__(self, config: Optional[RPCConfig] = None):
        """
        Initialize Bitcoin RPC client.

        Args:
            config: RPC configuration (uses environment if None)
        """
        self.config = config or RPCConfig.from_env()
        self.pool = ConnectionPool(self.config)
        self.logger = logging.getLogger(__name__)

    def _call(self, method: str, *params) -> Any:
        """Call a node RPC method."""
        return self._request(method, params, wallet=False)

    def _wallet_call(self, method: str, *params) -> Any:
        """Call a wallet RPC method."""
        return self._request(method, params, wallet=True)

    def _request(self, method: str, params, wallet: bool) -> Any:
        self.logger.debug(f"RPC {method}")
        try:
            return self.pool.request(method, list(params), wallet=wallet)
        except RPCError as e:
            self.logger.error(f"RPC call {method} failed: {e}")
            raise

    # Node methods

    def get_block_count(self) -> int:
        """Get the current block count."""
        return self._call("getblockcount")

    def get_raw_transaction(self, txid: str, verbose: bool = False) -> Union[str, Dict[str, Any]]:
        """Get a transaction as hex, or decoded when ``verbose``."""
        return self._call("getrawtransaction", txid, verbose)

    def decode_raw_transaction(self, hex_string: str) -> Dict[str, Any]:
        """Decode a raw transaction."""
        return self._call("decoderawtransaction", hex_string)

    def send_raw_transaction(self, hex_string: str, max_fee_rate: Optional[float] = None) -> str:
        """Broadcast a raw transaction and return its txid."""
        if max_fee_rate is None:
            return self._call("sendrawtransaction", hex_string)
        return self._call("sendrawtransaction", hex_string, max_fee_rate)

    def get_descriptor_info(self, descriptor: str) -> Dict[str, Any]:
        """Analyse a descriptor; the result carries its checksum."""
        return self._call("getdescriptorinfo", descriptor)

    # Wallet methods

    def list_unspent(self, min_conf: int = 0, max_conf: int = 9999999) -> List[Dict[str, Any]]:
        """List unspent wallet outputs."""
        return self._wallet_call("listunspent", min_conf, max_conf)

    def list_lock_unspent(self) -> List[Dict[str, Any]]:
        """List wallet outputs locked against spending."""
        return self._wallet_call("listlockunspent")

    def get_raw_change_address(self, address_type: str = "bech32m") -> str:
        """Get a fresh change address."""
        return self._wallet_call("getrawchangeaddress", address_type)

    def sign_raw_transaction_with_wallet(self, hex_string: str,
                                         prevtxs: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
        """Sign the wallet's inputs of a raw transaction."""
        if prevtxs:
            return self._wallet_call("signrawtransactionwithwallet", hex_string, prevtxs)
        return self._wallet_call("signrawtransactionwithwallet", hex_string)

    def import_descriptors(self, requests_: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Import descriptors into the wallet."""
        return self._wallet_call("importdescriptors", requests_)

    def test_connection(self) -> bool:
        """Test the RPC connection."""
        try:
            return isinstance(self.get_block_count(), int)
        except RPCError as e:
            self.logger.error(f"Connection test failed: {e}")
            return False

    def close(self):
        """Close the client."""
        self.pool.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
