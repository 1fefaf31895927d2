"""
Addresses, chains and output dust thresholds.
"""

from enum import Enum

from bitcoinlib.encoding import addr_bech32_to_pubkeyhash, pubkeyhash_to_addr_bech32
from bitcoinlib.keys import deserialize_address

from .exceptions import ConfigurationError
from .utils import compact_size_len


BECH32M_CONST = 0x2bc830a3

DUST_RELAY_FEE_PER_KVB = 3000

OP_0 = 0x00
OP_1 = 0x51
OP_16 = 0x60
OP_RETURN = 0x6a


class Chain(Enum):
    """Supported chains and their bech32 human readable parts."""
    MAINNET = "mainnet"
    TESTNET = "testnet"
    SIGNET = "signet"
    REGTEST = "regtest"

    @property
    def hrp(self) -> str:
        return {
            Chain.MAINNET: "bc",
            Chain.TESTNET: "tb",
            Chain.SIGNET: "tb",
            Chain.REGTEST: "bcrt",
        }[self]

    @property
    def base58_prefixes(self) -> dict:
        """Base58 version byte to script type."""
        if self == Chain.MAINNET:
            return {b'\x00': 'p2pkh', b'\x05': 'p2sh'}
        return {b'\x6f': 'p2pkh', b'\xc4': 'p2sh'}


def is_witness_program(script: bytes) -> bool:
    """True for ``<version> <2..40 byte program>`` output scripts."""
    if not 4 <= len(script) <= 42:
        return False
    if script[0] != OP_0 and not OP_1 <= script[0] <= OP_16:
        return False
    return script[1] + 2 == len(script)


def witness_version(script: bytes) -> int:
    return 0 if script[0] == OP_0 else script[0] - OP_1 + 1


def address_to_script(address: str, chain: Chain) -> bytes:
    """
    Decode ``address`` into its output script, checking it belongs to ``chain``.

    Args:
        address: Base58 or bech32/bech32m address
        chain: Chain the address must be valid for

    Returns:
        scriptPubKey bytes
    """
    lowered = address.lower()
    if lowered.startswith(chain.hrp + "1"):
        try:
            script = addr_bech32_to_pubkeyhash(lowered, prefix=chain.hrp, include_witver=True)
        except Exception as e:
            raise ConfigurationError(f"invalid address {address}: {e}")
        if not is_witness_program(script):
            raise ConfigurationError(f"invalid address {address}: not a witness program")
        return script

    try:
        info = deserialize_address(address, encoding='base58')
    except Exception as e:
        raise ConfigurationError(f"address {address} is not valid for {chain.value}: {e}")

    prefix = info.get('prefix')
    if isinstance(prefix, str):
        prefix = bytes.fromhex(prefix)
    script_type = chain.base58_prefixes.get(prefix)
    if script_type is None:
        raise ConfigurationError(f"address {address} is not valid for {chain.value}")

    hash160 = info['public_key_hash_bytes']
    if script_type == 'p2pkh':
        # OP_DUP OP_HASH160 <20> OP_EQUALVERIFY OP_CHECKSIG
        return b'\x76\xa9\x14' + hash160 + b'\x88\xac'
    # OP_HASH160 <20> OP_EQUAL
    return b'\xa9\x14' + hash160 + b'\x87'


def script_to_address(script: bytes, chain: Chain) -> str:
    """
    Encode a witness program output script as a bech32 (v0) or bech32m (v1+) address.

    Args:
        script: Witness program scriptPubKey
        chain: Target chain

    Returns:
        Address string
    """
    if not is_witness_program(script):
        raise ConfigurationError("only witness program scripts can be encoded as addresses")

    version = witness_version(script)
    checksum_xor = 1 if version == 0 else BECH32M_CONST
    return pubkeyhash_to_addr_bech32(
        script[2:], prefix=chain.hrp, witver=version, checksum_xor=checksum_xor
    )


def dust_value(script: bytes) -> int:
    """
    Minimum non-dust value for an output paying to ``script`` at the default
    dust relay fee of 3 sat/vB.

    Args:
        script: Output script

    Returns:
        Dust threshold in satoshis, 0 for unspendable OP_RETURN outputs
    """
    if script and script[0] == OP_RETURN:
        return 0

    size = 8 + compact_size_len(len(script)) + len(script)
    if is_witness_program(script):
        # outpoint, empty script_sig, sequence and a discounted P2WPKH witness
        size += 32 + 4 + 1 + (107 // 4) + 4
    else:
        size += 32 + 4 + 1 + 107 + 4

    return size * DUST_RELAY_FEE_PER_KVB // 1000
