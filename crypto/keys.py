"""
Key Management and Taproot Tweaking

This module handles private/public key operations, WIF import/export and
BIP341 key tweaking used by inscription commitments and recovery keys.

References:
- BIP340: https://github.com/bitcoin/bips/blob/master/bip-0340.mediawiki
- BIP341: https://github.com/bitcoin/bips/blob/master/bip-0341.mediawiki
"""

import hashlib
import secrets
from typing import Optional, Tuple, Union

from bitcoinlib.keys import Key as BitcoinlibKey
from coincurve import PrivateKey as CoinCurvePrivateKey, PublicKey as CoinCurvePublicKey

from .exceptions import InvalidKeyError, TweakError


CURVE_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

# bitcoinlib network names by chain; test chains share the 0xef WIF prefix
WIF_NETWORKS = {
    'mainnet': 'bitcoin',
    'testnet': 'testnet',
    'signet': 'testnet',
    'regtest': 'testnet',
}


def tagged_hash(tag: str, data: bytes) -> bytes:
    """
    Compute BIP340/341 tagged hash: SHA256(SHA256(tag) + SHA256(tag) + data).

    Args:
        tag: Tag string for the hash
        data: Data to hash

    Returns:
        32-byte tagged hash
    """
    tag_hash = hashlib.sha256(tag.encode('utf-8')).digest()
    return hashlib.sha256(tag_hash + tag_hash + data).digest()


def lift_x(x: bytes) -> Optional[bytes]:
    """
    Lift an x-coordinate to the point with even y.

    Args:
        x: 32-byte x-coordinate

    Returns:
        33-byte compressed public key with even y, or None if x is not on the curve
    """
    if len(x) != 32:
        return None
    candidate = b'\x02' + x
    try:
        CoinCurvePublicKey(candidate)
    except ValueError:
        return None
    return candidate


def has_even_y(pubkey: bytes) -> bool:
    """Check if a compressed public key has an even y-coordinate."""
    return len(pubkey) == 33 and pubkey[0] == 0x02


def compute_taproot_tweak(internal_pubkey_x: bytes, merkle_root: Optional[bytes] = None) -> bytes:
    """
    Compute Taproot tweak according to BIP341.

    Args:
        internal_pubkey_x: 32-byte x-only internal public key
        merkle_root: Optional 32-byte Merkle root of script tree

    Returns:
        32-byte tweak value
    """
    if len(internal_pubkey_x) != 32:
        raise InvalidKeyError("Internal pubkey x-coordinate must be 32 bytes")

    tweak_data = internal_pubkey_x
    if merkle_root is not None:
        if len(merkle_root) != 32:
            raise InvalidKeyError("Merkle root must be 32 bytes")
        tweak_data += merkle_root

    return tagged_hash("TapTweak", tweak_data)


def taproot_output_script(tweaked_pubkey_x: bytes) -> bytes:
    """
    Create Taproot output script (witness program).

    Args:
        tweaked_pubkey_x: 32-byte x-only tweaked public key

    Returns:
        34-byte P2TR output script
    """
    if len(tweaked_pubkey_x) != 32:
        raise InvalidKeyError("Tweaked pubkey must be 32 bytes")

    # OP_1 <32-byte-tweaked-pubkey>
    return b'\x51\x20' + tweaked_pubkey_x


class PrivateKey:
    """
    Wrapper for secp256k1 private key operations.
    """

    def __init__(self, key_bytes: Optional[bytes] = None):
        """
        Initialize private key.

        Args:
            key_bytes: 32-byte private key. If None, generates random key.
        """
        if key_bytes is None:
            key_bytes = (secrets.randbelow(CURVE_ORDER - 1) + 1).to_bytes(32, 'big')

        if not isinstance(key_bytes, bytes) or len(key_bytes) != 32:
            raise InvalidKeyError("Private key must be 32 bytes")

        key_int = int.from_bytes(key_bytes, 'big')
        if key_int == 0 or key_int >= CURVE_ORDER:
            raise InvalidKeyError("Private key out of valid range")

        self._key = CoinCurvePrivateKey(key_bytes)

    @classmethod
    def from_wif(cls, wif: str, chain: str = 'mainnet') -> 'PrivateKey':
        """
        Import a private key from Wallet Import Format.

        Args:
            wif: WIF encoded private key
            chain: Chain the key is expected to belong to

        Returns:
            Private key
        """
        try:
            key = BitcoinlibKey(wif, network=WIF_NETWORKS[chain])
        except Exception as e:
            raise InvalidKeyError(f"Invalid WIF private key: {e}")
        if not key.is_private:
            raise InvalidKeyError("WIF does not contain a private key")
        return cls(key.private_byte)

    @property
    def bytes(self) -> bytes:
        """Get private key as bytes."""
        return self._key.secret

    @property
    def hex(self) -> str:
        """Get private key as hex string."""
        return self._key.secret.hex()

    def public_key(self) -> 'PublicKey':
        """Get corresponding public key."""
        return PublicKey(self._key.public_key)

    def to_wif(self, chain: str = 'mainnet') -> str:
        """Export the key in compressed Wallet Import Format for ``chain``."""
        key = BitcoinlibKey(self.bytes, network=WIF_NETWORKS[chain], compressed=True)
        return key.wif()

    def sign_schnorr(self, message_hash: bytes, aux_randomness: Optional[bytes] = None) -> bytes:
        """
        Create a BIP340 Schnorr signature.

        Args:
            message_hash: 32-byte message hash to sign
            aux_randomness: Optional 32 bytes of auxiliary randomness

        Returns:
            64-byte signature
        """
        if len(message_hash) != 32:
            raise InvalidKeyError("Message hash must be 32 bytes")
        return self._key.sign_schnorr(message_hash, aux_randomness or b'')

    def tweak_add(self, tweak: bytes) -> 'PrivateKey':
        """
        Add tweak to private key: (priv + tweak) mod n.

        Args:
            tweak: 32-byte tweak value

        Returns:
            Tweaked private key
        """
        if len(tweak) != 32:
            raise TweakError("Tweak must be 32 bytes")

        tweak_int = int.from_bytes(tweak, 'big')
        if tweak_int >= CURVE_ORDER:
            raise TweakError("Tweak out of range")

        tweaked_int = (int.from_bytes(self.bytes, 'big') + tweak_int) % CURVE_ORDER
        if tweaked_int == 0:
            raise TweakError("Tweaked key is zero")

        return PrivateKey(tweaked_int.to_bytes(32, 'big'))

    def taproot_tweak_private_key(self, merkle_root: Optional[bytes] = None) -> Tuple['PrivateKey', bool]:
        """
        Tweak private key for Taproot according to BIP341.

        Args:
            merkle_root: 32-byte Merkle root of script tree (None for key-path only)

        Returns:
            Tuple of (tweaked_private_key, negated_flag)
        """
        internal_pubkey = self.public_key()
        negated = not has_even_y(internal_pubkey.bytes)

        if negated:
            negated_int = (-int.from_bytes(self.bytes, 'big')) % CURVE_ORDER
            base = PrivateKey(negated_int.to_bytes(32, 'big'))
        else:
            base = self

        tweak = compute_taproot_tweak(internal_pubkey.x_only, merkle_root)
        return base.tweak_add(tweak), negated


class PublicKey:
    """
    Wrapper for public key operations.
    """

    def __init__(self, key_data: Union[bytes, CoinCurvePublicKey]):
        """
        Initialize public key.

        Args:
            key_data: Public key bytes (33 or 65 bytes) or CoinCurvePublicKey
        """
        if isinstance(key_data, CoinCurvePublicKey):
            self._key = key_data
            return

        if not isinstance(key_data, bytes):
            raise InvalidKeyError("Public key data must be bytes")
        if len(key_data) not in (33, 65):
            raise InvalidKeyError("Public key must be 33 or 65 bytes")
        try:
            self._key = CoinCurvePublicKey(key_data)
        except ValueError as e:
            raise InvalidKeyError(f"Failed to create public key: {e}")

    @classmethod
    def from_x_only(cls, x_only: bytes) -> 'PublicKey':
        """Create the even-y public key for a 32-byte x-only key."""
        lifted = lift_x(x_only)
        if lifted is None:
            raise InvalidKeyError("x-only key is not a valid curve point")
        return cls(lifted)

    @property
    def bytes(self) -> bytes:
        """Get compressed public key as bytes."""
        return self._key.format(compressed=True)

    @property
    def hex(self) -> str:
        """Get compressed public key as hex string."""
        return self.bytes.hex()

    @property
    def x_only(self) -> bytes:
        """Get x-only public key for Taproot (32 bytes)."""
        return self.bytes[1:]

    @property
    def parity(self) -> int:
        """0 for an even y-coordinate, 1 for odd."""
        return 0 if has_even_y(self.bytes) else 1

    def tweak_add(self, tweak: bytes) -> 'PublicKey':
        """
        Add tweak to public key: P + tweak * G.

        Args:
            tweak: 32-byte tweak value

        Returns:
            Tweaked public key
        """
        if len(tweak) != 32:
            raise TweakError("Tweak must be 32 bytes")

        try:
            tweak_public = CoinCurvePrivateKey(tweak).public_key
            tweaked_point = CoinCurvePublicKey.combine_keys([self._key, tweak_public])
        except ValueError as e:
            raise TweakError(f"Failed to tweak public key: {e}")

        return PublicKey(tweaked_point)

    def taproot_tweak_public_key(self, merkle_root: Optional[bytes] = None) -> Tuple[bytes, int]:
        """
        Tweak public key for Taproot according to BIP341.

        The internal key is taken as its even-y lift, as BIP341 requires.

        Args:
            merkle_root: 32-byte Merkle root of script tree (None for key-path only)

        Returns:
            Tuple of (32-byte x-only tweaked public key, output key parity)
        """
        internal = PublicKey.from_x_only(self.x_only)
        tweak = compute_taproot_tweak(self.x_only, merkle_root)
        tweaked = internal.tweak_add(tweak)
        return tweaked.x_only, tweaked.parity
