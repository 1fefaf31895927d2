"""
Schnorr Signature Operations

BIP340 Schnorr signatures used for Taproot script-path spends of
inscription commitments.

References:
- BIP340: https://github.com/bitcoin/bips/blob/master/bip-0340.mediawiki
"""

from dataclasses import dataclass
from typing import Optional

from coincurve import PublicKeyXOnly

from .exceptions import InvalidSignatureError
from .keys import PrivateKey


SCHNORR_SIGNATURE_SIZE = 64


@dataclass(frozen=True)
class SchnorrSignature:
    """
    BIP340 Schnorr signature representation.
    """
    r: bytes  # 32-byte x-coordinate of R point
    s: bytes  # 32-byte scalar

    def __post_init__(self):
        if len(self.r) != 32:
            raise InvalidSignatureError("Schnorr r must be 32 bytes")
        if len(self.s) != 32:
            raise InvalidSignatureError("Schnorr s must be 32 bytes")

    @classmethod
    def from_bytes(cls, sig_bytes: bytes) -> 'SchnorrSignature':
        """
        Parse 64-byte Schnorr signature.

        Args:
            sig_bytes: 64-byte signature (32-byte r + 32-byte s)

        Returns:
            SchnorrSignature object
        """
        if len(sig_bytes) != SCHNORR_SIGNATURE_SIZE:
            raise InvalidSignatureError("Schnorr signature must be 64 bytes")
        return cls(r=sig_bytes[:32], s=sig_bytes[32:])

    def to_bytes(self) -> bytes:
        """Encode signature as 64 bytes."""
        return self.r + self.s


def sign_schnorr(private_key: PrivateKey, message_hash: bytes,
                 aux_rand: Optional[bytes] = None) -> SchnorrSignature:
    """
    Sign a 32-byte message hash with a BIP340 Schnorr signature.

    Args:
        private_key: Private key for signing
        message_hash: 32-byte digest, e.g. a Taproot signature hash
        aux_rand: Optional 32-byte auxiliary randomness

    Returns:
        Schnorr signature
    """
    if len(message_hash) != 32:
        raise InvalidSignatureError("Schnorr message must be a 32-byte hash")
    if aux_rand is not None and len(aux_rand) != 32:
        raise InvalidSignatureError("Auxiliary randomness must be 32 bytes")

    return SchnorrSignature.from_bytes(private_key.sign_schnorr(message_hash, aux_rand or b''))


def verify_schnorr(x_only_pubkey: bytes, signature: SchnorrSignature,
                   message_hash: bytes) -> bool:
    """
    Verify BIP340 Schnorr signature.

    Args:
        x_only_pubkey: 32-byte x-only public key
        signature: Schnorr signature to verify
        message_hash: 32-byte digest that was signed

    Returns:
        True if signature is valid
    """
    if len(x_only_pubkey) != 32 or len(message_hash) != 32:
        return False
    try:
        return PublicKeyXOnly(x_only_pubkey).verify(signature.to_bytes(), message_hash)
    except ValueError:
        return False
