"""
Cryptographic Exceptions for the inscription engine

This module defines custom exceptions for key, signature and Taproot
commitment operations.
"""


class CryptoError(Exception):
    """Base exception for all cryptographic errors."""
    pass


class InvalidKeyError(CryptoError):
    """Raised when a key is invalid or malformed."""
    pass


class InvalidSignatureError(CryptoError):
    """Raised when a signature is invalid or verification fails."""
    pass


class CommitmentError(CryptoError):
    """Raised when building a Taproot script commitment fails."""
    pass


class TweakError(CryptoError):
    """Raised when a Taproot key tweak cannot be applied."""
    pass


class DescriptorError(CryptoError):
    """Raised when a recovery descriptor cannot be produced."""
    pass
