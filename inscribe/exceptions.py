"""
Inscription Engine Exceptions

This module defines the error taxonomy for building commit and reveal
transactions.
"""


class InscribeError(Exception):
    """Base exception for inscription transaction errors."""
    pass


class ConfigurationError(InscribeError):
    """Exception raised for conflicting or insufficient batch settings."""
    pass


class InscriptionStateError(InscribeError):
    """Exception raised when the target sat cannot be inscribed in its current state."""
    pass


class FundingError(InscribeError):
    """Exception raised when a transaction cannot be funded."""
    pass


class InsufficientFundsError(FundingError):
    """Exception raised when the wallet's cardinal outputs cannot cover a funding target."""

    def __init__(self, required: int, available: int, message: str = None):
        self.required = required
        self.available = available
        if message is None:
            message = "wallet does not contain enough cardinal UTXOs, please add additional funds to wallet."
        super().__init__(message)


class ProtocolLimitError(InscribeError):
    """Exception raised when a transaction violates a standardness limit."""
    pass


class DustError(ProtocolLimitError):
    """Exception raised when an output value is below its dust threshold."""
    pass


class WeightLimitError(ProtocolLimitError):
    """Exception raised when a reveal transaction exceeds the standard weight."""

    def __init__(self, weight: int, limit: int):
        self.weight = weight
        self.limit = limit
        super().__init__(
            f"reveal transaction weight greater than {limit} (MAX_STANDARD_TX_WEIGHT): {weight}"
        )


class FeeError(InscribeError):
    """Exception raised when a requested fee is below the computed minimum."""
    pass


class InvariantError(InscribeError):
    """Exception raised when an internal consistency check fails. Always a bug."""
    pass


class BroadcastError(InscribeError):
    """Exception raised when signing or broadcasting through the wallet fails."""

    def __init__(self, message: str, commit_txid: str = None):
        self.commit_txid = commit_txid
        super().__init__(message)


class TransactionParseError(InscribeError):
    """Exception raised when raw transaction bytes cannot be decoded."""
    pass
