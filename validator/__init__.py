"""
Inscription Policy Validator

Checks batch configuration, satpoint legality, dust and weight limits around
commit/reveal transaction construction.
"""

from .core import (
    PolicyValidator,
    ValidationContext,
    ValidationRule,
    ValidationStage,
)

from .rules import (
    ConfigurationRule,
    DestinationRule,
    SatpointRule,
    DustRule,
    WeightRule,
    MAX_STANDARD_TX_WEIGHT,
)

__all__ = [
    "PolicyValidator",
    "ValidationContext",
    "ValidationRule",
    "ValidationStage",
    "ConfigurationRule",
    "DestinationRule",
    "SatpointRule",
    "DustRule",
    "WeightRule",
    "MAX_STANDARD_TX_WEIGHT",
]
