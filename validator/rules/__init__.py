"""
Policy rules for inscription batches.

Pre-check rules validate the batch configuration and target sat; post-check
rules validate the assembled reveal transaction.
"""

from .configuration import ConfigurationRule, DestinationRule
from .satpoint import SatpointRule
from .limits import DustRule, WeightRule, MAX_STANDARD_TX_WEIGHT

__all__ = [
    "ConfigurationRule",
    "DestinationRule",
    "SatpointRule",
    "DustRule",
    "WeightRule",
    "MAX_STANDARD_TX_WEIGHT",
]
