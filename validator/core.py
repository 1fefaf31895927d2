"""
Inscription Policy Validator

This module provides the PolicyValidator that checks a batch before any
cryptographic work (pre-checks) and the assembled reveal transaction before
signing (post-checks).

Pre-checks cover:
- Consistency of the requested configuration
- Mode and destination shape, parent linkage
- Satpoint legality against known inscriptions

Post-checks cover:
- Dust value of the commit-spending output
- Standard weight of the signed-size reveal transaction

A failed rule aborts with the typed error it reported; nothing has been
signed or broadcast at that point.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from inscribe.batch import Batch
from inscribe.exceptions import InscribeError, InvariantError
from inscribe.transaction import InscriptionId, SatPoint, Transaction


class ValidationStage(Enum):
    """When a rule runs."""
    PRE = "pre"
    POST = "post"


@dataclass
class ValidationContext:
    """
    Context object passed between validation rules.
    """
    batch: Batch

    # Pre-check data
    wallet_inscriptions: Mapping[SatPoint, InscriptionId] = field(default_factory=dict)
    satpoint: Optional[SatPoint] = None

    # Post-check data: reveal transaction carrying signed-size witnesses
    reveal_tx: Optional[Transaction] = None
    commit_input: int = 0

    # Validation state
    validation_errors: List[str] = field(default_factory=list)
    validation_warnings: List[str] = field(default_factory=list)
    rule_results: Dict[str, bool] = field(default_factory=dict)
    failures: List[InscribeError] = field(default_factory=list)

    def add_error(self, rule_name: str, error: InscribeError):
        """Record a rule failure together with the error to raise."""
        self.validation_errors.append(f"{rule_name}: {error}")
        self.failures.append(error)
        self.rule_results[rule_name] = False

    def add_warning(self, rule_name: str, message: str):
        """Add a validation warning."""
        self.validation_warnings.append(f"{rule_name}: {message}")

    def mark_rule_passed(self, rule_name: str):
        """Mark a validation rule as passed."""
        self.rule_results[rule_name] = True

    def has_errors(self) -> bool:
        """Check if validation has errors."""
        return len(self.validation_errors) > 0

    def get_summary(self) -> Dict[str, Any]:
        """Get validation summary."""
        return {
            "satpoint": str(self.satpoint) if self.satpoint else None,
            "errors": self.validation_errors,
            "warnings": self.validation_warnings,
            "rules_passed": sum(1 for passed in self.rule_results.values() if passed),
            "rules_total": len(self.rule_results),
        }


class ValidationRule(ABC):
    """
    Abstract base class for policy rules.
    """

    stage = ValidationStage.PRE

    def __init__(self, name: str, description: str, enabled: bool = True):
        self.name = name
        self.description = description
        self.enabled = enabled
        self.logger = logging.getLogger(f"validator.rules.{name}")

    @abstractmethod
    def validate(self, context: ValidationContext) -> bool:
        """
        Validate the context.

        Args:
            context: Validation context

        Returns:
            True if validation passes, False otherwise
        """
        pass

    def is_applicable(self, context: ValidationContext) -> bool:
        """
        Check if this rule applies to the given context.

        Args:
            context: Validation context

        Returns:
            True if this rule should be applied
        """
        return self.enabled


class PolicyValidator:
    """
    Runs the registered rules for a stage and raises the first failure.
    """

    def __init__(self, register_defaults: bool = True):
        self.logger = logging.getLogger("validator.policy")
        self.rules: List[ValidationRule] = []
        self.rule_registry: Dict[str, ValidationRule] = {}

        self.validation_stats = {
            "total_validations": 0,
            "passed_validations": 0,
            "rejected_validations": 0,
        }

        if register_defaults:
            self._register_default_rules()

    def _register_default_rules(self):
        """Register default policy rules."""
        from .rules.configuration import ConfigurationRule, DestinationRule
        from .rules.satpoint import SatpointRule
        from .rules.limits import DustRule, WeightRule

        self.register_rule(ConfigurationRule())
        self.register_rule(DestinationRule())
        self.register_rule(SatpointRule())
        self.register_rule(DustRule())
        self.register_rule(WeightRule())

    def register_rule(self, rule: ValidationRule):
        """
        Register a validation rule.

        Args:
            rule: Validation rule to register
        """
        if rule.name in self.rule_registry:
            self.logger.warning(f"Rule {rule.name} already registered, replacing")
            self.rules.remove(self.rule_registry[rule.name])

        self.rules.append(rule)
        self.rule_registry[rule.name] = rule
        self.logger.debug(f"Registered validation rule: {rule.name}")

    def unregister_rule(self, rule_name: str) -> bool:
        """
        Unregister a validation rule.

        Args:
            rule_name: Name of the rule to unregister

        Returns:
            True if rule was found and removed
        """
        rule = self.rule_registry.pop(rule_name, None)
        if rule is None:
            return False
        self.rules.remove(rule)
        return True

    def pre_check(self, context: ValidationContext) -> ValidationContext:
        """Run configuration and satpoint rules."""
        return self._run(ValidationStage.PRE, context)

    def post_check(self, context: ValidationContext) -> ValidationContext:
        """Run dust and weight rules on the assembled reveal transaction."""
        if context.reveal_tx is None:
            raise InvariantError("post-checks need the assembled reveal transaction")
        return self._run(ValidationStage.POST, context)

    def _run(self, stage: ValidationStage, context: ValidationContext) -> ValidationContext:
        self.validation_stats["total_validations"] += 1

        for rule in self.rules:
            if rule.stage != stage or not rule.is_applicable(context):
                continue
            if rule.validate(context):
                context.mark_rule_passed(rule.name)
            else:
                self.logger.debug(f"Rule {rule.name} failed")
                break

        if context.has_errors():
            self.validation_stats["rejected_validations"] += 1
            self.logger.info(f"{stage.value}-check rejected: {context.validation_errors[0]}")
            raise context.failures[0]

        self.validation_stats["passed_validations"] += 1
        return context
