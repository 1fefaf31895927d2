"""
Protocol Limit Rules

Post-assembly checks on the reveal transaction: the output receiving the
inscribed sats must not be dust, and the signed transaction must stay within
the standard weight unless the limit is explicitly lifted.
"""

from inscribe.address import dust_value
from inscribe.exceptions import DustError, WeightLimitError
from validator.core import ValidationContext, ValidationRule, ValidationStage


MAX_STANDARD_TX_WEIGHT = 400_000


class DustRule(ValidationRule):
    """
    Rejects a reveal whose first inscription output is below its dust threshold.
    """

    stage = ValidationStage.POST

    def __init__(self):
        super().__init__(
            name="dust",
            description="Rejects dust inscription outputs"
        )

    def validate(self, context: ValidationContext) -> bool:
        output = context.reveal_tx.outputs[context.commit_input]
        threshold = dust_value(output.script_pubkey)

        if output.value < threshold:
            self.logger.debug(f"Output value {output.value} below dust threshold {threshold}")
            context.add_error(self.name, DustError("commit transaction output would be dust"))
            return False

        return True


class WeightRule(ValidationRule):
    """
    Rejects reveal transactions heavier than MAX_STANDARD_TX_WEIGHT.
    """

    stage = ValidationStage.POST

    def __init__(self, limit: int = MAX_STANDARD_TX_WEIGHT):
        super().__init__(
            name="weight",
            description="Enforces the standard transaction weight limit"
        )
        self.limit = limit

    def is_applicable(self, context: ValidationContext) -> bool:
        return self.enabled and not context.batch.no_limit

    def validate(self, context: ValidationContext) -> bool:
        weight = context.reveal_tx.weight

        if weight > self.limit:
            context.add_error(self.name, WeightLimitError(weight, self.limit))
            return False

        return True
