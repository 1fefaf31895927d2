"""
Configuration Consistency Rules

Checks that run before any key is generated or script built: conflicting
flags, missing companions of a flag, and the mode/destination shape.
"""

from inscribe.batch import SameSat, SeparateOutputs, SharedOutput
from inscribe.exceptions import ConfigurationError
from validator.core import ValidationContext, ValidationRule


class ConfigurationRule(ValidationRule):
    """
    Rejects flag combinations that cannot produce a valid commit/reveal pair.
    """

    def __init__(self):
        super().__init__(
            name="configuration",
            description="Rejects conflicting or incomplete batch settings"
        )

    def validate(self, context: ValidationContext) -> bool:
        batch = context.batch
        problem = None

        if batch.commitment is not None and batch.commit_only:
            problem = "--commit-only and --commitment don't work together"
        elif batch.commitment is not None and batch.key is None:
            problem = "--commitment only works with --key"
        elif batch.commitment is not None and batch.commitment_output is None:
            problem = f"output of commitment {batch.commitment} is unknown"
        elif batch.commit_only and batch.next_inscriptions:
            problem = "--commit-only and --next-batch/--next-file don't work together"
        elif batch.next_inscriptions and batch.commitment is None:
            problem = "--next-file doesn't work without --commitment"
        elif batch.reveal_inputs and batch.commitment is None:
            problem = "--reveal-input only works with --commitment"
        elif batch.commitment is not None and batch.commitment in batch.reveal_inputs:
            problem = f"commitment {batch.commitment} is also listed as a reveal input"
        elif batch.commit_vsize is not None and batch.commit_vsize <= 0:
            problem = "commit vsize must be greater than zero"

        if problem is not None:
            context.add_error(self.name, ConfigurationError(problem))
            return False

        if batch.commit_only and batch.key is None:
            context.add_warning(self.name, "commit-only run without --key; keep the printed key to reveal")

        return True


class DestinationRule(ValidationRule):
    """
    Enforces the number of destinations each output mode needs.
    """

    def __init__(self):
        super().__init__(
            name="destinations",
            description="Enforces mode versus destination count"
        )

    def validate(self, context: ValidationContext) -> bool:
        batch = context.batch
        outputs = batch.outputs
        count = len(batch.inscriptions)

        if isinstance(outputs, (SameSat, SharedOutput)):
            valid = len(outputs.destinations) == 1
        elif isinstance(outputs, SeparateOutputs):
            valid = len(outputs.destinations) == count
        else:
            valid = False

        if not valid:
            context.add_error(self.name, ConfigurationError(
                f"invalid batch: {len(outputs.destinations)} destinations for "
                f"{count} inscriptions in {batch.mode.value} mode"
            ))
            return False

        return True
