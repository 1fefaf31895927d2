"""
Satpoint Reinscription Rule

A sat may only be inscribed again when reinscription is requested, and a
reinscription must actually land on an inscribed sat. Spending an output
would also move any other inscription it holds, so no other inscription may
sit on the same outpoint.
"""

from inscribe.exceptions import InscriptionStateError, InvariantError
from validator.core import ValidationContext, ValidationRule


class SatpointRule(ValidationRule):
    """
    Validates the chosen satpoint against the wallet's known inscriptions.
    """

    def __init__(self):
        super().__init__(
            name="satpoint",
            description="Enforces reinscription rules for the target sat"
        )

    def is_applicable(self, context: ValidationContext) -> bool:
        return self.enabled and context.batch.commitment is None

    def validate(self, context: ValidationContext) -> bool:
        satpoint = context.satpoint
        if satpoint is None:
            context.add_error(self.name, InvariantError("satpoint must be chosen before validation"))
            return False

        reinscription = False

        for inscribed_satpoint, inscription_id in sorted(context.wallet_inscriptions.items()):
            if inscribed_satpoint == satpoint:
                reinscription = True
                if context.batch.reinscribe:
                    continue
                context.add_error(self.name, InscriptionStateError(
                    f"sat at {satpoint} already inscribed with inscription {inscription_id}"
                ))
                return False

            if inscribed_satpoint.outpoint == satpoint.outpoint:
                context.add_error(self.name, InscriptionStateError(
                    f"utxo {satpoint.outpoint} already inscribed with inscription "
                    f"{inscription_id} on sat {inscribed_satpoint}"
                ))
                return False

        if context.batch.reinscribe and not reinscription:
            context.add_error(self.name, InscriptionStateError(
                "reinscribe flag set but this would not be a reinscription"
            ))
            return False

        if reinscription:
            self.logger.info(f"Reinscribing sat at {satpoint}")

        return True
