"""KYC eligibility gate and loan term validation"""

import math

from lending_gateway.domain.exceptions import NotEligible, ValidationError
from lending_gateway.domain.ports import EligibilityService


class EligibilityGate:
    """Only KYC-verified parties may create applications or offers"""

    def __init__(self, eligibility_service: EligibilityService):
        self.eligibility_service = eligibility_service

    def is_eligible(self, party_id: str) -> bool:
        return self.eligibility_service.is_verified(party_id)

    def ensure_eligible(self, party_id: str) -> None:
        """Raises NotEligible; errors from the KYC lookup itself propagate unchanged"""
        if not self.is_eligible(party_id):
            raise NotEligible(party_id)


def is_positive(value) -> bool:
    """Finite and strictly greater than zero; NaN and infinity are rejected"""
    return value is not None and math.isfinite(value) and value > 0


def validate_amount(amount: float) -> None:
    if not is_positive(amount):
        raise ValidationError("amount must be positive")


def validate_terms(amount: float, interest_rate: float, term_months: int) -> None:
    """Amount, rate and term must all be finite and strictly positive"""
    validate_amount(amount)
    if not is_positive(interest_rate):
        raise ValidationError("interest_rate must be positive")
    if not is_positive(term_months):
        raise ValidationError("term_months must be positive")
