"""Loan application registry"""

import logging
from typing import List
from sqlalchemy.orm import Session

from lending_gateway.domain.eligibility import EligibilityGate, validate_terms
from lending_gateway.domain.filters import ApplicationFilter
from lending_gateway.domain.models import LoanApplication, Principal
from lending_gateway.infrastructure.database.repositories import ApplicationRepository
from lending_gateway.infrastructure.database.session import atomic
from lending_gateway.infrastructure.observability.metrics import application_counter


class ApplicationRegistry:
    """Creates and queries borrower loan applications"""

    def __init__(self, db: Session, eligibility: EligibilityGate):
        self.db = db
        self.eligibility = eligibility
        self.applications = ApplicationRepository(db)

    def create_application(
        self,
        principal: Principal,
        amount: float,
        interest_rate: float,
        term_months: int,
    ) -> LoanApplication:
        """Validate terms, check borrower KYC, persist with status Open"""
        validate_terms(amount, interest_rate, term_months)
        self.eligibility.ensure_eligible(principal.id)

        with atomic(self.db):
            application = self.applications.create(
                borrower_id=principal.id,
                amount=amount,
                interest_rate=interest_rate,
                term_months=term_months,
            )

        application_counter.inc()
        logging.info(
            "Loan application created",
            extra={"application_id": application.application_id, "borrower_id": principal.id},
        )
        return application

    def get_applications(self, query: ApplicationFilter) -> List[LoanApplication]:
        return self.applications.find(query)
