"""Loan offer registry and the acceptance transition"""

import logging
from typing import List
from sqlalchemy.orm import Session

from lending_gateway.domain.eligibility import EligibilityGate, validate_terms
from lending_gateway.domain.exceptions import InvalidStateTransition, Unauthorized
from lending_gateway.domain.filters import OfferFilter
from lending_gateway.domain.models import ApplicationStatus, LoanOffer, OfferStatus, Principal
from lending_gateway.infrastructure.database.repositories import ApplicationRepository, OfferRepository
from lending_gateway.infrastructure.database.session import atomic
from lending_gateway.infrastructure.observability.metrics import (
    offer_acceptance_conflicts_counter,
    offer_counter,
)


class OfferRegistry:
    """Creates, queries and accepts lender offers"""

    def __init__(self, db: Session, eligibility: EligibilityGate):
        self.db = db
        self.eligibility = eligibility
        self.applications = ApplicationRepository(db)
        self.offers = OfferRepository(db)

    def create_offer(
        self,
        principal: Principal,
        amount: float,
        interest_rate: float,
        term_months: int,
        application_id: str,
    ) -> LoanOffer:
        """
        Create an Open offer against an existing application.

        Raises:
            ValidationError: non-positive terms
            NotFound: application does not exist
            NotEligible: lender KYC not verified
            InvalidStateTransition: application is no longer Open
        """
        validate_terms(amount, interest_rate, term_months)
        application = self.applications.get(application_id)
        self.eligibility.ensure_eligible(principal.id)

        if application.status != ApplicationStatus.OPEN:
            raise InvalidStateTransition(
                f"application {application_id} is {application.status.value}, offers require Open"
            )

        with atomic(self.db):
            offer = self.offers.create(
                lender_id=principal.id,
                application_id=application_id,
                amount=amount,
                interest_rate=interest_rate,
                loan_term_months=term_months,
            )

        offer_counter.inc()
        logging.info(
            "Loan offer created",
            extra={"offer_id": offer.offer_id, "application_id": application_id, "lender_id": principal.id},
        )
        return offer

    def get_offers(self, query: OfferFilter) -> List[LoanOffer]:
        return self.offers.find(query)

    def accept_offer(self, principal: Principal, offer_id: str) -> LoanOffer:
        """
        Transition an offer Open -> Accepted on behalf of the application's borrower.

        The offer moves Open -> Accepted and the application records it as
        its accepted offer in one transaction, both as compare-and-swap
        updates. Of any number of concurrent acceptances on one application,
        whether of the same offer or of different offers, exactly one commits.

        Raises:
            NotFound: offer or application does not exist
            Unauthorized: caller does not own the application
            InvalidStateTransition: offer not Open, application not Open,
                or another offer on the application was already accepted
        """
        offer = self.offers.get(offer_id)
        application = self.applications.get(offer.application_id)

        if application.borrower_id != principal.id:
            raise Unauthorized(f"user {principal.id} does not own application {application.application_id}")
        if offer.status != OfferStatus.OPEN:
            offer_acceptance_conflicts_counter.inc()
            raise InvalidStateTransition(f"offer {offer_id} is {offer.status.value}, only Open offers can be accepted")
        if application.status != ApplicationStatus.OPEN:
            raise InvalidStateTransition(f"application {application.application_id} is {application.status.value}")
        if application.accepted_offer_id is not None:
            raise InvalidStateTransition(
                f"another offer on application {application.application_id} has already been accepted"
            )

        with atomic(self.db):
            if not self.offers.transition(offer_id, OfferStatus.OPEN, OfferStatus.ACCEPTED):
                offer_acceptance_conflicts_counter.inc()
                raise InvalidStateTransition(f"offer {offer_id} is no longer Open")
            if not self.applications.claim_offer(application.application_id, offer_id):
                offer_acceptance_conflicts_counter.inc()
                raise InvalidStateTransition(
                    f"another offer on application {application.application_id} has already been accepted"
                )

        logging.info(
            "Loan offer accepted",
            extra={"offer_id": offer_id, "application_id": application.application_id, "borrower_id": principal.id},
        )
        return self.offers.get(offer_id)
