"""Disbursement: move the accepted offer's principal to the borrower and open the loan"""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from lending_gateway.domain.exceptions import InvalidStateTransition, LedgerWriteFailed, Unauthorized
from lending_gateway.domain.models import (
    ApplicationStatus,
    Loan,
    OfferStatus,
    OperationKind,
    Principal,
    TransactionType,
)
from lending_gateway.domain.ports import WalletResolver
from lending_gateway.infrastructure.database.models import PendingOperationRecord
from lending_gateway.infrastructure.database.repositories import (
    ApplicationRepository,
    LoanRepository,
    OfferRepository,
    TransactionRepository,
)
from lending_gateway.services.fund_movement import FundMovement, TransferPlan
from lending_gateway.utils.date_utils import add_months, as_utc


class DisbursementCoordinator:
    """
    Flow:
    1. Check the offer is Accepted and the caller is its lender
    2. Resolve lender and borrower wallets
    3. Write the disbursement intent (one per application)
    4. Transfer offer.amount lender -> borrower
    5. In one transaction: audit row, loan row, offer and application -> Funded
    6. Refresh cached wallet balances (best-effort)
    """

    def __init__(self, db: Session, funds: FundMovement, wallets: WalletResolver):
        self.db = db
        self.funds = funds
        self.wallets = wallets
        self.applications = ApplicationRepository(db)
        self.offers = OfferRepository(db)
        self.loans = LoanRepository(db)
        self.transactions = TransactionRepository(db)

    async def disburse(
        self,
        principal: Principal,
        offer_id: str,
        idempotency_key: Optional[str] = None,
    ) -> Loan:
        """
        Disburse an accepted offer and return the new loan.

        Raises:
            NotFound: offer, application or a wallet does not exist
            Unauthorized: caller is not the offer's lender
            InvalidStateTransition: offer not Accepted or application not Open
            TransferFailed: nothing moved; safe to retry
            LedgerWriteFailed: funds moved; retry with the same key persists only
        """
        offer = self.offers.get(offer_id)
        if offer.lender_id != principal.id:
            raise Unauthorized(f"user {principal.id} is not the lender of offer {offer_id}")

        # Replay of a request that already completed
        loan_id = self.funds.completed_result(OperationKind.DISBURSEMENT, offer.application_id, idempotency_key)
        if loan_id is not None:
            return self.loans.get(loan_id)

        if offer.status != OfferStatus.ACCEPTED:
            raise InvalidStateTransition(f"offer {offer_id} is {offer.status.value}, only Accepted offers can be disbursed")
        application = self.applications.get(offer.application_id)
        if application.status != ApplicationStatus.OPEN:
            raise InvalidStateTransition(f"application {application.application_id} is {application.status.value}")

        lender_address = self.wallets.wallet_address_for(offer.lender_id)
        borrower_address = self.wallets.wallet_address_for(application.borrower_id)

        plan = TransferPlan(
            kind=OperationKind.DISBURSEMENT,
            subject_id=application.application_id,
            offer_id=offer.offer_id,
            initiator_id=principal.id,
            sender_address=lender_address,
            receiver_address=borrower_address,
            amount=offer.amount,
        )
        loan_id = await self.funds.execute(plan, self._write_loan, idempotency_key)
        await self.funds.refresh_balances([lender_address, borrower_address])

        loan = self.loans.get(loan_id)
        logging.info(
            "Loan disbursed",
            extra={"loan_id": loan.loan_id, "offer_id": offer_id, "principal": loan.total_principle},
        )
        return loan

    async def resume_pending(self) -> List[str]:
        """Complete ledger writes for disbursements whose funds already moved"""
        resumed = []
        for intent in self.funds.transferred_intents(OperationKind.DISBURSEMENT):
            try:
                resumed.append(await self.funds.persist(intent.idempotency_key, self._write_loan))
            except LedgerWriteFailed:
                continue  # logged as ledger_pending, picked up by the next sweep
        return resumed

    def _write_loan(self, intent: PendingOperationRecord) -> str:
        """Runs inside the fund-movement transaction"""
        offer = self.offers.get(intent.offer_id)
        application = self.applications.get(offer.application_id)
        # The loan starts when the funds moved, even if the ledger write ran later
        now = as_utc(intent.transferred_at)

        transaction = self.transactions.record(
            sender_wallet_id=intent.sender_address,
            receiver_wallet_id=intent.receiver_address,
            amount=intent.amount,
            transaction_type=TransactionType.DISBURSEMENT,
            external_reference=intent.transfer_reference,
            fee=intent.fee or 0.0,
        )
        loan = self.loans.create(
            offer=offer,
            borrower_id=application.borrower_id,
            start_date=now,
            next_payment_date=add_months(now, offer.loan_term_months),
            disbursement_transaction_id=transaction.transaction_id,
        )

        if not self.offers.transition(offer.offer_id, OfferStatus.ACCEPTED, OfferStatus.FUNDED):
            raise LedgerWriteFailed(
                f"offer {offer.offer_id} left Accepted while its disbursement was in flight",
                idempotency_key=intent.idempotency_key,
                transfer_reference=intent.transfer_reference,
            )
        if not self.applications.transition(application.application_id, ApplicationStatus.OPEN, ApplicationStatus.FUNDED):
            raise LedgerWriteFailed(
                f"application {application.application_id} left Open while its disbursement was in flight",
                idempotency_key=intent.idempotency_key,
                transfer_reference=intent.transfer_reference,
            )

        return loan.loan_id
