"""Settlement: repay principal plus accrued interest and penalty, then close the loan"""

import logging
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from lending_gateway.domain.exceptions import InvalidStateTransition, LedgerWriteFailed, Unauthorized
from lending_gateway.domain.models import (
    ApplicationStatus,
    Loan,
    LoanStatus,
    OfferStatus,
    OperationKind,
    PayableBreakdown,
    Principal,
    TransactionType,
)
from lending_gateway.domain.payable import compute_payable
from lending_gateway.domain.ports import WalletResolver
from lending_gateway.infrastructure.database.models import PendingOperationRecord
from lending_gateway.infrastructure.database.repositories import (
    ApplicationRepository,
    LoanRepository,
    OfferRepository,
    TransactionRepository,
)
from lending_gateway.services.fund_movement import FundMovement, TransferPlan
from lending_gateway.utils.date_utils import as_utc, utc_now


class SettlementCoordinator:
    """
    Flow:
    1. Check the loan is active and the caller is its borrower
    2. Compute the payable as of now
    3. Write the settlement intent with the payable snapshot
    4. Transfer the total borrower -> lender
    5. In one transaction: audit row, close loan, offer and application -> Closed
    6. Refresh cached wallet balances (best-effort)

    On retry the snapshot stored on the intent is used, so the settled
    amount always equals what was transferred.
    """

    def __init__(
        self,
        db: Session,
        funds: FundMovement,
        wallets: WalletResolver,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.funds = funds
        self.wallets = wallets
        self.clock = clock
        self.applications = ApplicationRepository(db)
        self.offers = OfferRepository(db)
        self.loans = LoanRepository(db)
        self.transactions = TransactionRepository(db)

    def calculate_payable(self, principal: Principal, loan_id: str) -> PayableBreakdown:
        """Payable as of now; visible to the loan's borrower, lender, or an admin"""
        loan = self.loans.get(loan_id)
        if not principal.is_admin and principal.id not in (loan.borrower_id, loan.lender_id):
            raise Unauthorized(f"user {principal.id} is neither borrower nor lender of loan {loan_id}")
        return compute_payable(loan, self.clock())

    async def settle(
        self,
        principal: Principal,
        loan_id: str,
        idempotency_key: Optional[str] = None,
    ) -> Loan:
        """
        Settle an active loan and return it closed.

        Raises:
            NotFound: loan or a wallet does not exist
            Unauthorized: caller is not the loan's borrower
            InvalidStateTransition: loan is not active
            TransferFailed: nothing moved; safe to retry
            LedgerWriteFailed: funds moved; retry persists only
        """
        loan = self.loans.get(loan_id)
        if loan.borrower_id != principal.id:
            raise Unauthorized(f"user {principal.id} is not the borrower of loan {loan_id}")

        if self.funds.completed_result(OperationKind.SETTLEMENT, loan_id, idempotency_key) is not None:
            return self.loans.get(loan_id)

        if loan.status != LoanStatus.ACTIVE:
            raise InvalidStateTransition(f"loan {loan_id} is {loan.status.value}, only active loans can be settled")

        payable = compute_payable(loan, self.clock())
        borrower_address = self.wallets.wallet_address_for(loan.borrower_id)
        lender_address = self.wallets.wallet_address_for(loan.lender_id)

        plan = TransferPlan(
            kind=OperationKind.SETTLEMENT,
            subject_id=loan.loan_id,
            offer_id=loan.offer_id,
            initiator_id=principal.id,
            sender_address=borrower_address,
            receiver_address=lender_address,
            amount=payable.total,
            interest=payable.interest,
            penalty=payable.penalty,
        )
        await self.funds.execute(plan, self._close_loan, idempotency_key)
        await self.funds.refresh_balances([borrower_address, lender_address])

        settled = self.loans.get(loan_id)
        logging.info(
            "Loan settled",
            extra={
                "loan_id": loan_id,
                "settled_amount": settled.settled_amount,
                "accrued_interest": settled.accrued_interest,
            },
        )
        return settled

    async def resume_pending(self) -> List[str]:
        """Complete ledger writes for settlements whose funds already moved"""
        resumed = []
        for intent in self.funds.transferred_intents(OperationKind.SETTLEMENT):
            try:
                resumed.append(await self.funds.persist(intent.idempotency_key, self._close_loan))
            except LedgerWriteFailed:
                continue  # logged as ledger_pending, picked up by the next sweep
        return resumed

    def _close_loan(self, intent: PendingOperationRecord) -> str:
        """Runs inside the fund-movement transaction"""
        loan = self.loans.get(intent.subject_id)

        transaction = self.transactions.record(
            sender_wallet_id=intent.sender_address,
            receiver_wallet_id=intent.receiver_address,
            amount=intent.amount,
            transaction_type=TransactionType.SETTLEMENT,
            external_reference=intent.transfer_reference,
            fee=intent.fee or 0.0,
        )

        closed = self.loans.close(
            loan.loan_id,
            settled_amount=intent.amount,
            accrued_interest=intent.interest,
            settlement_date=as_utc(intent.transferred_at),
            settlement_transaction_id=transaction.transaction_id,
        )
        if not closed:
            raise LedgerWriteFailed(
                f"loan {loan.loan_id} was closed while its settlement was in flight",
                idempotency_key=intent.idempotency_key,
                transfer_reference=intent.transfer_reference,
            )

        # Offer and application are Funded for any active loan
        if not (
            self.offers.transition(loan.offer_id, OfferStatus.FUNDED, OfferStatus.CLOSED)
            and self.applications.transition(loan.application_id, ApplicationStatus.FUNDED, ApplicationStatus.CLOSED)
        ):
            raise LedgerWriteFailed(
                f"offer {loan.offer_id} or application {loan.application_id} is not Funded",
                idempotency_key=intent.idempotency_key,
                transfer_reference=intent.transfer_reference,
            )

        return loan.loan_id
