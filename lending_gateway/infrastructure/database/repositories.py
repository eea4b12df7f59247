"""Data access layer for lending entities"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from lending_gateway.domain.exceptions import NotFound
from lending_gateway.domain.filters import (
    ApplicationFilter,
    LoanFilter,
    OfferFilter,
    TransactionFilter,
)
from lending_gateway.domain.models import (
    ApplicationStatus,
    KycStatus,
    KycVerification,
    LedgerTransaction,
    Loan,
    LoanApplication,
    LoanOffer,
    LoanStatus,
    OfferStatus,
    OperationKind,
    OperationStatus,
    TransactionType,
    Wallet,
)
from lending_gateway.infrastructure.database.models import (
    KycVerificationRecord,
    LoanApplicationRecord,
    LoanOfferRecord,
    LoanRecord,
    PendingOperationRecord,
    TransactionRecord,
    WalletRecord,
)
from lending_gateway.utils.date_utils import as_utc, utc_now

def _optional_utc(value: Optional[datetime]) -> Optional[datetime]:
    return as_utc(value) if value is not None else None


def to_application(record: LoanApplicationRecord) -> LoanApplication:
    return LoanApplication(
        application_id=record.application_id,
        borrower_id=record.borrower_id,
        amount=record.amount,
        interest_rate=record.interest_rate,
        term_months=record.term_months,
        status=ApplicationStatus(record.status),
        created_at=as_utc(record.created_at),
        updated_at=as_utc(record.updated_at),
        accepted_offer_id=record.accepted_offer_id,
    )


def to_offer(record: LoanOfferRecord) -> LoanOffer:
    return LoanOffer(
        offer_id=record.offer_id,
        lender_id=record.lender_id,
        application_id=record.application_id,
        amount=record.amount,
        interest_rate=record.interest_rate,
        loan_term_months=record.loan_term_months,
        status=OfferStatus(record.status),
        created_at=as_utc(record.created_at),
    )


def to_loan(record: LoanRecord) -> Loan:
    return Loan(
        loan_id=record.loan_id,
        offer_id=record.offer_id,
        application_id=record.application_id,
        borrower_id=record.borrower_id,
        lender_id=record.lender_id,
        total_principle=record.total_principle,
        remaining_principle=record.remaining_principle,
        interest_rate=record.interest_rate,
        status=LoanStatus(record.status),
        start_date=as_utc(record.start_date),
        next_payment_date=as_utc(record.next_payment_date),
        disbursement_transaction_id=record.disbursement_transaction_id,
        settled_amount=record.settled_amount,
        accrued_interest=record.accrued_interest,
        settlement_date=_optional_utc(record.settlement_date),
        settlement_transaction_id=record.settlement_transaction_id,
    )


def to_transaction(record: TransactionRecord) -> LedgerTransaction:
    return LedgerTransaction(
        transaction_id=record.transaction_id,
        sender_wallet_id=record.sender_wallet_id,
        receiver_wallet_id=record.receiver_wallet_id,
        amount=record.amount,
        type=TransactionType(record.transaction_type),
        status=record.status,
        external_reference=record.external_reference,
        fee=record.fee,
        created_at=as_utc(record.created_at),
    )


def to_wallet(record: WalletRecord) -> Wallet:
    return Wallet(
        wallet_address=record.wallet_address,
        user_id=record.user_id,
        balance=record.balance,
        last_updated=as_utc(record.last_updated),
    )


def to_kyc(record: KycVerificationRecord) -> KycVerification:
    return KycVerification(
        user_id=record.user_id,
        verification_status=KycStatus(record.verification_status),
        verified_by=record.verified_by,
        updated_at=as_utc(record.updated_at),
    )


class ApplicationRepository:
    """Repository for loan applications"""

    def __init__(self, db: Session):
        self.db = db

    def create(self, borrower_id: str, amount: float, interest_rate: float, term_months: int) -> LoanApplication:
        record = LoanApplicationRecord(
            borrower_id=borrower_id,
            amount=amount,
            interest_rate=interest_rate,
            term_months=term_months,
            status=ApplicationStatus.OPEN.value,
        )
        self.db.add(record)
        self.db.flush()
        return to_application(record)

    def get(self, application_id: str) -> LoanApplication:
        record = self.db.get(LoanApplicationRecord, application_id, populate_existing=True)
        if record is None:
            raise NotFound("application", application_id)
        return to_application(record)

    def find(self, query: ApplicationFilter) -> List[LoanApplication]:
        records = (
            self.db.query(LoanApplicationRecord)
            .filter_by(**query.criteria())
            .order_by(LoanApplicationRecord.created_at.desc())
            .all()
        )
        return [to_application(r) for r in records]

    def transition(self, application_id: str, from_status: ApplicationStatus, to_status: ApplicationStatus) -> bool:
        """Compare-and-swap status update; False if the row was not in from_status"""
        updated = (
            self.db.query(LoanApplicationRecord)
            .filter(
                LoanApplicationRecord.application_id == application_id,
                LoanApplicationRecord.status == from_status.value,
            )
            .update({"status": to_status.value, "updated_at": utc_now()}, synchronize_session=False)
        )
        return updated == 1

    def claim_offer(self, application_id: str, offer_id: str) -> bool:
        """
        Record offer_id as the application's accepted offer.

        Conditional on the application being Open with no accepted offer, so
        of two transactions accepting different offers only one can commit.
        """
        updated = (
            self.db.query(LoanApplicationRecord)
            .filter(
                LoanApplicationRecord.application_id == application_id,
                LoanApplicationRecord.status == ApplicationStatus.OPEN.value,
                LoanApplicationRecord.accepted_offer_id.is_(None),
            )
            .update({"accepted_offer_id": offer_id, "updated_at": utc_now()}, synchronize_session=False)
        )
        return updated == 1


class OfferRepository:
    """Repository for loan offers"""

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        lender_id: str,
        application_id: str,
        amount: float,
        interest_rate: float,
        loan_term_months: int,
    ) -> LoanOffer:
        record = LoanOfferRecord(
            lender_id=lender_id,
            application_id=application_id,
            amount=amount,
            interest_rate=interest_rate,
            loan_term_months=loan_term_months,
            status=OfferStatus.OPEN.value,
        )
        self.db.add(record)
        self.db.flush()
        return to_offer(record)

    def get(self, offer_id: str) -> LoanOffer:
        record = self.db.get(LoanOfferRecord, offer_id, populate_existing=True)
        if record is None:
            raise NotFound("offer", offer_id)
        return to_offer(record)

    def find(self, query: OfferFilter) -> List[LoanOffer]:
        records = (
            self.db.query(LoanOfferRecord)
            .filter_by(**query.criteria())
            .order_by(LoanOfferRecord.created_at.desc())
            .all()
        )
        return [to_offer(r) for r in records]

    def transition(self, offer_id: str, from_status: OfferStatus, to_status: OfferStatus) -> bool:
        """Compare-and-swap status update; False if the row was not in from_status"""
        updated = (
            self.db.query(LoanOfferRecord)
            .filter(LoanOfferRecord.offer_id == offer_id, LoanOfferRecord.status == from_status.value)
            .update({"status": to_status.value}, synchronize_session=False)
        )
        return updated == 1


class LoanRepository:
    """Repository for funded loans"""

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        offer: LoanOffer,
        borrower_id: str,
        start_date: datetime,
        next_payment_date: datetime,
        disbursement_transaction_id: str,
    ) -> Loan:
        """Freeze the accepted offer's terms into a new active loan"""
        record = LoanRecord(
            offer_id=offer.offer_id,
            application_id=offer.application_id,
            borrower_id=borrower_id,
            lender_id=offer.lender_id,
            total_principle=offer.amount,
            remaining_principle=offer.amount,
            interest_rate=offer.interest_rate,
            status=LoanStatus.ACTIVE.value,
            start_date=start_date,
            next_payment_date=next_payment_date,
            disbursement_transaction_id=disbursement_transaction_id,
        )
        self.db.add(record)
        self.db.flush()
        return to_loan(record)

    def get(self, loan_id: str) -> Loan:
        record = self.db.get(LoanRecord, loan_id, populate_existing=True)
        if record is None:
            raise NotFound("loan", loan_id)
        return to_loan(record)

    def find(self, query: LoanFilter) -> List[Loan]:
        records = (
            self.db.query(LoanRecord)
            .filter_by(**query.criteria())
            .order_by(LoanRecord.start_date.desc())
            .all()
        )
        return [to_loan(r) for r in records]

    def close(
        self,
        loan_id: str,
        settled_amount: float,
        accrued_interest: float,
        settlement_date: datetime,
        settlement_transaction_id: str,
    ) -> bool:
        """Compare-and-swap active -> closed; False if already closed"""
        updated = (
            self.db.query(LoanRecord)
            .filter(LoanRecord.loan_id == loan_id, LoanRecord.status == LoanStatus.ACTIVE.value)
            .update(
                {
                    "status": LoanStatus.CLOSED.value,
                    "remaining_principle": 0.0,
                    "settled_amount": settled_amount,
                    "accrued_interest": accrued_interest,
                    "settlement_date": settlement_date,
                    "settlement_transaction_id": settlement_transaction_id,
                },
                synchronize_session=False,
            )
        )
        return updated == 1


class TransactionRepository:
    """Repository for the append-only transfer audit log"""

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        sender_wallet_id: str,
        receiver_wallet_id: str,
        amount: float,
        transaction_type: TransactionType,
        external_reference: str,
        fee: float,
    ) -> LedgerTransaction:
        record = TransactionRecord(
            sender_wallet_id=sender_wallet_id,
            receiver_wallet_id=receiver_wallet_id,
            amount=amount,
            transaction_type=transaction_type.value,
            status="completed",
            external_reference=external_reference,
            fee=fee,
        )
        self.db.add(record)
        self.db.flush()
        return to_transaction(record)

    def get(self, transaction_id: str) -> LedgerTransaction:
        record = self.db.get(TransactionRecord, transaction_id)
        if record is None:
            raise NotFound("transaction", transaction_id)
        return to_transaction(record)

    def find(self, query: TransactionFilter) -> List[LedgerTransaction]:
        """Newest first; a transaction id lookup ignores every other field"""
        q = self.db.query(TransactionRecord)
        if query.transaction_id:
            q = q.filter(TransactionRecord.transaction_id == query.transaction_id)
        else:
            if query.wallet_address:
                q = q.filter(
                    or_(
                        TransactionRecord.sender_wallet_id == query.wallet_address,
                        TransactionRecord.receiver_wallet_id == query.wallet_address,
                    )
                )
            if query.type:
                q = q.filter(TransactionRecord.transaction_type == query.type.value)
            if query.since:
                q = q.filter(TransactionRecord.created_at >= query.since)
            if query.until:
                q = q.filter(TransactionRecord.created_at <= query.until)

        records = (
            q.order_by(TransactionRecord.created_at.desc())
            .offset(query.offset)
            .limit(query.limit)
            .all()
        )
        return [to_transaction(r) for r in records]


class WalletRepository:
    """Wallet resolver backed by the wallets table"""

    def __init__(self, db: Session):
        self.db = db

    def register(self, user_id: str, wallet_address: str, balance: float = 0.0) -> Wallet:
        """Raises IntegrityError if the user or the address already has a wallet"""
        record = WalletRecord(user_id=user_id, wallet_address=wallet_address, balance=balance)
        self.db.add(record)
        self.db.flush()
        return to_wallet(record)

    def get(self, wallet_address: str) -> Wallet:
        record = self.db.get(WalletRecord, wallet_address, populate_existing=True)
        if record is None:
            raise NotFound("wallet", wallet_address)
        return to_wallet(record)

    def wallet_address_for(self, party_id: str) -> str:
        record = self.db.query(WalletRecord).filter(WalletRecord.user_id == party_id).first()
        if record is None:
            raise NotFound("wallet for user", party_id)
        return record.wallet_address

    def get_balance(self, wallet_address: str) -> float:
        return self.get(wallet_address).balance

    def update_balance(self, wallet_address: str, balance: float) -> None:
        (
            self.db.query(WalletRecord)
            .filter(WalletRecord.wallet_address == wallet_address)
            .update({"balance": balance, "last_updated": utc_now()}, synchronize_session=False)
        )


class KycRepository:
    """Eligibility service backed by the kyc_verifications table"""

    def __init__(self, db: Session):
        self.db = db

    def is_verified(self, party_id: str) -> bool:
        record = self.db.get(KycVerificationRecord, party_id, populate_existing=True)
        return record is not None and record.verification_status == KycStatus.VERIFIED.value

    def set_status(
        self, party_id: str, verification_status: KycStatus, verified_by: Optional[str] = None
    ) -> KycVerification:
        record = self.db.get(KycVerificationRecord, party_id)
        if record is None:
            record = KycVerificationRecord(user_id=party_id)
            self.db.add(record)
        record.verification_status = verification_status.value
        record.verified_by = verified_by
        record.updated_at = utc_now()
        self.db.flush()
        return to_kyc(record)


class PendingOperationRepository:
    """
    Durable fund-movement intents.

    Returns ORM records; every read refreshes from the database because
    status changes are made with bulk compare-and-swap updates.
    """

    def __init__(self, db: Session):
        self.db = db

    def create(self, **fields) -> PendingOperationRecord:
        record = PendingOperationRecord(status=OperationStatus.PENDING.value, **fields)
        self.db.add(record)
        self.db.flush()
        return record

    def get_by_key(self, idempotency_key: str) -> Optional[PendingOperationRecord]:
        return (
            self.db.query(PendingOperationRecord)
            .populate_existing()
            .filter(PendingOperationRecord.idempotency_key == idempotency_key)
            .first()
        )

    def get_by_subject(self, kind: OperationKind, subject_id: str) -> Optional[PendingOperationRecord]:
        return (
            self.db.query(PendingOperationRecord)
            .populate_existing()
            .filter(
                PendingOperationRecord.kind == kind.value,
                PendingOperationRecord.subject_id == subject_id,
            )
            .first()
        )

    def list_by_status(self, status: OperationStatus) -> List[PendingOperationRecord]:
        return (
            self.db.query(PendingOperationRecord)
            .populate_existing()
            .filter(PendingOperationRecord.status == status.value)
            .order_by(PendingOperationRecord.created_at)
            .all()
        )

    def reopen(self, operation_id: str, **fields) -> bool:
        """failed -> pending with fresh transfer parameters"""
        return self._transition(operation_id, OperationStatus.FAILED, OperationStatus.PENDING, **fields)

    def mark_transferred(
        self, operation_id: str, transfer_reference: str, fee: float, transferred_at: datetime
    ) -> bool:
        return self._transition(
            operation_id,
            OperationStatus.PENDING,
            OperationStatus.TRANSFERRED,
            transfer_reference=transfer_reference,
            fee=fee,
            transferred_at=transferred_at,
        )

    def mark_failed(self, operation_id: str, error: str) -> bool:
        return self._transition(operation_id, OperationStatus.PENDING, OperationStatus.FAILED, last_error=error)

    def claim_completion(self, operation_id: str) -> bool:
        """transferred -> completed; only one ledger write can win"""
        return self._transition(operation_id, OperationStatus.TRANSFERRED, OperationStatus.COMPLETED)

    def set_result(self, operation_id: str, result_id: str) -> None:
        (
            self.db.query(PendingOperationRecord)
            .filter(PendingOperationRecord.operation_id == operation_id)
            .update({"result_id": result_id, "updated_at": utc_now()}, synchronize_session=False)
        )

    def record_attempt(self, operation_id: str, error: Optional[str] = None) -> None:
        (
            self.db.query(PendingOperationRecord)
            .filter(PendingOperationRecord.operation_id == operation_id)
            .update(
                {
                    "attempts": PendingOperationRecord.attempts + 1,
                    "last_error": error,
                    "updated_at": utc_now(),
                },
                synchronize_session=False,
            )
        )

    def _transition(
        self,
        operation_id: str,
        from_status: OperationStatus,
        to_status: OperationStatus,
        **fields,
    ) -> bool:
        values = {"status": to_status.value, "updated_at": utc_now(), **fields}
        updated = (
            self.db.query(PendingOperationRecord)
            .filter(
                PendingOperationRecord.operation_id == operation_id,
                PendingOperationRecord.status == from_status.value,
            )
            .update(values, synchronize_session=False)
        )
        return updated == 1
