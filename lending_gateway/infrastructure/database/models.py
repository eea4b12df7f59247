"""SQLAlchemy ORM models for the lending ledger"""

import uuid
from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

from lending_gateway.utils.date_utils import utc_now

Base = declarative_base()


def _new_id() -> str:
    return str(uuid.uuid4())


class LoanApplicationRecord(Base):
    """Borrower's loan application"""

    __tablename__ = "loan_applications"

    application_id = Column(String(36), primary_key=True, default=_new_id)
    borrower_id = Column(String(64), nullable=False, index=True)
    amount = Column(Float, nullable=False)
    interest_rate = Column(Float, nullable=False)
    term_months = Column(Integer, nullable=False)
    status = Column(String(16), nullable=False, default="Open", index=True)
    # Set in the same transaction as the offer moving to Accepted; never cleared
    accepted_offer_id = Column(String(36), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)

    offers = relationship("LoanOfferRecord", back_populates="application")


class LoanOfferRecord(Base):
    """Lender's offer against an application"""

    __tablename__ = "loan_offers"

    offer_id = Column(String(36), primary_key=True, default=_new_id)
    lender_id = Column(String(64), nullable=False, index=True)
    application_id = Column(
        String(36), ForeignKey("loan_applications.application_id"), nullable=False, index=True
    )
    amount = Column(Float, nullable=False)
    interest_rate = Column(Float, nullable=False)
    loan_term_months = Column(Integer, nullable=False)
    status = Column(String(16), nullable=False, default="Open", index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    application = relationship("LoanApplicationRecord", back_populates="offers")


class LoanRecord(Base):
    """Funded loan; one per accepted offer"""

    __tablename__ = "loans"
    __table_args__ = (
        CheckConstraint("remaining_principle >= 0", name="ck_loans_remaining_principle"),
        CheckConstraint("settled_amount IS NULL OR settled_amount >= 0", name="ck_loans_settled_amount"),
    )

    loan_id = Column(String(36), primary_key=True, default=_new_id)
    offer_id = Column(String(36), ForeignKey("loan_offers.offer_id"), nullable=False, unique=True)
    application_id = Column(String(36), ForeignKey("loan_applications.application_id"), nullable=False)
    borrower_id = Column(String(64), nullable=False, index=True)
    lender_id = Column(String(64), nullable=False, index=True)
    total_principle = Column(Float, nullable=False)
    remaining_principle = Column(Float, nullable=False)
    interest_rate = Column(Float, nullable=False)
    status = Column(String(16), nullable=False, default="active", index=True)
    start_date = Column(DateTime(timezone=True), nullable=False)
    next_payment_date = Column(DateTime(timezone=True), nullable=False)
    disbursement_transaction_id = Column(
        String(36), ForeignKey("transactions.transaction_id"), nullable=False, unique=True
    )
    settled_amount = Column(Float, nullable=True)
    accrued_interest = Column(Float, nullable=True)
    settlement_date = Column(DateTime(timezone=True), nullable=True)
    settlement_transaction_id = Column(
        String(36), ForeignKey("transactions.transaction_id"), nullable=True, unique=True
    )


class TransactionRecord(Base):
    """Append-only audit row, one per completed external transfer"""

    __tablename__ = "transactions"

    transaction_id = Column(String(36), primary_key=True, default=_new_id)
    sender_wallet_id = Column(String(128), nullable=False, index=True)
    receiver_wallet_id = Column(String(128), nullable=False, index=True)
    amount = Column(Float, nullable=False)
    transaction_type = Column(String(16), nullable=False)
    status = Column(String(16), nullable=False, default="completed")
    external_reference = Column(String(128), nullable=False, unique=True)
    fee = Column(Float, nullable=False, default=0.0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)


class WalletRecord(Base):
    """Wallet address and cached on-network balance per user"""

    __tablename__ = "wallets"

    wallet_address = Column(String(128), primary_key=True)
    user_id = Column(String(64), nullable=False, unique=True)
    balance = Column(Float, nullable=False, default=0.0)
    last_updated = Column(DateTime(timezone=True), nullable=False, default=utc_now)


class KycVerificationRecord(Base):
    """KYC verification status per user"""

    __tablename__ = "kyc_verifications"

    user_id = Column(String(64), primary_key=True)
    verification_status = Column(String(16), nullable=False, default="Pending")
    verified_by = Column(String(64), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)


class PendingOperationRecord(Base):
    """
    Durable intent for a disbursement, settlement or wallet transfer.

    Written before the Settlement Network is called and carries the
    idempotency key, so an interrupted operation resumes without moving
    funds twice. At most one intent exists per (kind, subject_id).
    """

    __tablename__ = "pending_operations"
    __table_args__ = (UniqueConstraint("kind", "subject_id", name="uq_pending_operations_subject"),)

    operation_id = Column(String(36), primary_key=True, default=_new_id)
    idempotency_key = Column(String(128), nullable=False, unique=True)
    kind = Column(String(16), nullable=False)
    subject_id = Column(String(128), nullable=False)  # application_id, loan_id or transfer key
    offer_id = Column(String(36), nullable=True)
    initiator_id = Column(String(64), nullable=False)
    sender_address = Column(String(128), nullable=False)
    receiver_address = Column(String(128), nullable=False)
    amount = Column(Float, nullable=False)
    interest = Column(Float, nullable=False, default=0.0)
    penalty = Column(Float, nullable=False, default=0.0)
    status = Column(String(16), nullable=False, default="pending", index=True)
    transfer_reference = Column(String(128), nullable=True)
    fee = Column(Float, nullable=True)
    transferred_at = Column(DateTime(timezone=True), nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    result_id = Column(String(36), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)
