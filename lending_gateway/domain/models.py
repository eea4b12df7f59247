"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class Role(str, Enum):
    BORROWER = "borrower"
    LENDER = "lender"
    ADMIN = "admin"


class ApplicationStatus(str, Enum):
    OPEN = "Open"
    FUNDED = "Funded"
    CLOSED = "Closed"


class OfferStatus(str, Enum):
    OPEN = "Open"
    ACCEPTED = "Accepted"
    FUNDED = "Funded"
    CLOSED = "Closed"


class LoanStatus(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"


class TransactionType(str, Enum):
    TRANSFER = "transfer"
    DISBURSEMENT = "disbursement"
    SETTLEMENT = "settlement"


class OperationKind(str, Enum):
    DISBURSEMENT = "disbursement"
    SETTLEMENT = "settlement"
    TRANSFER = "transfer"


class KycStatus(str, Enum):
    PENDING = "Pending"
    VERIFIED = "Verified"
    UNVERIFIED = "Unverified"


class OperationStatus(str, Enum):
    PENDING = "pending"  # intent written, transfer not confirmed
    TRANSFERRED = "transferred"  # funds moved, ledger write outstanding
    COMPLETED = "completed"
    FAILED = "failed"  # network rejected the transfer, nothing moved


@dataclass(frozen=True)
class Principal:
    """Caller identity threaded through every service call"""

    id: str
    role: Role = Role.BORROWER

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


@dataclass
class LoanApplication:
    """Borrower's request for a loan"""

    application_id: str
    borrower_id: str
    amount: float
    interest_rate: float
    term_months: int
    status: ApplicationStatus
    created_at: datetime
    updated_at: datetime
    accepted_offer_id: Optional[str] = None


@dataclass
class LoanOffer:
    """Lender's proposed terms against an application"""

    offer_id: str
    lender_id: str
    application_id: str
    amount: float
    interest_rate: float
    loan_term_months: int
    status: OfferStatus
    created_at: datetime


@dataclass
class Loan:
    """Funded loan, created at disbursement and closed at settlement"""

    loan_id: str
    offer_id: str
    application_id: str
    borrower_id: str
    lender_id: str
    total_principle: float
    remaining_principle: float
    interest_rate: float
    status: LoanStatus
    start_date: datetime
    next_payment_date: datetime
    disbursement_transaction_id: str
    settled_amount: Optional[float] = None
    accrued_interest: Optional[float] = None
    settlement_date: Optional[datetime] = None
    settlement_transaction_id: Optional[str] = None


@dataclass
class LedgerTransaction:
    """Audit record of one completed external transfer"""

    transaction_id: str
    sender_wallet_id: str
    receiver_wallet_id: str
    amount: float
    type: TransactionType
    status: str
    external_reference: str
    fee: float
    created_at: datetime


@dataclass
class Wallet:
    """Registered wallet with its cached Settlement Network balance"""

    wallet_address: str
    user_id: str
    balance: float
    last_updated: datetime


@dataclass
class KycVerification:
    user_id: str
    verification_status: KycStatus
    verified_by: Optional[str]
    updated_at: datetime


@dataclass
class PayableBreakdown:
    """Amount owed on a loan as of a given moment"""

    loan_id: str
    principal: float
    interest: float
    fees: float
    penalty: float
    total: float


@dataclass(frozen=True)
class FeeParams:
    """Fee parameters forwarded to the Settlement Network"""

    gas_price_wei: int
    gas_limit: int
    chain_id: int


@dataclass(frozen=True)
class TransferReceipt:
    """Confirmed transfer returned by the Settlement Network"""

    reference: str
    fee: float
