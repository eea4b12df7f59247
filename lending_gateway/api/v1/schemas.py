"""Pydantic schemas for API request/response validation"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from lending_gateway.domain.models import ApplicationStatus, KycStatus, LoanStatus, OfferStatus, TransactionType


class ApplicationCreateRequest(BaseModel):
    """Request body for POST /v1/applications"""

    amount: float = Field(..., gt=0, description="Requested principal")
    interest_rate: float = Field(..., gt=0, description="Yearly interest rate in percent")
    term_months: int = Field(..., gt=0, description="Requested term in months")


class OfferCreateRequest(BaseModel):
    """Request body for POST /v1/offers"""

    application_id: str = Field(..., min_length=1)
    amount: float = Field(..., gt=0)
    interest_rate: float = Field(..., gt=0)
    term_months: int = Field(..., gt=0)


class ApplicationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    application_id: str
    borrower_id: str
    amount: float
    interest_rate: float
    term_months: int
    status: ApplicationStatus
    created_at: datetime
    updated_at: datetime
    accepted_offer_id: Optional[str] = None


class OfferResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    offer_id: str
    lender_id: str
    application_id: str
    amount: float
    interest_rate: float
    loan_term_months: int
    status: OfferStatus
    created_at: datetime


class LoanResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

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


class PayableResponse(BaseModel):
    """Response for GET /v1/loans/{loan_id}/payable"""

    model_config = ConfigDict(from_attributes=True)

    loan_id: str
    principal: float
    interest: float
    fees: float
    penalty: float
    total: float


class TransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    transaction_id: str
    sender_wallet_id: str
    receiver_wallet_id: str
    amount: float
    type: TransactionType
    status: str
    external_reference: str
    fee: float
    created_at: datetime


class ResumeResponse(BaseModel):
    """Response for POST /v1/loans/resume"""

    disbursements: List[str]
    settlements: List[str]
    transfers: List[str]


class TransferRequest(BaseModel):
    """Request body for POST /v1/wallets/transfers"""

    recipient_id: str = Field(..., min_length=1, description="User receiving the funds")
    amount: float = Field(..., gt=0, allow_inf_nan=False)


class WalletRegisterRequest(BaseModel):
    """Request body for POST /v1/wallets"""

    user_id: str = Field(..., min_length=1)
    wallet_address: str = Field(..., pattern=r"^0x[0-9a-fA-F]{40}$")


class WalletResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    wallet_address: str
    user_id: str
    balance: float
    last_updated: datetime


class KycStatusRequest(BaseModel):
    """Request body for PUT /v1/kyc/{user_id}"""

    verification_status: KycStatus


class KycResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    verification_status: KycStatus
    verified_by: Optional[str] = None
    updated_at: datetime


class ErrorResponse(BaseModel):
    detail: str
    idempotency_key: Optional[str] = None
