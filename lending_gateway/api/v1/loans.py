"""Loan endpoints: lookup, payable amount, settlement and recovery"""

from typing import List, Optional
from fastapi import APIRouter, Depends, Header

from lending_gateway.api.dependencies import get_lending_service, get_principal
from lending_gateway.api.v1.schemas import ErrorResponse, LoanResponse, PayableResponse, ResumeResponse
from lending_gateway.domain.exceptions import Unauthorized
from lending_gateway.domain.filters import LoanFilter
from lending_gateway.domain.models import Principal
from lending_gateway.services.lending import LendingService

router = APIRouter()


@router.get("/loans", response_model=List[LoanResponse])
def get_loans(
    loan_id: Optional[str] = None,
    offer_id: Optional[str] = None,
    application_id: Optional[str] = None,
    borrower_id: Optional[str] = None,
    lender_id: Optional[str] = None,
    status: Optional[str] = None,
    principal: Principal = Depends(get_principal),
    service: LendingService = Depends(get_lending_service),
):
    query = LoanFilter(
        loan_id=loan_id,
        offer_id=offer_id,
        application_id=application_id,
        borrower_id=borrower_id,
        lender_id=lender_id,
        status=status,
    )
    return service.get_loans(query)


@router.get("/loans/{loan_id}/payable", response_model=PayableResponse)
def calculate_payable(
    loan_id: str,
    principal: Principal = Depends(get_principal),
    service: LendingService = Depends(get_lending_service),
):
    return service.calculate_payable(principal, loan_id)


@router.post("/loans/resume", response_model=ResumeResponse)
async def resume_pending(
    principal: Principal = Depends(get_principal),
    service: LendingService = Depends(get_lending_service),
):
    """Admin recovery: finish ledger writes for transfers that already settled"""
    if not principal.is_admin:
        raise Unauthorized("only admins may resume pending operations")
    return await service.resume_pending()


@router.post("/loans/{loan_id}/settle", response_model=LoanResponse, responses={503: {"model": ErrorResponse}})
async def settle(
    loan_id: str,
    idempotency_key: Optional[str] = Header(None),
    principal: Principal = Depends(get_principal),
    service: LendingService = Depends(get_lending_service),
):
    """Borrower repays principal, interest and penalty; the loan closes"""
    return await service.settle(principal, loan_id, idempotency_key)
