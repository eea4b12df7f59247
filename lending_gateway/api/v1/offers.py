"""Loan offer endpoints: create, list, accept and disburse"""

from typing import List, Optional
from fastapi import APIRouter, Depends, Header, status

from lending_gateway.api.dependencies import get_lending_service, get_principal
from lending_gateway.api.v1.schemas import ErrorResponse, LoanResponse, OfferCreateRequest, OfferResponse
from lending_gateway.domain.filters import OfferFilter
from lending_gateway.domain.models import Principal
from lending_gateway.services.lending import LendingService

router = APIRouter()


@router.post("/offers", response_model=OfferResponse, status_code=status.HTTP_201_CREATED)
def create_offer(
    request_body: OfferCreateRequest,
    principal: Principal = Depends(get_principal),
    service: LendingService = Depends(get_lending_service),
):
    return service.create_offer(
        principal,
        amount=request_body.amount,
        interest_rate=request_body.interest_rate,
        term_months=request_body.term_months,
        application_id=request_body.application_id,
    )


@router.get("/offers", response_model=List[OfferResponse])
def get_offers(
    offer_id: Optional[str] = None,
    application_id: Optional[str] = None,
    lender_id: Optional[str] = None,
    status: Optional[str] = None,
    principal: Principal = Depends(get_principal),
    service: LendingService = Depends(get_lending_service),
):
    query = OfferFilter(offer_id=offer_id, application_id=application_id, lender_id=lender_id, status=status)
    return service.get_offers(query)


@router.post("/offers/{offer_id}/accept", response_model=OfferResponse)
def accept_offer(
    offer_id: str,
    principal: Principal = Depends(get_principal),
    service: LendingService = Depends(get_lending_service),
):
    """Borrower accepts an open offer; at most one offer per application can win"""
    return service.accept_offer(principal, offer_id)


@router.post(
    "/offers/{offer_id}/disburse",
    response_model=LoanResponse,
    status_code=status.HTTP_201_CREATED,
    responses={503: {"model": ErrorResponse}},
)
async def disburse(
    offer_id: str,
    idempotency_key: Optional[str] = Header(None),
    principal: Principal = Depends(get_principal),
    service: LendingService = Depends(get_lending_service),
):
    """
    Lender funds an accepted offer.

    Flow:
    1. Record a durable intent keyed by Idempotency-Key
    2. Transfer principal lender -> borrower on the Settlement Network
    3. Write transaction, loan and status flips in one commit

    A 503 carrying an idempotency_key means funds may have moved; retry
    with that key to finish the ledger write without a second transfer.
    """
    return await service.disburse(principal, offer_id, idempotency_key)
