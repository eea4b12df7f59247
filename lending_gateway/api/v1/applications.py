"""POST/GET /v1/applications - borrower loan applications"""

from typing import List, Optional
from fastapi import APIRouter, Depends, status

from lending_gateway.api.dependencies import get_lending_service, get_principal
from lending_gateway.api.v1.schemas import ApplicationCreateRequest, ApplicationResponse
from lending_gateway.domain.filters import ApplicationFilter
from lending_gateway.domain.models import Principal
from lending_gateway.services.lending import LendingService

router = APIRouter()


@router.post("/applications", response_model=ApplicationResponse, status_code=status.HTTP_201_CREATED)
def create_application(
    request_body: ApplicationCreateRequest,
    principal: Principal = Depends(get_principal),
    service: LendingService = Depends(get_lending_service),
):
    """Open a loan application on behalf of the calling borrower"""
    return service.create_application(
        principal,
        amount=request_body.amount,
        interest_rate=request_body.interest_rate,
        term_months=request_body.term_months,
    )


@router.get("/applications", response_model=List[ApplicationResponse])
def get_applications(
    application_id: Optional[str] = None,
    borrower_id: Optional[str] = None,
    status: Optional[str] = None,
    principal: Principal = Depends(get_principal),
    service: LendingService = Depends(get_lending_service),
):
    """
    Look up applications.

    application_id takes precedence; otherwise borrower_id and status are
    combined.
    """
    query = ApplicationFilter(application_id=application_id, borrower_id=borrower_id, status=status)
    return service.get_applications(query)
