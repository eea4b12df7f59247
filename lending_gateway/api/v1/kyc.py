"""PUT /v1/kyc/{user_id} - admin KYC decisions"""

from fastapi import APIRouter, Depends

from lending_gateway.api.dependencies import get_lending_service, get_principal
from lending_gateway.api.v1.schemas import KycResponse, KycStatusRequest
from lending_gateway.domain.models import Principal
from lending_gateway.services.lending import LendingService

router = APIRouter()


@router.put("/kyc/{user_id}", response_model=KycResponse)
def set_kyc_status(
    user_id: str,
    request_body: KycStatusRequest,
    principal: Principal = Depends(get_principal),
    service: LendingService = Depends(get_lending_service),
):
    return service.set_kyc_status(principal, user_id, request_body.verification_status)
