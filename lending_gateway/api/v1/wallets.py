"""Wallet endpoints: registration, balance and wallet-to-wallet transfers"""

from typing import Optional
from fastapi import APIRouter, Depends, Header, status

from lending_gateway.api.dependencies import get_lending_service, get_principal
from lending_gateway.api.v1.schemas import (
    ErrorResponse,
    TransactionResponse,
    TransferRequest,
    WalletRegisterRequest,
    WalletResponse,
)
from lending_gateway.domain.models import Principal
from lending_gateway.services.lending import LendingService

router = APIRouter()


@router.post("/wallets", response_model=WalletResponse, status_code=status.HTTP_201_CREATED)
def register_wallet(
    request_body: WalletRegisterRequest,
    principal: Principal = Depends(get_principal),
    service: LendingService = Depends(get_lending_service),
):
    """Admin attaches a Settlement Network address to a user"""
    return service.register_wallet(principal, request_body.user_id, request_body.wallet_address)


@router.get("/wallets/balance", response_model=WalletResponse, responses={503: {"model": ErrorResponse}})
async def get_balance(
    wallet_address: Optional[str] = None,
    principal: Principal = Depends(get_principal),
    service: LendingService = Depends(get_lending_service),
):
    """Live balance of the caller's wallet, or of any wallet for an admin"""
    return await service.get_balance(principal, wallet_address)


@router.post(
    "/wallets/transfers",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
    responses={503: {"model": ErrorResponse}},
)
async def transfer(
    request_body: TransferRequest,
    idempotency_key: Optional[str] = Header(None),
    principal: Principal = Depends(get_principal),
    service: LendingService = Depends(get_lending_service),
):
    """
    Move funds from the caller's wallet to another user's wallet.

    Same Idempotency-Key contract as disbursement: a 503 carrying an
    idempotency_key means funds may have moved; retry with that key.
    """
    return await service.transfer(principal, request_body.recipient_id, request_body.amount, idempotency_key)
