"""GET /v1/transactions - ledger transaction history"""

from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, Query

from lending_gateway.api.dependencies import get_lending_service, get_principal
from lending_gateway.api.v1.schemas import TransactionResponse
from lending_gateway.domain.filters import DEFAULT_PAGE_LIMIT, TransactionFilter
from lending_gateway.domain.models import Principal
from lending_gateway.services.lending import LendingService

router = APIRouter()


@router.get("/transactions", response_model=List[TransactionResponse])
def get_transactions(
    transaction_id: Optional[str] = None,
    wallet_address: Optional[str] = None,
    type: Optional[str] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    page: int = Query(1),
    limit: int = Query(DEFAULT_PAGE_LIMIT),
    principal: Principal = Depends(get_principal),
    service: LendingService = Depends(get_lending_service),
):
    """Transactions newest first; wallet_address matches sender or receiver"""
    query = TransactionFilter(
        transaction_id=transaction_id,
        wallet_address=wallet_address,
        type=type,
        since=since,
        until=until,
        page=page,
        limit=limit,
    )
    return service.get_transactions(query)
