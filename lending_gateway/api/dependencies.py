"""Dependency injection for FastAPI endpoints"""

from typing import AsyncIterator, Optional

import httpx
from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from lending_gateway.domain.models import Principal, Role
from lending_gateway.domain.ports import SettlementNetwork
from lending_gateway.infrastructure.clients.settlement import SettlementNetworkClient
from lending_gateway.infrastructure.database.session import get_db
from lending_gateway.services.lending import LendingService


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_principal(
    x_user_id: Optional[str] = Header(None),
    x_user_role: str = Header(Role.BORROWER.value),
) -> Principal:
    """Caller identity as established by the upstream auth layer"""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-ID header")
    try:
        role = Role(x_user_role.lower())
    except ValueError:
        raise HTTPException(status_code=401, detail=f"Unknown role {x_user_role!r}")
    return Principal(id=x_user_id, role=role)


async def get_settlement_network() -> AsyncIterator[SettlementNetwork]:
    """Provide a Settlement Network client bound to a per-request HTTP client"""
    async with httpx.AsyncClient() as http_client:
        yield SettlementNetworkClient(http_client)


def get_lending_service(
    db: Session = Depends(get_db),
    network: SettlementNetwork = Depends(get_settlement_network),
) -> LendingService:
    return LendingService(db, network)
