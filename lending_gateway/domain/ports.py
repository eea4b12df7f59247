"""Interfaces consumed from external collaborators"""

from typing import Protocol

from lending_gateway.domain.models import FeeParams, TransferReceipt


class EligibilityService(Protocol):
    def is_verified(self, party_id: str) -> bool: ...


class WalletResolver(Protocol):
    def wallet_address_for(self, party_id: str) -> str: ...


class SettlementNetwork(Protocol):
    """Irreversible value transfer between wallet addresses"""

    async def transfer(
        self,
        from_address: str,
        to_address: str,
        amount: float,
        fee_params: FeeParams,
        idempotency_key: str,
    ) -> TransferReceipt: ...

    async def balance_of(self, address: str) -> float: ...
