"""Wallet registration, balance lookup and wallet-to-wallet transfers"""

import logging
import re
import uuid
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lending_gateway.domain.eligibility import validate_amount
from lending_gateway.domain.exceptions import (
    InvalidStateTransition,
    LedgerWriteFailed,
    Unauthorized,
    ValidationError,
)
from lending_gateway.domain.models import (
    LedgerTransaction,
    OperationKind,
    OperationStatus,
    Principal,
    TransactionType,
    Wallet,
)
from lending_gateway.domain.ports import SettlementNetwork
from lending_gateway.infrastructure.database.models import PendingOperationRecord
from lending_gateway.infrastructure.database.repositories import TransactionRepository, WalletRepository
from lending_gateway.infrastructure.database.session import atomic
from lending_gateway.services.fund_movement import FundMovement, TransferPlan

WALLET_ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")


class WalletService:
    """
    Transfer flow:
    1. Resolve the caller's and the recipient's wallets
    2. Write the transfer intent; the idempotency key is its subject
    3. Transfer amount caller -> recipient
    4. In one transaction: transfer audit row
    5. Refresh cached wallet balances (best-effort)
    """

    def __init__(self, db: Session, funds: FundMovement, wallets: WalletRepository, network: SettlementNetwork):
        self.db = db
        self.funds = funds
        self.wallets = wallets
        self.network = network
        self.transactions = TransactionRepository(db)

    def register_wallet(self, principal: Principal, user_id: str, wallet_address: str) -> Wallet:
        """
        Admin only: attach a Settlement Network address to a user.

        Raises:
            Unauthorized: caller is not an admin
            ValidationError: address is not 0x followed by 40 hex digits
            InvalidStateTransition: user or address already has a wallet
        """
        if not principal.is_admin:
            raise Unauthorized("only admins may register wallets")
        if not WALLET_ADDRESS_PATTERN.match(wallet_address or ""):
            raise ValidationError(f"invalid wallet address {wallet_address!r}")

        try:
            with atomic(self.db):
                wallet = self.wallets.register(user_id, wallet_address)
        except IntegrityError as e:
            raise InvalidStateTransition(f"user {user_id} or address {wallet_address} already has a wallet") from e

        logging.info("Wallet registered", extra={"user_id": user_id, "wallet_address": wallet_address})
        return wallet

    async def get_balance(self, principal: Principal, wallet_address: Optional[str] = None) -> Wallet:
        """
        Live balance from the Settlement Network, written through to the cache.

        Defaults to the caller's own wallet; only admins may look up others.
        """
        address = wallet_address or self.wallets.wallet_address_for(principal.id)
        wallet = self.wallets.get(address)
        if not principal.is_admin and wallet.user_id != principal.id:
            raise Unauthorized(f"user {principal.id} does not own wallet {address}")

        balance = await self.network.balance_of(address)
        with atomic(self.db):
            self.wallets.update_balance(address, balance)
        return self.wallets.get(address)

    async def transfer(
        self,
        principal: Principal,
        recipient_id: str,
        amount: float,
        idempotency_key: Optional[str] = None,
    ) -> LedgerTransaction:
        """
        Move funds from the caller's wallet to the recipient's.

        Replaying a completed key returns the recorded transaction. A key
        whose transfer was rejected is spent; retry with a new one.

        Raises:
            ValidationError: amount not positive, or recipient is the caller
            NotFound: either party has no wallet
            InvalidStateTransition: key belongs to another request
            TransferFailed: nothing was persisted; safe to retry
            LedgerWriteFailed: funds moved; retry with the same key persists only
        """
        validate_amount(amount)
        if recipient_id == principal.id:
            raise ValidationError("cannot transfer to your own wallet")

        sender_address = self.wallets.wallet_address_for(principal.id)
        receiver_address = self.wallets.wallet_address_for(recipient_id)
        key = idempotency_key or str(uuid.uuid4())

        existing = self.funds.operations.get_by_key(key)
        if existing is not None:
            self._check_replay(existing, principal, receiver_address, amount)
            if existing.status == OperationStatus.COMPLETED.value:
                return self.transactions.get(existing.result_id)

        plan = TransferPlan(
            kind=OperationKind.TRANSFER,
            subject_id=key,
            offer_id=None,
            initiator_id=principal.id,
            sender_address=sender_address,
            receiver_address=receiver_address,
            amount=amount,
        )
        transaction_id = await self.funds.execute(plan, self._record_transfer, key)
        await self.funds.refresh_balances([sender_address, receiver_address])

        logging.info(
            "Wallet transfer completed",
            extra={"transaction_id": transaction_id, "sender_id": principal.id, "recipient_id": recipient_id},
        )
        return self.transactions.get(transaction_id)

    async def resume_pending(self) -> List[str]:
        """Complete ledger writes for transfers whose funds already moved"""
        resumed = []
        for intent in self.funds.transferred_intents(OperationKind.TRANSFER):
            try:
                resumed.append(await self.funds.persist(intent.idempotency_key, self._record_transfer))
            except LedgerWriteFailed:
                continue  # logged as ledger_pending, picked up by the next sweep
        return resumed

    @staticmethod
    def _check_replay(
        intent: PendingOperationRecord,
        principal: Principal,
        receiver_address: str,
        amount: float,
    ) -> None:
        key = intent.idempotency_key
        if intent.kind != OperationKind.TRANSFER.value or intent.initiator_id != principal.id:
            raise InvalidStateTransition(f"idempotency key {key} is already in use")
        if intent.receiver_address != receiver_address or intent.amount != amount:
            raise InvalidStateTransition(f"idempotency key {key} was used for a different transfer")
        if intent.status == OperationStatus.FAILED.value:
            raise InvalidStateTransition(f"transfer {key} was rejected, retry with a new idempotency key")

    def _record_transfer(self, intent: PendingOperationRecord) -> str:
        """Runs inside the fund-movement transaction"""
        transaction = self.transactions.record(
            sender_wallet_id=intent.sender_address,
            receiver_wallet_id=intent.receiver_address,
            amount=intent.amount,
            transaction_type=TransactionType.TRANSFER,
            external_reference=intent.transfer_reference,
            fee=intent.fee or 0.0,
        )
        return transaction.transaction_id
