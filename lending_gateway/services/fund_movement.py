"""
Transfer-then-persist orchestration shared by disbursement, settlement and
wallet transfers.

Every fund movement goes through a durable intent row:

    pending      intent written, idempotency key fixed, transfer not confirmed
    transferred  network confirmed the transfer, ledger write outstanding
    completed    ledger rows committed together with the intent
    failed       network rejected the transfer, nothing moved

The network is only ever called for a pending intent, always with the
intent's idempotency key. Once an intent is transferred, retries touch the
ledger only.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from lending_gateway.config import settings
from lending_gateway.domain.exceptions import (
    InvalidStateTransition,
    LedgerWriteFailed,
    SettlementNetworkError,
    TransferFailed,
)
from lending_gateway.domain.models import FeeParams, OperationKind, OperationStatus, TransferReceipt
from lending_gateway.domain.ports import SettlementNetwork
from lending_gateway.infrastructure.clients.settlement import fee_params_from_settings
from lending_gateway.infrastructure.database.models import PendingOperationRecord
from lending_gateway.infrastructure.database.repositories import (
    PendingOperationRepository,
    WalletRepository,
)
from lending_gateway.infrastructure.database.session import atomic
from lending_gateway.infrastructure.observability.logging import log_fund_movement
from lending_gateway.infrastructure.observability.metrics import (
    balance_refresh_failures_counter,
    ledger_write_failures_counter,
    record_fund_movement,
)
from lending_gateway.utils.date_utils import utc_now

# Writes the ledger rows for a transferred intent inside the caller's
# transaction and returns the id of the resulting entity (loan or transaction).
LedgerWriter = Callable[[PendingOperationRecord], str]


@dataclass
class TransferPlan:
    """What to move, between whom, and on behalf of which subject"""

    kind: OperationKind
    subject_id: str
    offer_id: Optional[str]
    initiator_id: str
    sender_address: str
    receiver_address: str
    amount: float
    interest: float = 0.0
    penalty: float = 0.0


class FundMovement:
    """Coordinates one irreversible transfer with its ledger write"""

    def __init__(
        self,
        db: Session,
        network: SettlementNetwork,
        fee_params: Optional[FeeParams] = None,
        transfer_timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff_base: Optional[float] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.network = network
        self.fee_params = fee_params or fee_params_from_settings()
        self.transfer_timeout = settings.transfer_timeout_seconds if transfer_timeout is None else transfer_timeout
        self.max_retries = settings.ledger_write_max_retries if max_retries is None else max_retries
        self.backoff_base = settings.ledger_write_backoff_base if backoff_base is None else backoff_base
        self.clock = clock
        self.operations = PendingOperationRepository(db)
        self.wallets = WalletRepository(db)

    def completed_result(
        self,
        kind: OperationKind,
        subject_id: str,
        idempotency_key: Optional[str],
    ) -> Optional[str]:
        """Result id if this exact request already completed, for idempotent replays"""
        if not idempotency_key:
            return None
        intent = self.operations.get_by_key(idempotency_key)
        if (
            intent is not None
            and intent.kind == kind.value
            and intent.subject_id == subject_id
            and intent.status == OperationStatus.COMPLETED.value
        ):
            return intent.result_id
        return None

    async def execute(
        self,
        plan: TransferPlan,
        write_ledger: LedgerWriter,
        idempotency_key: Optional[str] = None,
    ) -> str:
        """
        Move funds for the plan and persist the result.

        Raises:
            InvalidStateTransition: another operation holds the subject
            TransferFailed: nothing was persisted; safe to retry
            LedgerWriteFailed: funds moved, ledger pending; retry persists only
        """
        intent = self.open_intent(plan, idempotency_key)
        key = intent.idempotency_key

        if intent.status == OperationStatus.COMPLETED.value:
            return intent.result_id

        receipt = None
        if intent.status == OperationStatus.PENDING.value:
            receipt = await self._transfer(intent)

        return await self.persist(key, write_ledger, receipt)

    def open_intent(self, plan: TransferPlan, idempotency_key: Optional[str] = None) -> PendingOperationRecord:
        """
        Write (or reuse) the durable intent before any transfer.

        A failed intent is reopened with a fresh key because the network
        refused the previous one. A pending or transferred intent is resumed
        as-is so its original key is reused.
        """
        key = idempotency_key or str(uuid.uuid4())
        fields = dict(
            offer_id=plan.offer_id,
            initiator_id=plan.initiator_id,
            sender_address=plan.sender_address,
            receiver_address=plan.receiver_address,
            amount=plan.amount,
            interest=plan.interest,
            penalty=plan.penalty,
        )

        intent = self.operations.get_by_subject(plan.kind, plan.subject_id)
        try:
            if intent is None:
                with atomic(self.db):
                    self.operations.create(
                        idempotency_key=key,
                        kind=plan.kind.value,
                        subject_id=plan.subject_id,
                        **fields,
                    )
                log_fund_movement("intent_created", plan.kind.value, key, plan.subject_id, amount=plan.amount)
                return self.operations.get_by_key(key)

            if intent.status == OperationStatus.FAILED.value:
                with atomic(self.db):
                    reopened = self.operations.reopen(
                        intent.operation_id,
                        idempotency_key=key,
                        transfer_reference=None,
                        fee=None,
                        last_error=None,
                        **fields,
                    )
                if not reopened:
                    raise InvalidStateTransition(f"{plan.kind.value} for {plan.subject_id} is already in progress")
                log_fund_movement("intent_reopened", plan.kind.value, key, plan.subject_id, amount=plan.amount)
                return self.operations.get_by_key(key)

        except IntegrityError as e:
            raise InvalidStateTransition(
                f"{plan.kind.value} for {plan.subject_id} is already in progress or the idempotency key is in use"
            ) from e

        if intent.offer_id != plan.offer_id:
            raise InvalidStateTransition(
                f"{plan.kind.value} for {plan.subject_id} is already in progress for offer {intent.offer_id}"
            )

        log_fund_movement(
            "intent_resumed",
            plan.kind.value,
            intent.idempotency_key,
            plan.subject_id,
            transfer_reference=intent.transfer_reference,
            status=intent.status,
        )
        return intent

    async def _transfer(self, intent: PendingOperationRecord) -> TransferReceipt:
        operation_id = intent.operation_id
        kind = intent.kind
        key = intent.idempotency_key
        subject_id = intent.subject_id

        log_fund_movement("transfer_started", kind, key, subject_id, amount=intent.amount)
        try:
            receipt = await asyncio.wait_for(
                self.network.transfer(
                    intent.sender_address,
                    intent.receiver_address,
                    intent.amount,
                    self.fee_params,
                    key,
                ),
                timeout=self.transfer_timeout,
            )
        except asyncio.TimeoutError as e:
            self._record_attempt(operation_id, "transfer timed out")
            record_fund_movement(kind, "transfer_failed")
            log_fund_movement("transfer_timeout", kind, key, subject_id, level=logging.WARNING)
            raise TransferFailed(f"transfer did not confirm within {self.transfer_timeout}s") from e
        except TransferFailed as e:
            if e.rejected:
                with atomic(self.db):
                    self.operations.record_attempt(operation_id, str(e))
                    self.operations.mark_failed(operation_id, str(e))
            else:
                self._record_attempt(operation_id, str(e))
            record_fund_movement(kind, "transfer_failed")
            log_fund_movement(
                "transfer_failed", kind, key, subject_id, level=logging.WARNING, error=str(e), rejected=e.rejected
            )
            raise

        log_fund_movement("transfer_confirmed", kind, key, subject_id, transfer_reference=receipt.reference)
        return receipt

    def _record_attempt(self, operation_id: str, error: str) -> None:
        with atomic(self.db):
            self.operations.record_attempt(operation_id, error)

    async def persist(
        self,
        idempotency_key: str,
        write_ledger: LedgerWriter,
        receipt: Optional[TransferReceipt] = None,
    ) -> str:
        """
        Write the ledger for a transferred intent, retrying with backoff.

        Runs shielded: once funds have moved a caller cancelling the request
        does not abort the write.
        """
        return await asyncio.shield(self._persist_with_retry(idempotency_key, write_ledger, receipt))

    async def _persist_with_retry(
        self,
        idempotency_key: str,
        write_ledger: LedgerWriter,
        receipt: Optional[TransferReceipt],
    ) -> str:
        intent = self.operations.get_by_key(idempotency_key)
        kind = intent.kind
        subject_id = intent.subject_id
        reference = receipt.reference if receipt else intent.transfer_reference

        last_error: Optional[Exception] = None
        # One initial write plus up to max_retries retries
        for attempt in range(1, self.max_retries + 2):
            try:
                result_id = self._write_once(idempotency_key, write_ledger, receipt)
                record_fund_movement(kind, "completed")
                log_fund_movement(
                    "ledger_written", kind, idempotency_key, subject_id, transfer_reference=reference, result_id=result_id
                )
                return result_id
            except SQLAlchemyError as e:
                self.db.rollback()
                last_error = e
                ledger_write_failures_counter.labels(kind=kind).inc()
                log_fund_movement(
                    "ledger_write_failed",
                    kind,
                    idempotency_key,
                    subject_id,
                    transfer_reference=reference,
                    level=logging.ERROR,
                    attempt=attempt,
                    error=str(e),
                )
                if attempt <= self.max_retries:
                    # Exponential backoff: base, 2*base, 4*base, ...
                    await asyncio.sleep(self.backoff_base * (2 ** (attempt - 1)))

        record_fund_movement(kind, "ledger_pending")
        log_fund_movement(
            "ledger_pending", kind, idempotency_key, subject_id, transfer_reference=reference, level=logging.CRITICAL
        )
        raise LedgerWriteFailed(
            f"{kind} transfer {reference} succeeded but the ledger write is pending",
            idempotency_key=idempotency_key,
            transfer_reference=reference,
        ) from last_error

    def _write_once(
        self,
        idempotency_key: str,
        write_ledger: LedgerWriter,
        receipt: Optional[TransferReceipt],
    ) -> str:
        intent = self.operations.get_by_key(idempotency_key)

        # Record the transfer outcome on its own commit so a failing ledger
        # write still leaves the reference behind for resumption
        if intent.status == OperationStatus.PENDING.value:
            if receipt is None:
                raise InvalidStateTransition(f"intent {idempotency_key} has no confirmed transfer")
            with atomic(self.db):
                self.operations.mark_transferred(intent.operation_id, receipt.reference, receipt.fee, self.clock())
            intent = self.operations.get_by_key(idempotency_key)

        if intent.status == OperationStatus.COMPLETED.value:
            return intent.result_id

        operation_id = intent.operation_id
        result_id = None
        with atomic(self.db):
            if self.operations.claim_completion(operation_id):
                result_id = write_ledger(intent)
                self.operations.set_result(operation_id, result_id)

        if result_id is not None:
            return result_id

        # Another writer completed it between our read and the claim
        current = self.operations.get_by_key(idempotency_key)
        if current.status == OperationStatus.COMPLETED.value:
            return current.result_id
        raise LedgerWriteFailed(
            f"intent {idempotency_key} is {current.status}, expected transferred",
            idempotency_key=idempotency_key,
            transfer_reference=current.transfer_reference,
        )

    def transferred_intents(self, kind: OperationKind) -> list:
        """Intents whose funds moved but whose ledger write never committed"""
        return [
            intent
            for intent in self.operations.list_by_status(OperationStatus.TRANSFERRED)
            if intent.kind == kind.value
        ]

    async def refresh_balances(self, addresses: Iterable[str]) -> None:
        """Best-effort cache refresh; failures are logged and never raised"""
        for address in addresses:
            try:
                balance = await self.network.balance_of(address)
                with atomic(self.db):
                    self.wallets.update_balance(address, balance)
            except (SettlementNetworkError, SQLAlchemyError) as e:
                balance_refresh_failures_counter.inc()
                logging.warning(f"Balance refresh failed for {address}: {e}", extra={"wallet_address": address})
