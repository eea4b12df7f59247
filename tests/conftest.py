"""Pytest fixtures for testing"""

import asyncio
import pytest
from datetime import datetime, timedelta, timezone
from typing import Dict, Generator, List, Optional
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from lending_gateway.api.dependencies import get_settlement_network
from lending_gateway.api.main import create_app
from lending_gateway.domain.exceptions import TransferFailed
from lending_gateway.domain.models import FeeParams, KycStatus, Principal, Role, TransferReceipt
from lending_gateway.infrastructure.database.models import Base
from lending_gateway.infrastructure.database.repositories import KycRepository, WalletRepository
from lending_gateway.infrastructure.database.session import get_db
from lending_gateway.services.fund_movement import FundMovement
from lending_gateway.services.lending import LendingService

BORROWER_ID = "borrower_1"
LENDER_ID = "lender_1"
OTHER_LENDER_ID = "lender_2"
UNVERIFIED_ID = "user_unverified"

WALLETS = {
    BORROWER_ID: "0xb0770e7000000000000000000000000000000001",
    LENDER_ID: "0x1e7de70000000000000000000000000000000001",
    OTHER_LENDER_ID: "0x1e7de70000000000000000000000000000000002",
    UNVERIFIED_ID: "0x0000000000000000000000000000000000000bad",
}

START = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeSettlementNetwork:
    """
    In-memory Settlement Network.

    Honors idempotency keys the way the real network does, so a retried
    transfer with the same key never moves funds twice.
    """

    def __init__(self):
        self.balances: Dict[str, float] = {}
        self.receipts: Dict[str, TransferReceipt] = {}
        self.transfer_calls: List[str] = []
        self.failures: List[Exception] = []  # raised by the next transfer calls, in order
        self.lose_next_response = False  # move funds, then report an unknown outcome
        self.delay: float = 0.0
        self.balance_error: Optional[Exception] = None

    async def transfer(
        self,
        from_address: str,
        to_address: str,
        amount: float,
        fee_params: FeeParams,
        idempotency_key: str,
    ) -> TransferReceipt:
        self.transfer_calls.append(idempotency_key)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failures:
            raise self.failures.pop(0)

        if idempotency_key not in self.receipts:
            if self.balances.get(from_address, 0.0) < amount:
                raise TransferFailed("insufficient funds", rejected=True)
            self.balances[from_address] -= amount
            self.balances[to_address] = self.balances.get(to_address, 0.0) + amount
            self.receipts[idempotency_key] = TransferReceipt(
                reference=f"0x{len(self.receipts) + 1:064x}",
                fee=0.0,
            )

        if self.lose_next_response:
            self.lose_next_response = False
            raise TransferFailed("connection reset while waiting for confirmation")
        return self.receipts[idempotency_key]

    async def balance_of(self, address: str) -> float:
        if self.balance_error is not None:
            raise self.balance_error
        return self.balances.get(address, 0.0)


class FrozenClock:
    """Controllable clock injected into the coordinators"""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def session_factory(tmp_path):
    """File-backed SQLite so separate sessions (and threads) share one database"""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    try:
        yield factory
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def db(session_factory) -> Generator[Session, None, None]:
    """Create test database and session with verified parties and wallets"""
    db = session_factory()
    kyc = KycRepository(db)
    wallets = WalletRepository(db)
    for user_id, address in WALLETS.items():
        kyc.set_status(user_id, KycStatus.PENDING if user_id == UNVERIFIED_ID else KycStatus.VERIFIED)
        wallets.register(user_id, address)
    db.commit()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def network() -> FakeSettlementNetwork:
    network = FakeSettlementNetwork()
    network.balances[WALLETS[LENDER_ID]] = 10_000.0
    network.balances[WALLETS[OTHER_LENDER_ID]] = 10_000.0
    network.balances[WALLETS[BORROWER_ID]] = 500.0
    return network


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def funds(db: Session, network: FakeSettlementNetwork, clock: FrozenClock) -> FundMovement:
    return FundMovement(db, network, transfer_timeout=1.0, max_retries=3, backoff_base=0, clock=clock)


@pytest.fixture
def service(db: Session, network: FakeSettlementNetwork, clock: FrozenClock, funds: FundMovement) -> LendingService:
    return LendingService(db, network, clock=clock, funds=funds)


@pytest.fixture
def borrower() -> Principal:
    return Principal(id=BORROWER_ID, role=Role.BORROWER)


@pytest.fixture
def lender() -> Principal:
    return Principal(id=LENDER_ID, role=Role.LENDER)


@pytest.fixture
def other_lender() -> Principal:
    return Principal(id=OTHER_LENDER_ID, role=Role.LENDER)


@pytest.fixture
def admin() -> Principal:
    return Principal(id="admin_1", role=Role.ADMIN)


@pytest.fixture
def application(service: LendingService, borrower: Principal):
    return service.create_application(borrower, amount=1000.0, interest_rate=12.0, term_months=12)


@pytest.fixture
def offer(service: LendingService, lender: Principal, application):
    return service.create_offer(lender, 1000.0, 12.0, 12, application.application_id)


@pytest.fixture
def accepted_offer(service: LendingService, borrower: Principal, offer):
    return service.accept_offer(borrower, offer.offer_id)


@pytest.fixture
def client(db: Session, network: FakeSettlementNetwork) -> TestClient:
    """Create FastAPI test client with test database and in-memory network"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    async def override_get_settlement_network():
        yield network

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settlement_network] = override_get_settlement_network
    return TestClient(app)


@pytest.fixture
def wallets() -> Dict[str, str]:
    return dict(WALLETS)


@pytest.fixture
def headers():
    """Build the identity headers set by the upstream auth layer"""

    def build(user_id: str, role: Role = Role.BORROWER) -> Dict[str, str]:
        return {"X-User-ID": user_id, "X-User-Role": role.value}

    return build
