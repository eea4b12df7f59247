"""Integration tests for payable calculation and settlement"""

import pytest
from sqlalchemy.exc import OperationalError
from lending_gateway.domain.exceptions import (
    InvalidStateTransition,
    LedgerWriteFailed,
    NotFound,
    TransferFailed,
    Unauthorized,
)
from lending_gateway.domain.filters import ApplicationFilter, LoanFilter, OfferFilter, TransactionFilter
from lending_gateway.domain.models import (
    ApplicationStatus,
    LoanStatus,
    OfferStatus,
    OperationKind,
    OperationStatus,
    Principal,
    Role,
    TransactionType,
)
from lending_gateway.infrastructure.database.repositories import PendingOperationRepository


@pytest.fixture
async def loan(service, lender, accepted_offer):
    return await service.disburse(lender, accepted_offer.offer_id, idempotency_key="disb-fixture")


def failing_writer(writer, failures: int):
    state = {"remaining": failures}

    def write(intent):
        if state["remaining"] > 0:
            state["remaining"] -= 1
            raise OperationalError("UPDATE loans", {}, Exception("deadlock detected"))
        return writer(intent)

    return write


async def test_payable_visible_to_both_parties_and_admin(service, loan, borrower, lender, admin, clock):
    clock.advance(days=365)

    for principal in (borrower, lender, admin):
        payable = service.calculate_payable(principal, loan.loan_id)
        assert payable.interest == 120.0
        assert payable.total == 1120.0


async def test_payable_hidden_from_strangers(service, loan, other_lender):
    with pytest.raises(Unauthorized):
        service.calculate_payable(other_lender, loan.loan_id)


async def test_payable_unknown_loan(service, admin):
    with pytest.raises(NotFound):
        service.calculate_payable(admin, "missing")


async def test_payable_includes_penalty_after_due_date(service, loan, borrower, clock):
    """12-month term: a year and 40 days in, one full month overdue"""
    clock.advance(days=365 + 40)
    payable = service.calculate_payable(borrower, loan.loan_id)

    assert payable.interest == 133.15
    assert payable.penalty == 1.0
    assert payable.total == round(payable.principal + payable.interest + payable.penalty, 2)


async def test_settle_closes_loan_offer_and_application(service, network, loan, borrower, clock, wallets):
    clock.advance(days=365)

    settled = await service.settle(borrower, loan.loan_id, idempotency_key="settle-1")

    assert settled.status == LoanStatus.CLOSED
    assert settled.remaining_principle == 0.0
    assert settled.settled_amount == 1120.0
    assert settled.accrued_interest == 120.0
    assert settled.settlement_date == clock.now
    assert settled.settlement_transaction_id is not None

    transaction = service.get_transactions(TransactionFilter(transaction_id=settled.settlement_transaction_id))[0]
    assert transaction.type == TransactionType.SETTLEMENT
    assert transaction.amount == 1120.0
    assert transaction.sender_wallet_id == wallets["borrower_1"]
    assert transaction.receiver_wallet_id == wallets["lender_1"]

    assert service.get_offers(OfferFilter(offer_id=loan.offer_id))[0].status == OfferStatus.CLOSED
    assert service.get_applications(ApplicationFilter(application_id=loan.application_id))[0].status == (
        ApplicationStatus.CLOSED
    )
    assert network.balances[wallets["lender_1"]] == 9_000.0 + 1120.0
    assert network.balances[wallets["borrower_1"]] == 1_500.0 - 1120.0


async def test_settle_requires_borrower(service, network, loan, lender):
    with pytest.raises(Unauthorized):
        await service.settle(lender, loan.loan_id)
    assert network.transfer_calls == ["disb-fixture"]


async def test_settle_closed_loan_fails(service, network, loan, borrower):
    await service.settle(borrower, loan.loan_id, idempotency_key="settle-once")

    with pytest.raises(InvalidStateTransition):
        await service.settle(borrower, loan.loan_id, idempotency_key="settle-twice")
    assert network.transfer_calls == ["disb-fixture", "settle-once"]


async def test_settle_replay_returns_closed_loan(service, network, loan, borrower):
    first = await service.settle(borrower, loan.loan_id, idempotency_key="settle-replay")
    second = await service.settle(borrower, loan.loan_id, idempotency_key="settle-replay")

    assert second.loan_id == first.loan_id
    assert second.status == LoanStatus.CLOSED
    assert network.transfer_calls == ["disb-fixture", "settle-replay"]


async def test_insufficient_funds_leaves_loan_active(service, db, network, loan, borrower, clock, wallets):
    """The network refuses overdrafts; no balance ever goes negative"""
    network.balances[wallets["borrower_1"]] = 50.0
    clock.advance(days=30)

    with pytest.raises(TransferFailed) as exc_info:
        await service.settle(borrower, loan.loan_id)

    assert exc_info.value.rejected is True
    assert network.balances[wallets["borrower_1"]] == 50.0
    assert service.get_loans(LoanFilter(loan_id=loan.loan_id))[0].status == LoanStatus.ACTIVE
    assert service.get_transactions(TransactionFilter(type="settlement")) == []

    intent = PendingOperationRepository(db).get_by_subject(OperationKind.SETTLEMENT, loan.loan_id)
    assert intent.status == OperationStatus.FAILED.value

    network.balances[wallets["borrower_1"]] = 2_000.0
    settled = await service.settle(borrower, loan.loan_id)
    assert settled.status == LoanStatus.CLOSED
    assert all(balance >= 0 for balance in network.balances.values())


async def test_ledger_failure_retry_uses_snapshot_and_no_second_transfer(service, db, network, loan, borrower, clock):
    clock.advance(days=365)
    real_writer = service.settlement._close_loan
    service.settlement._close_loan = failing_writer(real_writer, failures=10)

    with pytest.raises(LedgerWriteFailed) as exc_info:
        await service.settle(borrower, loan.loan_id, idempotency_key="settle-stuck")

    assert service.get_loans(LoanFilter(loan_id=loan.loan_id))[0].status == LoanStatus.ACTIVE
    intent = PendingOperationRepository(db).get_by_key("settle-stuck")
    assert intent.status == OperationStatus.TRANSFERRED.value
    assert intent.amount == 1120.0

    # More interest would accrue by now, but the transferred amount is what gets recorded
    clock.advance(days=60)
    service.settlement._close_loan = real_writer
    settled = await service.settle(borrower, loan.loan_id, idempotency_key=exc_info.value.idempotency_key)

    assert settled.status == LoanStatus.CLOSED
    assert settled.settled_amount == 1120.0
    assert settled.accrued_interest == 120.0
    assert network.transfer_calls == ["disb-fixture", "settle-stuck"]
    assert len(service.get_transactions(TransactionFilter(type="settlement"))) == 1


async def test_resume_pending_finishes_transferred_settlement(service, network, loan, borrower):
    real_writer = service.settlement._close_loan
    service.settlement._close_loan = failing_writer(real_writer, failures=10)
    with pytest.raises(LedgerWriteFailed):
        await service.settle(borrower, loan.loan_id)

    service.settlement._close_loan = real_writer
    resumed = await service.resume_pending()

    assert resumed == {"disbursements": [], "settlements": [loan.loan_id], "transfers": []}
    assert service.get_loans(LoanFilter(loan_id=loan.loan_id))[0].status == LoanStatus.CLOSED
    assert len(network.transfer_calls) == 2


async def test_get_transactions_by_wallet_newest_first(service, loan, borrower, wallets):
    await service.settle(borrower, loan.loan_id)

    history = service.get_transactions(TransactionFilter(wallet_address=wallets["borrower_1"]))
    assert {t.type for t in history} == {TransactionType.DISBURSEMENT, TransactionType.SETTLEMENT}
    assert history[0].created_at >= history[1].created_at

    page = service.get_transactions(TransactionFilter(wallet_address=wallets["borrower_1"], page=2, limit=1))
    assert len(page) == 1
    assert page[0].transaction_id == history[1].transaction_id


async def test_stranger_cannot_settle(service, loan):
    stranger = Principal(id="lender_2", role=Role.BORROWER)

    with pytest.raises(Unauthorized):
        await service.settle(stranger, loan.loan_id)


async def test_resumed_settlement_dated_at_transfer(service, loan, borrower, clock):
    clock.advance(days=365)
    transferred_at = clock.now
    real_writer = service.settlement._close_loan
    service.settlement._close_loan = failing_writer(real_writer, failures=10)
    with pytest.raises(LedgerWriteFailed):
        await service.settle(borrower, loan.loan_id)

    # Sweep runs days later; the loan still closes on the day the money moved
    clock.advance(days=3)
    service.settlement._close_loan = real_writer
    await service.resume_pending()

    settled = service.get_loans(LoanFilter(loan_id=loan.loan_id))[0]
    assert settled.status == LoanStatus.CLOSED
    assert settled.settlement_date == transferred_at
    assert settled.settled_amount == 1120.0
