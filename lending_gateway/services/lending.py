"""Lending service facade - the operations exposed to the HTTP layer"""

from datetime import datetime
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from lending_gateway.domain.eligibility import EligibilityGate
from lending_gateway.domain.filters import (
    ApplicationFilter,
    LoanFilter,
    OfferFilter,
    TransactionFilter,
)
from lending_gateway.domain.models import (
    KycVerification,
    LedgerTransaction,
    Loan,
    LoanApplication,
    LoanOffer,
    PayableBreakdown,
    Principal,
    Wallet,
)
from lending_gateway.domain.ports import SettlementNetwork
from lending_gateway.infrastructure.database.repositories import (
    KycRepository,
    LoanRepository,
    TransactionRepository,
    WalletRepository,
)
from lending_gateway.services.applications import ApplicationRegistry
from lending_gateway.services.disbursement import DisbursementCoordinator
from lending_gateway.services.fund_movement import FundMovement
from lending_gateway.services.kyc import KycRegistry
from lending_gateway.services.offers import OfferRegistry
from lending_gateway.services.settlement import SettlementCoordinator
from lending_gateway.services.wallets import WalletService
from lending_gateway.utils.date_utils import utc_now


class LendingService:
    """Wires registries and coordinators over one database session"""

    def __init__(
        self,
        db: Session,
        network: SettlementNetwork,
        clock: Callable[[], datetime] = utc_now,
        funds: Optional[FundMovement] = None,
    ):
        self.db = db
        eligibility = EligibilityGate(KycRepository(db))
        wallets = WalletRepository(db)
        funds = funds or FundMovement(db, network, clock=clock)

        self.applications = ApplicationRegistry(db, eligibility)
        self.offers = OfferRegistry(db, eligibility)
        self.disbursement = DisbursementCoordinator(db, funds, wallets)
        self.settlement = SettlementCoordinator(db, funds, wallets, clock=clock)
        self.wallets = WalletService(db, funds, wallets, network)
        self.kyc = KycRegistry(db)
        self.loans = LoanRepository(db)
        self.transactions = TransactionRepository(db)

    def create_application(
        self, principal: Principal, amount: float, interest_rate: float, term_months: int
    ) -> LoanApplication:
        return self.applications.create_application(principal, amount, interest_rate, term_months)

    def get_applications(self, query: ApplicationFilter) -> List[LoanApplication]:
        return self.applications.get_applications(query)

    def create_offer(
        self,
        principal: Principal,
        amount: float,
        interest_rate: float,
        term_months: int,
        application_id: str,
    ) -> LoanOffer:
        return self.offers.create_offer(principal, amount, interest_rate, term_months, application_id)

    def get_offers(self, query: OfferFilter) -> List[LoanOffer]:
        return self.offers.get_offers(query)

    def accept_offer(self, principal: Principal, offer_id: str) -> LoanOffer:
        return self.offers.accept_offer(principal, offer_id)

    async def disburse(self, principal: Principal, offer_id: str, idempotency_key: Optional[str] = None) -> Loan:
        return await self.disbursement.disburse(principal, offer_id, idempotency_key)

    def get_loans(self, query: LoanFilter) -> List[Loan]:
        return self.loans.find(query)

    def calculate_payable(self, principal: Principal, loan_id: str) -> PayableBreakdown:
        return self.settlement.calculate_payable(principal, loan_id)

    async def settle(self, principal: Principal, loan_id: str, idempotency_key: Optional[str] = None) -> Loan:
        return await self.settlement.settle(principal, loan_id, idempotency_key)

    def get_transactions(self, query: TransactionFilter) -> List[LedgerTransaction]:
        return self.transactions.find(query)

    async def transfer(
        self,
        principal: Principal,
        recipient_id: str,
        amount: float,
        idempotency_key: Optional[str] = None,
    ) -> LedgerTransaction:
        return await self.wallets.transfer(principal, recipient_id, amount, idempotency_key)

    async def get_balance(self, principal: Principal, wallet_address: Optional[str] = None) -> Wallet:
        return await self.wallets.get_balance(principal, wallet_address)

    def register_wallet(self, principal: Principal, user_id: str, wallet_address: str) -> Wallet:
        return self.wallets.register_wallet(principal, user_id, wallet_address)

    def set_kyc_status(self, principal: Principal, user_id: str, verification_status: str) -> KycVerification:
        return self.kyc.set_status(principal, user_id, verification_status)

    async def resume_pending(self) -> Dict[str, List[str]]:
        """Finish ledger writes for every operation whose transfer already succeeded"""
        return {
            "disbursements": await self.disbursement.resume_pending(),
            "settlements": await self.settlement.resume_pending(),
            "transfers": await self.wallets.resume_pending(),
        }
