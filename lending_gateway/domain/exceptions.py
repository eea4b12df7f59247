"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class ValidationError(DomainException):
    """Caller supplied invalid input (non-positive terms, missing filter)"""

    pass


class NotEligible(DomainException):
    """Party has not passed KYC verification"""

    def __init__(self, party_id: str):
        super().__init__(f"user {party_id} is not KYC verified")
        self.party_id = party_id


class NotFound(DomainException):
    """Referenced application, offer, loan or wallet does not exist"""

    def __init__(self, resource: str, identifier: str):
        super().__init__(f"{resource} {identifier} not found")
        self.resource = resource
        self.identifier = identifier


class InvalidStateTransition(DomainException):
    """Requested lifecycle transition is not allowed from the current state"""

    pass


class Unauthorized(DomainException):
    """Caller is not the borrower, lender or admin of the resource"""

    pass


class SettlementNetworkError(DomainException):
    """Settlement Network returned an error or is unavailable"""

    pass


class TransferFailed(SettlementNetworkError):
    """
    Settlement Network did not complete the transfer.

    rejected=True means the network refused it outright; otherwise the
    outcome is unknown (timeout, connection error) and a retry must reuse
    the same idempotency key.
    """

    def __init__(self, message: str, rejected: bool = False):
        super().__init__(message)
        self.rejected = rejected


class LedgerWriteFailed(DomainException):
    """Funds moved but the ledger write did not commit; retry persistence only"""

    def __init__(self, message: str, idempotency_key: str, transfer_reference: str | None = None):
        super().__init__(message)
        self.idempotency_key = idempotency_key
        self.transfer_reference = transfer_reference
