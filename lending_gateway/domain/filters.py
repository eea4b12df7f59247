"""
Typed query filters for the registries.

Each filter resolves to a dict of column criteria. A single-key lookup
(e.g. an application id) always wins over the compound filters; the
compound fields are ANDed together.
"""

from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any, Dict, Optional, Type
from enum import Enum

from lending_gateway.domain.exceptions import ValidationError
from lending_gateway.domain.models import (
    ApplicationStatus,
    LoanStatus,
    OfferStatus,
    TransactionType,
)

DEFAULT_PAGE_LIMIT = 100


def _parse_status(value: Optional[str], enum_cls: Type[Enum]) -> Optional[Enum]:
    if value is None or value == "":
        return None
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"invalid status {value!r}, expected one of: {allowed}")


def _present(value: Any) -> bool:
    return value is not None and value != ""


def _column_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


class _Filter:
    """Shared precedence logic: first populated lookup key wins"""

    lookup_keys: tuple = ()
    compound_keys: tuple = ()

    def criteria(self) -> Dict[str, Any]:
        for key in self.lookup_keys:
            value = getattr(self, key)
            if _present(value):
                return {key: value}

        criteria = {
            key: _column_value(getattr(self, key))
            for key in self.compound_keys
            if _present(getattr(self, key))
        }
        if not criteria:
            names = ", ".join(f.name for f in fields(self))
            raise ValidationError(f"at least one filter is required ({names})")
        return criteria


@dataclass
class ApplicationFilter(_Filter):
    application_id: Optional[str] = None
    borrower_id: Optional[str] = None
    status: Optional[str] = None

    lookup_keys = ("application_id",)
    compound_keys = ("borrower_id", "status")

    def __post_init__(self):
        self.status = _parse_status(self.status, ApplicationStatus)


@dataclass
class OfferFilter(_Filter):
    offer_id: Optional[str] = None
    application_id: Optional[str] = None
    lender_id: Optional[str] = None
    status: Optional[str] = None

    lookup_keys = ("offer_id", "application_id")
    compound_keys = ("lender_id", "status")

    def __post_init__(self):
        self.status = _parse_status(self.status, OfferStatus)


@dataclass
class LoanFilter(_Filter):
    loan_id: Optional[str] = None
    offer_id: Optional[str] = None
    application_id: Optional[str] = None
    borrower_id: Optional[str] = None
    lender_id: Optional[str] = None
    status: Optional[str] = None

    lookup_keys = ("loan_id", "offer_id", "application_id")
    compound_keys = ("borrower_id", "lender_id", "status")

    def __post_init__(self):
        self.status = _parse_status(self.status, LoanStatus)


@dataclass
class TransactionFilter:
    """Transaction history query; wallet_address matches either side"""

    transaction_id: Optional[str] = None
    wallet_address: Optional[str] = None
    type: Optional[str] = None
    since: Optional[datetime] = None
    until: Optional[datetime] = None
    page: int = 1
    limit: int = DEFAULT_PAGE_LIMIT

    def __post_init__(self):
        self.type = _parse_status(self.type, TransactionType)
        if self.page < 1:
            raise ValidationError("page must be >= 1")
        if self.limit < 1 or self.limit > DEFAULT_PAGE_LIMIT:
            raise ValidationError(f"limit must be between 1 and {DEFAULT_PAGE_LIMIT}")
        if self.since and self.until and self.since > self.until:
            raise ValidationError("since must not be after until")

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit
