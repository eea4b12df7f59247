"""Admin KYC review"""

import logging
from sqlalchemy.orm import Session

from lending_gateway.domain.exceptions import Unauthorized, ValidationError
from lending_gateway.domain.models import KycStatus, KycVerification, Principal
from lending_gateway.infrastructure.database.repositories import KycRepository
from lending_gateway.infrastructure.database.session import atomic


class KycRegistry:
    """Records verification decisions; only Verified parties pass the eligibility gate"""

    def __init__(self, db: Session):
        self.db = db
        self.kyc = KycRepository(db)

    def set_status(self, principal: Principal, user_id: str, verification_status: str) -> KycVerification:
        if not principal.is_admin:
            raise Unauthorized("only admins may change KYC status")
        try:
            status = KycStatus(verification_status)
        except ValueError:
            allowed = ", ".join(s.value for s in KycStatus)
            raise ValidationError(f"verification_status must be one of {allowed}")

        with atomic(self.db):
            verification = self.kyc.set_status(user_id, status, verified_by=principal.id)

        logging.info(
            "KYC status updated",
            extra={"user_id": user_id, "verification_status": status.value, "verified_by": principal.id},
        )
        return verification
