"""
Mobile number verification with one-time codes.

A code is numeric, valid for a few minutes and accepts a limited number of
wrong guesses. Requests per phone number are capped per hour. Codes reach
the user through the notification sender; only their digest is stored.
"""

import hashlib
import logging
import re
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tenancy.config import Settings, settings as default_settings
from tenancy.core.exceptions import TenancyError
from tenancy.features.notifications.service import NotificationService, notification_service
from tenancy.models.base import utcnow
from tenancy.models.mobile_verification import MobileVerification, VerificationStatus
from tenancy.models.tenant import Tenant

logger = logging.getLogger(__name__)


def normalize_phone_number(phone_number: str, country_code: str) -> str:
    """
    Return the number in E.164 form.

    Ten-digit numbers without a leading + are treated as local numbers of
    the default country.

    Raises:
        TenancyError: Not a plausible phone number (validation)
    """
    raw = phone_number.strip()
    digits = re.sub(r"\D", "", raw)
    if not raw.startswith("+") and len(digits) == 10:
        digits = f"{country_code}{digits}"
    if len(digits) < 10 or len(digits) > 15 or digits.startswith("0"):
        raise TenancyError.validation("Invalid phone number", [f"'{phone_number}' is not a valid phone number"])
    return f"+{digits}"


def _digest(code: str) -> str:
    return hashlib.sha256(code.encode()).hexdigest()


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive timestamps
    return value if value.tzinfo else value.replace(tzinfo=utcnow().tzinfo)


@dataclass
class IssuedCode:
    verification: MobileVerification
    expires_in_seconds: int


class MobileVerificationService:
    """Issues and checks one-time codes for phone numbers."""

    def __init__(self, notifications: NotificationService | None = None, config: Settings | None = None):
        self.notifications = notifications or notification_service
        self.config = config or default_settings

    def _generate_code(self) -> str:
        return "".join(secrets.choice(string.digits) for _ in range(self.config.otp_length))

    async def send_code(
        self,
        db: AsyncSession,
        phone_number: str,
        tenant_id: str | None = None,
        user_id: str | None = None,
    ) -> IssuedCode:
        """
        Issue a new code for a phone number and send it.

        Any code still pending for the number is expired first.

        Raises:
            TenancyError: Invalid number or too many requests in the last hour
                (validation), unknown tenant (not_found)
        """
        phone = normalize_phone_number(phone_number, self.config.default_phone_country_code)
        if tenant_id is not None and await db.get(Tenant, tenant_id) is None:
            raise TenancyError.not_found(f"Tenant '{tenant_id}' not found")
        now = utcnow()

        recent = await db.scalar(
            select(func.count())
            .select_from(MobileVerification)
            .where(
                MobileVerification.phone_number == phone,
                MobileVerification.created_at >= now - timedelta(hours=1),
            )
        )
        if recent >= self.config.otp_max_requests_per_hour:
            raise TenancyError.validation("Too many verification code requests. Please try again later.")

        await db.execute(
            update(MobileVerification)
            .where(
                MobileVerification.phone_number == phone,
                MobileVerification.status == VerificationStatus.PENDING.value,
            )
            .values(status=VerificationStatus.EXPIRED.value)
        )

        code = self._generate_code()
        verification = MobileVerification(
            phone_number=phone,
            code_digest=_digest(code),
            tenant_id=tenant_id,
            user_id=user_id,
            status=VerificationStatus.PENDING,
            attempts=0,
            created_at=now,
            expires_at=now + timedelta(minutes=self.config.otp_expiry_minutes),
        )
        db.add(verification)
        await db.commit()
        logger.info(f"Verification code issued for {phone} (tenant {tenant_id})")

        # Delivery failures are recorded on the notification row
        await self.notifications.send_mobile_verification(db, phone, code, tenant_id=tenant_id)

        return IssuedCode(
            verification=verification,
            expires_in_seconds=self.config.otp_expiry_minutes * 60,
        )

    async def verify_code(self, db: AsyncSession, phone_number: str, code: str) -> MobileVerification:
        """
        Check a code against the pending verification for the number.

        Every outcome that changes the row is committed before raising.

        Raises:
            TenancyError: No pending code, expired code, too many attempts or
                wrong code (validation)
        """
        phone = normalize_phone_number(phone_number, self.config.default_phone_country_code)
        verification = await db.scalar(
            select(MobileVerification)
            .where(
                MobileVerification.phone_number == phone,
                MobileVerification.status == VerificationStatus.PENDING.value,
            )
            .with_for_update()
        )
        if verification is None:
            raise TenancyError.validation("No active verification code for this phone number")

        now = utcnow()
        if _aware(verification.expires_at) <= now:
            verification.status = VerificationStatus.EXPIRED
            await db.commit()
            raise TenancyError.validation("Verification code has expired. Please request a new one.")

        if verification.attempts >= self.config.otp_max_attempts:
            verification.status = VerificationStatus.FAILED
            await db.commit()
            raise TenancyError.validation("Maximum verification attempts exceeded")

        verification.attempts += 1
        if not secrets.compare_digest(_digest(code), verification.code_digest):
            await db.commit()
            logger.warning(f"Wrong verification code for {phone} (attempt {verification.attempts})")
            raise TenancyError.validation("Invalid verification code")

        verification.status = VerificationStatus.VERIFIED
        verification.verified_at = now
        await db.commit()
        logger.info(f"Phone number {phone} verified")
        return verification


# Global instance
mobile_verification_service = MobileVerificationService()
