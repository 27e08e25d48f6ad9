"""
Mobile number verification endpoints.
"""

from typing import Annotated

from fastapi import APIRouter, Depends

from tenancy.core.rate_limit import rate_limit
from tenancy.features.account.verification import MobileVerificationService
from tenancy.features.auth.dependencies import DbSession
from tenancy.features.notifications.router import Notifications
from tenancy.schemas.account import MobileVerificationResponse, SendCodeRequest, VerifyCodeRequest
from tenancy.schemas.common import ErrorResponse

router = APIRouter(
    prefix="/account",
    tags=["Account"],
    dependencies=[Depends(rate_limit("otp"))],
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)


def get_verification_service(notifications: Notifications) -> MobileVerificationService:
    return MobileVerificationService(notifications=notifications)


Verification = Annotated[MobileVerificationService, Depends(get_verification_service)]


@router.post("/resend-otp", response_model=MobileVerificationResponse)
async def resend_code(
    request: SendCodeRequest,
    db: DbSession,
    service: Verification,
) -> MobileVerificationResponse:
    """Send a fresh verification code; any earlier code stops working."""
    issued = await service.send_code(db, request.phone_number, request.tenant_id, request.user_id)
    return MobileVerificationResponse(
        verified=False,
        message="Verification code sent",
        phone_number=issued.verification.phone_number,
        expires_in_seconds=issued.expires_in_seconds,
    )


@router.post("/verify-mobile", response_model=MobileVerificationResponse)
async def verify_mobile(
    request: VerifyCodeRequest,
    db: DbSession,
    service: Verification,
) -> MobileVerificationResponse:
    verification = await service.verify_code(db, request.phone_number, request.otp_code)
    return MobileVerificationResponse(
        verified=True,
        message="Mobile number verified successfully",
        phone_number=verification.phone_number,
    )
