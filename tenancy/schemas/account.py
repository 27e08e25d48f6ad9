"""
Pydantic schemas for mobile number verification.
"""

from pydantic import Field

from tenancy.schemas.common import BaseSchema


class SendCodeRequest(BaseSchema):
    phone_number: str = Field(..., min_length=7, max_length=30)
    tenant_id: str | None = None
    user_id: str | None = None


class VerifyCodeRequest(BaseSchema):
    phone_number: str = Field(..., min_length=7, max_length=30)
    otp_code: str = Field(..., pattern=r"^\d{4,10}$")


class MobileVerificationResponse(BaseSchema):
    verified: bool
    message: str
    phone_number: str
    expires_in_seconds: int | None = None
