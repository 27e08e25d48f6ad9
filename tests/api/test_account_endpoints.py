"""
API tests for mobile number verification.
"""

import re

import pytest

SEND_URL = "/api/v1/account/resend-otp"
VERIFY_URL = "/api/v1/account/verify-mobile"


@pytest.mark.api
class TestMobileVerificationEndpoints:

    async def test_send_and_verify(self, client, sender):
        response = await client.post(SEND_URL, json={"phone_number": "98765 43210"})

        assert response.status_code == 200
        assert response.json() == {
            "verified": False,
            "message": "Verification code sent",
            "phone_number": "+919876543210",
            "expires_in_seconds": 600,
        }
        code = re.search(r"verification code is (\d{6})", sender.messages[-1].body).group(1)

        response = await client.post(VERIFY_URL, json={"phone_number": "+91 98765 43210", "otp_code": code})

        assert response.status_code == 200
        data = response.json()
        assert data["verified"] is True
        assert data["message"] == "Mobile number verified successfully"

    async def test_code_not_in_response(self, client, sender):
        response = await client.post(SEND_URL, json={"phone_number": "+919876543210"})

        code = re.search(r"verification code is (\d{6})", sender.messages[-1].body).group(1)
        assert code not in response.text

    async def test_wrong_code(self, client, sender):
        await client.post(SEND_URL, json={"phone_number": "+919876543210"})
        code = re.search(r"verification code is (\d{6})", sender.messages[-1].body).group(1)
        wrong = "000000" if code != "000000" else "111111"

        response = await client.post(VERIFY_URL, json={"phone_number": "+919876543210", "otp_code": wrong})

        assert response.status_code == 422
        assert response.json()["message"] == "Invalid verification code"

    async def test_invalid_phone_number(self, client):
        response = await client.post(SEND_URL, json={"phone_number": "call me"})

        assert response.status_code == 422
        assert response.json()["kind"] == "validation"

    async def test_malformed_code_rejected_by_schema(self, client):
        response = await client.post(VERIFY_URL, json={"phone_number": "+919876543210", "otp_code": "abc"})

        assert response.status_code == 422
        assert response.json()["message"] == "Request validation failed"

    async def test_unknown_tenant(self, client):
        response = await client.post(SEND_URL, json={"phone_number": "+919876543210", "tenant_id": "nobody"})

        assert response.status_code == 404
        assert response.json()["kind"] == "not_found"
