"""
Unit tests for notification rendering.
"""

import pytest
from jinja2 import UndefinedError

from tenancy.features.notifications.service import public_variables, render

TENANT = {
    "tenant_name": "Acme Organization",
    "admin_email": "grace@acme.test",
    "admin_first_name": "Grace",
    "login_url": "http://localhost:8000/login",
    "base_url": "http://localhost:8000",
}


@pytest.mark.unit
class TestRender:

    def test_signup_started(self):
        body = render("signup_started", TENANT)

        assert body.startswith("Hello Grace,")
        assert "Acme Organization" in body

    def test_signup_completed_with_temporary_password(self):
        body = render("signup_completed", {**TENANT, "temporary_password": "Xy7!abcdEFGH1234"})

        assert "Temporary password: Xy7!abcdEFGH1234" in body
        assert "Forgot password" not in body

    def test_signup_completed_without_password(self):
        body = render("signup_completed", TENANT)

        assert "Temporary password" not in body
        assert "Forgot password" in body
        assert "grace@acme.test" in body

    def test_trial_ended(self):
        body = render("trial_ended", {**TENANT, "plan_name": "Pro"})
        assert "your Pro subscription" in body

    def test_user_invited(self):
        body = render(
            "user_invited",
            {**TENANT, "first_name": "Ada", "email": "ada@acme.test", "temporary_password": "Xy7!abcdEFGH1234"},
        )

        assert body.startswith("Hello Ada,")
        assert "Temporary password: Xy7!abcdEFGH1234" in body

    def test_mobile_verification_code(self):
        body = render(
            "mobile_verification",
            {"app_name": "Tenancy", "expiry_minutes": 10, "verification_code": "042917"},
        )

        assert "verification code is 042917" in body
        assert "10 minutes" in body

    def test_mobile_verification_without_code(self):
        body = render("mobile_verification", {"app_name": "Tenancy", "expiry_minutes": 10})

        assert "Request a new code" in body

    def test_missing_variable_fails(self):
        with pytest.raises(UndefinedError):
            render("trial_ended", TENANT)


@pytest.mark.unit
class TestPublicVariables:

    def test_secret_keys_dropped(self):
        variables = {
            "tenant_name": "Acme",
            "temporary_password": "hunter2",
            "client_secret": "abc",
            "Access_Token": "xyz",
            "verification_code": "123456",
        }
        assert public_variables(variables) == {"tenant_name": "Acme"}

    def test_input_untouched(self):
        variables = {"temporary_password": "hunter2"}
        public_variables(variables)
        assert variables == {"temporary_password": "hunter2"}
