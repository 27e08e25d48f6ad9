"""
Unit tests for signup request rules.
"""

import pytest

from tenancy.config import settings
from tenancy.core.exceptions import ErrorKind, TenancyError
from tenancy.features.account.verification import normalize_phone_number
from tenancy.features.tenants.validation import Violation, check_request, raise_for_violations
from tests.factories import signup_request


def _messages(violations: list[Violation]) -> list[str]:
    return [violation.message for violation in violations]


@pytest.mark.unit
class TestCheckRequest:

    def test_valid_request_has_no_violations(self):
        assert check_request(signup_request(), settings) == []

    def test_terms_must_be_accepted(self):
        violations = check_request(signup_request(accept_terms=False), settings)
        assert "Terms and conditions must be accepted" in _messages(violations)

    def test_reserved_company_name(self):
        violations = check_request(signup_request(company_name="Admin"), settings)
        assert "Company name 'Admin' is reserved" in _messages(violations)

    def test_email_domain_not_allowed(self):
        violations = check_request(signup_request(admin_email="ceo@gmail.com"), settings)
        assert "Only corporate email addresses from approved domains are allowed" in _messages(violations)

    def test_any_domain_when_allow_list_empty(self):
        config = settings.model_copy(update={"signup_allowed_email_domains": []})
        assert check_request(signup_request(admin_email="ceo@gmail.com"), config) == []

    def test_blocked_display_name(self):
        violations = check_request(signup_request(display_name="My BadWord1 Team"), settings)
        assert "Display name contains inappropriate content" in _messages(violations)

    def test_forbidden_role(self):
        violations = check_request(signup_request(default_roles=["user", "Super-Admin"]), settings)
        assert "Cannot create tenant with 'super-admin' role" in _messages(violations)

    def test_bad_mobile_number(self):
        violations = check_request(signup_request(mobile_number="call me"), settings)
        assert "Invalid mobile number" in _messages(violations)

    def test_every_violation_is_reported(self):
        request = signup_request(
            accept_terms=False,
            admin_email="ceo@gmail.com",
            display_name="badword2 inc",
        )
        assert len(check_request(request, settings)) == 3


@pytest.mark.unit
class TestRaiseForViolations:

    def test_nothing_to_raise(self):
        raise_for_violations([])

    def test_validation_when_any_rule_failed(self):
        with pytest.raises(TenancyError) as exc_info:
            raise_for_violations([Violation("taken", conflict=True), Violation("bad input")])

        assert exc_info.value.kind == ErrorKind.VALIDATION
        assert exc_info.value.violations == ["taken", "bad input"]

    def test_conflict_when_only_conflicts(self):
        with pytest.raises(TenancyError) as exc_info:
            raise_for_violations([Violation("taken", conflict=True)])

        assert exc_info.value.kind == ErrorKind.CONFLICT
        assert exc_info.value.status_code == 409


@pytest.mark.unit
class TestNormalizePhoneNumber:

    @pytest.mark.parametrize(
        "raw",
        ["+91 98765 43210", "98765 43210", "+91-98765-43210", "(98765) 43210"],
    )
    def test_normalized_to_e164(self, raw):
        assert normalize_phone_number(raw, "91") == "+919876543210"

    def test_international_number_kept(self):
        assert normalize_phone_number("+1 415 555 0100", "91") == "+14155550100"

    @pytest.mark.parametrize("raw", ["call me", "12345", "+1234567890123456", "+0987654321"])
    def test_invalid_numbers(self, raw):
        with pytest.raises(TenancyError) as exc_info:
            normalize_phone_number(raw, "91")

        assert exc_info.value.kind == ErrorKind.VALIDATION
