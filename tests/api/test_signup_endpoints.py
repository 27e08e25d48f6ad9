"""
API tests for tenant signup and tenant lookup.
"""

import pytest

from tenancy.models import TenantStatus
from tests.factories import signup_request

SIGNUP_URL = "/api/v1/tenants/signup"


def _payload(**overrides) -> dict:
    payload = {
        "company_name": "Acme Corp",
        "display_name": "Acme Organization",
        "admin_email": "grace@test.com",
        "admin_first_name": "Grace",
        "admin_last_name": "Hopper",
        "accept_terms": True,
        "mobile_number": "+91 98765 43210",
    }
    payload.update(overrides)
    return payload


@pytest.mark.api
class TestSignupEndpoint:

    async def test_signup_success(self, client, sender):
        response = await client.post(SIGNUP_URL, json=_payload())

        assert response.status_code == 201
        data = response.json()
        assert data["tenant_id"] == "acme-corp"
        assert data["status"] == TenantStatus.ACTIVE.value
        assert data["admin_email"] == "grace@test.com"
        assert data["api_client_id"] == "tenant-api"
        assert "secret" not in response.text
        assert "password" not in data
        assert len(sender.messages) == 3
        assert sender.messages[-1].recipient == "+919876543210"

    async def test_request_id_header(self, client):
        response = await client.post(SIGNUP_URL, json=_payload(), headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"

    async def test_malformed_request_id_replaced(self, client):
        response = await client.post(SIGNUP_URL, json=_payload(), headers={"X-Request-ID": "not a valid id!"})

        request_id = response.headers["X-Request-ID"]
        assert request_id != "not a valid id!"
        assert len(request_id) == 32
        assert "X-Tenant-ID" not in response.headers

    async def test_schema_error_envelope(self, client):
        response = await client.post(SIGNUP_URL, json=_payload(admin_email="not-an-email", company_name="A"))

        assert response.status_code == 422
        data = response.json()
        assert data["kind"] == "validation"
        assert data["message"] == "Request validation failed"
        assert len(data["violations"]) == 2

    async def test_business_rule_violations(self, client):
        response = await client.post(
            SIGNUP_URL,
            json=_payload(accept_terms=False, admin_email="grace@gmail.com"),
        )

        assert response.status_code == 422
        assert response.json() == {
            "kind": "validation",
            "message": "Signup request is invalid",
            "violations": [
                "Terms and conditions must be accepted",
                "Only corporate email addresses from approved domains are allowed",
            ],
        }

    async def test_duplicate_email(self, client):
        await client.post(SIGNUP_URL, json=_payload())

        response = await client.post(SIGNUP_URL, json=_payload(company_name="Acme Two"))

        assert response.status_code == 409
        assert response.json()["kind"] == "conflict"

    async def test_identity_provider_failure(self, client, identity_provider):
        identity_provider.fail_on["create_realm"] = RuntimeError("realm service crashed")

        response = await client.post(SIGNUP_URL, json=_payload())

        assert response.status_code == 502
        data = response.json()
        assert data["kind"] == "provisioning_failed"
        assert "realm service crashed" in data["message"]


@pytest.mark.api
class TestGetTenant:

    async def test_own_tenant(self, client, active_tenant, tenant_headers):
        response = await client.get(
            f"/api/v1/tenants/{active_tenant.tenant_id}",
            headers=tenant_headers(active_tenant.tenant_id),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["id"] == active_tenant.tenant_id
        assert data["status"] == "ACTIVE"
        assert data["plan_code"] == "FREE"
        assert "api_client_secret" not in data
        assert response.headers["X-Tenant-ID"] == active_tenant.tenant_id

    async def test_requires_token(self, client, active_tenant):
        response = await client.get(f"/api/v1/tenants/{active_tenant.tenant_id}")

        assert response.status_code == 401

    async def test_token_from_other_realm(self, client, saga, db_session, request_context, tenant_headers):
        first = await saga.signup(db_session, signup_request(), request_context)
        second = await saga.signup(db_session, signup_request(), request_context)

        response = await client.get(
            f"/api/v1/tenants/{first.tenant_id}",
            headers=tenant_headers(second.tenant_id),
        )

        assert response.status_code == 401

    async def test_failed_tenant_cannot_authenticate(self, client, identity_provider, tenant_headers):
        identity_provider.fail_on["create_client"] = RuntimeError("client registration failed")
        await client.post(SIGNUP_URL, json=_payload())

        response = await client.get("/api/v1/tenants/acme-corp", headers=tenant_headers("acme-corp"))

        assert response.status_code == 401


def _users_url(tenant_id: str) -> str:
    return f"/api/v1/tenants/{tenant_id}/users"


def _user(email: str) -> dict:
    return {"email": email, "first_name": "Ada", "last_name": "Lovelace"}


@pytest.mark.api
class TestTenantUsers:

    async def test_create_user(self, client, active_tenant, tenant_headers, sender):
        response = await client.post(
            _users_url(active_tenant.tenant_id),
            json=_user("ada@test.com"),
            headers=tenant_headers(active_tenant.tenant_id),
        )

        assert response.status_code == 201
        data = response.json()
        assert data["email"] == "ada@test.com"
        assert data["tenant_id"] == active_tenant.tenant_id
        assert data["status"] == "ACTIVE"
        assert "password" not in response.text
        assert sender.messages[-1].recipient == "ada@test.com"

    async def test_plan_limit(self, client, active_tenant, tenant_headers):
        headers = tenant_headers(active_tenant.tenant_id)
        await client.post(_users_url(active_tenant.tenant_id), json=_user("ada@test.com"), headers=headers)

        response = await client.post(
            _users_url(active_tenant.tenant_id),
            json=_user("alan@test.com"),
            headers=headers,
        )

        assert response.status_code == 422
        data = response.json()
        assert data["message"] == "User limit reached for plan FREE (2 users)"
        assert "Upgrade to BASIC to allow 3 users" in data["violations"]

    async def test_list_users(self, client, active_tenant, tenant_headers):
        headers = tenant_headers(active_tenant.tenant_id)
        await client.post(_users_url(active_tenant.tenant_id), json=_user("ada@test.com"), headers=headers)

        response = await client.get(_users_url(active_tenant.tenant_id), headers=headers)

        assert response.status_code == 200
        assert [user["email"] for user in response.json()] == [active_tenant.admin_email, "ada@test.com"]

    async def test_requires_token(self, client, active_tenant):
        response = await client.post(_users_url(active_tenant.tenant_id), json=_user("ada@test.com"))

        assert response.status_code == 401
