"""
Request context.

Two separate things live here:

- RequestContext, an explicit value handed to services that need to know
  who is calling (the tenant a token was issued for, the request id).
- contextvars used only to correlate log lines; nothing reads them for
  business decisions.
"""

import contextvars
from dataclasses import dataclass
from typing import Any

# Context variables
request_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "request_id", default=None
)
tenant_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "tenant_id", default=None
)

@dataclass(frozen=True)
class RequestContext:
    """Caller identity resolved at the HTTP edge."""

    request_id: str | None = None
    tenant_id: str | None = None
    subject: str | None = None
    is_admin: bool = False


def set_request_context(
    request_id: str | None = None,
    tenant_id: str | None = None,
) -> None:
    """Set request context variables."""
    if request_id:
        request_id_var.set(request_id)
    if tenant_id:
        tenant_id_var.set(tenant_id)


def get_request_context() -> dict[str, Any]:
    """Get all request context as a dictionary."""
    return {
        "request_id": request_id_var.get(),
        "tenant_id": tenant_id_var.get(),
    }


def clear_request_context() -> None:
    """Clear all context variables."""
    request_id_var.set(None)
    tenant_id_var.set(None)
