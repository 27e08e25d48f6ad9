"""
Pydantic schemas package.
"""

from tenancy.schemas.common import BaseSchema, ErrorResponse, MessageResponse, ProcessedCount
from tenancy.schemas.notification import NotificationRead
from tenancy.schemas.subscription import (
    PlanCreate,
    PlanRead,
    PlanUpdate,
    SubscriptionCancelRequest,
    SubscriptionChangeRequest,
    SubscriptionCreate,
    SubscriptionRead,
    SubscriptionUsage,
)
from tenancy.schemas.tenant import SignupRequest, SignupResult, TenantRead

__all__ = [
    # Common
    "BaseSchema",
    "MessageResponse",
    "ErrorResponse",
    "ProcessedCount",
    # Tenant
    "SignupRequest",
    "SignupResult",
    "TenantRead",
    # Subscription
    "PlanCreate",
    "PlanRead",
    "PlanUpdate",
    "SubscriptionCreate",
    "SubscriptionChangeRequest",
    "SubscriptionCancelRequest",
    "SubscriptionRead",
    "SubscriptionUsage",
    # Notification
    "NotificationRead",
]
