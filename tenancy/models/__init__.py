"""
Database models package.

Importing this package registers every table on Base.metadata.
"""

from tenancy.core.database import Base
from tenancy.models.base import BaseModel, utcnow
from tenancy.models.mobile_verification import MobileVerification, VerificationStatus
from tenancy.models.notification import Notification, NotificationKind, NotificationStatus
from tenancy.models.subscription import BillingCycle, Subscription, SubscriptionStatus
from tenancy.models.subscription_plan import SubscriptionPlan
from tenancy.models.tenant import Tenant, TenantStatus
from tenancy.models.user import User

__all__ = [
    "Base",
    "BaseModel",
    "utcnow",
    "Tenant",
    "TenantStatus",
    "SubscriptionPlan",
    "Subscription",
    "SubscriptionStatus",
    "BillingCycle",
    "User",
    "Notification",
    "NotificationKind",
    "NotificationStatus",
    "MobileVerification",
    "VerificationStatus",
]
