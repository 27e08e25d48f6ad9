"""
API v1 router aggregator.

All v1 routes are registered here.
"""

from fastapi import APIRouter

from tenancy.features.account.router import router as account_router
from tenancy.features.notifications.router import router as notifications_admin_router
from tenancy.features.subscriptions.router import admin_router as subscriptions_admin_router
from tenancy.features.subscriptions.router import router as subscriptions_router
from tenancy.features.tenants.router import router as tenants_router

# V1 API router
v1_router = APIRouter(prefix="/v1")

# Register all feature routers
v1_router.include_router(tenants_router)
v1_router.include_router(account_router)
v1_router.include_router(subscriptions_router)
v1_router.include_router(subscriptions_admin_router)
v1_router.include_router(notifications_admin_router)
