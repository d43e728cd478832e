"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from backend.app.api.v1.endpoints import (
    credits, referrals, achievements, readings, webhooks,
    admin, admin_invoices,
)

router = APIRouter()

# Customer-facing credit endpoints
router.include_router(credits.router)
router.include_router(referrals.router)
router.include_router(achievements.router)
router.include_router(readings.router)

# Provider webhooks
router.include_router(webhooks.router)

# Back-office
router.include_router(admin.router)
router.include_router(admin_invoices.router)
