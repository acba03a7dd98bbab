"""Subscription Routes - Status, entitlements and pricing for the account owner.

Endpoints:
- GET /api/subscription/status - Subscription, derived status and entitlements
- GET /api/subscription/entitlements - Entitlement flags only
- POST /api/subscription/trial - Start the free trial (idempotent)
- POST /api/subscription/quote - Price a package (no auth, used by the package builder)
"""
from fastapi import APIRouter, HTTPException, Request, status
from pydantic import BaseModel, Field
import logging

from models import SubscriptionOverview, EntitlementSet, PriceQuote, Subscription
from middleware import require_auth
from services import subscription_service
from services.subscription_lifecycle import subscription_lifecycle
from services.subscription_store import SubscriptionNotFoundError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/subscription", tags=["subscription"])


class QuoteRequest(BaseModel):
    """Package size to price."""
    max_employees: int = Field(ge=0)
    max_projects: int = Field(ge=0)


@router.get("/status", response_model=SubscriptionOverview)
async def get_status(request: Request):
    """Current subscription with its display status (banner, blocked page)."""
    user = await require_auth(request)
    try:
        return await subscription_service.get_subscription_overview(user["user_id"])
    except SubscriptionNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No subscription found"
        )


@router.get("/entitlements", response_model=EntitlementSet)
async def get_entitlements(request: Request):
    user = await require_auth(request)
    try:
        overview = await subscription_service.get_subscription_overview(user["user_id"])
    except SubscriptionNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No subscription found"
        )
    return overview.entitlements


@router.post("/trial", response_model=Subscription)
async def start_trial(request: Request):
    """Start the free trial for the caller. Returns the existing subscription if any."""
    user = await require_auth(request)
    return await subscription_service.start_trial(user["user_id"])


@router.post("/quote", response_model=PriceQuote)
async def quote(body: QuoteRequest):
    return subscription_lifecycle.quote(body.max_employees, body.max_projects)
