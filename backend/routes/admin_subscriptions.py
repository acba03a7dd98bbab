"""Admin Subscription Routes - Manual package activation and blocking.

Endpoints:
- GET /api/admin/subscriptions/{owner_id} - Subscription overview for any owner
- GET /api/admin/subscriptions/{owner_id}/audit - Lifecycle audit trail
- POST /api/admin/subscriptions/{owner_id}/activate - Activate a purchased package
- POST /api/admin/subscriptions/{owner_id}/block - Block an account
- POST /api/admin/subscriptions/sweep-expired-trials - Run the trial expiry sweep now
"""
from fastapi import APIRouter, HTTPException, Request, status
from pydantic import BaseModel, Field
from typing import Optional
import logging

from models import SubscriptionOverview, Subscription
from middleware import require_admin
from services import subscription_service
from services.subscription_store import SubscriptionNotFoundError
from utils.audit import get_audit_logs_for_owner
from job_runner import run_trial_expiry_sweep

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/admin/subscriptions", tags=["admin-subscriptions"])


class ActivatePackageRequest(BaseModel):
    max_employees: int = Field(ge=0)
    max_projects: int = Field(ge=0)


class BlockRequest(BaseModel):
    reason: Optional[str] = None


def _not_found(owner_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"No subscription found for owner {owner_id}"
    )


@router.post("/sweep-expired-trials")
async def sweep_expired_trials(request: Request):
    await require_admin(request)
    return await run_trial_expiry_sweep()


@router.get("/{owner_id}", response_model=SubscriptionOverview)
async def get_subscription(request: Request, owner_id: str):
    await require_admin(request)
    try:
        return await subscription_service.get_subscription_overview(owner_id)
    except SubscriptionNotFoundError:
        raise _not_found(owner_id)


@router.get("/{owner_id}/audit")
async def get_subscription_audit(request: Request, owner_id: str, limit: int = 50):
    await require_admin(request)
    return {"owner_id": owner_id, "events": await get_audit_logs_for_owner(owner_id, limit)}


@router.post("/{owner_id}/activate", response_model=Subscription)
async def activate_package(request: Request, owner_id: str, body: ActivatePackageRequest):
    """Activate a purchased package: paid window starts now, caps from the body."""
    admin = await require_admin(request)
    try:
        return await subscription_service.activate_package(
            owner_id,
            max_employees=body.max_employees,
            max_projects=body.max_projects,
            actor=admin,
        )
    except SubscriptionNotFoundError:
        raise _not_found(owner_id)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )


@router.post("/{owner_id}/block", response_model=Subscription)
async def block_subscription(request: Request, owner_id: str, body: BlockRequest):
    admin = await require_admin(request)
    try:
        return await subscription_service.block_subscription(owner_id, reason=body.reason, actor=admin)
    except SubscriptionNotFoundError:
        raise _not_found(owner_id)
