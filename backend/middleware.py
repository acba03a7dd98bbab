"""Request guards: authentication, admin role, and subscription gating.

Subscription gating is always evaluated against a fresh read of the caller's
subscription; nothing from the request body or token decides entitlement.

Usage in a router:

    @router.post("/employees")
    async def add_employee(
        gate: SubscriptionGate = Depends(require_entitlement(Entitlement.ADD_EMPLOYEE)),
    ):
        ...
        await subscription_store.increment_usage(gate.user["user_id"], employees=1)
"""
from fastapi import Request, HTTPException, status
from dataclasses import dataclass
from typing import Optional, Dict, Any
import logging

from auth import decode_access_token
from models import UserRole, Entitlement, AuditAction, Subscription, SubscriptionStatusResult
from services.subscription_service import (
    SubscriptionAccessDenied,
    check_subscription_access,
    check_entitlement,
)
from utils.audit import create_audit_log

logger = logging.getLogger(__name__)

async def get_current_user(request: Request) -> Optional[dict]:
    """Extract and validate current user from JWT token."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None

    token = auth_header.split(" ")[1]
    payload = decode_access_token(token)

    if not payload or not payload.get("user_id"):
        return None

    return payload

async def require_auth(request: Request) -> dict:
    """Require valid authentication."""
    user = await get_current_user(request)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )
    return user

async def require_admin(request: Request) -> dict:
    """Require system admin role."""
    user = await require_auth(request)
    if user.get("role") != UserRole.ADMIN.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions"
        )
    return user


@dataclass
class SubscriptionGate:
    """What a gated route gets back: the caller and their subscription snapshot.

    subscription and status are None for system admins.
    """
    user: Dict[str, Any]
    subscription: Optional[Subscription]
    status: Optional[SubscriptionStatusResult]

    @property
    def is_admin(self) -> bool:
        return self.user.get("role") == UserRole.ADMIN.value


async def require_active_subscription(request: Request) -> SubscriptionGate:
    """Deny blocked, expired or missing subscriptions with 403."""
    user = await require_auth(request)
    try:
        subscription, sub_status = await check_subscription_access(user)
    except SubscriptionAccessDenied as e:
        await _log_denial(request, user, e, AuditAction.ACCESS_DENIED)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=e.to_detail())

    gate = SubscriptionGate(user=user, subscription=subscription, status=sub_status)
    request.state.subscription = subscription
    request.state.subscription_status = sub_status
    return gate


def require_entitlement(entitlement: Entitlement):
    """
    Dependency factory enforcing one entitlement on top of an active subscription.

    Usage:
        @router.get("/reports/pdf")
        async def export_pdf(gate: SubscriptionGate = Depends(require_entitlement(Entitlement.EXPORT_PDF))):
            ...
    """
    async def dependency(request: Request) -> SubscriptionGate:
        gate = await require_active_subscription(request)

        # System admins are never subscription-gated. They own no subscription,
        # so without this bypass check_entitlement would deny them NO_SUBSCRIPTION.
        if gate.is_admin:
            return gate

        try:
            check_entitlement(gate.subscription, entitlement)
        except SubscriptionAccessDenied as e:
            await _log_denial(request, gate.user, e, AuditAction.ENTITLEMENT_DENIED, entitlement)
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=e.to_detail())
        return gate

    return dependency


async def _log_denial(
    request: Request,
    user: Dict[str, Any],
    error: SubscriptionAccessDenied,
    action: AuditAction,
    entitlement: Optional[Entitlement] = None,
) -> None:
    logger.warning(
        "Subscription gate denied: user_id=%s error_code=%s entitlement=%s endpoint=%s method=%s",
        user.get("user_id"), error.error_code,
        entitlement.value if entitlement else None,
        request.url.path, request.method
    )
    await create_audit_log(
        action=action,
        actor_role=user.get("role"),
        actor_id=user.get("user_id"),
        owner_id=user.get("user_id"),
        reason_code=error.error_code,
        metadata={
            "entitlement": entitlement.value if entitlement else None,
            "endpoint": str(request.url.path),
            "method": request.method,
        },
    )
