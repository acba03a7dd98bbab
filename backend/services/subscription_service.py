"""Subscription Service - Lifecycle transitions and access checks over the store.

Wraps the pure SubscriptionLifecycle with persistence and audit logging:
- start_trial: create the 3 day trial at account creation (idempotent)
- check_subscription_access: per-request gate (admin bypass, blocked/expired denial)
- check_entitlement: add employee/project and export gates with user-facing reasons
- activate_package / block_subscription: admin transitions
- block_expired_trials: scheduled sweep

Usage counters are never changed here; callers bump them through
subscription_store.increment_usage() after an entitlement check passes.
"""
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, Tuple
import logging

from models import (
    Subscription,
    SubscriptionStatus,
    SubscriptionStatusResult,
    SubscriptionOverview,
    DisplayStatus,
    Entitlement,
    AuditAction,
    UserRole,
    utc_now,
)
from services.subscription_lifecycle import subscription_lifecycle
from services import subscription_store
from utils.audit import create_audit_log

logger = logging.getLogger(__name__)


class SubscriptionAccessDenied(Exception):
    """Request refused because of subscription state or entitlement."""
    def __init__(
        self,
        error_code: str,
        message: str,
        subscription_status: Optional[SubscriptionStatusResult] = None,
    ):
        self.error_code = error_code
        self.message = message
        self.subscription_status = subscription_status
        super().__init__(message)

    def to_detail(self) -> Dict[str, Any]:
        detail = {"error_code": self.error_code, "message": self.message}
        if self.subscription_status is not None:
            detail["subscription_status"] = self.subscription_status.model_dump(mode="json")
        return detail


# Wording used in denial messages
ENTITLEMENT_ACTIONS = {
    Entitlement.ADD_EMPLOYEE: "add employees",
    Entitlement.ADD_PROJECT: "add projects",
    Entitlement.EXPORT_PDF: "export PDF",
    Entitlement.EXPORT_EXCEL: "export Excel",
}

EXPORT_FORMATS = {
    Entitlement.EXPORT_PDF: "PDF",
    Entitlement.EXPORT_EXCEL: "Excel",
}


async def start_trial(owner_id: str, now: Optional[datetime] = None) -> Subscription:
    """Create and persist a trial for a new owner. Returns the existing one if present."""
    existing = await subscription_store.find_subscription(owner_id)
    if existing:
        logger.info("Trial not started, subscription already exists owner_id=%s", owner_id)
        return existing

    now = now or utc_now()
    subscription = subscription_lifecycle.create_trial_subscription(owner_id, now)
    await subscription_store.save_subscription(subscription, now)

    await create_audit_log(
        action=AuditAction.TRIAL_STARTED,
        owner_id=owner_id,
        subscription_id=subscription.subscription_id,
        after_state=subscription.model_dump(mode="json"),
    )
    logger.info(
        "Trial started owner_id=%s trial_end_date=%s",
        owner_id, subscription.trial_end_date.isoformat()
    )
    return subscription


async def get_subscription_overview(owner_id: str, now: Optional[datetime] = None) -> SubscriptionOverview:
    subscription = await subscription_store.load_subscription(owner_id)
    now = now or utc_now()
    return SubscriptionOverview(
        subscription=subscription,
        status=subscription_lifecycle.get_status(subscription, now),
        entitlements=subscription_lifecycle.get_entitlements(subscription),
    )


async def check_subscription_access(
    user: Dict[str, Any],
    now: Optional[datetime] = None,
) -> Tuple[Optional[Subscription], Optional[SubscriptionStatusResult]]:
    """
    Gate a request on the caller's subscription.

    Returns (subscription, status), or (None, None) for system admins.
    Raises SubscriptionAccessDenied when there is no subscription or it is
    blocked/expired. An expired trial is persisted as blocked before denial.
    """
    if user.get("role") == UserRole.ADMIN.value:
        return None, None

    owner_id = user.get("user_id")
    subscription = await subscription_store.find_subscription(owner_id) if owner_id else None
    if subscription is None:
        raise SubscriptionAccessDenied(
            "NO_SUBSCRIPTION",
            "Please contact support to activate your account."
        )

    now = now or utc_now()
    status = subscription_lifecycle.get_status(subscription, now)

    if status.status == DisplayStatus.BLOCKED:
        raise SubscriptionAccessDenied("ACCOUNT_BLOCKED", status.message, status)

    if status.status == DisplayStatus.EXPIRED:
        if subscription.status == SubscriptionStatus.TRIAL:
            await _block(subscription, now, AuditAction.TRIAL_EXPIRED_BLOCKED, reason="TRIAL_EXPIRED")
        raise SubscriptionAccessDenied("SUBSCRIPTION_EXPIRED", status.message, status)

    return subscription, status


def check_entitlement(subscription: Optional[Subscription], entitlement: Entitlement) -> None:
    """Raise SubscriptionAccessDenied with the reason if the entitlement is not granted."""
    if subscription is None:
        raise SubscriptionAccessDenied(
            "NO_SUBSCRIPTION",
            f"Please purchase a package to {ENTITLEMENT_ACTIONS[entitlement]}."
        )

    if subscription_lifecycle.is_entitled(subscription, entitlement):
        return

    export_format = EXPORT_FORMATS.get(entitlement)
    if export_format:
        raise SubscriptionAccessDenied(
            f"{export_format.upper()}_EXPORT_NOT_AVAILABLE",
            f"{export_format} export is only available with an active subscription. Please purchase a package."
        )

    if subscription.status == SubscriptionStatus.TRIAL:
        raise SubscriptionAccessDenied(
            "FEATURE_NOT_AVAILABLE_DURING_TRIAL",
            f"Please purchase a package to {ENTITLEMENT_ACTIONS[entitlement]}."
        )

    if subscription.status == SubscriptionStatus.BLOCKED:
        raise SubscriptionAccessDenied(
            "ACCOUNT_BLOCKED",
            "Your account has been blocked. Please purchase a package to continue."
        )

    limit = subscription.max_employees if entitlement == Entitlement.ADD_EMPLOYEE else subscription.max_projects
    singular = "employee" if entitlement == Entitlement.ADD_EMPLOYEE else "project"
    raise SubscriptionAccessDenied(
        f"{singular.upper()}_LIMIT_REACHED",
        f"You have reached your {singular} limit of {limit}. Please upgrade your package."
    )


async def activate_package(
    owner_id: str,
    max_employees: int,
    max_projects: int,
    now: Optional[datetime] = None,
    actor: Optional[Dict[str, Any]] = None,
) -> Subscription:
    """Move an owner onto a paid package for one billing period. Trial dates are kept."""
    subscription = await subscription_store.load_subscription(owner_id)
    total_amount = subscription_lifecycle.calculate_amount(max_employees, max_projects)

    now = now or utc_now()
    config = subscription_lifecycle.config
    updated = subscription.model_copy(update={
        "status": SubscriptionStatus.ACTIVE,
        "subscription_start_date": now,
        "subscription_end_date": now + timedelta(days=config.billing_period_days),
        "max_employees": max_employees,
        "max_projects": max_projects,
        "base_fee": config.base_fee,
        "employee_fee": config.employee_fee,
        "project_fee": config.project_fee,
        "total_amount": total_amount,
        "last_payment_date": now,
        "updated_at": now,
    })
    await subscription_store.save_subscription(updated, now)

    await create_audit_log(
        action=AuditAction.PACKAGE_ACTIVATED,
        actor_role=(actor or {}).get("role"),
        actor_id=(actor or {}).get("user_id"),
        owner_id=owner_id,
        subscription_id=updated.subscription_id,
        before_state=subscription.model_dump(mode="json"),
        after_state=updated.model_dump(mode="json"),
        metadata={"total_amount": total_amount},
    )
    logger.info(
        "Package activated owner_id=%s max_employees=%s max_projects=%s total_amount=%s",
        owner_id, max_employees, max_projects, total_amount
    )
    return updated


async def block_subscription(
    owner_id: str,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
    actor: Optional[Dict[str, Any]] = None,
) -> Subscription:
    subscription = await subscription_store.load_subscription(owner_id)
    return await _block(
        subscription,
        now or utc_now(),
        AuditAction.SUBSCRIPTION_BLOCKED,
        reason=reason or "ADMIN_ACTION",
        actor=actor,
    )


async def block_expired_trials(
    now: Optional[datetime] = None,
    batch_size: int = subscription_store.EXPIRED_TRIAL_BATCH,
) -> int:
    """Block every trial whose window has closed. Returns the number blocked.

    Reads in batches; blocked trials drop out of the query, so each pass
    picks up the next batch. Stops once a batch comes back short.
    """
    now = now or utc_now()
    total = 0
    while True:
        expired = await subscription_store.list_expired_trials(now, limit=batch_size)
        for subscription in expired:
            await _block(subscription, now, AuditAction.TRIAL_EXPIRED_BLOCKED, reason="TRIAL_EXPIRED")
        total += len(expired)
        if len(expired) < batch_size:
            break

    if total:
        logger.info("Trial expiry sweep blocked %d subscription(s)", total)
    return total


async def _block(
    subscription: Subscription,
    now: datetime,
    action: AuditAction,
    reason: str,
    actor: Optional[Dict[str, Any]] = None,
) -> Subscription:
    if subscription.status == SubscriptionStatus.BLOCKED:
        return subscription

    blocked = subscription.model_copy(update={
        "status": SubscriptionStatus.BLOCKED,
        "updated_at": now,
    })
    await subscription_store.save_subscription(blocked, now)

    await create_audit_log(
        action=action,
        actor_role=(actor or {}).get("role"),
        actor_id=(actor or {}).get("user_id"),
        owner_id=subscription.owner_id,
        subscription_id=subscription.subscription_id,
        metadata={"previous_status": SubscriptionStatus(subscription.status).value},
        reason_code=reason,
    )
    logger.warning(
        "Subscription blocked owner_id=%s previous_status=%s reason=%s",
        subscription.owner_id, SubscriptionStatus(subscription.status).value, reason
    )
    return blocked
