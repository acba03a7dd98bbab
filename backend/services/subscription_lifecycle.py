"""Subscription Lifecycle - Trial/paid state machine and entitlement checks.

This module is the single source of truth for:
- Trial creation (3 day, zero-capacity evaluation period)
- Display status derivation (active / warning / expired / blocked)
- Usage-based entitlements (add employee/project, PDF/Excel export, watermark)
- Package pricing

Everything here is pure: callers pass the subscription snapshot and the
current time in, nothing is read from the database or the clock.

Evaluation order of get_status() is significant:
1. Blocked wins over any date
2. Trial window (warns 2 days out)
3. Paid window (warns 7 days out)
4. Anything else has no active subscription
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
import os
import logging

from models import (
    Subscription,
    SubscriptionStatus,
    DisplayStatus,
    SubscriptionStatusResult,
    EntitlementSet,
    PriceQuote,
    Entitlement,
)

logger = logging.getLogger(__name__)

ONE_DAY = timedelta(days=1)


# ============================================================================
# PLAN CONFIGURATION
# ============================================================================
@dataclass(frozen=True)
class SubscriptionConfig:
    """Plan constants. Defaults are the production values."""
    trial_days: int = 3
    warning_days: int = 2  # Trial banner threshold
    paid_warning_days: int = 7  # Paid subscription banner threshold
    base_fee: float = 50
    employee_fee: float = 10
    project_fee: float = 5
    billing_period_days: int = 30


DEFAULT_SUBSCRIPTION_CONFIG = SubscriptionConfig()


def load_subscription_config() -> SubscriptionConfig:
    """Build config from SUBSCRIPTION_* env overrides, falling back to defaults."""
    defaults = DEFAULT_SUBSCRIPTION_CONFIG
    return SubscriptionConfig(
        trial_days=int(os.getenv("SUBSCRIPTION_TRIAL_DAYS", defaults.trial_days)),
        warning_days=int(os.getenv("SUBSCRIPTION_WARNING_DAYS", defaults.warning_days)),
        paid_warning_days=int(os.getenv("SUBSCRIPTION_PAID_WARNING_DAYS", defaults.paid_warning_days)),
        base_fee=float(os.getenv("SUBSCRIPTION_BASE_FEE", defaults.base_fee)),
        employee_fee=float(os.getenv("SUBSCRIPTION_EMPLOYEE_FEE", defaults.employee_fee)),
        project_fee=float(os.getenv("SUBSCRIPTION_PROJECT_FEE", defaults.project_fee)),
        billing_period_days=int(os.getenv("SUBSCRIPTION_BILLING_PERIOD_DAYS", defaults.billing_period_days)),
    )


class InvalidSubscriptionState(Exception):
    """Subscription is structurally invalid for the status it claims."""
    def __init__(self, message: str, subscription_id: Optional[str] = None):
        self.subscription_id = subscription_id
        self.message = message
        super().__init__(message)


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC, matching the Subscription model."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def days_until(end: datetime, now: datetime) -> int:
    """Whole days left until `end`, rounded up (30 minutes left -> 1)."""
    return -((as_utc(now) - as_utc(end)) // ONE_DAY)


def _plural_days(days: int) -> str:
    return f"{days} day{'s' if days > 1 else ''}"


class SubscriptionLifecycle:
    """State machine and entitlement checks over a subscription snapshot."""

    def __init__(self, config: SubscriptionConfig = DEFAULT_SUBSCRIPTION_CONFIG):
        self.config = config

    # -------------------------------------------------------------------------
    # Creation & pricing
    # -------------------------------------------------------------------------
    def create_trial_subscription(self, owner_id: str, now: datetime) -> Subscription:
        """New trial: zero caps, trial window of `trial_days` starting now."""
        if not owner_id or not owner_id.strip():
            raise ValueError("owner_id is required")

        now = as_utc(now)
        return Subscription(
            owner_id=owner_id,
            status=SubscriptionStatus.TRIAL,
            trial_start_date=now,
            trial_end_date=now + timedelta(days=self.config.trial_days),
            max_employees=0,
            max_projects=0,
            current_employees=0,
            current_projects=0,
            base_fee=self.config.base_fee,
            employee_fee=self.config.employee_fee,
            project_fee=self.config.project_fee,
            total_amount=0,
            created_at=now,
            updated_at=now,
        )

    def calculate_amount(self, max_employees: int, max_projects: int) -> float:
        if max_employees < 0 or max_projects < 0:
            raise ValueError("max_employees and max_projects must be non-negative")
        return (
            self.config.base_fee
            + max_employees * self.config.employee_fee
            + max_projects * self.config.project_fee
        )

    def quote(self, max_employees: int, max_projects: int) -> PriceQuote:
        """Amount with its breakdown, as shown by the package builder."""
        total = self.calculate_amount(max_employees, max_projects)
        return PriceQuote(
            max_employees=max_employees,
            max_projects=max_projects,
            base_fee=self.config.base_fee,
            employee_total=max_employees * self.config.employee_fee,
            project_total=max_projects * self.config.project_fee,
            total_amount=total,
        )

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------
    def validate(self, subscription: Subscription) -> None:
        """Raise InvalidSubscriptionState for shapes that cannot be evaluated."""
        status = subscription.status
        if not isinstance(status, SubscriptionStatus):
            try:
                SubscriptionStatus(status)
            except ValueError:
                raise InvalidSubscriptionState(
                    f"Unknown subscription status: {status!r}",
                    subscription.subscription_id,
                )

        if status == SubscriptionStatus.TRIAL and subscription.trial_end_date is None:
            raise InvalidSubscriptionState(
                "Trial subscription has no trial_end_date",
                subscription.subscription_id,
            )

        if status == SubscriptionStatus.ACTIVE and not any((
            subscription.trial_start_date,
            subscription.trial_end_date,
            subscription.subscription_start_date,
            subscription.subscription_end_date,
        )):
            raise InvalidSubscriptionState(
                "Active subscription has neither trial nor subscription dates",
                subscription.subscription_id,
            )

    # -------------------------------------------------------------------------
    # State machine
    # -------------------------------------------------------------------------
    def get_status(self, subscription: Subscription, now: datetime) -> SubscriptionStatusResult:
        """Derive the display status. First matching rule wins."""
        self.validate(subscription)
        status = SubscriptionStatus(subscription.status)
        now = as_utc(now)

        if status == SubscriptionStatus.BLOCKED:
            return SubscriptionStatusResult(
                status=DisplayStatus.BLOCKED,
                days_remaining=0,
                message="Your account has been blocked. Please purchase a package to continue.",
            )

        if status == SubscriptionStatus.TRIAL:
            days_remaining = days_until(subscription.trial_end_date, now)

            if days_remaining <= 0:
                return SubscriptionStatusResult(
                    status=DisplayStatus.EXPIRED,
                    days_remaining=0,
                    message="Your free trial has expired. Purchase a package to continue using ARKA Services.",
                )
            if days_remaining <= self.config.warning_days:
                return SubscriptionStatusResult(
                    status=DisplayStatus.WARNING,
                    days_remaining=days_remaining,
                    message=(
                        f"Your free trial expires in {_plural_days(days_remaining)}. "
                        "Purchase a package to keep your data and continue."
                    ),
                )
            return SubscriptionStatusResult(
                status=DisplayStatus.ACTIVE,
                days_remaining=days_remaining,
                message=f"Free trial: {days_remaining} days remaining",
            )

        if status == SubscriptionStatus.ACTIVE and subscription.subscription_end_date:
            days_remaining = days_until(subscription.subscription_end_date, now)

            if days_remaining <= 0:
                return SubscriptionStatusResult(
                    status=DisplayStatus.EXPIRED,
                    days_remaining=0,
                    message="Your subscription has expired. Renew to continue.",
                )
            if days_remaining <= self.config.paid_warning_days:
                return SubscriptionStatusResult(
                    status=DisplayStatus.WARNING,
                    days_remaining=days_remaining,
                    message=f"Your subscription expires in {_plural_days(days_remaining)}.",
                )
            return SubscriptionStatusResult(
                status=DisplayStatus.ACTIVE,
                days_remaining=days_remaining,
                message=f"Active subscription: {days_remaining} days remaining",
            )

        # Expired, or active without an end date
        return SubscriptionStatusResult(
            status=DisplayStatus.EXPIRED,
            days_remaining=0,
            message="No active subscription",
        )

    # -------------------------------------------------------------------------
    # Entitlements
    # -------------------------------------------------------------------------
    def can_add_employee(self, subscription: Subscription) -> bool:
        self.validate(subscription)
        if subscription.status in (SubscriptionStatus.BLOCKED, SubscriptionStatus.TRIAL):
            return False
        return subscription.current_employees < subscription.max_employees

    def can_add_project(self, subscription: Subscription) -> bool:
        self.validate(subscription)
        if subscription.status in (SubscriptionStatus.BLOCKED, SubscriptionStatus.TRIAL):
            return False
        return subscription.current_projects < subscription.max_projects

    def can_export_pdf(self, subscription: Subscription) -> bool:
        self.validate(subscription)
        return subscription.status == SubscriptionStatus.ACTIVE

    def can_export_excel(self, subscription: Subscription) -> bool:
        self.validate(subscription)
        return subscription.status == SubscriptionStatus.ACTIVE

    def needs_watermark(self, subscription: Subscription) -> bool:
        self.validate(subscription)
        return subscription.status == SubscriptionStatus.TRIAL

    def is_entitled(self, subscription: Subscription, entitlement: Entitlement) -> bool:
        checks = {
            Entitlement.ADD_EMPLOYEE: self.can_add_employee,
            Entitlement.ADD_PROJECT: self.can_add_project,
            Entitlement.EXPORT_PDF: self.can_export_pdf,
            Entitlement.EXPORT_EXCEL: self.can_export_excel,
        }
        return checks[entitlement](subscription)

    def get_entitlements(self, subscription: Subscription) -> EntitlementSet:
        return EntitlementSet(
            can_add_employee=self.can_add_employee(subscription),
            can_add_project=self.can_add_project(subscription),
            can_export_pdf=self.can_export_pdf(subscription),
            can_export_excel=self.can_export_excel(subscription),
            needs_watermark=self.needs_watermark(subscription),
        )


# Singleton instance
subscription_lifecycle = SubscriptionLifecycle(load_subscription_config())
