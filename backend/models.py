from pydantic import BaseModel, Field, ConfigDict, field_validator
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from enum import Enum
import uuid

# ============================================================================
# ENUMS (System Constants)
# ============================================================================

class SubscriptionStatus(str, Enum):
    """Billing state stored on the subscription document."""
    TRIAL = "trial"
    ACTIVE = "active"
    EXPIRED = "expired"
    BLOCKED = "blocked"

class DisplayStatus(str, Enum):
    """Derived status shown to the account owner (banner / blocked page)."""
    ACTIVE = "active"
    WARNING = "warning"
    EXPIRED = "expired"
    BLOCKED = "blocked"

class Entitlement(str, Enum):
    ADD_EMPLOYEE = "add_employee"
    ADD_PROJECT = "add_project"
    EXPORT_PDF = "export_pdf"
    EXPORT_EXCEL = "export_excel"

class UserRole(str, Enum):
    ADMIN = "admin"  # System admin, never subscription-gated
    PRINCIPLE = "principle"
    EMPLOYEE = "employee"
    CLIENT = "client"
    PROCUREMENT = "procurement"

class AuditAction(str, Enum):
    # Lifecycle
    TRIAL_STARTED = "TRIAL_STARTED"
    PACKAGE_ACTIVATED = "PACKAGE_ACTIVATED"
    SUBSCRIPTION_BLOCKED = "SUBSCRIPTION_BLOCKED"
    TRIAL_EXPIRED_BLOCKED = "TRIAL_EXPIRED_BLOCKED"

    # Gating
    ENTITLEMENT_DENIED = "ENTITLEMENT_DENIED"
    ACCESS_DENIED = "ACCESS_DENIED"

# ============================================================================
# SUBSCRIPTION
# ============================================================================

def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Subscription(BaseModel):
    """One subscription per billable owner (principal account)."""
    model_config = ConfigDict(extra="ignore")

    subscription_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    owner_id: str = Field(min_length=1)
    status: SubscriptionStatus

    # Trial window - kept after upgrade as history
    trial_start_date: Optional[datetime] = None
    trial_end_date: Optional[datetime] = None

    # Paid window - only once a package has been purchased
    subscription_start_date: Optional[datetime] = None
    subscription_end_date: Optional[datetime] = None

    max_employees: int = 0
    max_projects: int = 0
    current_employees: int = 0
    current_projects: int = 0

    base_fee: float = Field(default=0, ge=0)
    employee_fee: float = Field(default=0, ge=0)
    project_fee: float = Field(default=0, ge=0)
    total_amount: float = 0

    last_payment_date: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator(
        "trial_start_date",
        "trial_end_date",
        "subscription_start_date",
        "subscription_end_date",
        "last_payment_date",
        "created_at",
        "updated_at",
    )
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        # Mongo hands back naive datetimes unless the client is tz_aware
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class SubscriptionStatusResult(BaseModel):
    status: DisplayStatus
    days_remaining: int
    message: str


class EntitlementSet(BaseModel):
    can_add_employee: bool
    can_add_project: bool
    can_export_pdf: bool
    can_export_excel: bool
    needs_watermark: bool


class SubscriptionOverview(BaseModel):
    """Shape consumed by the subscription banner and blocked page."""
    subscription: Subscription
    status: SubscriptionStatusResult
    entitlements: EntitlementSet


class PriceQuote(BaseModel):
    max_employees: int
    max_projects: int
    base_fee: float
    employee_total: float
    project_total: float
    total_amount: float

# ============================================================================
# AUDIT
# ============================================================================

class AuditLog(BaseModel):
    model_config = ConfigDict(extra="ignore")

    audit_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    action: AuditAction
    actor_role: Optional[str] = None
    actor_id: Optional[str] = None
    owner_id: Optional[str] = None
    subscription_id: Optional[str] = None
    before_state: Optional[Dict[str, Any]] = None
    after_state: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    reason_code: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)
