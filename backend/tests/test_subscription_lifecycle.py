"""
Subscription lifecycle tests: trial creation, pricing, display status state
machine (blocked > trial > paid > fallback), ceiling day arithmetic, and
entitlement rules. Pure functions only, no database.
"""
import pytest
from datetime import datetime, timedelta

from conftest import T0, make_subscription
from models import Subscription, SubscriptionStatus, DisplayStatus, Entitlement
from services.subscription_lifecycle import (
    SubscriptionLifecycle,
    SubscriptionConfig,
    DEFAULT_SUBSCRIPTION_CONFIG,
    InvalidSubscriptionState,
    days_until,
)

lifecycle = SubscriptionLifecycle()


def paid(end_in: timedelta, **overrides) -> Subscription:
    data = {
        "status": SubscriptionStatus.ACTIVE,
        "subscription_start_date": T0,
        "subscription_end_date": T0 + end_in,
        "max_employees": 5,
        "max_projects": 10,
    }
    data.update(overrides)
    return make_subscription(**data)


class TestConfig:

    def test_default_constants(self):
        config = DEFAULT_SUBSCRIPTION_CONFIG
        assert config.trial_days == 3
        assert config.warning_days == 2
        assert config.paid_warning_days == 7
        assert config.base_fee == 50
        assert config.employee_fee == 10
        assert config.project_fee == 5

    def test_config_is_immutable(self):
        with pytest.raises(Exception):
            DEFAULT_SUBSCRIPTION_CONFIG.trial_days = 14

    def test_env_overrides(self, monkeypatch):
        from services.subscription_lifecycle import load_subscription_config
        monkeypatch.setenv("SUBSCRIPTION_TRIAL_DAYS", "14")
        config = load_subscription_config()
        assert config.trial_days == 14
        assert config.base_fee == 50


class TestCreateTrial:

    def test_trial_fields(self):
        sub = lifecycle.create_trial_subscription("u1", T0)
        assert sub.owner_id == "u1"
        assert sub.status == SubscriptionStatus.TRIAL
        assert sub.trial_start_date == T0
        assert sub.trial_end_date - sub.trial_start_date == timedelta(days=3)
        assert sub.max_employees == 0 and sub.max_projects == 0
        assert sub.current_employees == 0 and sub.current_projects == 0
        assert (sub.base_fee, sub.employee_fee, sub.project_fee) == (50, 10, 5)
        assert sub.total_amount == 0
        assert sub.subscription_start_date is None
        assert sub.subscription_end_date is None

    def test_each_trial_gets_its_own_id(self):
        a = lifecycle.create_trial_subscription("u1", T0)
        b = lifecycle.create_trial_subscription("u1", T0)
        assert a.subscription_id != b.subscription_id

    @pytest.mark.parametrize("owner_id", ["", "   "])
    def test_empty_owner_rejected(self, owner_id):
        with pytest.raises(ValueError):
            lifecycle.create_trial_subscription(owner_id, T0)

    def test_alternate_config_trial_length(self):
        custom = SubscriptionLifecycle(SubscriptionConfig(trial_days=14))
        sub = custom.create_trial_subscription("u1", T0)
        assert sub.trial_end_date == T0 + timedelta(days=14)


class TestCalculateAmount:

    def test_example_package(self):
        assert lifecycle.calculate_amount(5, 10) == 150

    def test_base_fee_only(self):
        assert lifecycle.calculate_amount(0, 0) == 50

    @pytest.mark.parametrize("employees,projects", [(1, 0), (0, 1), (30, 50), (7, 3)])
    def test_formula(self, employees, projects):
        assert lifecycle.calculate_amount(employees, projects) == 50 + employees * 10 + projects * 5

    def test_negative_rejected(self):
        with pytest.raises(ValueError):
            lifecycle.calculate_amount(-1, 0)

    def test_quote_breakdown(self):
        quote = lifecycle.quote(5, 10)
        assert quote.base_fee == 50
        assert quote.employee_total == 50
        assert quote.project_total == 50
        assert quote.total_amount == 150


class TestDaysUntil:

    def test_thirty_minutes_counts_as_a_day(self):
        assert days_until(T0 + timedelta(minutes=30), T0) == 1

    def test_exact_days(self):
        assert days_until(T0 + timedelta(days=3), T0) == 3

    def test_one_millisecond_over(self):
        assert days_until(T0 + timedelta(days=2, milliseconds=1), T0) == 3

    def test_at_and_after_end(self):
        assert days_until(T0, T0) == 0
        assert days_until(T0, T0 + timedelta(hours=5)) == 0
        assert days_until(T0, T0 + timedelta(days=2)) == -2

    def test_naive_now_against_aware_end(self):
        naive_t0 = T0.replace(tzinfo=None)
        assert days_until(T0 + timedelta(days=3), naive_t0) == 3


class TestNaiveClock:
    """Callers may pass naive datetimes; they are read as UTC."""

    NAIVE_T0 = datetime(2026, 3, 1, 9, 0)

    def test_trial_created_with_naive_now_is_utc(self):
        sub = lifecycle.create_trial_subscription("u1", self.NAIVE_T0)
        assert sub.trial_start_date == T0
        assert sub.trial_end_date == T0 + timedelta(days=3)
        assert sub.created_at.tzinfo is not None

    def test_evaluate_naive_trial_mid_window(self):
        sub = lifecycle.create_trial_subscription("u1", self.NAIVE_T0)
        result = lifecycle.get_status(sub, self.NAIVE_T0 + timedelta(days=2, hours=12))
        assert result.status == DisplayStatus.WARNING
        assert result.days_remaining == 1

    def test_evaluate_naive_trial_after_end(self):
        sub = lifecycle.create_trial_subscription("u1", self.NAIVE_T0)
        result = lifecycle.get_status(sub, self.NAIVE_T0 + timedelta(days=3))
        assert result.status == DisplayStatus.EXPIRED

    def test_naive_now_against_paid_window(self):
        sub = paid(timedelta(days=10))
        result = lifecycle.get_status(sub, self.NAIVE_T0 + timedelta(days=4))
        assert result.status == DisplayStatus.WARNING
        assert result.days_remaining == 6


class TestBlockedStatus:

    def test_blocked_wins_over_live_trial(self):
        sub = make_subscription(status=SubscriptionStatus.BLOCKED)
        result = lifecycle.get_status(sub, T0)
        assert result.status == DisplayStatus.BLOCKED
        assert result.days_remaining == 0
        assert "blocked" in result.message

    def test_blocked_wins_over_paid_window(self):
        sub = paid(timedelta(days=30), status=SubscriptionStatus.BLOCKED)
        assert lifecycle.get_status(sub, T0).status == DisplayStatus.BLOCKED


class TestTrialStatus:

    def test_fresh_trial_is_active(self):
        sub = make_subscription()
        result = lifecycle.get_status(sub, T0)
        assert result.status == DisplayStatus.ACTIVE
        assert result.days_remaining == 3
        assert result.message == "Free trial: 3 days remaining"

    @pytest.mark.parametrize("elapsed,days", [
        (timedelta(hours=1), 3),
        (timedelta(hours=23, minutes=59), 3),
    ])
    def test_more_than_two_days_left_is_active(self, elapsed, days):
        result = lifecycle.get_status(make_subscription(), T0 + elapsed)
        assert result.status == DisplayStatus.ACTIVE
        assert result.days_remaining == days

    def test_two_days_left_is_warning_plural(self):
        result = lifecycle.get_status(make_subscription(), T0 + timedelta(days=1))
        assert result.status == DisplayStatus.WARNING
        assert result.days_remaining == 2
        assert "expires in 2 days." in result.message

    def test_two_and_a_half_days_in_warns_with_one_day(self):
        result = lifecycle.get_status(make_subscription(), T0 + timedelta(days=2, hours=12))
        assert result.status == DisplayStatus.WARNING
        assert result.days_remaining == 1
        assert "1 day" in result.message
        assert "1 days" not in result.message

    def test_thirty_minutes_left_still_warns(self):
        sub = make_subscription()
        result = lifecycle.get_status(sub, sub.trial_end_date - timedelta(minutes=30))
        assert result.status == DisplayStatus.WARNING
        assert result.days_remaining == 1

    @pytest.mark.parametrize("after_end", [timedelta(0), timedelta(seconds=1), timedelta(days=10)])
    def test_ended_trial_is_expired(self, after_end):
        sub = make_subscription()
        result = lifecycle.get_status(sub, sub.trial_end_date + after_end)
        assert result.status == DisplayStatus.EXPIRED
        assert result.days_remaining == 0
        assert "free trial has expired" in result.message


class TestPaidStatus:

    def test_long_window_is_active(self):
        result = lifecycle.get_status(paid(timedelta(days=30)), T0)
        assert result.status == DisplayStatus.ACTIVE
        assert result.days_remaining == 30
        assert result.message == "Active subscription: 30 days remaining"

    def test_eight_days_left_is_active(self):
        assert lifecycle.get_status(paid(timedelta(days=8)), T0).status == DisplayStatus.ACTIVE

    def test_paid_threshold_differs_from_trial(self):
        # Ten day package evaluated four days in: 6 left, inside the 7 day paid window
        result = lifecycle.get_status(paid(timedelta(days=10)), T0 + timedelta(days=4))
        assert result.status == DisplayStatus.WARNING
        assert result.days_remaining == 6
        assert result.message == "Your subscription expires in 6 days."

    def test_one_day_left_singular(self):
        result = lifecycle.get_status(paid(timedelta(hours=3)), T0)
        assert result.status == DisplayStatus.WARNING
        assert result.message == "Your subscription expires in 1 day."

    def test_ended_window_is_expired(self):
        result = lifecycle.get_status(paid(timedelta(days=1)), T0 + timedelta(days=1))
        assert result.status == DisplayStatus.EXPIRED
        assert result.days_remaining == 0
        assert result.message == "Your subscription has expired. Renew to continue."

    def test_trial_history_is_ignored_once_paid(self):
        # Trial dates long gone, paid window still open
        sub = paid(timedelta(days=30))
        result = lifecycle.get_status(sub, T0 + timedelta(days=20))
        assert result.status == DisplayStatus.ACTIVE
        assert result.days_remaining == 10


class TestFallbackAndInvalid:

    def test_active_without_end_date_has_no_active_subscription(self):
        sub = make_subscription(status=SubscriptionStatus.ACTIVE)
        result = lifecycle.get_status(sub, T0)
        assert result.status == DisplayStatus.EXPIRED
        assert result.days_remaining == 0
        assert result.message == "No active subscription"

    def test_stored_expired_status(self):
        sub = make_subscription(status=SubscriptionStatus.EXPIRED)
        assert lifecycle.get_status(sub, T0).message == "No active subscription"

    def test_unknown_status_raises(self):
        sub = make_subscription().model_copy(update={"status": "suspended"})
        with pytest.raises(InvalidSubscriptionState):
            lifecycle.get_status(sub, T0)

    def test_trial_without_end_date_raises(self):
        sub = make_subscription(trial_end_date=None)
        with pytest.raises(InvalidSubscriptionState):
            lifecycle.get_status(sub, T0)

    def test_active_without_any_dates_raises(self):
        sub = make_subscription(
            status=SubscriptionStatus.ACTIVE,
            trial_start_date=None,
            trial_end_date=None,
        )
        with pytest.raises(InvalidSubscriptionState):
            lifecycle.get_status(sub, T0)

    def test_entitlement_checks_also_validate(self):
        sub = make_subscription().model_copy(update={"status": "suspended"})
        with pytest.raises(InvalidSubscriptionState):
            lifecycle.can_export_pdf(sub)


class TestEntitlements:

    def test_trial_cannot_add_even_with_caps(self):
        sub = make_subscription(max_employees=10, max_projects=10)
        assert lifecycle.can_add_employee(sub) is False
        assert lifecycle.can_add_project(sub) is False

    def test_blocked_cannot_add(self):
        sub = paid(timedelta(days=30), status=SubscriptionStatus.BLOCKED)
        assert lifecycle.can_add_employee(sub) is False
        assert lifecycle.can_add_project(sub) is False

    def test_active_below_cap(self):
        sub = paid(timedelta(days=30), current_employees=4, current_projects=9)
        assert lifecycle.can_add_employee(sub) is True
        assert lifecycle.can_add_project(sub) is True

    def test_active_at_cap(self):
        sub = paid(timedelta(days=30), current_employees=5, current_projects=10)
        assert lifecycle.can_add_employee(sub) is False
        assert lifecycle.can_add_project(sub) is False

    def test_counters_are_not_mutated(self):
        sub = paid(timedelta(days=30), current_employees=1)
        lifecycle.can_add_employee(sub)
        lifecycle.get_entitlements(sub)
        assert sub.current_employees == 1

    @pytest.mark.parametrize("status,allowed", [
        (SubscriptionStatus.TRIAL, False),
        (SubscriptionStatus.EXPIRED, False),
        (SubscriptionStatus.BLOCKED, False),
        (SubscriptionStatus.ACTIVE, True),
    ])
    def test_exports_only_when_active(self, status, allowed):
        sub = paid(timedelta(days=30), status=status)
        assert lifecycle.can_export_pdf(sub) is allowed
        assert lifecycle.can_export_excel(sub) is allowed

    @pytest.mark.parametrize("status,watermark", [
        (SubscriptionStatus.TRIAL, True),
        (SubscriptionStatus.ACTIVE, False),
        (SubscriptionStatus.EXPIRED, False),
        (SubscriptionStatus.BLOCKED, False),
    ])
    def test_watermark_only_for_trial(self, status, watermark):
        sub = paid(timedelta(days=30), status=status)
        assert lifecycle.needs_watermark(sub) is watermark

    def test_is_entitled_dispatch(self):
        sub = paid(timedelta(days=30))
        assert lifecycle.is_entitled(sub, Entitlement.ADD_EMPLOYEE) is True
        assert lifecycle.is_entitled(sub, Entitlement.EXPORT_EXCEL) is True

    def test_entitlement_set_for_trial(self):
        flags = lifecycle.get_entitlements(make_subscription())
        assert flags.model_dump() == {
            "can_add_employee": False,
            "can_add_project": False,
            "can_export_pdf": False,
            "can_export_excel": False,
            "needs_watermark": True,
        }
