"""Tests for the subscription state machine."""

from datetime import UTC, datetime, timedelta

import pytest

from musterbook.platform.billing.config import LifecycleConfig
from musterbook.platform.billing.enums import BillingCycle, SubscriptionEvent, SubscriptionStatus
from musterbook.platform.billing.exceptions import StateConflictError
from musterbook.platform.billing.models import BillingSubscriptionTable
from musterbook.platform.billing.state_machine import (
    TRANSITIONS,
    SubscriptionStateMachine,
    next_status,
)

pytestmark = pytest.mark.unit

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def make_subscription(status: SubscriptionStatus, **overrides) -> BillingSubscriptionTable:
    values = {
        "id": "sub-1",
        "tenant_id": "tenant-1",
        "plan_id": "plan-starter",
        "status": status,
        "billing_cycle": BillingCycle.MONTHLY,
        "trial_start": None,
        "trial_end": None,
        "current_period_start": None,
        "current_period_end": None,
        "auto_renew": True,
        "cancels_at_period_end": False,
        "cancelled_at": None,
        "cancel_reason": None,
        "cancel_effective_at": None,
        "pending_plan_id": None,
        "pending_plan_effective_at": None,
    }
    values.update(overrides)
    return BillingSubscriptionTable(**values)


@pytest.fixture
def machine() -> SubscriptionStateMachine:
    return SubscriptionStateMachine(LifecycleConfig())


class TestTransitionTable:
    """The transition table is closed."""

    def test_terminal_states_only_leave_on_payment(self):
        for status in (SubscriptionStatus.EXPIRED, SubscriptionStatus.CANCELLED):
            events = {event for (source, event) in TRANSITIONS if source == status}
            assert events == {SubscriptionEvent.PAYMENT_CAPTURED}

    def test_payment_always_activates(self):
        for status in SubscriptionStatus:
            assert next_status(status, SubscriptionEvent.PAYMENT_CAPTURED) == (
                SubscriptionStatus.ACTIVE
            )

    def test_undefined_transition_raises_conflict(self):
        with pytest.raises(StateConflictError) as exc_info:
            next_status(SubscriptionStatus.EXPIRED, SubscriptionEvent.GRACE_EXPIRED)

        assert exc_info.value.status_code == 409
        assert exc_info.value.context["current_state"] == "EXPIRED"


class TestLapseEvaluation:
    """Clock-derived lapse events."""

    def test_trial_running_has_no_lapse(self, machine):
        sub = make_subscription(SubscriptionStatus.TRIAL, trial_end=NOW + timedelta(seconds=1))
        assert machine.lapse_event(sub, NOW) is None

    def test_trial_end_equal_to_now_is_not_lapsed(self, machine):
        sub = make_subscription(SubscriptionStatus.TRIAL, trial_end=NOW)
        assert machine.lapse_event(sub, NOW) is None

    def test_trial_past_end_expires(self, machine):
        sub = make_subscription(SubscriptionStatus.TRIAL, trial_end=NOW - timedelta(days=1))

        transitions = machine.repair(sub, NOW)

        assert [t.event for t in transitions] == [SubscriptionEvent.TRIAL_ENDED]
        assert sub.status == SubscriptionStatus.EXPIRED

    def test_naive_datetimes_are_treated_as_utc(self, machine):
        naive_end = (NOW - timedelta(hours=1)).replace(tzinfo=None)
        sub = make_subscription(SubscriptionStatus.TRIAL, trial_end=naive_end)

        assert machine.lapse_event(sub, NOW) == SubscriptionEvent.TRIAL_ENDED

    def test_active_past_period_end_becomes_past_due(self, machine):
        sub = make_subscription(
            SubscriptionStatus.ACTIVE, current_period_end=NOW - timedelta(hours=1)
        )

        machine.repair(sub, NOW)

        assert sub.status == SubscriptionStatus.PAST_DUE

    def test_grace_boundary_is_inclusive(self, machine):
        sub = make_subscription(
            SubscriptionStatus.PAST_DUE, current_period_end=NOW - timedelta(days=3)
        )
        assert machine.lapse_event(sub, NOW) is None

        later = NOW + timedelta(seconds=1)
        assert machine.lapse_event(sub, later) == SubscriptionEvent.GRACE_EXPIRED

    def test_repair_cascades_to_suspended(self, machine):
        sub = make_subscription(
            SubscriptionStatus.ACTIVE, current_period_end=NOW - timedelta(days=10)
        )

        transitions = machine.repair(sub, NOW)

        assert [t.to_status for t in transitions] == [
            SubscriptionStatus.PAST_DUE,
            SubscriptionStatus.SUSPENDED,
        ]
        assert sub.status == SubscriptionStatus.SUSPENDED

    def test_cancel_at_period_end_lapses_to_cancelled(self, machine):
        sub = make_subscription(
            SubscriptionStatus.ACTIVE,
            current_period_end=NOW - timedelta(minutes=5),
            cancels_at_period_end=True,
            auto_renew=False,
        )

        machine.repair(sub, NOW)

        assert sub.status == SubscriptionStatus.CANCELLED
        assert sub.cancels_at_period_end is False

    def test_pending_plan_applied_when_period_ends(self, machine):
        sub = make_subscription(
            SubscriptionStatus.ACTIVE,
            plan_id="plan-pro",
            current_period_end=NOW - timedelta(minutes=5),
            pending_plan_id="plan-starter",
            pending_plan_effective_at=NOW - timedelta(minutes=5),
        )

        machine.repair(sub, NOW)

        assert sub.plan_id == "plan-starter"
        assert sub.pending_plan_id is None
        assert sub.status == SubscriptionStatus.PAST_DUE

    @pytest.mark.parametrize(
        "status",
        [SubscriptionStatus.SUSPENDED, SubscriptionStatus.EXPIRED, SubscriptionStatus.CANCELLED],
    )
    def test_settled_states_do_not_lapse(self, machine, status):
        sub = make_subscription(status, current_period_end=NOW - timedelta(days=400))
        assert machine.repair(sub, NOW) == []


class TestCapture:
    """Payment capture extends or starts a period."""

    def test_capture_from_trial_starts_period_now(self, machine):
        sub = make_subscription(SubscriptionStatus.TRIAL, trial_end=NOW + timedelta(days=5))

        machine.capture(sub, NOW, plan_id="plan-pro", billing_cycle=BillingCycle.MONTHLY)

        assert sub.status == SubscriptionStatus.ACTIVE
        assert sub.plan_id == "plan-pro"
        assert sub.current_period_start == NOW
        assert sub.current_period_end == NOW + timedelta(days=30)
        assert sub.trial_end == NOW

    def test_early_renewal_extends_running_period(self, machine):
        period_end = NOW + timedelta(days=10)
        sub = make_subscription(
            SubscriptionStatus.ACTIVE,
            current_period_start=period_end - timedelta(days=30),
            current_period_end=period_end,
        )

        machine.capture(sub, NOW, plan_id="plan-starter", billing_cycle=BillingCycle.MONTHLY)

        assert sub.current_period_start == period_end
        assert sub.current_period_end == period_end + timedelta(days=30)

    def test_yearly_capture_from_suspended(self, machine):
        sub = make_subscription(
            SubscriptionStatus.SUSPENDED, current_period_end=NOW - timedelta(days=20)
        )

        machine.capture(sub, NOW, plan_id="plan-pro", billing_cycle=BillingCycle.YEARLY)

        assert sub.status == SubscriptionStatus.ACTIVE
        assert sub.billing_cycle == BillingCycle.YEARLY
        assert sub.current_period_end == NOW + timedelta(days=365)

    def test_capture_clears_scheduled_changes(self, machine):
        sub = make_subscription(
            SubscriptionStatus.ACTIVE,
            current_period_end=NOW + timedelta(days=1),
            cancels_at_period_end=True,
            auto_renew=False,
            cancel_reason="too expensive",
            pending_plan_id="plan-starter",
        )

        machine.capture(sub, NOW, plan_id="plan-pro", billing_cycle=BillingCycle.MONTHLY)

        assert sub.cancels_at_period_end is False
        assert sub.auto_renew is True
        assert sub.cancel_reason is None
        assert sub.pending_plan_id is None


class TestCancelImmediately:
    def test_cancel_trial(self, machine):
        sub = make_subscription(SubscriptionStatus.TRIAL, trial_end=NOW + timedelta(days=3))

        transition = machine.cancel_immediately(sub, NOW, "switching vendors")

        assert transition.from_status == SubscriptionStatus.TRIAL
        assert sub.status == SubscriptionStatus.CANCELLED
        assert sub.cancelled_at == NOW
        assert sub.cancel_reason == "switching vendors"
        assert sub.auto_renew is False

    def test_cancel_already_cancelled_conflicts(self, machine):
        sub = make_subscription(SubscriptionStatus.CANCELLED)

        with pytest.raises(StateConflictError):
            machine.cancel_immediately(sub, NOW, "again")
