"""
Subscription state machine.

The transition table is the only place that decides which status follows which
event. ``SubscriptionStateMachine`` applies those transitions to a subscription
row, deriving the time-based lapse events (trial end, period end, grace expiry)
from an injected clock reading.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

import structlog

from musterbook.platform.billing.clock import ensure_utc
from musterbook.platform.billing.config import LifecycleConfig
from musterbook.platform.billing.enums import BillingCycle, SubscriptionEvent, SubscriptionStatus
from musterbook.platform.billing.exceptions import StateConflictError
from musterbook.platform.billing.models import BillingSubscriptionTable

logger = structlog.get_logger(__name__)

S = SubscriptionStatus
E = SubscriptionEvent

TRANSITIONS: dict[tuple[SubscriptionStatus, SubscriptionEvent], SubscriptionStatus] = {
    (S.TRIAL, E.TRIAL_ENDED): S.EXPIRED,
    (S.TRIAL, E.PAYMENT_CAPTURED): S.ACTIVE,
    (S.TRIAL, E.CANCELLED_IMMEDIATELY): S.CANCELLED,
    (S.ACTIVE, E.PERIOD_ENDED): S.PAST_DUE,
    (S.ACTIVE, E.PERIOD_ENDED_CANCELLED): S.CANCELLED,
    (S.ACTIVE, E.PAYMENT_CAPTURED): S.ACTIVE,
    (S.ACTIVE, E.CANCELLED_IMMEDIATELY): S.CANCELLED,
    (S.PAST_DUE, E.GRACE_EXPIRED): S.SUSPENDED,
    (S.PAST_DUE, E.PAYMENT_CAPTURED): S.ACTIVE,
    (S.PAST_DUE, E.CANCELLED_IMMEDIATELY): S.CANCELLED,
    (S.SUSPENDED, E.PAYMENT_CAPTURED): S.ACTIVE,
    (S.SUSPENDED, E.CANCELLED_IMMEDIATELY): S.CANCELLED,
    (S.EXPIRED, E.PAYMENT_CAPTURED): S.ACTIVE,
    (S.CANCELLED, E.PAYMENT_CAPTURED): S.ACTIVE,
}


def next_status(status: SubscriptionStatus, event: SubscriptionEvent) -> SubscriptionStatus:
    """Look up the status reached from ``status`` on ``event``."""
    try:
        return TRANSITIONS[(status, event)]
    except KeyError:
        raise StateConflictError(
            f"Cannot apply {event.value} to a subscription in {status.value}",
            current_state=status.value,
            requested=event.value,
        ) from None


@dataclass(frozen=True)
class Transition:
    """A status change applied to a subscription."""

    event: SubscriptionEvent
    from_status: SubscriptionStatus
    to_status: SubscriptionStatus
    at: datetime


class SubscriptionStateMachine:
    """Applies lifecycle events to subscription rows."""

    def __init__(self, config: LifecycleConfig | None = None) -> None:
        self.config = config or LifecycleConfig()

    @property
    def grace_period(self) -> timedelta:
        return timedelta(days=self.config.grace_period_days)

    def period_length(self, cycle: BillingCycle) -> timedelta:
        if cycle == BillingCycle.YEARLY:
            return timedelta(days=self.config.yearly_period_days)
        return timedelta(days=self.config.monthly_period_days)

    # ------------------------------------------------------------------
    # Lapse evaluation
    # ------------------------------------------------------------------

    def lapse_event(
        self, subscription: BillingSubscriptionTable, now: datetime
    ) -> SubscriptionEvent | None:
        """Return the lapse event the clock implies for ``subscription``, if any."""
        status = subscription.status
        trial_end = ensure_utc(subscription.trial_end)
        period_end = ensure_utc(subscription.current_period_end)

        if status == S.TRIAL:
            if trial_end is not None and trial_end < now:
                return E.TRIAL_ENDED
            return None

        if status == S.ACTIVE:
            if period_end is not None and period_end < now:
                if subscription.cancels_at_period_end:
                    return E.PERIOD_ENDED_CANCELLED
                return E.PERIOD_ENDED
            return None

        if status == S.PAST_DUE:
            # Exactly grace_period after period end is still within grace
            if period_end is not None and now > period_end + self.grace_period:
                return E.GRACE_EXPIRED
            return None

        return None

    def repair(self, subscription: BillingSubscriptionTable, now: datetime) -> list[Transition]:
        """Apply lapse events until the subscription is consistent with ``now``."""
        applied: list[Transition] = []
        while (event := self.lapse_event(subscription, now)) is not None:
            applied.append(self._apply_lapse(subscription, event, now))
        return applied

    def _apply_lapse(
        self, subscription: BillingSubscriptionTable, event: SubscriptionEvent, now: datetime
    ) -> Transition:
        from_status = subscription.status
        to_status = next_status(from_status, event)

        if event == E.PERIOD_ENDED and subscription.pending_plan_id:
            logger.info(
                "Applying scheduled plan change at period end",
                subscription_id=subscription.id,
                from_plan_id=subscription.plan_id,
                to_plan_id=subscription.pending_plan_id,
            )
            subscription.plan_id = subscription.pending_plan_id
            subscription.pending_plan_id = None
            subscription.pending_plan_effective_at = None

        if event == E.PERIOD_ENDED_CANCELLED:
            subscription.cancels_at_period_end = False
            subscription.auto_renew = False

        subscription.status = to_status
        return Transition(event=event, from_status=from_status, to_status=to_status, at=now)

    # ------------------------------------------------------------------
    # Explicit events
    # ------------------------------------------------------------------

    def capture(
        self,
        subscription: BillingSubscriptionTable,
        now: datetime,
        *,
        plan_id: str,
        billing_cycle: BillingCycle,
    ) -> Transition:
        """Activate or extend the subscription for one paid period."""
        from_status = subscription.status
        to_status = next_status(from_status, E.PAYMENT_CAPTURED)

        period_end = ensure_utc(subscription.current_period_end)
        if from_status == S.ACTIVE and period_end is not None and period_end > now:
            # Early renewal extends the running period
            period_start = period_end
        else:
            period_start = now

        subscription.status = to_status
        subscription.plan_id = plan_id
        subscription.billing_cycle = billing_cycle
        subscription.current_period_start = period_start
        subscription.current_period_end = period_start + self.period_length(billing_cycle)
        subscription.auto_renew = True
        subscription.cancels_at_period_end = False
        subscription.cancelled_at = None
        subscription.cancel_reason = None
        subscription.cancel_effective_at = None
        subscription.pending_plan_id = None
        subscription.pending_plan_effective_at = None

        trial_end = ensure_utc(subscription.trial_end)
        if trial_end is not None and trial_end > now:
            subscription.trial_end = now

        return Transition(
            event=E.PAYMENT_CAPTURED, from_status=from_status, to_status=to_status, at=now
        )

    def cancel_immediately(
        self, subscription: BillingSubscriptionTable, now: datetime, reason: str
    ) -> Transition:
        from_status = subscription.status
        to_status = next_status(from_status, E.CANCELLED_IMMEDIATELY)

        subscription.status = to_status
        subscription.cancelled_at = now
        subscription.cancel_reason = reason
        subscription.cancel_effective_at = now
        subscription.cancels_at_period_end = False
        subscription.auto_renew = False
        subscription.pending_plan_id = None
        subscription.pending_plan_effective_at = None

        return Transition(
            event=E.CANCELLED_IMMEDIATELY, from_status=from_status, to_status=to_status, at=now
        )


__all__ = [
    "TRANSITIONS",
    "Transition",
    "SubscriptionStateMachine",
    "next_status",
]
