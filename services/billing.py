"""Billing housekeeping: the jobs that move subscriptions between states.

Admission only reads subscription status. Everything here runs outside the
checkout path, from Celery tasks or operator tooling.
"""

import calendar
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from models.subscription import Subscription
from services.subscriptions import (
    LIVE_STATUSES,
    SubscriptionStatus,
    can_transition,
    effective_period_end,
)

logger = logging.getLogger(__name__)


class InvalidTransition(Exception):
    def __init__(self, subscription_id: int, current: SubscriptionStatus, target: SubscriptionStatus):
        self.subscription_id = subscription_id
        self.current = current
        self.target = target
        super().__init__(f"Subscription {subscription_id} cannot move from {current.value} to {target.value}")


def add_billing_cycle(start: datetime, billing_cycle: str) -> datetime:
    """Advance by one month or one year, clamping to the end of shorter months."""
    months = 12 if billing_cycle == "yearly" else 1
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def transition(subscription: Subscription, target: SubscriptionStatus, now: datetime) -> None:
    current = SubscriptionStatus(subscription.status)
    if current is target:
        return
    if not can_transition(current, target):
        raise InvalidTransition(subscription.id, current, target)
    subscription.status = target.value
    subscription.updated_at = now
    if target is SubscriptionStatus.CANCELLED:
        subscription.cancelled_at = now


def _get(db: Session, subscription_id: int) -> Subscription:
    subscription = db.get(Subscription, subscription_id)
    if subscription is None:
        raise LookupError(f"Subscription {subscription_id} not found")
    return subscription


def expire_lapsed_subscriptions(db: Session, now: Optional[datetime] = None) -> int:
    """Mark live subscriptions whose period has ended as expired. Counters are left as they are."""
    now = now or datetime.utcnow()
    candidates = db.query(Subscription).filter(
        Subscription.status.in_([status.value for status in LIVE_STATUSES])
    ).all()

    expired = 0
    for subscription in candidates:
        period_end = effective_period_end(subscription)
        if period_end is not None and period_end <= now:
            transition(subscription, SubscriptionStatus.EXPIRED, now)
            expired += 1
            logger.info("Expired subscription %s (period ended %s)", subscription.id, period_end)
    db.flush()
    return expired


def renew_subscription(
    db: Session,
    subscription_id: int,
    now: Optional[datetime] = None,
    reset_counters: bool = True,
    payment_gateway: Optional[str] = None,
) -> Subscription:
    """Start a new billing period; resetting the counters is the period rollover."""
    now = now or datetime.utcnow()
    subscription = _get(db, subscription_id)
    transition(subscription, SubscriptionStatus.ACTIVE, now)

    # Early renewals extend the running period instead of discarding it
    period_end = subscription.current_period_end
    start = period_end if period_end is not None and period_end > now else now
    subscription.current_period_start = start
    subscription.current_period_end = add_billing_cycle(start, subscription.billing_cycle)
    subscription.updated_at = now
    if payment_gateway:
        subscription.payment_gateway = payment_gateway
    if reset_counters:
        subscription.whatsapp_orders_used = 0
        subscription.website_orders_used = 0
    db.flush()
    logger.info("Renewed subscription %s until %s", subscription.id, subscription.current_period_end)
    return subscription


def cancel_subscription(db: Session, subscription_id: int, now: Optional[datetime] = None) -> Subscription:
    now = now or datetime.utcnow()
    subscription = _get(db, subscription_id)
    transition(subscription, SubscriptionStatus.CANCELLED, now)
    db.flush()
    logger.info("Cancelled subscription %s", subscription.id)
    return subscription
