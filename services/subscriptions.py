"""Derived subscription state for a store.

A store can carry several historical subscription rows, so the status that
governs ordering is derived rather than read from a single field:

* only ``trial`` and ``active`` rows are candidates;
* the most recently updated ``active`` row wins, otherwise the most recently
  updated ``trial`` row (equal ``updated_at`` values fall back to the higher id);
* if the chosen row's period has already ended it counts as ``expired``,
  whatever its stored status says.

When there is no live row the latest historical row's status (``expired`` or
``cancelled``) is reported. This module only reads; status changes belong to
``services.billing``.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable, Optional, Sequence

from sqlalchemy.orm import Session, joinedload

from core.channels import Channel, ChannelLimit
from models.subscription import Subscription


class SubscriptionStatus(str, Enum):
    TRIAL = "trial"
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    @property
    def is_live(self) -> bool:
        return self in LIVE_STATUSES


LIVE_STATUSES = frozenset({SubscriptionStatus.TRIAL, SubscriptionStatus.ACTIVE})

ALLOWED_TRANSITIONS: dict[SubscriptionStatus, frozenset[SubscriptionStatus]] = {
    SubscriptionStatus.TRIAL: frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.EXPIRED, SubscriptionStatus.CANCELLED}),
    SubscriptionStatus.ACTIVE: frozenset({SubscriptionStatus.EXPIRED, SubscriptionStatus.CANCELLED}),
    # Manual renewal brings an expired subscription back
    SubscriptionStatus.EXPIRED: frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELLED}),
    SubscriptionStatus.CANCELLED: frozenset(),
}


def can_transition(current: SubscriptionStatus, target: SubscriptionStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def stored_status(row) -> SubscriptionStatus:
    return SubscriptionStatus(row.status)


def effective_period_end(row) -> Optional[datetime]:
    """Trials end at ``trial_ends_at``; paid periods at ``current_period_end``."""
    if stored_status(row) is SubscriptionStatus.TRIAL:
        return row.trial_ends_at or row.current_period_end
    return row.current_period_end


def derive_status(row, now: datetime) -> SubscriptionStatus:
    status = stored_status(row)
    if status.is_live:
        period_end = effective_period_end(row)
        if period_end is not None and period_end <= now:
            return SubscriptionStatus.EXPIRED
    return status


def _recency(row):
    return (row.updated_at or row.created_at or datetime.min, row.id or 0)


def select_current_subscription(rows: Iterable, now: datetime) -> Optional[tuple[object, SubscriptionStatus]]:
    """Pick the authoritative row and its derived status, or None for no rows."""
    rows = list(rows)
    if not rows:
        return None

    for preferred in (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIAL):
        candidates = [row for row in rows if stored_status(row) is preferred]
        if candidates:
            row = max(candidates, key=_recency)
            return row, derive_status(row, now)

    latest = max(rows, key=_recency)
    return latest, stored_status(latest)


@dataclass(frozen=True)
class SubscriptionState:
    status: SubscriptionStatus
    subscription_id: int
    plan_id: int
    limits: dict[Channel, ChannelLimit] = field(default_factory=dict)
    usage: dict[Channel, int] = field(default_factory=dict)
    period_end: Optional[datetime] = None

    @property
    def is_entitled(self) -> bool:
        return self.status.is_live


def usage_counters(row) -> dict[Channel, int]:
    return {
        Channel.WHATSAPP: row.whatsapp_orders_used or 0,
        Channel.WEBSITE: row.website_orders_used or 0,
    }


def build_state(row, status: SubscriptionStatus) -> SubscriptionState:
    return SubscriptionState(
        status=status,
        subscription_id=row.id,
        plan_id=row.plan_id,
        limits=row.plan.limits(),
        usage=usage_counters(row),
        period_end=effective_period_end(row),
    )


def load_subscription_rows(db: Session, store_id: int) -> Sequence[Subscription]:
    return (
        db.query(Subscription)
        .options(joinedload(Subscription.plan))
        .filter(Subscription.store_id == store_id)
        .all()
    )


def load_subscription_state(db: Session, store_id: int, now: Optional[datetime] = None) -> Optional[SubscriptionState]:
    """Derive the store's current subscription state; None when it has no subscription rows."""
    now = now or datetime.utcnow()
    selected = select_current_subscription(load_subscription_rows(db, store_id), now)
    if selected is None:
        return None
    row, status = selected
    return build_state(row, status)
