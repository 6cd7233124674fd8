"""Per-channel order counters with an atomic check-and-increment.

``try_admit`` is the only code path that changes a usage counter. The cap
comparison and the increment happen in one conditional UPDATE, so two
checkouts racing for the last slot cannot both be admitted:

    UPDATE subscriptions
       SET <channel>_orders_used = <channel>_orders_used + 1
     WHERE id = :id
       AND <row is trial/active and its period has not ended>
       [AND <channel>_orders_used < :cap]
    RETURNING <channel>_orders_used

Disabled channels never reach the UPDATE. Unlimited channels still count
orders but skip the cap comparison.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from core.channels import Channel, ChannelLimit, Disabled, Limited, limit_from_column
from models.subscription import Subscription
from models.subscription_plan import SubscriptionPlan
from services.results import Admitted, Rejected, RejectionReason, AdmissionResult
from services.subscriptions import SubscriptionStatus, derive_status

logger = logging.getLogger(__name__)

subscriptions = Subscription.__table__
plans = SubscriptionPlan.__table__

COUNTER_COLUMNS = {
    Channel.WHATSAPP: subscriptions.c.whatsapp_orders_used,
    Channel.WEBSITE: subscriptions.c.website_orders_used,
}
LIMIT_COLUMNS = {
    Channel.WHATSAPP: plans.c.whatsapp_orders_limit,
    Channel.WEBSITE: plans.c.website_orders_limit,
}


def _entitled_at(now: datetime):
    """SQL form of derive_status(row, now) in (trial, active)."""
    trial_end = func.coalesce(subscriptions.c.trial_ends_at, subscriptions.c.current_period_end)
    period_end = subscriptions.c.current_period_end
    return or_(
        and_(
            subscriptions.c.status == SubscriptionStatus.TRIAL.value,
            or_(trial_end.is_(None), trial_end > now),
        ),
        and_(
            subscriptions.c.status == SubscriptionStatus.ACTIVE.value,
            or_(period_end.is_(None), period_end > now),
        ),
    )


def read_plan_limit(db: Session, subscription_id: int, channel: Channel) -> Optional[ChannelLimit]:
    """Plan limit for the subscription's channel, or None when the subscription does not exist."""
    row = db.execute(
        select(LIMIT_COLUMNS[Channel(channel)])
        .select_from(subscriptions.join(plans, subscriptions.c.plan_id == plans.c.id))
        .where(subscriptions.c.id == subscription_id)
    ).first()
    if row is None:
        return None
    return limit_from_column(row[0])


def read_usage(db: Session, subscription_id: int, channel: Channel) -> Optional[int]:
    """Current counter value, for reporting only. Never feed this into a write."""
    return db.execute(
        select(COUNTER_COLUMNS[Channel(channel)]).where(subscriptions.c.id == subscription_id)
    ).scalar_one_or_none()


def _diagnose(db: Session, subscription_id: int, channel: Channel, limit: ChannelLimit, now: datetime) -> Rejected:
    row = db.execute(
        select(
            subscriptions.c.status,
            subscriptions.c.trial_ends_at,
            subscriptions.c.current_period_end,
            COUNTER_COLUMNS[channel].label("used"),
        ).where(subscriptions.c.id == subscription_id)
    ).first()
    if row is None:
        return Rejected(RejectionReason.NO_SUBSCRIPTION, channel=channel)
    status = derive_status(row, now)
    if status is SubscriptionStatus.EXPIRED:
        return Rejected(RejectionReason.SUBSCRIPTION_EXPIRED, channel=channel)
    if status is SubscriptionStatus.CANCELLED:
        return Rejected(RejectionReason.SUBSCRIPTION_INACTIVE, channel=channel)
    return Rejected(RejectionReason.QUOTA_EXHAUSTED, channel=channel, used=row.used, limit=limit)


def _expire_cached_row(db: Session, subscription_id: int, channel: Channel) -> None:
    instance = db.identity_map.get(db.identity_key(Subscription, subscription_id))
    if instance is not None:
        db.expire(instance, [COUNTER_COLUMNS[channel].key, "updated_at"])


def try_admit(
    db: Session,
    subscription_id: int,
    channel: Channel,
    on_admit: Optional[Callable[[Session, int], None]] = None,
    now: Optional[datetime] = None,
) -> AdmissionResult:
    """Admit one order on ``channel`` and count it, or reject without touching the counter.

    ``on_admit(db, used)`` runs inside the incrementing transaction before it
    commits; an IntegrityError raised there rolls the increment back and is
    re-raised to the caller.
    """
    channel = Channel(channel)
    counter = COUNTER_COLUMNS[channel]
    now = now or datetime.utcnow()
    try:
        limit = read_plan_limit(db, subscription_id, channel)
        if limit is None:
            db.rollback()
            return Rejected(RejectionReason.NO_SUBSCRIPTION, channel=channel)
        if isinstance(limit, Disabled):
            db.rollback()
            return Rejected(RejectionReason.CHANNEL_DISABLED, channel=channel, limit=limit)

        stmt = (
            update(subscriptions)
            .where(subscriptions.c.id == subscription_id, _entitled_at(now))
            .values({counter: counter + 1})
            .returning(counter)
        )
        if isinstance(limit, Limited):
            stmt = stmt.where(counter < limit.cap)

        used = db.execute(stmt).scalar_one_or_none()
        if used is None:
            db.rollback()
            rejected = _diagnose(db, subscription_id, channel, limit, now)
            db.rollback()
            return rejected

        if on_admit is not None:
            on_admit(db, used)
        db.commit()
    except IntegrityError:
        db.rollback()
        raise
    except OperationalError as e:
        db.rollback()
        logger.warning("Transient conflict admitting %s order on subscription %s: %s", channel.value, subscription_id, e)
        return Rejected(RejectionReason.TRANSIENT_CONFLICT, channel=channel)

    _expire_cached_row(db, subscription_id, channel)
    logger.info("Admitted %s order on subscription %s (used=%s, limit=%s)", channel.value, subscription_id, used, limit)
    return Admitted(subscription_id=subscription_id, channel=channel, used=used, limit=limit)
