"""Order admission: decide whether one checkout may create an order.

The gate resolves the tenant, checks the derived subscription state, maps
the payment method to a channel and asks the quota ledger for a slot. An
``Admitted`` result means the channel counter has already been incremented;
callers persist the order and never increment anything themselves.

Callers that may time out pass an ``admission_key``. The key is recorded in
the same transaction as the increment, so repeating the call with the same
key returns the original admission instead of consuming a second slot.
"""

import logging
from dataclasses import replace
from datetime import datetime
from typing import Iterable, Optional, Union

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from tenacity import RetryCallState, Retrying, retry_if_result, stop_after_attempt, wait_incrementing

from core.channels import Channel, channel_for_payment_method, has_capacity
from core.config import settings
from models.admission import OrderAdmission
from services import quota_ledger
from services.results import Admitted, Rejected, RejectionReason, AdmissionResult
from services.subscriptions import SubscriptionState, SubscriptionStatus, load_subscription_state
from services.tenant_directory import StoreRecord, TenantDirectory, tenant_directory

logger = logging.getLogger(__name__)

_FALLBACK_REASONS = (RejectionReason.CHANNEL_DISABLED, RejectionReason.QUOTA_EXHAUSTED)


def lookup_admission(db: Session, store_id: int, admission_key: str) -> Optional[OrderAdmission]:
    return db.query(OrderAdmission).filter(
        OrderAdmission.store_id == store_id,
        OrderAdmission.admission_key == admission_key,
    ).one_or_none()


def attach_order(db: Session, store_id: int, admission_key: str, order_id: int) -> bool:
    """Claim the admission for ``order_id``; the caller commits.

    Returns False when another order already holds the admission, in which
    case the caller must discard its own order.
    """
    claimed = db.execute(
        update(OrderAdmission)
        .where(
            OrderAdmission.store_id == store_id,
            OrderAdmission.admission_key == admission_key,
            OrderAdmission.order_id.is_(None),
        )
        .values(order_id=order_id)
        .execution_options(synchronize_session="evaluate")
    ).rowcount
    return claimed == 1


def _is_transient(result: AdmissionResult) -> bool:
    return isinstance(result, Rejected) and result.reason is RejectionReason.TRANSIENT_CONFLICT


def fallback_channel(state: SubscriptionState, channel: Channel) -> Optional[Channel]:
    other = channel.other
    if has_capacity(state.limits[other], state.usage.get(other, 0)):
        return other
    return None


def _replay(db: Session, record: OrderAdmission, store: StoreRecord) -> Admitted:
    channel = Channel(record.channel)
    return Admitted(
        subscription_id=record.subscription_id,
        channel=channel,
        used=quota_ledger.read_usage(db, record.subscription_id, channel) or 0,
        limit=quota_ledger.read_plan_limit(db, record.subscription_id, channel),
        store=store,
        admission_key=record.admission_key,
        replayed=True,
    )


def _recorder(store: StoreRecord, admission_key: str, subscription_id: int, channel: Channel):
    def _record(db: Session, used: int) -> None:
        db.add(OrderAdmission(
            admission_key=admission_key,
            store_id=store.id,
            subscription_id=subscription_id,
            channel=channel.value,
        ))
        db.flush()
    return _record


def _state_rejection(state: Optional[SubscriptionState], store: StoreRecord, channel: Channel) -> Optional[Rejected]:
    if state is None:
        return Rejected(RejectionReason.NO_SUBSCRIPTION, channel=channel, store=store)
    if state.status is SubscriptionStatus.EXPIRED:
        return Rejected(RejectionReason.SUBSCRIPTION_EXPIRED, channel=channel, store=store)
    if state.status is SubscriptionStatus.CANCELLED:
        return Rejected(RejectionReason.SUBSCRIPTION_INACTIVE, channel=channel, store=store)
    return None


def admit_order(
    db: Session,
    identifiers: Union[str, Iterable[str]],
    payment_method: Optional[str],
    admission_key: Optional[str] = None,
    now: Optional[datetime] = None,
    directory: Optional[TenantDirectory] = None,
    max_retries: Optional[int] = None,
    backoff_ms: Optional[int] = None,
) -> AdmissionResult:
    """Admit one order for the tenant named by ``identifiers``.

    Args:
        db: Database session; the ledger commits the increment on it.
        identifiers: A tenant identifier or resolver candidates in priority order.
        payment_method: ``cod`` routes to WhatsApp, anything else to the website channel.
        admission_key: Optional idempotency key for retried checkouts.
        now: Clock override for derived expiry.

    Returns:
        ``Admitted`` with the store and channel, or ``Rejected`` with a reason.
        Rejections never change a counter.
    """
    if isinstance(identifiers, str):
        identifiers = (identifiers,)
    directory = directory or tenant_directory
    max_retries = settings.ADMISSION_MAX_RETRIES if max_retries is None else max_retries
    backoff_ms = settings.ADMISSION_RETRY_BACKOFF_MS if backoff_ms is None else backoff_ms
    now = now or datetime.utcnow()

    store = directory.resolve_first(db, identifiers)
    if store is None:
        return Rejected(RejectionReason.STORE_NOT_FOUND)

    channel = channel_for_payment_method(payment_method)

    if admission_key:
        existing = lookup_admission(db, store.id, admission_key)
        if existing is not None:
            logger.info("Replaying admission %r for store %s", admission_key, store.id)
            return _replay(db, existing, store)

    state = load_subscription_state(db, store.id, now)
    rejected = _state_rejection(state, store, channel)
    if rejected is not None:
        return rejected

    on_admit = _recorder(store, admission_key, state.subscription_id, channel) if admission_key else None

    def _give_up(retry_state: RetryCallState) -> AdmissionResult:
        logger.warning(
            "Giving up on store %s %s admission after %s attempts",
            store.id, channel.value, retry_state.attempt_number,
        )
        return retry_state.outcome.result()

    backoff = backoff_ms / 1000.0
    retryer = Retrying(
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_incrementing(start=backoff, increment=backoff),
        retry=retry_if_result(_is_transient),
        retry_error_callback=_give_up,
    )
    try:
        result = retryer(
            lambda: quota_ledger.try_admit(db, state.subscription_id, channel, on_admit=on_admit, now=now)
        )
    except IntegrityError:
        # Another request recorded the same key first and its increment stands
        existing = lookup_admission(db, store.id, admission_key) if admission_key else None
        if existing is None:
            raise
        return _replay(db, existing, store)

    if isinstance(result, Admitted):
        return replace(result, store=store, admission_key=admission_key)

    fallback = fallback_channel(state, channel) if result.reason in _FALLBACK_REASONS else None
    logger.info("Rejected %s order for store %s: %s", channel.value, store.id, result.reason.value)
    return replace(result, store=store, fallback_channel=fallback)
