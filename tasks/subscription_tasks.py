import logging

from celery import current_app

import models  # noqa: F401
from core.db import db_session
from services import billing

logger = logging.getLogger(__name__)


@current_app.task(bind=True, max_retries=3)
def expire_lapsed_subscriptions_task(self):
    """
    Daily sweep: flip trial/active subscriptions whose period has ended to expired.
    Retries up to 3 times on failure.
    """
    try:
        with db_session() as db:
            expired = billing.expire_lapsed_subscriptions(db)
    except Exception as exc:
        logger.exception("Expiry sweep failed")
        # Retry with exponential backoff
        countdown = min(2 ** self.request.retries, 60)  # Max 60 seconds
        raise self.retry(exc=exc, countdown=countdown)
    return {"status": "ok", "expired": expired}


@current_app.task(bind=True, max_retries=3)
def renew_subscription_task(self, subscription_id: int, reset_counters: bool = True, payment_gateway: str | None = None):
    """
    Start a new billing period for a subscription after payment or manual renewal.
    """
    try:
        with db_session() as db:
            subscription = billing.renew_subscription(
                db,
                subscription_id,
                reset_counters=reset_counters,
                payment_gateway=payment_gateway,
            )
            period_end = subscription.current_period_end.isoformat()
    except (LookupError, billing.InvalidTransition) as exc:
        # Permanent failures, retrying will not help
        logger.error("Renewal of subscription %s rejected: %s", subscription_id, exc)
        return {"status": "failed", "error": str(exc)}
    except Exception as exc:
        countdown = min(2 ** self.request.retries, 60)
        raise self.retry(exc=exc, countdown=countdown)
    return {"status": "renewed", "subscription_id": subscription_id, "current_period_end": period_end}


@current_app.task
def cancel_subscription_task(subscription_id: int):
    with db_session() as db:
        billing.cancel_subscription(db, subscription_id)
    return {"status": "cancelled", "subscription_id": subscription_id}
