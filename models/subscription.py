from datetime import datetime
from sqlalchemy import String, DateTime, ForeignKey, Integer, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.db import Base


class Subscription(Base):
    __tablename__ = "subscriptions"
    __table_args__ = (
        CheckConstraint("status IN ('trial', 'active', 'expired', 'cancelled')", name="ck_subscription_status"),
        CheckConstraint("whatsapp_orders_used >= 0", name="ck_subscription_whatsapp_used"),
        CheckConstraint("website_orders_used >= 0", name="ck_subscription_website_used"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    store_id: Mapped[int] = mapped_column(ForeignKey("stores.id", ondelete="CASCADE"), index=True)
    plan_id: Mapped[int] = mapped_column(ForeignKey("subscription_plans.id", ondelete="RESTRICT"), index=True)

    status: Mapped[str] = mapped_column(String(20), default="trial", index=True)
    billing_cycle: Mapped[str] = mapped_column(String(20), default="monthly")
    payment_gateway: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Billing period
    trial_ends_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    current_period_start: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    current_period_end: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Usage counters for the current period, only ever bumped by the quota ledger
    whatsapp_orders_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    website_orders_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    store = relationship("Store", back_populates="subscriptions")
    plan = relationship("SubscriptionPlan")
