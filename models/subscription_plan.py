from datetime import datetime
from sqlalchemy import String, Boolean, DateTime, Integer, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base
from core.channels import Channel, ChannelLimit, limit_from_column


class SubscriptionPlan(Base):
    __tablename__ = "subscription_plans"
    __table_args__ = (
        CheckConstraint("whatsapp_orders_limit IS NULL OR whatsapp_orders_limit >= 0", name="ck_plan_whatsapp_limit"),
        CheckConstraint("website_orders_limit IS NULL OR website_orders_limit >= 0", name="ck_plan_website_limit"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(100))
    slug: Mapped[str] = mapped_column(String(100), unique=True, index=True)

    # Per-channel order limits: NULL disables the channel, 0 is unlimited, N caps each period
    whatsapp_orders_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    website_orders_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)

    billing_cycle: Mapped[str] = mapped_column(String(20), default="monthly")  # monthly, yearly
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    def limit_for(self, channel: Channel) -> ChannelLimit:
        if channel is Channel.WHATSAPP:
            return limit_from_column(self.whatsapp_orders_limit)
        return limit_from_column(self.website_orders_limit)

    def limits(self) -> dict[Channel, ChannelLimit]:
        return {channel: self.limit_for(channel) for channel in Channel}
