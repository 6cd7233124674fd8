from datetime import datetime
from sqlalchemy import String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base


class OrderAdmission(Base):
    """Keyed record of one successful admission, written with the counter increment."""

    __tablename__ = "order_admissions"
    __table_args__ = (UniqueConstraint("store_id", "admission_key", name="uq_admission_store_key"),)

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    admission_key: Mapped[str] = mapped_column(String(100), index=True)
    store_id: Mapped[int] = mapped_column(ForeignKey("stores.id", ondelete="CASCADE"), index=True)
    subscription_id: Mapped[int] = mapped_column(ForeignKey("subscriptions.id", ondelete="CASCADE"), index=True)
    channel: Mapped[str] = mapped_column(String(20))
    order_id: Mapped[int | None] = mapped_column(ForeignKey("orders.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
