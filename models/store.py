from datetime import datetime
from sqlalchemy import String, Boolean, DateTime
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.db import Base


class Store(Base):
    __tablename__ = "stores"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(150), index=True)

    # Tenant identity: path slug, platform subdomain and optional custom domain.
    # Old values are loaded on change so cached lookups under them can be dropped.
    slug: Mapped[str] = mapped_column(String(100), unique=True, index=True, active_history=True)
    subdomain: Mapped[str | None] = mapped_column(String(63), unique=True, nullable=True, index=True, active_history=True)
    custom_domain: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True, index=True, active_history=True)

    # Status
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    subscriptions = relationship("Subscription", back_populates="store", cascade="all, delete-orphan")
