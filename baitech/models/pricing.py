"""
SQLAlchemy model for versioned pricing configurations.

Every edit publishes a new row; history is never mutated. A partial unique
index guarantees that at most one row is flagged active.
"""

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, JSONDocument, TimestampMixin, UUIDPrimaryKeyMixin, utcnow


class PricingConfig(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "pricing_configs"
    __table_args__ = (
        Index(
            "uq_pricing_configs_single_active",
            "is_active",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    version: Mapped[int] = mapped_column(Integer, unique=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="KES")

    # Validated into ``PricingRules`` on load
    rules: Mapped[dict[str, Any]] = mapped_column(JSONDocument, nullable=False)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    effective_from: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    def __repr__(self) -> str:
        return (
            f"<PricingConfig(id={self.id}, version={self.version}, "
            f"active={self.is_active})>"
        )
