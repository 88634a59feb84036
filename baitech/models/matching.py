"""
SQLAlchemy models for technician matching: matchings and matching_preferences.

A ``Matching`` row is written for every suggestion returned by a search so
that views, acceptance, rejection and feedback can be audited later.
"""

import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import DateTime, Enum, Float, ForeignKey, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, JSONDocument, TimestampMixin, UUIDPrimaryKeyMixin
from .taxonomy import ServiceCategory, UrgencyLevel


class MatchStatus(str, enum.Enum):
    SUGGESTED = "suggested"
    VIEWED = "viewed"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


class Matching(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "matchings"

    session_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    customer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    technician_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # Request snapshot
    service_category: Mapped[ServiceCategory] = mapped_column(
        Enum(ServiceCategory, name="service_category"), nullable=False
    )
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    urgency: Mapped[UrgencyLevel] = mapped_column(
        Enum(UrgencyLevel, name="urgency_level"), nullable=False, default=UrgencyLevel.MEDIUM
    )
    budget: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    preferred_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Scoring output
    scores: Mapped[dict[str, Any]] = mapped_column(JSONDocument, nullable=False)
    distance_km: Mapped[float] = mapped_column(Float, nullable=False)
    algorithm: Mapped[dict[str, Any]] = mapped_column(JSONDocument, nullable=False)
    match_reasons: Mapped[list[Any]] = mapped_column(JSONDocument, nullable=False, default=list)
    rank: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Lifecycle
    status: Mapped[MatchStatus] = mapped_column(
        Enum(MatchStatus, name="match_status"), nullable=False, default=MatchStatus.SUGGESTED
    )
    booking_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    feedback: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONDocument, nullable=True)
    viewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    responded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<Matching(id={self.id}, technician={self.technician_id}, "
            f"status={self.status})>"
        )


class MatchingPreference(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "matching_preferences"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )

    # Search filters
    max_distance_km: Mapped[float] = mapped_column(Float, nullable=False, default=50.0)
    min_rating: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Scoring
    custom_weights: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONDocument, nullable=True)
    preferred_technician_ids: Mapped[list[Any]] = mapped_column(
        JSONDocument, nullable=False, default=list
    )
    blocked_technicians: Mapped[list[Any]] = mapped_column(
        JSONDocument, nullable=False, default=list
    )

    # Counters
    total_matches: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    successful_bookings: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_match_request: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    @property
    def blocked_ids(self) -> set[str]:
        return {entry["technician_id"] for entry in self.blocked_technicians or []}

    def __repr__(self) -> str:
        return f"<MatchingPreference(user={self.user_id}, max_distance={self.max_distance_km})>"
