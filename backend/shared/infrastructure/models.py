"""
SQLAlchemy ORM models for the social graph.

The gateway only reads these tables: users for public profile fields and
friendships for block / acceptance state. Writes belong to the REST layer.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, String, UniqueConstraint, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class FriendshipStatus(str, Enum):
    """Persisted friendship states."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    BLOCKED = "blocked"


class User(Base):
    """Application user. IDs are opaque strings issued by the REST layer."""

    __tablename__ = "app_user"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    avatar: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="offline")
    last_active: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<User id={self.id!r} name={self.name!r}>"


class Friendship(Base):
    """
    Directed friendship record.

    requester_id sent the request (or created the block); recipient_id received it.
    blocked_by is set only when status is "blocked".
    """

    __tablename__ = "friendship"
    __table_args__ = (
        UniqueConstraint("requester_id", "recipient_id", name="uq_friendship_pair"),
        Index("ix_friendship_recipient", "recipient_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    requester_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False
    )
    recipient_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=FriendshipStatus.PENDING.value
    )
    blocked_by: Mapped[Optional[str]] = mapped_column(
        String(64), ForeignKey("app_user.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )

    def __repr__(self) -> str:
        return (
            f"<Friendship {self.requester_id!r}->{self.recipient_id!r} "
            f"status={self.status!r}>"
        )
