"""SQLAlchemy ORM models for tavern-core."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from app.domain.ids import new_id

# Naming convention for constraints — required for Alembic batch mode (SQLite)
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=convention)


class GameSession(Base):
    """One game instance, addressed by its join code."""

    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    code: Mapped[str] = mapped_column(String(16), nullable=False)
    authority_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    started: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # Plain reference, not a foreign key: locations already point back at sessions.
    active_location_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    players: Mapped[list[Player]] = relationship(
        back_populates="session", cascade="all, delete-orphan", passive_deletes=True
    )
    locations: Mapped[list[Location]] = relationship(
        back_populates="session", cascade="all, delete-orphan", passive_deletes=True
    )
    items: Mapped[list[Item]] = relationship(
        back_populates="session", cascade="all, delete-orphan", passive_deletes=True
    )

    def __str__(self) -> str:
        return f"Session {self.code} ({'started' if self.started else 'lobby'})"

    __table_args__ = (
        Index("ix_session_code", "code", unique=True),
        Index("ix_session_expires", "expires_at"),
    )


class Location(Base):
    """A place the party can be at; at most one per session is active."""

    __tablename__ = "locations"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    session_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    session: Mapped[GameSession] = relationship(back_populates="locations")

    def __str__(self) -> str:
        return self.name

    __table_args__ = (
        Index("ix_location_session", "session_id"),
    )


class Player(Base):
    """A participant of one session, keyed by the platform user id."""

    __tablename__ = "players"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    session_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False
    )
    external_id: Mapped[str] = mapped_column(String(128), nullable=False)
    name: Mapped[str] = mapped_column(String(64), nullable=False)
    avatar: Mapped[str | None] = mapped_column(String(32), nullable=True)
    hp: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    currency: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_authority: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    bio: Mapped[str | None] = mapped_column(Text, nullable=True)
    sheet: Mapped[str | None] = mapped_column(Text, nullable=True)
    location_id: Mapped[str | None] = mapped_column(
        String(32), ForeignKey("locations.id", ondelete="SET NULL"), nullable=True
    )
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    session: Mapped[GameSession] = relationship(back_populates="players")

    def __str__(self) -> str:
        return f"{self.name} ({self.external_id})"

    __table_args__ = (
        Index("ix_player_session", "session_id"),
        Index("ix_player_unique", "session_id", "external_id", unique=True),
    )


class Item(Base):
    """A stack of items: held by a player, on the floor at a location, or unplaced."""

    __tablename__ = "items"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    session_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False
    )
    origin_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    name: Mapped[str] = mapped_column(String(64), nullable=False)
    qty: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    kind: Mapped[str] = mapped_column(String(32), nullable=False, default="misc")
    owner_id: Mapped[str | None] = mapped_column(
        String(32), ForeignKey("players.id", ondelete="SET NULL"), nullable=True
    )
    location_id: Mapped[str | None] = mapped_column(
        String(32), ForeignKey("locations.id", ondelete="SET NULL"), nullable=True
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    session: Mapped[GameSession] = relationship(back_populates="items")

    def __str__(self) -> str:
        return f"{self.name} x{self.qty}"

    __table_args__ = (
        CheckConstraint("qty > 0", name="positive_qty"),
        CheckConstraint(
            "owner_id IS NULL OR location_id IS NULL", name="single_custody"
        ),
        Index("ix_item_session", "session_id"),
        Index("ix_item_owner", "owner_id"),
        Index("ix_item_floor", "session_id", "location_id", "seq"),
    )


class Message(Base):
    """A chat line; ``player_id`` is null for system narration."""

    __tablename__ = "messages"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    session_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False
    )
    player_id: Mapped[str | None] = mapped_column(
        String(32), ForeignKey("players.id", ondelete="SET NULL"), nullable=True
    )
    text: Mapped[str] = mapped_column(Text, nullable=False)
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    def __str__(self) -> str:
        return f"#{self.seq} {self.text[:32]}"

    __table_args__ = (
        Index("ix_message_session_seq", "session_id", "seq"),
    )


class Roll(Base):
    """A single die roll."""

    __tablename__ = "rolls"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    session_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False
    )
    player_id: Mapped[str | None] = mapped_column(
        String(32), ForeignKey("players.id", ondelete="SET NULL"), nullable=True
    )
    die: Mapped[int] = mapped_column(Integer, nullable=False)
    result: Mapped[int] = mapped_column(Integer, nullable=False)
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    def __str__(self) -> str:
        return f"d{self.die} -> {self.result}"

    __table_args__ = (
        Index("ix_roll_session_seq", "session_id", "seq"),
    )
