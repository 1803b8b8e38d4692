from __future__ import annotations

import datetime as dt
import enum

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class Base(DeclarativeBase):
    pass


class Role(str, enum.Enum):
    USER = "user"
    ADMIN = "admin"

    @classmethod
    def parse(cls, raw: str | None) -> "Role | None":
        try:
            return cls((raw or "").strip().lower())
        except ValueError:
            return None


class Category(str, enum.Enum):
    SELL = "sell"
    RENT = "rent"

    @classmethod
    def parse(cls, raw: str | None) -> "Category | None":
        try:
            return cls((raw or "").strip().lower())
        except ValueError:
            return None


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    first_name: Mapped[str] = mapped_column(String(120), default="")
    last_name: Mapped[str] = mapped_column(String(120), default="")
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255))
    phone: Mapped[str] = mapped_column(String(32), default="")
    role: Mapped[str] = mapped_column(String(32), default=Role.USER.value)  # user | admin
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    properties = relationship("Property", back_populates="agent")

    @property
    def is_admin(self) -> bool:
        return Role.parse(self.role) is Role.ADMIN


class Property(Base):
    __tablename__ = "properties"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    # Owner of the listing; never reassigned after creation.
    agent_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)

    title: Mapped[str] = mapped_column(String(255))
    description: Mapped[str] = mapped_column(Text, default="")
    price: Mapped[float] = mapped_column(Float, default=0)
    surface: Mapped[float] = mapped_column(Float, default=0)
    rooms: Mapped[int] = mapped_column(Integer, default=0)
    type: Mapped[str] = mapped_column(String(80), default="")
    category: Mapped[str] = mapped_column(String(10), index=True)  # sell | rent
    address: Mapped[str] = mapped_column(String(512), default="")
    diagnostics: Mapped[str] = mapped_column(Text, default="")

    photos_json: Mapped[str] = mapped_column(Text, default="[]")  # JSON-encoded ordered list of filenames
    equipment_json: Mapped[str] = mapped_column(Text, default="[]")  # JSON-encoded list of strings

    is_featured: Mapped[bool] = mapped_column(Boolean, default=False)
    published_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    agent = relationship("User", back_populates="properties")


class Favorite(Base):
    __tablename__ = "favorites"
    # Duplicate favorites are rejected by the store, not by a pre-check.
    __table_args__ = (UniqueConstraint("user_id", "property_id", name="uq_favorite_user_property"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    property_id: Mapped[int] = mapped_column(ForeignKey("properties.id", ondelete="CASCADE"), index=True)
    added_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    property = relationship("Property")


class UserSession(Base):
    """
    Server-side login session. The token is the only thing the client holds (httpOnly cookie).
    """

    __tablename__ = "user_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    token: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    # Projection of the user captured at login time (id, email, names, phone, role).
    user_json: Mapped[str] = mapped_column(Text, default="{}")
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    expires_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), index=True)


class Message(Base):
    __tablename__ = "messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    sender_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    receiver_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    property_id: Mapped[int] = mapped_column(ForeignKey("properties.id", ondelete="CASCADE"), index=True)
    content: Mapped[str] = mapped_column(Text, default="")
    sent_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
