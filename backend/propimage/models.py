from __future__ import annotations

import datetime as dt

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(255), default="")
    role: Mapped[str] = mapped_column(String(32), default="owner")  # owner | user | admin
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    properties = relationship("Property", back_populates="owner")


class Property(Base):
    __tablename__ = "properties"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    title: Mapped[str] = mapped_column(String(255), default="")
    # Public URL of the first accepted image; only written while empty.
    cover_image: Mapped[str] = mapped_column(String(1024), default="")
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    owner = relationship("User", back_populates="properties")
    images = relationship("PropertyImage", back_populates="listing", cascade="all, delete-orphan")


class PropertyImage(Base):
    __tablename__ = "property_images"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    property_id: Mapped[int] = mapped_column(ForeignKey("properties.id"), index=True)

    image_url: Mapped[str] = mapped_column(String(1024))
    file_name: Mapped[str] = mapped_column(String(255))
    # Relative to the uploads root; NULL when the bytes live on a remote origin.
    file_path: Mapped[str | None] = mapped_column(String(512), nullable=True)
    original_filename: Mapped[str] = mapped_column(String(255), default="")
    file_size: Mapped[int] = mapped_column(Integer, default=0)
    mime_type: Mapped[str] = mapped_column(String(100), default="image/jpeg")

    # SAFE | PENDING (REJECTED images are never stored)
    moderation_status: Mapped[str] = mapped_column(String(20), default="PENDING", index=True)
    moderation_reason: Mapped[str] = mapped_column(Text, default="")
    moderation_reason_code: Mapped[str] = mapped_column(String(64), default="")

    # Audit trail, JSON-encoded.
    apis_used: Mapped[str] = mapped_column(Text, default="[]")
    confidence_scores: Mapped[str] = mapped_column(Text, default="{}")
    api_response: Mapped[str] = mapped_column(Text, default="{}")
    checked_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    listing = relationship("Property", back_populates="images")
