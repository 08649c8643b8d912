"""
SQLAlchemy models for locally mirrored Chargebee subscriptions.
"""
from __future__ import annotations

from datetime import timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Text
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func
from sqlalchemy.types import TypeDecorator

Base = declarative_base()


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes, including on backends that store them naive (SQLite)."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    first_name = Column(Text)
    last_name = Column(Text)
    email = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    subscriptions = relationship(
        "Subscription",
        back_populates="user",
        cascade="all, delete-orphan",
        order_by="Subscription.id",
    )


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    subscription_id = Column(Text, nullable=False, unique=True)
    plan_id = Column(Text, nullable=False)
    next_billing_at = Column(UTCDateTime(timezone=True))
    trial_ends_at = Column(UTCDateTime(timezone=True))
    quantity = Column(Integer, default=1)
    last_four = Column(Text)
    status = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="subscriptions")
    addons = relationship(
        "AddOn",
        back_populates="subscription",
        cascade="all, delete-orphan",
        order_by="AddOn.id",
    )


class AddOn(Base):
    __tablename__ = "subscription_addons"

    id = Column(Integer, primary_key=True)
    subscription_id = Column(
        Integer, ForeignKey("subscriptions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    addon_id = Column(Text, nullable=False)
    quantity = Column(Integer, default=1)

    subscription = relationship("Subscription", back_populates="addons")
