"""Subscription model - one row per provider subscription, reconciled from webhooks."""

import uuid as uuid_pkg
from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlmodel import Field, SQLModel


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle states (mirrors the provider's status values)."""

    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    PAUSED = "paused"


# Statuses under which the provider will still bill the customer
LIVE_UPSTREAM_STATUSES = frozenset(
    {
        SubscriptionStatus.ACTIVE.value,
        SubscriptionStatus.TRIALING.value,
        SubscriptionStatus.PAST_DUE.value,
    }
)


class Subscription(SQLModel, table=True):
    """
    Subscription model - the canonical record of a customer's paid subscription.

    Created when a purchase is first correlated, then mutated in place by
    every later lifecycle event. Rows are never deleted: cancellation is a
    status transition and replacement sets superseded_by.

    At most one row per customer may be "truly active" (active, not
    cancelling at period end, period end in the future). The partial unique
    index below enforces the time-independent part of that rule; rows whose
    period has lapsed are superseded before a replacement is inserted.
    """

    __tablename__ = "subscriptions"
    __table_args__ = (
        CheckConstraint(
            "superseded_by IS NULL OR superseded_by <> id",
            name="ck_subscriptions_not_self_superseded",
        ),
        UniqueConstraint(
            "external_subscription_id",
            name="uq_subscriptions_external_subscription_id",
        ),
        Index(
            "uq_subscriptions_one_active_per_customer",
            "customer_id",
            unique=True,
            postgresql_where=text(
                "status = 'active' AND cancel_at_period_end = false AND superseded_by IS NULL"
            ),
        ),
        Index("ix_subscriptions_customer_created", "customer_id", "created_at"),
    )

    id: uuid_pkg.UUID = Field(
        default_factory=uuid_pkg.uuid4,
        primary_key=True,
        nullable=False,
        sa_column_kwargs={"server_default": text("gen_random_uuid()")},
    )

    # Identity
    customer_id: str = Field(max_length=255, nullable=False, index=True)
    user_id: str | None = Field(default=None, max_length=255, nullable=True, index=True)
    external_subscription_id: str = Field(max_length=255, nullable=False)

    # State
    status: str = Field(
        default=SubscriptionStatus.ACTIVE.value,
        sa_column=Column(
            String(20),
            nullable=False,
            server_default=SubscriptionStatus.ACTIVE.value,
        ),
    )
    cancel_at_period_end: bool = Field(
        default=False,
        nullable=False,
        sa_column_kwargs={"server_default": text("false")},
    )
    current_period_start: datetime | None = Field(  # type: ignore[call-overload]
        default=None, nullable=True, sa_type=DateTime(timezone=True)
    )
    current_period_end: datetime | None = Field(  # type: ignore[call-overload]
        default=None, nullable=True, sa_type=DateTime(timezone=True)
    )
    plan_id: str | None = Field(default=None, max_length=50, nullable=True)
    price_id: str | None = Field(default=None, max_length=255, nullable=True)

    # Lineage - set when a newer paid subscription for the same customer replaces this one
    superseded_by: uuid_pkg.UUID | None = Field(
        default=None,
        sa_column=Column(
            PG_UUID(as_uuid=True),
            ForeignKey(
                "subscriptions.id",
                ondelete="SET NULL",
                deferrable=True,
                initially="DEFERRED",
            ),
            nullable=True,
        ),
    )
    replacement_reason: str | None = Field(
        default=None,
        max_length=100,
        nullable=True,
        sa_column_kwargs={"comment": "Why this subscription was superseded"},
    )

    # Timestamps
    created_at: datetime = Field(  # type: ignore[call-overload]
        default_factory=lambda: datetime.now(UTC),
        nullable=False,
        sa_type=DateTime(timezone=True),
        sa_column_kwargs={"server_default": text("now()")},
    )
    updated_at: datetime = Field(  # type: ignore[call-overload]
        default_factory=lambda: datetime.now(UTC),
        nullable=False,
        sa_type=DateTime(timezone=True),
        sa_column_kwargs={"server_default": text("now()")},
    )
