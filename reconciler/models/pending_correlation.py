"""Pending correlation model - one half of a purchase waiting for the other."""

from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import Column, DateTime, Index, String, text
from sqlmodel import Field, SQLModel


class CorrelationSource(str, Enum):
    """Which event stream supplied the stored half."""

    SESSION_COMPLETED = "session_completed"
    SUBSCRIPTION_CREATED = "subscription_created"


class PendingCorrelation(SQLModel, table=True):
    """
    Transient correlation entry keyed by provider subscription id.

    Lives in Postgres rather than process memory so it survives restarts
    and is visible to every instance. Entries past expires_at are ignored
    by reads and deleted by the correlation purge job.
    """

    __tablename__ = "pending_correlations"
    __table_args__ = (Index("ix_pending_correlations_expires_at", "expires_at"),)

    external_subscription_id: str = Field(
        sa_column=Column(String(255), primary_key=True, nullable=False),
    )
    customer_id: str = Field(max_length=255, nullable=False)
    # Provider-side creation events do not reliably carry the user id
    user_id: str | None = Field(default=None, max_length=255, nullable=True)
    source: str = Field(max_length=30, nullable=False)

    created_at: datetime = Field(  # type: ignore[call-overload]
        default_factory=lambda: datetime.now(UTC),
        nullable=False,
        sa_type=DateTime(timezone=True),
        sa_column_kwargs={"server_default": text("now()")},
    )
    expires_at: datetime = Field(  # type: ignore[call-overload]
        nullable=False,
        sa_type=DateTime(timezone=True),
    )
