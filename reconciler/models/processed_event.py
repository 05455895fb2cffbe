"""Processed webhook events - the idempotency log."""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import Column, DateTime, String, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel


class ProcessedEvent(SQLModel, table=True):
    """
    One row per provider event that has been fully handled.

    Written in the same transaction as the state change the event caused,
    so a row here means the change is durable. A second delivery of the
    same event id finds the row and does nothing.
    """

    __tablename__ = "processed_events"

    event_id: str = Field(
        sa_column=Column(String(255), primary_key=True, nullable=False),
    )
    event_type: str = Field(
        sa_column=Column(String(100), nullable=False, index=True),
    )
    # External (provider-side) subscription id the event affected
    subscription_id: str | None = Field(
        default=None,
        max_length=255,
        nullable=True,
        index=True,
    )
    # "metadata" is reserved on declarative models, so the attribute is renamed
    event_metadata: dict[str, Any] | None = Field(
        default=None,
        sa_column=Column("metadata", JSONB, nullable=True),
    )
    processed_at: datetime = Field(  # type: ignore[call-overload]
        default_factory=lambda: datetime.now(UTC),
        nullable=False,
        sa_type=DateTime(timezone=True),
        sa_column_kwargs={"server_default": text("now()")},
    )
