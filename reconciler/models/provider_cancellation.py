"""Provider cancellation outbox - upstream cancellations owed after a local commit."""

import uuid as uuid_pkg
from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import DateTime, Index, text
from sqlmodel import Field, SQLModel


class CancellationReason(str, Enum):
    """Why a provider subscription has to be cancelled upstream."""

    BLOCKED_DUPLICATE = "blocked_duplicate"
    REPLACED = "replaced"


class ProviderCancellation(SQLModel, table=True):
    """
    Outbox row for an upstream cancellation.

    Inserted in the same transaction as the local change that requires it
    (a blocked duplicate purchase, or a superseded subscription). Executed
    right after commit; rows still pending are retried by the provider sweep.
    """

    __tablename__ = "provider_cancellations"
    __table_args__ = (
        Index(
            "ix_provider_cancellations_pending",
            "created_at",
            postgresql_where=text("completed_at IS NULL"),
        ),
    )

    id: uuid_pkg.UUID = Field(
        default_factory=uuid_pkg.uuid4,
        primary_key=True,
        nullable=False,
        sa_column_kwargs={"server_default": text("gen_random_uuid()")},
    )
    external_subscription_id: str = Field(max_length=255, nullable=False, unique=True)
    reason: str = Field(max_length=30, nullable=False)
    attempts: int = Field(
        default=0,
        nullable=False,
        sa_column_kwargs={"server_default": text("0")},
    )
    last_error: str | None = Field(default=None, max_length=500, nullable=True)
    completed_at: datetime | None = Field(  # type: ignore[call-overload]
        default=None, nullable=True, sa_type=DateTime(timezone=True)
    )

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
