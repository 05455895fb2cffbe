"""Domain operations for Subscription model."""

import uuid as uuid_pkg
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import or_, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from reconciler.core.locks import customer_lock_key
from reconciler.models.subscription import Subscription


class SubscriptionOperations:
    """CRUD operations for Subscription model."""

    async def get(
        self,
        db: AsyncSession,
        id: uuid_pkg.UUID,
    ) -> Subscription | None:
        """Get a subscription by ID."""
        statement = select(Subscription).where(Subscription.id == id)
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def get_by_external_id(
        self,
        db: AsyncSession,
        external_subscription_id: str,
    ) -> Subscription | None:
        """Get subscription by provider subscription ID."""
        statement = select(Subscription).where(
            Subscription.external_subscription_id == external_subscription_id
        )
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def list_for_customer(
        self,
        db: AsyncSession,
        customer_id: str,
        user_id: str | None = None,
    ) -> list[Subscription]:
        """
        Get every subscription row owned by a customer, newest first.

        A customer can be reached through the provider customer id or through
        the owning user id, so rows matching either are returned.
        """
        condition = Subscription.customer_id == customer_id
        if user_id:
            condition = or_(condition, Subscription.user_id == user_id)  # type: ignore[assignment]

        statement = (
            select(Subscription)
            .where(condition)
            .order_by(Subscription.created_at.desc())  # type: ignore[attr-defined]
        )
        result = await db.execute(statement)
        return list(result.scalars().all())

    async def create(
        self,
        db: AsyncSession,
        obj_in: dict[str, Any],
    ) -> Subscription:
        """Create a new subscription row."""
        subscription = Subscription(**obj_in)
        db.add(subscription)
        await db.flush()
        await db.refresh(subscription)
        return subscription

    async def update(
        self,
        db: AsyncSession,
        subscription: Subscription,
        updates: dict[str, Any],
    ) -> Subscription:
        """Update a subscription. None values are skipped."""
        for field, value in updates.items():
            if value is not None:
                setattr(subscription, field, value)
        subscription.updated_at = datetime.now(UTC)
        db.add(subscription)
        await db.flush()
        await db.refresh(subscription)
        return subscription

    async def mark_superseded(
        self,
        db: AsyncSession,
        subscription: Subscription,
        superseded_by: uuid_pkg.UUID,
        reason: str,
    ) -> Subscription:
        """Record that another subscription replaced this one."""
        subscription.superseded_by = superseded_by
        subscription.replacement_reason = reason
        subscription.updated_at = datetime.now(UTC)
        db.add(subscription)
        await db.flush()
        return subscription

    async def lock_customer(self, db: AsyncSession, customer_id: str) -> None:
        """
        Serialize creation work for one customer until the transaction ends.

        pg_advisory_xact_lock() blocks until concurrent handlers for the same
        customer commit or roll back, and is released automatically.
        """
        await db.execute(
            text("SELECT pg_advisory_xact_lock(:key)"),
            {"key": customer_lock_key(customer_id)},
        )


subscription_ops = SubscriptionOperations()
