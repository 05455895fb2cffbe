"""Domain operations for the processed-event log."""

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reconciler.models.processed_event import ProcessedEvent


class EventOperations:
    """Idempotency log for provider webhook events."""

    async def is_processed(self, db: AsyncSession, event_id: str) -> bool:
        """Check whether an event id has already been handled."""
        statement = select(ProcessedEvent.event_id).where(ProcessedEvent.event_id == event_id)
        result = await db.execute(statement)
        return result.scalar_one_or_none() is not None

    async def mark_processed(
        self,
        db: AsyncSession,
        event_id: str,
        event_type: str,
        subscription_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ProcessedEvent:
        """
        Record an event as handled.

        Only staged in the session: it becomes durable with the commit that
        also persists the event's state change.
        """
        event = ProcessedEvent(
            event_id=event_id,
            event_type=event_type,
            subscription_id=subscription_id,
            event_metadata=metadata,
        )
        db.add(event)
        await db.flush()
        return event


event_ops = EventOperations()
