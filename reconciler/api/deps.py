"""API dependencies."""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from reconciler.core.database import get_db
from reconciler.services.reconciliation import SubscriptionReconciler, subscription_reconciler


def get_reconciler() -> SubscriptionReconciler:
    """The process-wide reconciler (overridden in tests)."""
    return subscription_reconciler


DbSession = Annotated[AsyncSession, Depends(get_db)]
Reconciler = Annotated[SubscriptionReconciler, Depends(get_reconciler)]
