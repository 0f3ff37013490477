"""FastAPI dependencies."""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from identity_service.domain.services.reconciliation_service import ReconciliationService
from identity_service.persistence.database import get_db


async def get_reconciliation_service(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> ReconciliationService:
    """Build a reconciliation service bound to the request's session."""
    return ReconciliationService(db)
