"""Administrative read-only endpoints."""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from identity_service.api.deps import get_reconciliation_service
from identity_service.domain.errors import StoreError
from identity_service.domain.services.reconciliation_service import ReconciliationService

router = APIRouter()


class StatusResponse(BaseModel):
    """Contact store status."""

    model_config = ConfigDict(populate_by_name=True)

    database: str
    contacts: int
    primary_contacts: int = Field(alias="primaryContacts")
    secondary_contacts: int = Field(alias="secondaryContacts")
    last_update: datetime | None = Field(alias="lastUpdate")


@router.get("/status", response_model=StatusResponse)
async def get_status(
    service: Annotated[ReconciliationService, Depends(get_reconciliation_service)],
) -> StatusResponse:
    """Aggregate counts of live contacts and the latest update time."""
    try:
        stats = await service.get_stats()
    except StoreError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": "Service unavailable", "code": "MAINTENANCE_MODE"},
        )

    return StatusResponse(
        database="operational",
        contacts=stats.total,
        primary_contacts=stats.primary,
        secondary_contacts=stats.secondary,
        last_update=stats.last_update,
    )
