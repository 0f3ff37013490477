"""Identity reconciliation endpoint."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field, field_validator

from identity_service.api.deps import get_reconciliation_service
from identity_service.core.normalization import is_valid_email, normalize_optional
from identity_service.domain.errors import InvariantViolation, LockTimeout, StoreError, ValidationError
from identity_service.domain.models.consolidated_view import ConsolidatedView
from identity_service.domain.services.reconciliation_service import ReconciliationService
from identity_service.infrastructure.rate_limiter import rate_limit

router = APIRouter()


# ============== Request / Response Models ==============

class IdentifyRequest(BaseModel):
    """Observed contact details. Empty strings count as absent."""

    model_config = ConfigDict(populate_by_name=True)

    email: str | None = None
    phone_number: str | int | None = Field(default=None, alias="phoneNumber")

    @field_validator("email")
    @classmethod
    def check_email(cls, value: str | None) -> str | None:
        value = normalize_optional(value)
        if value is not None and not is_valid_email(value):
            raise ValueError("Invalid email format")
        return value


class ContactView(BaseModel):
    """Consolidated contact, serialized with camelCase keys."""

    model_config = ConfigDict(populate_by_name=True)

    primary_contact_id: int = Field(alias="primaryContactId")
    emails: list[str]
    phone_numbers: list[str] = Field(alias="phoneNumbers")
    secondary_contact_ids: list[int] = Field(alias="secondaryContactIds")

    @classmethod
    def from_view(cls, view: ConsolidatedView) -> "ContactView":
        return cls(
            primary_contact_id=view.primary_contact_id,
            emails=view.emails,
            phone_numbers=view.phone_numbers,
            secondary_contact_ids=view.secondary_contact_ids,
        )


class IdentifyResponse(BaseModel):
    """Identify response."""

    contact: ContactView


# ============== Endpoints ==============

@router.post("/identify", response_model=IdentifyResponse)
async def identify(
    request: IdentifyRequest,
    service: Annotated[ReconciliationService, Depends(get_reconciliation_service)],
    _: Annotated[None, Depends(rate_limit("identify"))],
) -> IdentifyResponse:
    """Link the observed email/phone to its identity and return the consolidated contact."""
    try:
        view = await service.identify(request.email, request.phone_number)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": e.message, "code": e.code},
        )
    except InvariantViolation as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error": e.message, "code": e.code},
        )
    except LockTimeout as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": "Contact is being updated, retry shortly", "code": e.code},
            headers={"Retry-After": "1"},
        )
    except StoreError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": "Service temporarily unavailable", "code": e.code},
            headers={"Retry-After": "30"},
        )

    return IdentifyResponse(contact=ContactView.from_view(view))
