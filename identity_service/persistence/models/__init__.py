"""Database models."""

from identity_service.persistence.models.contact import (
    LINK_PRECEDENCES,
    PRECEDENCE_PRIMARY,
    PRECEDENCE_SECONDARY,
    Contact,
)

__all__ = [
    "Contact",
    "LINK_PRECEDENCES",
    "PRECEDENCE_PRIMARY",
    "PRECEDENCE_SECONDARY",
]
