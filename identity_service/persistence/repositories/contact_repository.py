"""Contact repository."""

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import case, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from identity_service.persistence.models.contact import (
    LINK_PRECEDENCES,
    PRECEDENCE_PRIMARY,
    PRECEDENCE_SECONDARY,
    Contact,
    utcnow,
)
from identity_service.persistence.repositories.base import BaseRepository


@dataclass(frozen=True)
class ContactStats:
    """Aggregate counts over live contacts."""

    total: int
    primary: int
    secondary: int
    last_update: datetime | None


class ContactRepository(BaseRepository[Contact]):
    """Repository for Contact entities. Tombstoned rows are never returned."""

    def __init__(self, session: AsyncSession):
        """Initialize contact repository."""
        super().__init__(Contact, session)

    async def get_by_id(self, id: int) -> Contact | None:
        """Get live contact by ID."""
        stmt = select(Contact).where(Contact.id == id, Contact.deleted_at.is_(None))
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_by_email_or_phone(
        self, email: str | None = None, phone: str | None = None
    ) -> list[Contact]:
        """Get all contacts whose email or phone equals the given values.

        Args:
            email: Optional email to match exactly
            phone: Optional phone number to match exactly

        Returns:
            Matching contacts, oldest first; empty when both inputs are absent
        """
        conditions = []
        if email is not None:
            conditions.append(Contact.email == email)
        if phone is not None:
            conditions.append(Contact.phone_number == phone)
        if not conditions:
            return []

        stmt = (
            select(Contact)
            .where(Contact.deleted_at.is_(None), or_(*conditions))
            .order_by(Contact.created_at, Contact.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_by_ids(self, ids: list[int]) -> list[Contact]:
        """Get multiple live contacts by IDs, oldest first."""
        if not ids:
            return []

        stmt = (
            select(Contact)
            .where(Contact.id.in_(ids), Contact.deleted_at.is_(None))
            .order_by(Contact.created_at, Contact.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def create_contact(
        self,
        email: str | None,
        phone: str | None,
        linked_id: int | None = None,
        precedence: str = PRECEDENCE_PRIMARY,
    ) -> Contact:
        """Create a contact.

        Args:
            email: Optional email (never an empty string)
            phone: Optional phone number (never an empty string)
            linked_id: Primary this contact is attached to, for secondaries
            precedence: "primary" or "secondary"

        Returns:
            Created contact with id and timestamps assigned
        """
        _check_link(linked_id, precedence)
        now = utcnow()
        return await self.create(
            email=email,
            phone_number=phone,
            linked_id=linked_id,
            link_precedence=precedence,
            created_at=now,
            updated_at=now,
        )

    async def update_link(
        self, contact_id: int, linked_id: int | None, precedence: str
    ) -> Contact | None:
        """Repoint a contact and set its precedence.

        Returns:
            Updated contact or None if not found
        """
        _check_link(linked_id, precedence)
        return await self.update(
            contact_id,
            linked_id=linked_id,
            link_precedence=precedence,
            updated_at=utcnow(),
        )

    async def group_members(self, primary_id: int) -> list[Contact]:
        """Get the primary and every secondary linked to it.

        Returns:
            Group members, primary first, then oldest first
        """
        stmt = (
            select(Contact)
            .where(
                or_(Contact.id == primary_id, Contact.linked_id == primary_id),
                Contact.deleted_at.is_(None),
            )
            .order_by(
                case((Contact.id == primary_id, 0), else_=1),
                Contact.created_at,
                Contact.id,
            )
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_stats(self) -> ContactStats:
        """Count live contacts by precedence and find the latest update."""
        stmt = select(
            func.count(Contact.id),
            func.sum(case((Contact.link_precedence == PRECEDENCE_PRIMARY, 1), else_=0)),
            func.sum(case((Contact.link_precedence == PRECEDENCE_SECONDARY, 1), else_=0)),
            func.max(Contact.updated_at),
        ).where(Contact.deleted_at.is_(None))
        total, primary, secondary, last_update = (await self.session.execute(stmt)).one()
        return ContactStats(
            total=total or 0,
            primary=primary or 0,
            secondary=secondary or 0,
            last_update=last_update,
        )


def _check_link(linked_id: int | None, precedence: str) -> None:
    if precedence not in LINK_PRECEDENCES:
        raise ValueError(f"Unknown link precedence: {precedence!r}")
    if (precedence == PRECEDENCE_SECONDARY) != (linked_id is not None):
        raise ValueError("linked_id must be set for secondaries and only for secondaries")
