"""Contact model."""

from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, String

from identity_service.persistence.database import Base

PRECEDENCE_PRIMARY = "primary"
PRECEDENCE_SECONDARY = "secondary"
LINK_PRECEDENCES = (PRECEDENCE_PRIMARY, PRECEDENCE_SECONDARY)


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every backend hands back on read."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Contact(Base):
    """One observed combination of email and/or phone number.

    Contacts sharing an email or phone form an identity group: exactly one
    primary (``linked_id`` is None) and any number of secondaries whose
    ``linked_id`` points straight at that primary.
    """

    __tablename__ = "contacts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    phone_number = Column(String(50), nullable=True, index=True)
    email = Column(String(255), nullable=True, index=True)
    linked_id = Column(Integer, ForeignKey("contacts.id"), nullable=True, index=True)
    # "primary" or "secondary"
    link_precedence = Column(String(20), nullable=False, default=PRECEDENCE_PRIMARY, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    deleted_at = Column(DateTime, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "link_precedence IN ('primary', 'secondary')", name="ck_contacts_link_precedence"
        ),
        Index("ix_contacts_created_at_id", "created_at", "id"),
    )

    @property
    def is_primary(self) -> bool:
        return self.link_precedence == PRECEDENCE_PRIMARY

    @property
    def seniority(self) -> tuple[datetime, int]:
        """Sort key: older first, lower id breaks ties."""
        return (self.created_at, self.id)

    def __repr__(self) -> str:
        return (
            f"<Contact(id={self.id}, email={self.email}, phone_number={self.phone_number}, "
            f"link_precedence={self.link_precedence}, linked_id={self.linked_id})>"
        )
