"""Consolidated view of an identity group."""

from collections.abc import Iterable, Sequence

from pydantic import BaseModel

from identity_service.persistence.models.contact import Contact


def _distinct(values: Iterable[str | None]) -> list[str]:
    # dict keeps insertion order, so this is an ordered set
    return list(dict.fromkeys(value for value in values if value is not None))


class ConsolidatedView(BaseModel):
    """Deduplicated summary of one identity group."""

    primary_contact_id: int
    emails: list[str]
    phone_numbers: list[str]
    secondary_contact_ids: list[int]

    @classmethod
    def from_group(cls, primary_id: int, members: Sequence[Contact]) -> "ConsolidatedView":
        """Build the view from group members ordered primary first, then oldest first.

        Emails and phone numbers keep first-seen order and are deduplicated by
        exact string equality.
        """
        return cls(
            primary_contact_id=primary_id,
            emails=_distinct(member.email for member in members),
            phone_numbers=_distinct(member.phone_number for member in members),
            secondary_contact_ids=[member.id for member in members if member.id != primary_id],
        )
