"""Classification of an observation against the contacts it matches.

Planning is pure: given the matched contacts and the primaries that root
their groups, decide which of five scenarios applies and what has to change.
The reconciliation service performs the reads and writes around it.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from identity_service.domain.errors import InvariantViolation
from identity_service.persistence.models.contact import Contact


class Scenario(str, Enum):
    """How an observation relates to the stored identity groups."""

    NO_MATCH = "no_match"
    EXACT_DUPLICATE = "exact_duplicate"
    MERGE_PRIMARIES = "merge_primaries"
    ATTACH_TO_PRIMARY = "attach_to_primary"
    ATTACH_VIA_SECONDARY = "attach_via_secondary"


@dataclass(frozen=True)
class LinkPlan:
    """Mutations needed to absorb one observation.

    Attributes:
        scenario: Which case applies
        primary: Primary the group ends up rooted at (None for NO_MATCH)
        demoted: Primaries that lose their status to ``primary``
        intermediates: Secondaries that other contacts still link through
        relink: Matched secondaries whose link must be repointed at ``primary``
        new_email: Email to store on a new contact, if any
        new_phone: Phone number to store on a new contact, if any
        indirect: True when a merged group was reached only through secondaries
    """

    scenario: Scenario
    primary: Contact | None = None
    demoted: tuple[Contact, ...] = ()
    intermediates: tuple[Contact, ...] = ()
    relink: tuple[Contact, ...] = ()
    new_email: str | None = None
    new_phone: str | None = None
    indirect: bool = False

    @property
    def adds_contact(self) -> bool:
        return self.new_email is not None or self.new_phone is not None


def missing_fields(
    matches: Sequence[Contact], email: str | None, phone: str | None
) -> tuple[str | None, str | None]:
    """Return the observed email and phone not yet held by any matched contact.

    Every contact holding the observed email or phone is part of the matches,
    so checking the matches is the same as checking the whole group.
    """
    known_emails = {contact.email for contact in matches if contact.email is not None}
    known_phones = {contact.phone_number for contact in matches if contact.phone_number is not None}
    new_email = email if email is not None and email not in known_emails else None
    new_phone = phone if phone is not None and phone not in known_phones else None
    return new_email, new_phone


def _covers(contact: Contact, email: str | None, phone: str | None) -> bool:
    # A single contact already holds every provided field
    return (email is None or contact.email == email) and (
        phone is None or contact.phone_number == phone
    )


def plan_links(
    matches: Sequence[Contact],
    roots: Sequence[Contact],
    email: str | None,
    phone: str | None,
    intermediates: Sequence[Contact] = (),
    allow_indirect_merge: bool = True,
) -> LinkPlan:
    """Classify an observation and plan the resulting mutations.

    Args:
        matches: Live contacts whose email or phone equals the observation
        roots: Distinct primaries the matches resolve to
        email: Observed email (normalized, may be None)
        phone: Observed phone number (normalized, may be None)
        intermediates: Secondaries passed through while resolving roots
        allow_indirect_merge: Merge groups that were reached only through
            their secondaries instead of raising

    Returns:
        The plan to execute

    Raises:
        InvariantViolation: Matches span several groups, one of which was
            reached only through a secondary, and indirect merges are disabled
    """
    if not matches or not roots:
        return LinkPlan(scenario=Scenario.NO_MATCH, new_email=email, new_phone=phone)

    new_email, new_phone = missing_fields(matches, email, phone)
    direct_primary_ids = {contact.id for contact in matches if contact.is_primary}
    ordered_roots = sorted({root.id: root for root in roots}.values(), key=lambda c: c.seniority)
    primary = ordered_roots[0]
    relink = tuple(
        contact for contact in matches
        if not contact.is_primary and contact.linked_id != primary.id
    )

    if len(ordered_roots) > 1:
        indirect = any(root.id not in direct_primary_ids for root in ordered_roots)
        if indirect and not allow_indirect_merge:
            raise InvariantViolation(
                "Matched contacts belong to groups "
                f"{[root.id for root in ordered_roots]} that are linked only through secondaries",
                code="AMBIGUOUS_LINK",
            )
        return LinkPlan(
            scenario=Scenario.MERGE_PRIMARIES,
            primary=primary,
            demoted=tuple(ordered_roots[1:]),
            intermediates=tuple(intermediates),
            relink=relink,
            new_email=new_email,
            new_phone=new_phone,
            indirect=indirect,
        )

    if any(_covers(contact, email, phone) for contact in matches):
        scenario = Scenario.EXACT_DUPLICATE
    elif primary.id in direct_primary_ids:
        scenario = Scenario.ATTACH_TO_PRIMARY
    else:
        scenario = Scenario.ATTACH_VIA_SECONDARY

    return LinkPlan(
        scenario=scenario,
        primary=primary,
        intermediates=tuple(intermediates),
        relink=relink,
        new_email=new_email,
        new_phone=new_phone,
    )
