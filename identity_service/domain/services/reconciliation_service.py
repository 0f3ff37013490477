"""Identity reconciliation: link an observed email/phone to its identity group."""

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from identity_service.core.normalization import is_valid_phone, normalize_optional, normalize_phone_input
from identity_service.domain.errors import (
    InvariantViolation,
    LockTimeout,
    ReconciliationError,
    StoreError,
    ValidationError,
)
from identity_service.domain.models.consolidated_view import ConsolidatedView
from identity_service.domain.services.link_planner import LinkPlan, Scenario, plan_links
from identity_service.infrastructure.identity_lock import IdentityLock, identity_keys, identity_lock, root_keys
from identity_service.persistence.models.contact import PRECEDENCE_SECONDARY, Contact
from identity_service.persistence.repositories.contact_repository import ContactRepository, ContactStats
from identity_service.settings import settings

logger = logging.getLogger(__name__)

AMBIGUOUS_LINK_POLICIES = ("merge", "reject")

MAX_ROOT_LOCK_ATTEMPTS = 5


class ReconciliationService:
    """Service that reconciles observations into identity groups.

    Each ``identify`` call runs read, classify, write and re-read inside one
    transaction while holding the identity locks for the observed values and
    for the primaries of every group it touches.
    The service itself keeps no state between calls.
    """

    def __init__(
        self,
        session: AsyncSession,
        lock: IdentityLock | None = None,
        phone_pattern: str | None = None,
        ambiguous_link_policy: str | None = None,
    ) -> None:
        """Initialize reconciliation service."""
        self.session = session
        self.contact_repo = ContactRepository(session)
        self.lock = lock or identity_lock
        self.phone_pattern = phone_pattern or settings.phone_pattern
        self.ambiguous_link_policy = ambiguous_link_policy or settings.ambiguous_link_policy
        if self.ambiguous_link_policy not in AMBIGUOUS_LINK_POLICIES:
            raise ValueError(f"Unknown ambiguous link policy: {self.ambiguous_link_policy!r}")

    def normalize(
        self, email: str | None, phone: str | int | None
    ) -> tuple[str | None, str | None]:
        """Normalize and validate an observation.

        Args:
            email: Observed email, "" meaning absent
            phone: Observed phone number, "" meaning absent

        Returns:
            Tuple of (email, phone) with absent values as None

        Raises:
            ValidationError: Nothing was provided or the phone is malformed
        """
        email = normalize_optional(email)
        try:
            phone = normalize_phone_input(phone)
        except TypeError as e:
            raise ValidationError(str(e), code="INVALID_PHONE_NUMBER") from e

        if email is None and phone is None:
            raise ValidationError(
                "At least one of email or phone number is required",
                code="MISSING_CONTACT_INFO",
            )
        if phone is not None and not is_valid_phone(phone, self.phone_pattern):
            raise ValidationError("Invalid phone number format", code="INVALID_PHONE_NUMBER")
        return email, phone

    async def identify(
        self, email: str | None, phone: str | int | None
    ) -> ConsolidatedView:
        """Reconcile an observation and return its group's consolidated view.

        Args:
            email: Observed email, may be None or ""
            phone: Observed phone number, may be None or ""

        Returns:
            Consolidated view of the identity group the observation belongs to

        Raises:
            ValidationError: Input rejected, nothing was read or written
            InvariantViolation: Stored groups could not be resolved safely
            LockTimeout: Another call held the identity lock for too long
            StoreError: The contact store failed; the transaction was rolled back
        """
        email, phone = self.normalize(email, phone)

        async with self.lock.hold(identity_keys(email, phone)):
            try:
                return await self._identify_locked(email, phone)
            except ReconciliationError:
                await self.session.rollback()
                raise
            except SQLAlchemyError as e:
                logger.error("Contact store failure during identify", exc_info=True)
                await self.session.rollback()
                raise StoreError("Contact store operation failed") from e

    async def get_stats(self) -> ContactStats:
        """Aggregate counts for monitoring.

        Raises:
            StoreError: The contact store failed
        """
        try:
            return await self.contact_repo.get_stats()
        except SQLAlchemyError as e:
            logger.error("Contact store failure during stats", exc_info=True)
            raise StoreError("Contact store operation failed") from e

    async def _identify_locked(self, email: str | None, phone: str | None) -> ConsolidatedView:
        """Lock the groups the observation touches, then reconcile and commit.

        Other callers may relink those groups through values this call does
        not lock, so the roots found by a first read are locked and the
        observation is read again under those locks. If a root outside the
        locked set shows up, the locks are widened and the read repeated.

        Raises:
            LockTimeout: The touched groups kept changing between reads
        """
        matches = await self.contact_repo.find_by_email_or_phone(email, phone)
        roots, _ = await self._resolve_roots(matches)
        locked_ids = {root.id for root in roots}

        for _ in range(MAX_ROOT_LOCK_ATTEMPTS):
            # Nothing written yet; reread from a fresh transaction under the root locks
            await self.session.rollback()
            async with self.lock.hold(root_keys(locked_ids)):
                matches = await self.contact_repo.find_by_email_or_phone(email, phone)
                roots, intermediates = await self._resolve_roots(matches)
                root_ids = {root.id for root in roots}
                if root_ids <= locked_ids:
                    view = await self._reconcile(email, phone, matches, roots, intermediates)
                    await self.session.commit()
                    return view
            logger.info(
                "Identity groups changed before locking, retrying",
                extra={"locked_root_ids": sorted(locked_ids), "root_ids": sorted(root_ids)},
            )
            locked_ids |= root_ids

        raise LockTimeout("Identity groups kept changing while acquiring their locks")

    async def _reconcile(
        self,
        email: str | None,
        phone: str | None,
        matches: list[Contact],
        roots: list[Contact],
        intermediates: list[Contact],
    ) -> ConsolidatedView:
        plan = plan_links(
            matches,
            roots,
            email,
            phone,
            intermediates=intermediates,
            allow_indirect_merge=self.ambiguous_link_policy == "merge",
        )
        if plan.indirect:
            logger.warning(
                "Merging groups linked only through secondaries",
                extra={"primary_contact_id": plan.primary.id, "demoted_contact_ids": [c.id for c in plan.demoted]},
            )

        primary_id, created_ids, relinked_ids = await self._apply(plan)

        logger.info(
            "Identity reconciled",
            extra={
                "scenario": plan.scenario.value,
                "primary_contact_id": primary_id,
                "created_contact_ids": created_ids,
                "relinked_contact_ids": relinked_ids,
            },
        )
        members = await self.contact_repo.group_members(primary_id)
        return ConsolidatedView.from_group(primary_id, members)

    async def _resolve_roots(
        self, matches: list[Contact]
    ) -> tuple[list[Contact], list[Contact]]:
        """Find the primary rooting each match.

        A secondary is expected to link straight to a primary. A link to another
        secondary (left behind by an interrupted merge) is followed, and the
        secondaries passed through are returned so they can be flattened.

        Returns:
            Tuple of (distinct roots, intermediate secondaries)

        Raises:
            InvariantViolation: A link is missing, dangling or cyclic
        """
        known = {contact.id: contact for contact in matches}
        unresolved = {
            contact.linked_id for contact in matches
            if not contact.is_primary and contact.linked_id is not None and contact.linked_id not in known
        }
        for contact in await self.contact_repo.get_by_ids(sorted(unresolved)):
            known[contact.id] = contact

        roots: dict[int, Contact] = {}
        intermediates: dict[int, Contact] = {}
        for contact in matches:
            current = contact
            seen = {current.id}
            while not current.is_primary:
                target_id = current.linked_id
                if target_id is None:
                    raise InvariantViolation(f"Secondary contact {current.id} has no linked contact")
                if target_id in seen:
                    raise InvariantViolation(f"Contact links form a cycle through {sorted(seen)}")
                target = known.get(target_id)
                if target is None:
                    target = await self.contact_repo.get_by_id(target_id)
                    if target is None:
                        raise InvariantViolation(
                            f"Contact {current.id} links to missing contact {target_id}"
                        )
                    known[target.id] = target
                if not target.is_primary:
                    intermediates[target.id] = target
                seen.add(target_id)
                current = target
            roots[current.id] = current

        return list(roots.values()), list(intermediates.values())

    async def _apply(self, plan: LinkPlan) -> tuple[int, list[int], list[int]]:
        """Execute a plan.

        Returns:
            Tuple of (primary id, created contact ids, relinked contact ids)
        """
        if plan.scenario is Scenario.NO_MATCH:
            contact = await self.contact_repo.create_contact(plan.new_email, plan.new_phone)
            return contact.id, [contact.id], []

        if plan.scenario is Scenario.EXACT_DUPLICATE:
            # Nothing new; only a chain left by an interrupted merge is repaired
            relinked = await self._flatten(plan)
            return plan.primary.id, [], relinked

        if plan.scenario is Scenario.MERGE_PRIMARIES:
            relinked = await self._flatten(plan)
            created = await self._add_secondary(plan)
            return plan.primary.id, created, relinked

        if plan.scenario in (Scenario.ATTACH_TO_PRIMARY, Scenario.ATTACH_VIA_SECONDARY):
            relinked = await self._flatten(plan)
            created = await self._add_secondary(plan)
            return plan.primary.id, created, relinked

        raise InvariantViolation(f"Unhandled reconciliation scenario: {plan.scenario}")

    async def _flatten(self, plan: LinkPlan) -> list[int]:
        """Point every affected contact straight at the plan's primary.

        Demoted primaries and intermediate secondaries are repointed together
        with all of their current group members, so no secondary is left
        linking to another secondary.
        """
        target_id = plan.primary.id
        relinked: list[int] = []

        async def relink(contact: Contact) -> None:
            if contact.id == target_id or contact.id in relinked:
                return
            if contact.is_primary or contact.linked_id != target_id:
                await self.contact_repo.update_link(contact.id, target_id, PRECEDENCE_SECONDARY)
                relinked.append(contact.id)

        for former_root in (*plan.demoted, *plan.intermediates):
            for member in await self.contact_repo.group_members(former_root.id):
                await relink(member)
        for contact in plan.relink:
            await relink(contact)
        return relinked

    async def _add_secondary(self, plan: LinkPlan) -> list[int]:
        """Store the observed values the group does not hold yet."""
        if not plan.adds_contact:
            return []
        contact = await self.contact_repo.create_contact(
            plan.new_email,
            plan.new_phone,
            linked_id=plan.primary.id,
            precedence=PRECEDENCE_SECONDARY,
        )
        return [contact.id]
