"""Tests for observation classification."""

from datetime import datetime, timedelta

import pytest

from identity_service.domain.errors import InvariantViolation
from identity_service.domain.services.link_planner import Scenario, missing_fields, plan_links
from identity_service.persistence.models.contact import Contact

BASE_TIME = datetime(2025, 1, 1, 12, 0, 0)


def make_contact(id, email=None, phone=None, linked_id=None, minutes=0):
    """Build a detached contact."""
    return Contact(
        id=id,
        email=email,
        phone_number=phone,
        linked_id=linked_id,
        link_precedence="secondary" if linked_id else "primary",
        created_at=BASE_TIME + timedelta(minutes=minutes),
        updated_at=BASE_TIME + timedelta(minutes=minutes),
    )


class TestMissingFields:
    """Tests for detecting new information."""

    def test_reports_values_not_held(self):
        matches = [make_contact(1, email="a@x.com")]
        assert missing_fields(matches, "a@x.com", "1234567890") == (None, "1234567890")

    def test_absent_values_are_never_missing(self):
        matches = [make_contact(1, email="a@x.com")]
        assert missing_fields(matches, "a@x.com", None) == (None, None)

    def test_comparison_is_exact(self):
        matches = [make_contact(1, email="a@x.com")]
        assert missing_fields(matches, "A@x.com", None) == ("A@x.com", None)


class TestPlanLinks:
    """Tests for the five scenarios."""

    def test_no_matches(self):
        plan = plan_links([], [], "a@x.com", "1234567890")

        assert plan.scenario is Scenario.NO_MATCH
        assert plan.primary is None
        assert (plan.new_email, plan.new_phone) == ("a@x.com", "1234567890")

    def test_matches_without_roots_fall_back_to_no_match(self):
        stray = make_contact(1, email="a@x.com")
        plan = plan_links([stray], [], "a@x.com", None)

        assert plan.scenario is Scenario.NO_MATCH

    def test_exact_duplicate(self):
        primary = make_contact(1, email="a@x.com", phone="1234567890")
        plan = plan_links([primary], [primary], "a@x.com", "1234567890")

        assert plan.scenario is Scenario.EXACT_DUPLICATE
        assert plan.primary is primary
        assert plan.adds_contact is False

    def test_exact_duplicate_through_secondary(self):
        primary = make_contact(1, email="a@x.com")
        secondary = make_contact(2, email="b@x.com", phone="1234567890", linked_id=1, minutes=1)
        plan = plan_links([secondary], [primary], "b@x.com", "1234567890")

        assert plan.scenario is Scenario.EXACT_DUPLICATE
        assert plan.primary is primary
        assert plan.relink == ()

    def test_attach_to_primary_with_new_phone(self):
        primary = make_contact(1, email="a@x.com")
        plan = plan_links([primary], [primary], "a@x.com", "9998887777")

        assert plan.scenario is Scenario.ATTACH_TO_PRIMARY
        assert (plan.new_email, plan.new_phone) == (None, "9998887777")

    def test_fields_split_across_group_add_nothing(self):
        primary = make_contact(1, email="a@x.com")
        secondary = make_contact(2, phone="1234567890", linked_id=1, minutes=1)
        plan = plan_links([primary, secondary], [primary], "a@x.com", "1234567890")

        assert plan.scenario is Scenario.ATTACH_TO_PRIMARY
        assert plan.adds_contact is False

    def test_attach_via_secondary(self):
        primary = make_contact(1, email="a@x.com")
        secondary = make_contact(2, phone="1234567890", linked_id=1, minutes=1)
        plan = plan_links([secondary], [primary], "new@x.com", "1234567890")

        assert plan.scenario is Scenario.ATTACH_VIA_SECONDARY
        assert plan.primary is primary
        assert (plan.new_email, plan.new_phone) == ("new@x.com", None)

    def test_merge_keeps_oldest_primary(self):
        older = make_contact(1, email="m@x.com")
        newer = make_contact(2, phone="5550000000", minutes=5)
        plan = plan_links([older, newer], [newer, older], "m@x.com", "5550000000")

        assert plan.scenario is Scenario.MERGE_PRIMARIES
        assert plan.primary is older
        assert plan.demoted == (newer,)
        assert plan.adds_contact is False
        assert plan.indirect is False

    def test_merge_seniority_uses_created_at_before_id(self):
        # Lower id but created later
        late = make_contact(1, email="m@x.com", minutes=10)
        early = make_contact(2, phone="5550000000", minutes=0)
        plan = plan_links([early, late], [late, early], "m@x.com", "5550000000")

        assert plan.primary is early
        assert plan.demoted == (late,)

    def test_merge_ties_broken_by_lowest_id(self):
        first = make_contact(3, email="m@x.com")
        second = make_contact(4, phone="5550000000")
        plan = plan_links([first, second], [second, first], "m@x.com", "5550000000")

        assert plan.primary is first

    def test_merge_repoints_matched_secondaries_of_demoted_group(self):
        older = make_contact(1, email="m@x.com")
        newer = make_contact(2, email="n@x.com", minutes=5)
        newer_secondary = make_contact(3, phone="5550000000", linked_id=2, minutes=6)
        plan = plan_links(
            [older, newer_secondary], [older, newer], "m@x.com", "5550000000"
        )

        assert plan.scenario is Scenario.MERGE_PRIMARIES
        assert plan.relink == (newer_secondary,)
        assert plan.indirect is True

    def test_indirect_merge_can_be_rejected(self):
        first = make_contact(1, email="a@x.com")
        first_secondary = make_contact(2, email="a2@x.com", linked_id=1, minutes=1)
        second = make_contact(3, email="b@x.com", minutes=2)
        second_secondary = make_contact(4, phone="2222222222", linked_id=3, minutes=3)

        with pytest.raises(InvariantViolation) as exc_info:
            plan_links(
                [first_secondary, second_secondary],
                [first, second],
                "a2@x.com",
                "2222222222",
                allow_indirect_merge=False,
            )
        assert exc_info.value.code == "AMBIGUOUS_LINK"

    def test_direct_collision_is_merged_even_when_indirect_rejected(self):
        older = make_contact(1, email="m@x.com")
        newer = make_contact(2, phone="5550000000", minutes=5)
        plan = plan_links(
            [older, newer], [older, newer], "m@x.com", "5550000000", allow_indirect_merge=False
        )

        assert plan.scenario is Scenario.MERGE_PRIMARIES

    def test_merge_carries_intermediates(self):
        older = make_contact(1, email="m@x.com")
        newer = make_contact(2, email="n@x.com", minutes=5)
        middle = make_contact(3, email="o@x.com", linked_id=2, minutes=6)
        tail = make_contact(4, phone="5550000000", linked_id=3, minutes=7)
        plan = plan_links(
            [older, tail], [older, newer], "m@x.com", "5550000000", intermediates=[middle]
        )

        assert plan.intermediates == (middle,)
        assert plan.relink == (tail,)
        assert plan.adds_contact is False
