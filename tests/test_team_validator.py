"""Team composition rules: normalisation of the lead and roster validation."""

import pytest

from pkm_portal.core.exceptions import ValidationError
from pkm_portal.services.team_validator import (
    MAX_TEAM_SIZE,
    MemberInput,
    normalize_team,
    validate_team,
)


def _keys(roster):
    return [m.member_key for m in roster]


class TestNormalizeTeam:
    def test_lead_only(self):
        roster = normalize_team("A", [])
        assert _keys(roster) == ["A"]
        assert roster[0].is_lead is True
        assert roster[0].display_order == 1

    def test_lead_inserted_first_when_absent(self):
        roster = normalize_team("A", [MemberInput("B"), MemberInput("C")])
        assert _keys(roster) == ["A", "B", "C"]
        assert [m.display_order for m in roster] == [1, 2, 3]

    def test_lead_listed_elsewhere_is_moved_to_front(self):
        roster = normalize_team("A", [MemberInput("B"), MemberInput("A"), MemberInput("C")])
        assert _keys(roster) == ["A", "B", "C"]

    def test_other_leads_are_demoted(self):
        roster = normalize_team("A", [MemberInput("B", is_lead=True), MemberInput("C", is_lead=True)])
        assert [m.is_lead for m in roster] == [True, False, False]

    def test_from_dict_accepts_alternate_key_names(self):
        assert MemberInput.from_dict({"nim": " 123 "}).member_key == "123"
        assert MemberInput.from_dict({"key": 456}).member_key == "456"
        assert MemberInput.from_dict({}).member_key == ""


class TestValidateTeam:
    def test_valid_roster(self):
        validate_team(normalize_team("A", [MemberInput("B")]))

    def test_too_many_members(self):
        others = [MemberInput(f"M{i}") for i in range(MAX_TEAM_SIZE)]
        with pytest.raises(ValidationError) as exc:
            validate_team(normalize_team("A", others))
        assert "members" in exc.value.details

    def test_max_size_is_allowed(self):
        others = [MemberInput(f"M{i}") for i in range(MAX_TEAM_SIZE - 1)]
        validate_team(normalize_team("A", others))

    def test_duplicate_keys(self):
        with pytest.raises(ValidationError) as exc:
            validate_team(normalize_team("A", [MemberInput("B"), MemberInput("B")]))
        assert "B" in exc.value.details["duplicates"]

    def test_blank_key(self):
        with pytest.raises(ValidationError) as exc:
            validate_team(normalize_team("A", [MemberInput("")]))
        assert "member_key" in exc.value.details

    def test_empty_roster(self):
        with pytest.raises(ValidationError) as exc:
            validate_team([])
        assert "members" in exc.value.details
        assert "is_lead" in exc.value.details

    def test_two_leads_rejected_without_normalisation(self):
        with pytest.raises(ValidationError) as exc:
            validate_team([MemberInput("A", True, 1), MemberInput("B", True, 2)])
        assert "is_lead" in exc.value.details

    @pytest.mark.parametrize("extra", [0, 1, 2, 3, 4])
    def test_accepted_rosters_have_exactly_one_lead(self, extra):
        roster = normalize_team("A", [MemberInput(f"M{i}", is_lead=True) for i in range(extra)])
        validate_team(roster)
        assert sum(m.is_lead for m in roster) == 1
        assert len(set(_keys(roster))) == len(roster)
