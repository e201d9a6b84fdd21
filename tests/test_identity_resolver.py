"""IdentityResolver: strict write-time lookups vs best-effort read-time enrichment."""

import pytest

from pkm_portal.core.exceptions import (
    DependencyUnavailable,
    UnresolvedMember,
    UnresolvedReviewer,
)
from pkm_portal.integrations.directory import StudentRecord
from pkm_portal.services.identity_resolver import IdentityResolver


@pytest.fixture()
def resolver(directories):
    return IdentityResolver(directories.students, directories.staff, directories.org_units)


class TestStrict:
    def test_students_resolve_with_org_units(self, resolver, directories):
        records = resolver.require_students(["2021001", "2021002"])
        assert set(records) == {"2021001", "2021002"}
        assert records["2021001"].org_unit.name == "Informatics"
        # one round trip per directory
        assert len(directories.students.calls) == 1
        assert len(directories.org_units.calls) == 1

    def test_missing_student_raises_unresolved_member(self, resolver):
        with pytest.raises(UnresolvedMember) as exc:
            resolver.require_students(["2021001", "9999999"])
        assert exc.value.keys == ["9999999"]

    def test_missing_staff_raises_unresolved_reviewer(self, resolver):
        with pytest.raises(UnresolvedReviewer) as exc:
            resolver.require_staff(["000000"])
        assert exc.value.kind == "staff"

    def test_provider_failure_is_not_a_miss(self, resolver, directories):
        directories.students.error = "Timeout: read timed out"
        with pytest.raises(DependencyUnavailable) as exc:
            resolver.require_students(["2021001"])
        assert exc.value.provider == "student"

    def test_org_unit_miss_still_returns_student(self, resolver, directories):
        directories.students.add(StudentRecord(key="2022001", name="Orphan", org_unit_key="ZZ"))
        records = resolver.require_students(["2022001"])
        assert records["2022001"].org_unit is None

    def test_org_unit_directory_down_still_returns_staff(self, resolver, directories):
        directories.org_units.error = "ConnectionError"
        records = resolver.require_staff(["198001"])
        assert records["198001"].name == "Dr. Reviewer"
        assert records["198001"].org_unit is None


class TestBestEffort:
    def test_enrich_batches_and_degrades(self, resolver, directories):
        enrichment = resolver.enrich(
            student_keys={"2021001", "nobody"},
            staff_keys={"198001"},
        )
        assert enrichment.student("2021001")["name"] == "Student 1"
        assert enrichment.student("2021001")["org_unit"]["key"] == "P01"
        assert enrichment.student("nobody") is None
        assert enrichment.staff_member("198001")["org_unit"]["name"] == "Faculty of Engineering"
        assert len(directories.org_units.calls) == 1

    def test_enrich_never_raises_on_provider_failure(self, resolver, directories):
        directories.students.error = "down"
        directories.staff.error = "down"
        enrichment = resolver.enrich(student_keys={"2021001"}, staff_keys={"198001"})
        assert enrichment.student("2021001") is None
        assert enrichment.staff_member("198001") is None

    def test_enrich_nothing(self, resolver, directories):
        enrichment = resolver.enrich()
        assert enrichment.student(None) is None
        assert directories.students.calls == []
