"""
Cross-system identity resolver.

Resolves student, staff and org-unit keys against the three external
directories, one batched round trip per directory per call site.

Two modes:
  strict       — write paths (create, revise, assign). A provider failure
                 raises DependencyUnavailable, a missing key raises
                 UnresolvedMember / UnresolvedReviewer.
  best-effort  — read paths (detail, lists). Failures and misses degrade
                 to ``None`` enrichment; nothing is raised.

Org units are always best-effort: a student whose programme code does not
resolve is still returned, with ``org_unit=None``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace

from pkm_portal.core.exceptions import (
    DependencyUnavailable,
    UnresolvedMember,
    UnresolvedReviewer,
)
from pkm_portal.integrations.directory import (
    DirectoryClient,
    DirectoryResult,
    Missing,
    Resolved,
)

logger = logging.getLogger(__name__)


@dataclass
class Enrichment:
    """Best-effort lookup results for one read path."""

    students: dict = field(default_factory=dict)
    staff: dict = field(default_factory=dict)

    def student(self, key: str | None) -> dict | None:
        record = self.students.get(key) if key else None
        return record.to_dict() if record else None

    def staff_member(self, key: str | None) -> dict | None:
        record = self.staff.get(key) if key else None
        return record.to_dict() if record else None


class IdentityResolver:
    """Facade over the student, staff and org-unit DirectoryClients."""

    def __init__(
        self,
        students: DirectoryClient,
        staff: DirectoryClient,
        org_units: DirectoryClient,
    ) -> None:
        self.students = students
        self.staff = staff
        self.org_units = org_units

    # ── Strict (write-time) ──────────────────────────────────────────────────

    def require_students(self, keys) -> dict:
        """Return key → StudentRecord for every key, or raise."""
        result = self.students.lookup(keys)
        self._raise_for(result, UnresolvedMember)
        return self._attach_org_units(result.records, {})[0]

    def require_staff(self, keys) -> dict:
        """Return key → StaffRecord for every key, or raise."""
        result = self.staff.lookup(keys)
        self._raise_for(result, UnresolvedReviewer)
        return self._attach_org_units({}, result.records)[1]

    # ── Best-effort (read-time) ──────────────────────────────────────────────

    def enrich(self, student_keys=(), staff_keys=()) -> Enrichment:
        """Resolve everything a read path needs; never raises on a miss."""
        students = self._best_effort(self.students, student_keys)
        staff = self._best_effort(self.staff, staff_keys)
        students, staff = self._attach_org_units(students, staff)
        return Enrichment(students=students, staff=staff)

    # ── Internals ────────────────────────────────────────────────────────────

    @staticmethod
    def _raise_for(result: DirectoryResult, unresolved_cls) -> None:
        if not result.ok:
            logger.warning("Strict lookup failed provider=%s error=%s", result.provider, result.error)
            raise DependencyUnavailable(result.provider, result.error)
        if result.missing:
            raise unresolved_cls(result.missing)

    @staticmethod
    def _best_effort(directory: DirectoryClient, keys) -> dict:
        result = directory.lookup(keys)
        if not result.ok:
            return {}
        for key in result.requested:
            if isinstance(result.resolution(key), Missing):
                logger.debug("Enrichment miss provider=%s key=%s", result.provider, key)
        return dict(result.records)

    def _attach_org_units(self, students: dict, staff: dict):
        org_keys = {
            r.org_unit_key
            for r in (*students.values(), *staff.values())
            if r.org_unit_key
        }
        if not org_keys:
            return students, staff
        result = self.org_units.lookup(org_keys)
        units = {}
        for key in org_keys:
            outcome = result.resolution(key)
            if isinstance(outcome, Resolved):
                units[key] = outcome.record

        def _with_unit(record):
            unit = units.get(record.org_unit_key)
            return replace(record, org_unit=unit) if unit else record

        students = {k: _with_unit(r) for k, r in students.items()}
        staff = {k: _with_unit(r) for k, r in staff.items()}
        return students, staff
