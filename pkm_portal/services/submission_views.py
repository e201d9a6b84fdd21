"""
Read paths: submission detail and the three listings.

Everything here is best-effort on the external side. Rows come from the
local store (soft-deleted rows already filtered by the repository), then
one batched enrichment call per directory fills in student and staff
records. A key the directory does not know, or a directory that is down,
shows up as ``None``; nothing in this module raises UnresolvedMember.
"""

from __future__ import annotations

import math

from pkm_portal.core.caller import CallerContext
from pkm_portal.core.exceptions import PermissionDenied, ValidationError
from pkm_portal.models.submission import ArtifactKind, FinalStatus, ReviewStatus
from pkm_portal.services.repository import SubmissionRepository

DEFAULT_PER_PAGE = 20
MAX_PER_PAGE = 100

_LIST_FILTERS = {
    "title_status": ReviewStatus,
    "proposal_status": ReviewStatus,
    "final_status": FinalStatus,
    "category_id": int,
    "year": int,
}


def _parse_filters(raw: dict | None) -> dict:
    filters, errors = {}, {}
    for name, convert in _LIST_FILTERS.items():
        value = (raw or {}).get(name)
        if value in (None, ""):
            continue
        try:
            filters[name] = convert(value)
        except (TypeError, ValueError):
            errors[name] = f"invalid value {value!r}"
    if errors:
        raise ValidationError("Invalid list filters", details=errors)
    return filters


def _parse_page(page, per_page) -> tuple[int, int]:
    try:
        page = int(page or 1)
        per_page = int(per_page or DEFAULT_PER_PAGE)
    except (TypeError, ValueError):
        raise ValidationError("Invalid pagination", details={"page": "must be an integer"})
    return max(page, 1), min(max(per_page, 1), MAX_PER_PAGE)


class SubmissionViews:
    """Assembles response views from persisted state plus resolved identities."""

    def __init__(self, session, resolver) -> None:
        self.session = session
        self.resolver = resolver
        self.repo = SubmissionRepository(session)

    # ── Detail ───────────────────────────────────────────────────────────────

    def get_submission_detail(self, submission_id: int, caller: CallerContext | None = None) -> dict:
        sub = self.repo.get(submission_id)
        if caller is not None:
            self._check_can_view(sub, caller)
        members = self.repo.members(sub.id)
        assignments = self.repo.assignments(sub.id)
        history = {
            artifact.value: self.repo.review_history(sub.id, artifact)
            for artifact in ArtifactKind
        }

        staff_keys = {sub.title_reviewer_key, sub.proposal_reviewer_key}
        staff_keys.update(a.reviewer_key for a in assignments)
        for records in history.values():
            staff_keys.update(r.reviewer_key for r in records)
        enrichment = self.resolver.enrich(
            student_keys={m.member_key for m in members} | {sub.lead_key},
            staff_keys={k for k in staff_keys if k},
        )

        data = sub.to_dict()
        data["category"] = sub.category.to_dict() if sub.category else None
        data["lead"] = enrichment.student(sub.lead_key)
        data["members"] = [
            {**m.to_dict(), "student": enrichment.student(m.member_key)} for m in members
        ]
        data["title_reviewer"] = enrichment.staff_member(sub.title_reviewer_key)
        data["proposal_reviewer"] = enrichment.staff_member(sub.proposal_reviewer_key)
        data["assignments"] = [
            {**a.to_dict(), "reviewer": enrichment.staff_member(a.reviewer_key)}
            for a in assignments
        ]
        data["review_history"] = {
            artifact: [
                {**r.to_dict(), "reviewer": enrichment.staff_member(r.reviewer_key)}
                for r in records
            ]
            for artifact, records in history.items()
        }
        return data

    def _check_can_view(self, sub, caller: CallerContext) -> None:
        if caller.is_admin or sub.is_lead(caller.identity_key):
            return
        if caller.identity_key in {sub.title_reviewer_key, sub.proposal_reviewer_key}:
            return
        if any(m.member_key == caller.identity_key for m in self.repo.members(sub.id)):
            return
        raise PermissionDenied(caller.identity_key, "view this submission")

    # ── Lists ────────────────────────────────────────────────────────────────

    def _summaries(self, submissions) -> list[dict]:
        counts = self.repo.member_counts(s.id for s in submissions)
        enrichment = self.resolver.enrich(
            student_keys={s.lead_key for s in submissions},
            staff_keys={
                k for s in submissions
                for k in (s.title_reviewer_key, s.proposal_reviewer_key) if k
            },
        )
        items = []
        for sub in submissions:
            data = sub.to_dict()
            data["category"] = sub.category.to_dict() if sub.category else None
            data["lead"] = enrichment.student(sub.lead_key)
            data["title_reviewer"] = enrichment.staff_member(sub.title_reviewer_key)
            data["proposal_reviewer"] = enrichment.staff_member(sub.proposal_reviewer_key)
            data["member_count"] = counts.get(sub.id, 0)
            items.append(data)
        return items

    def list_my_submissions(self, caller: CallerContext, title_status=None) -> list[dict]:
        """The caller's own (lead) submissions, newest first."""
        if title_status not in (None, ""):
            title_status = _parse_filters({"title_status": title_status})["title_status"]
        else:
            title_status = None
        return self._summaries(self.repo.list_for_lead(caller.identity_key, title_status))

    def list_submissions(self, filters: dict | None = None, page=1, per_page=DEFAULT_PER_PAGE) -> dict:
        """Admin listing with filters and pagination."""
        filters = _parse_filters(filters)
        page, per_page = _parse_page(page, per_page)
        items, total = self.repo.list(filters=filters, page=page, per_page=per_page)
        return {
            "items": self._summaries(items),
            "total": total,
            "page": page,
            "per_page": per_page,
            "pages": math.ceil(total / per_page) if total else 0,
        }

    def list_my_assignments(self, caller: CallerContext, artifact=None) -> list[dict]:
        """Submissions on which the caller holds an active reviewer assignment."""
        if artifact not in (None, ""):
            try:
                artifact = ArtifactKind(artifact)
            except ValueError:
                raise ValidationError(
                    f"Unknown artifact: {artifact!r}",
                    details={"artifact": f"must be one of {[a.value for a in ArtifactKind]}"},
                )
        else:
            artifact = None
        return self._summaries(self.repo.list_for_reviewer(caller.identity_key, artifact))
