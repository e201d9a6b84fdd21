"""
Submission repository: the filtered view every service reads through.

Soft-deleted submissions and team members never come back from here, so
no caller has to remember a ``deleted_at IS NULL`` clause.
"""

from __future__ import annotations

from sqlalchemy import func, select

from pkm_portal.core.exceptions import ConflictError, NotFoundError
from pkm_portal.models.reference import Category, RegistrationWindow
from pkm_portal.models.submission import (
    ACTIVE_ASSIGNMENT_STATES,
    REVIEW_MODELS,
    ArtifactKind,
    ReviewerAssignment,
    Submission,
    TeamMember,
)


class SubmissionRepository:
    def __init__(self, session) -> None:
        self.session = session

    # ── Submission ───────────────────────────────────────────────────────────

    def get(self, submission_id: int) -> Submission:
        sub = self.session.execute(
            Submission.select_active().where(Submission.id == submission_id)
        ).scalar_one_or_none()
        if sub is None:
            raise NotFoundError("Submission", submission_id)
        return sub

    def lock(self, submission_id: int) -> Submission:
        """Load the submission with a row lock (SELECT ... FOR UPDATE).

        ``populate_existing`` refreshes an identity-map copy so the
        precondition checks see the committed state, not a stale one.
        """
        sub = self.session.execute(
            Submission.select_active()
            .where(Submission.id == submission_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if sub is None:
            raise NotFoundError("Submission", submission_id)
        return sub

    def list(self, *, filters: dict | None = None, page: int = 1, per_page: int = 20):
        """Return (items, total) for an admin listing, newest first."""
        stmt = Submission.select_active()
        for column, value in (filters or {}).items():
            if value is not None:
                stmt = stmt.where(getattr(Submission, column) == value)
        total = self.session.execute(
            select(func.count()).select_from(stmt.subquery())
        ).scalar_one()
        items = self.session.execute(
            stmt.order_by(Submission.created_at.desc(), Submission.id.desc())
            .limit(per_page)
            .offset((page - 1) * per_page)
        ).scalars().all()
        return items, total

    def list_for_lead(self, lead_key: str, title_status=None) -> list[Submission]:
        stmt = Submission.select_active().where(Submission.lead_key == lead_key)
        if title_status is not None:
            stmt = stmt.where(Submission.title_status == title_status)
        return self.session.execute(
            stmt.order_by(Submission.created_at.desc(), Submission.id.desc())
        ).scalars().all()

    def list_for_reviewer(self, reviewer_key: str, artifact: ArtifactKind | None = None):
        """Submissions on which ``reviewer_key`` holds an active assignment."""
        assigned = select(ReviewerAssignment.submission_id).where(
            ReviewerAssignment.reviewer_key == reviewer_key,
            ReviewerAssignment.state.in_(list(ACTIVE_ASSIGNMENT_STATES)),
        )
        if artifact is not None:
            assigned = assigned.where(ReviewerAssignment.artifact_kind == artifact)
        return self.session.execute(
            Submission.select_active()
            .where(Submission.id.in_(assigned))
            .order_by(Submission.created_at.desc(), Submission.id.desc())
        ).scalars().all()

    # ── Team ─────────────────────────────────────────────────────────────────

    def members(self, submission_id: int) -> list[TeamMember]:
        return self.session.execute(
            TeamMember.select_active()
            .where(TeamMember.submission_id == submission_id)
            .order_by(TeamMember.display_order)
        ).scalars().all()

    def member_counts(self, submission_ids) -> dict[int, int]:
        ids = list(submission_ids)
        if not ids:
            return {}
        rows = self.session.execute(
            select(TeamMember.submission_id, func.count(TeamMember.id))
            .where(TeamMember.submission_id.in_(ids), TeamMember.deleted_at.is_(None))
            .group_by(TeamMember.submission_id)
        ).all()
        return {sid: count for sid, count in rows}

    # ── Assignments & reviews ────────────────────────────────────────────────

    def active_assignment(self, submission_id: int, artifact: ArtifactKind) -> ReviewerAssignment | None:
        return self.session.execute(
            select(ReviewerAssignment).where(
                ReviewerAssignment.submission_id == submission_id,
                ReviewerAssignment.artifact_kind == artifact,
                ReviewerAssignment.state.in_(list(ACTIVE_ASSIGNMENT_STATES)),
            )
        ).scalar_one_or_none()

    def assignments(self, submission_id: int) -> list[ReviewerAssignment]:
        return self.session.execute(
            select(ReviewerAssignment)
            .where(ReviewerAssignment.submission_id == submission_id)
            .order_by(ReviewerAssignment.assigned_at, ReviewerAssignment.id)
        ).scalars().all()

    def review_count(self, assignment: ReviewerAssignment) -> int:
        model = REVIEW_MODELS[assignment.artifact_kind]
        return self.session.execute(
            select(func.count(model.id)).where(model.assignment_id == assignment.id)
        ).scalar_one()

    def review_history(self, submission_id: int, artifact: ArtifactKind):
        model = REVIEW_MODELS[ArtifactKind(artifact)]
        return self.session.execute(
            select(model)
            .where(model.submission_id == submission_id)
            .order_by(model.reviewed_at.desc(), model.id.desc())
        ).scalars().all()

    # ── Reference data ───────────────────────────────────────────────────────

    def active_category(self, category_id: int) -> Category:
        category = self.session.execute(
            Category.select_active().where(Category.id == category_id, Category.is_active.is_(True))
        ).scalar_one_or_none()
        if category is None:
            raise NotFoundError("Category", category_id)
        return category

    def registration_open(self, now=None) -> bool:
        windows = self.session.execute(
            RegistrationWindow.select_active().where(RegistrationWindow.is_active.is_(True))
        ).scalars().all()
        return any(w.is_open(now) for w in windows)


def ensure_version(submission: Submission, expected_version: int | None) -> None:
    """Raise ConflictError if the caller read an older version of the row."""
    if expected_version is not None and submission.version != int(expected_version):
        raise ConflictError("Submission", "version", submission.id)
