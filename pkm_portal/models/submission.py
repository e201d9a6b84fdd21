"""
PKM Submission Portal
Submission workflow domain models.

Models:
    - Submission:          aggregate root, one team's proposal through its lifecycle
    - TeamMember:          member of a submission's team (exactly one lead)
    - TitleReview:         append-only review history for the title artifact
    - ProposalReview:      append-only review history for the proposal artifact
    - ReviewerAssignment:  plotting of a staff reviewer onto one artifact
    - CodeSequence:        per (category, year) counter backing submission codes

Architecture:
    Category ──1:N──▶ Submission ──1:N──▶ TeamMember
    Submission ──1:N──▶ TitleReview / ProposalReview   (append-only)
    Submission ──1:N──▶ ReviewerAssignment            (≤1 active per artifact)

Lifecycle states (per artifact, title and proposal independently):
    pending → under_review → accepted | needs_revision | rejected
    needs_revision → pending            (lead revises / re-uploads)
    under_review → pending              (assignment cancelled before review)
Final status:
    draft | submitted → passed | failed  (administrative announcement only)

Student and staff identity keys (lead_key, member_key, reviewer_key) refer to
external directories. There is no foreign key behind them.
"""

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import text
from sqlalchemy.orm import declared_attr

from pkm_portal.models import db
from pkm_portal.models.soft_delete import SoftDeleteMixin


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


# ── Enumerations ─────────────────────────────────────────────────────────────


class ReviewStatus(str, Enum):
    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    ACCEPTED = "accepted"
    NEEDS_REVISION = "needs_revision"
    REJECTED = "rejected"


class FinalStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    PASSED = "passed"
    FAILED = "failed"


class ArtifactKind(str, Enum):
    TITLE = "title"
    PROPOSAL = "proposal"


class AssignmentState(str, Enum):
    ASSIGNED = "assigned"
    REVIEWED = "reviewed"
    SUPERSEDED = "superseded"
    CANCELLED = "cancelled"


class Trigger(str, Enum):
    """What caused a review-status change."""

    UPLOAD = "upload"
    ASSIGN = "assign"
    REVIEW = "review"
    REVISE = "revise"
    CANCEL = "cancel"


# Outcomes a reviewer may record.
REVIEW_OUTCOMES = frozenset({
    ReviewStatus.ACCEPTED,
    ReviewStatus.NEEDS_REVISION,
    ReviewStatus.REJECTED,
})

ANNOUNCEABLE_RESULTS = frozenset({FinalStatus.PASSED, FinalStatus.FAILED})
ANNOUNCEABLE_FROM = frozenset({FinalStatus.DRAFT, FinalStatus.SUBMITTED})

ACTIVE_ASSIGNMENT_STATES = frozenset({AssignmentState.ASSIGNED, AssignmentState.REVIEWED})

# current status → {target status: trigger allowed to cause it}
# ``None`` is the proposal artifact before any document exists.
REVIEW_TRANSITIONS: dict[ReviewStatus | None, dict[ReviewStatus, Trigger]] = {
    None: {ReviewStatus.PENDING: Trigger.UPLOAD},
    ReviewStatus.PENDING: {ReviewStatus.UNDER_REVIEW: Trigger.ASSIGN},
    ReviewStatus.UNDER_REVIEW: {
        ReviewStatus.ACCEPTED: Trigger.REVIEW,
        ReviewStatus.NEEDS_REVISION: Trigger.REVIEW,
        ReviewStatus.REJECTED: Trigger.REVIEW,
        ReviewStatus.PENDING: Trigger.CANCEL,
    },
    ReviewStatus.NEEDS_REVISION: {ReviewStatus.PENDING: Trigger.REVISE},
    ReviewStatus.ACCEPTED: {},
    ReviewStatus.REJECTED: {},
}


def _enum_column(enum_cls, **kwargs):
    """String-backed enum column storing member values, portable across dialects."""
    return db.Column(
        db.Enum(
            enum_cls,
            native_enum=False,
            length=20,
            values_callable=lambda e: [m.value for m in e],
            validate_strings=True,
        ),
        **kwargs,
    )


# ── Submission ───────────────────────────────────────────────────────────────


class Submission(SoftDeleteMixin, db.Model):
    """
    One team's grant proposal through its full lifecycle.

    ``version`` is the optimistic-concurrency counter: a flush that updates
    a row whose version moved on underneath raises ``StaleDataError``.
    """

    __tablename__ = "submissions"
    __table_args__ = (
        db.Index("ix_submissions_category_year", "category_id", "year"),
        db.Index("ix_submissions_lead", "lead_key"),
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), nullable=False, unique=True)
    category_id = db.Column(
        db.Integer, db.ForeignKey("categories.id", ondelete="RESTRICT"), nullable=False
    )
    title = db.Column(db.Text, nullable=False)
    year = db.Column(db.Integer, nullable=False)
    lead_key = db.Column(db.String(32), nullable=False)
    form_answers = db.Column(db.JSON, nullable=True)

    title_status = _enum_column(ReviewStatus, nullable=False, default=ReviewStatus.PENDING)
    title_reviewer_key = db.Column(db.String(32), nullable=True)
    title_review_note = db.Column(db.Text, nullable=True)
    title_reviewed_at = db.Column(db.DateTime, nullable=True)

    proposal_document_ref = db.Column(db.String(255), nullable=True)
    proposal_status = _enum_column(ReviewStatus, nullable=True)
    proposal_reviewer_key = db.Column(db.String(32), nullable=True)
    proposal_review_note = db.Column(db.Text, nullable=True)
    proposal_reviewed_at = db.Column(db.DateTime, nullable=True)

    final_status = _enum_column(FinalStatus, nullable=False, default=FinalStatus.DRAFT)

    version = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)
    updated_by = db.Column(db.String(64), nullable=True)

    category = db.relationship("Category", lazy="joined")

    __mapper_args__ = {"version_id_col": version}

    # ── Per-artifact accessors ───────────────────────────────────────────

    def status_of(self, artifact: ArtifactKind) -> ReviewStatus | None:
        return getattr(self, f"{ArtifactKind(artifact).value}_status")

    def set_status(self, artifact: ArtifactKind, status: ReviewStatus) -> None:
        setattr(self, f"{ArtifactKind(artifact).value}_status", status)

    def reviewer_key_of(self, artifact: ArtifactKind) -> str | None:
        return getattr(self, f"{ArtifactKind(artifact).value}_reviewer_key")

    def set_reviewer_key(self, artifact: ArtifactKind, key: str | None) -> None:
        setattr(self, f"{ArtifactKind(artifact).value}_reviewer_key", key)

    def record_review(self, artifact: ArtifactKind, note: str, reviewed_at: datetime) -> None:
        artifact = ArtifactKind(artifact)
        setattr(self, f"{artifact.value}_review_note", note)
        setattr(self, f"{artifact.value}_reviewed_at", reviewed_at)

    def is_lead(self, identity_key: str) -> bool:
        return self.lead_key == identity_key

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "category_id": self.category_id,
            "title": self.title,
            "year": self.year,
            "lead_key": self.lead_key,
            "form_answers": self.form_answers or {},
            "title_status": self.title_status.value,
            "title_reviewer_key": self.title_reviewer_key,
            "title_review_note": self.title_review_note,
            "title_reviewed_at": _iso(self.title_reviewed_at),
            "proposal_document_ref": self.proposal_document_ref,
            "proposal_status": self.proposal_status.value if self.proposal_status else None,
            "proposal_reviewer_key": self.proposal_reviewer_key,
            "proposal_review_note": self.proposal_review_note,
            "proposal_reviewed_at": _iso(self.proposal_reviewed_at),
            "final_status": self.final_status.value,
            "version": self.version,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "updated_by": self.updated_by,
        }

    def __repr__(self):
        return f"<Submission {self.code}: {self.title[:40]}>"


# ── TeamMember ───────────────────────────────────────────────────────────────


class TeamMember(SoftDeleteMixin, db.Model):
    """A student on a submission's team. Revisions soft-delete the old roster."""

    __tablename__ = "team_members"
    __table_args__ = (db.Index("ix_team_members_submission", "submission_id"),)

    id = db.Column(db.Integer, primary_key=True)
    submission_id = db.Column(
        db.Integer, db.ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False
    )
    member_key = db.Column(db.String(32), nullable=False)
    is_lead = db.Column(db.Boolean, nullable=False, default=False)
    display_order = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "member_key": self.member_key,
            "is_lead": self.is_lead,
            "display_order": self.display_order,
        }

    def __repr__(self):
        return f"<TeamMember {self.member_key}{' (lead)' if self.is_lead else ''}>"


# ── Review history ───────────────────────────────────────────────────────────


class _ReviewRecordMixin:
    """Columns shared by the title and proposal review histories."""

    id = db.Column(db.Integer, primary_key=True)
    reviewer_key = db.Column(db.String(32), nullable=False)
    outcome = _enum_column(ReviewStatus, nullable=False)
    note = db.Column(db.Text, nullable=False)
    reviewed_at = db.Column(db.DateTime, nullable=False, default=_utcnow)
    submitted_by = db.Column(
        db.String(64), nullable=False,
        comment="Identity that wrote the record; differs from reviewer_key on admin override.",
    )

    @declared_attr
    def submission_id(cls):
        return db.Column(
            db.Integer,
            db.ForeignKey("submissions.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )

    @declared_attr
    def assignment_id(cls):
        return db.Column(
            db.Integer,
            db.ForeignKey("reviewer_assignments.id", ondelete="RESTRICT"),
            nullable=False,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "reviewer_key": self.reviewer_key,
            "outcome": self.outcome.value,
            "note": self.note,
            "reviewed_at": _iso(self.reviewed_at),
            "submitted_by": self.submitted_by,
            "assignment_id": self.assignment_id,
        }


class TitleReview(_ReviewRecordMixin, db.Model):
    __tablename__ = "title_reviews"

    artifact = ArtifactKind.TITLE


class ProposalReview(_ReviewRecordMixin, db.Model):
    __tablename__ = "proposal_reviews"

    artifact = ArtifactKind.PROPOSAL


REVIEW_MODELS = {
    ArtifactKind.TITLE: TitleReview,
    ArtifactKind.PROPOSAL: ProposalReview,
}


# ── ReviewerAssignment (plotting) ────────────────────────────────────────────


class ReviewerAssignment(db.Model):
    """
    A staff reviewer plotted onto one artifact of one submission.

    State: assigned → reviewed; assigned → cancelled; any active → superseded
    when a later assignment replaces it. The partial unique index keeps at
    most one active (assigned | reviewed) row per (submission, artifact).
    """

    __tablename__ = "reviewer_assignments"
    __table_args__ = (
        db.Index(
            "uq_reviewer_assignments_active",
            "submission_id",
            "artifact_kind",
            unique=True,
            sqlite_where=text("state IN ('assigned', 'reviewed')"),
            postgresql_where=text("state IN ('assigned', 'reviewed')"),
        ),
        db.Index("ix_reviewer_assignments_reviewer", "reviewer_key"),
    )

    id = db.Column(db.Integer, primary_key=True)
    submission_id = db.Column(
        db.Integer, db.ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False
    )
    reviewer_key = db.Column(db.String(32), nullable=False)
    artifact_kind = _enum_column(ArtifactKind, nullable=False)
    state = _enum_column(AssignmentState, nullable=False, default=AssignmentState.ASSIGNED)
    assigned_at = db.Column(db.DateTime, nullable=False, default=_utcnow)
    assigned_by = db.Column(db.String(64), nullable=False)
    closed_at = db.Column(db.DateTime, nullable=True)

    @property
    def is_active(self) -> bool:
        return self.state in ACTIVE_ASSIGNMENT_STATES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "submission_id": self.submission_id,
            "reviewer_key": self.reviewer_key,
            "artifact_kind": self.artifact_kind.value,
            "state": self.state.value,
            "assigned_at": _iso(self.assigned_at),
            "assigned_by": self.assigned_by,
            "closed_at": _iso(self.closed_at),
        }

    def __repr__(self):
        return f"<ReviewerAssignment {self.artifact_kind.value} #{self.submission_id} → {self.reviewer_key}>"


# ── CodeSequence ─────────────────────────────────────────────────────────────


class CodeSequence(db.Model):
    """Last issued sequence number per (category, year)."""

    __tablename__ = "code_sequences"
    __table_args__ = (
        db.UniqueConstraint("category_id", "year", name="uq_code_sequence_category_year"),
    )

    id = db.Column(db.Integer, primary_key=True)
    category_id = db.Column(
        db.Integer, db.ForeignKey("categories.id", ondelete="CASCADE"), nullable=False
    )
    year = db.Column(db.Integer, nullable=False)
    last_seq = db.Column(db.Integer, nullable=False, default=0)
