"""
Reviewer assignment (plotting) and review submission.

  assign_reviewer    admin plots a staff reviewer onto the title or proposal;
                     pending → under_review, or an explicit re-assignment while under review
  cancel_assignment  admin withdraws an assignment nobody has reviewed yet;
                     under_review → pending
  submit_review      the assigned reviewer records an outcome;
                     under_review → accepted | needs_revision | rejected

The reviewer's identity is resolved strictly before the transaction opens,
so no row lock is ever held across a network call.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from pkm_portal.core.caller import CallerContext, Role
from pkm_portal.core.exceptions import (
    ConflictError,
    InvalidTransition,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from pkm_portal.models.audit import write_audit
from pkm_portal.models.submission import (
    REVIEW_MODELS,
    REVIEW_OUTCOMES,
    ArtifactKind,
    AssignmentState,
    ReviewerAssignment,
    ReviewStatus,
    Trigger,
)
from pkm_portal.services.repository import SubmissionRepository, ensure_version
from pkm_portal.services.review_state_machine import review_state_machine
from pkm_portal.utils.helpers import atomic

logger = logging.getLogger(__name__)

MIN_NOTE_LENGTH = 10

_ASSIGNABLE = frozenset({ReviewStatus.PENDING, ReviewStatus.UNDER_REVIEW})


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _require_admin(caller: CallerContext, action: str) -> None:
    if not caller.is_admin:
        raise PermissionDenied(caller.identity_key, action, "administrator role required")


def _artifact(value) -> ArtifactKind:
    try:
        return ArtifactKind(value)
    except ValueError:
        raise ValidationError(
            f"Unknown artifact: {value!r}",
            details={"artifact": f"must be one of {[a.value for a in ArtifactKind]}"},
        )


class ReviewerAssignmentService:
    """Plotting protocol over one persistence session."""

    def __init__(self, session, resolver, storage, state_machine=review_state_machine) -> None:
        self.session = session
        self.resolver = resolver
        self.storage = storage
        self.state_machine = state_machine
        self.repo = SubmissionRepository(session)

    # ── Assign ───────────────────────────────────────────────────────────────

    def assign_reviewer(
        self,
        submission_id: int,
        artifact,
        reviewer_key: str,
        caller: CallerContext,
        *,
        expected_version: int | None = None,
        replaces: str | None = None,
    ) -> dict:
        """Plot ``reviewer_key`` onto one artifact.

        pending → under_review needs nothing more. Replacing a reviewer who
        is still assigned must name the row the caller read: either
        ``expected_version`` or ``replaces`` (the reviewer being replaced).
        A blind second assignment raises ConflictError.
        """
        _require_admin(caller, "assign reviewers")
        artifact = _artifact(artifact)
        reviewer_key = (reviewer_key or "").strip()
        if not reviewer_key:
            raise ValidationError("Reviewer is required", details={"reviewer_key": "required"})

        # Strict lookup before any lock is taken.
        self.resolver.require_staff([reviewer_key])

        with atomic(self.session, resource_id=submission_id):
            sub = self.repo.lock(submission_id)
            ensure_version(sub, expected_version)
            current = sub.status_of(artifact)

            if artifact == ArtifactKind.PROPOSAL and not (
                sub.proposal_document_ref and self.storage.exists(sub.proposal_document_ref)
            ):
                raise InvalidTransition(
                    artifact.value,
                    current.value if current else None,
                    ReviewStatus.UNDER_REVIEW.value,
                    "proposal document has not been uploaded",
                )
            if current not in _ASSIGNABLE:
                raise InvalidTransition(
                    artifact.value,
                    current.value if current else None,
                    ReviewStatus.UNDER_REVIEW.value,
                    "reviewers can only be assigned while pending or under review",
                )

            previous = self.repo.active_assignment(sub.id, artifact)
            if previous is not None and previous.state == AssignmentState.ASSIGNED:
                if expected_version is None and replaces != previous.reviewer_key:
                    raise ConflictError("ReviewerAssignment", "reviewer_key", previous.reviewer_key)
            if previous is not None:
                previous.state = AssignmentState.SUPERSEDED
                previous.closed_at = _now()
                # Free the active slot before the new row is inserted.
                self.session.flush()

            assignment = ReviewerAssignment(
                submission_id=sub.id,
                reviewer_key=reviewer_key,
                artifact_kind=artifact,
                state=AssignmentState.ASSIGNED,
                assigned_by=caller.identity_key,
            )
            self.session.add(assignment)

            if current == ReviewStatus.PENDING:
                self.state_machine.apply(sub, artifact, ReviewStatus.UNDER_REVIEW, Trigger.ASSIGN)
            sub.set_reviewer_key(artifact, reviewer_key)
            sub.updated_by = caller.identity_key
            self.session.flush()

            write_audit(
                self.session,
                entity_type="submission",
                entity_id=sub.id,
                action="reviewer.assign",
                diff={
                    "artifact": artifact.value,
                    "reviewer_key": {"old": previous.reviewer_key if previous else None, "new": reviewer_key},
                    f"{artifact.value}_status": {
                        "old": current.value, "new": ReviewStatus.UNDER_REVIEW.value,
                    },
                },
                **caller.audit_actor(),
            )
            result = assignment.to_dict()

        logger.info(
            "Reviewer assigned submission=%s artifact=%s reviewer=%s by=%s",
            submission_id, artifact.value, reviewer_key, caller.identity_key,
            extra={"submission_id": submission_id, "artifact": artifact.value, "reviewer_key": reviewer_key},
        )
        return result

    # ── Cancel ───────────────────────────────────────────────────────────────

    def cancel_assignment(
        self,
        submission_id: int,
        artifact,
        caller: CallerContext,
        *,
        expected_version: int | None = None,
    ) -> dict:
        _require_admin(caller, "cancel reviewer assignments")
        artifact = _artifact(artifact)

        with atomic(self.session, resource_id=submission_id):
            sub = self.repo.lock(submission_id)
            ensure_version(sub, expected_version)
            assignment = self.repo.active_assignment(sub.id, artifact)
            if assignment is None:
                raise NotFoundError("ReviewerAssignment", f"{submission_id}/{artifact.value}")

            current = sub.status_of(artifact)
            if assignment.state != AssignmentState.ASSIGNED or self.repo.review_count(assignment):
                raise InvalidTransition(
                    artifact.value,
                    current.value if current else None,
                    ReviewStatus.PENDING.value,
                    "assignment has already been reviewed",
                )

            self.state_machine.apply(sub, artifact, ReviewStatus.PENDING, Trigger.CANCEL)
            assignment.state = AssignmentState.CANCELLED
            assignment.closed_at = _now()
            sub.set_reviewer_key(artifact, None)
            sub.updated_by = caller.identity_key
            self.session.flush()

            write_audit(
                self.session,
                entity_type="submission",
                entity_id=sub.id,
                action="reviewer.cancel",
                diff={
                    "artifact": artifact.value,
                    "reviewer_key": {"old": assignment.reviewer_key, "new": None},
                    f"{artifact.value}_status": {
                        "old": current.value, "new": ReviewStatus.PENDING.value,
                    },
                },
                **caller.audit_actor(),
            )
            result = assignment.to_dict()

        logger.info(
            "Reviewer assignment cancelled submission=%s artifact=%s by=%s",
            submission_id, artifact.value, caller.identity_key,
            extra={"submission_id": submission_id, "artifact": artifact.value},
        )
        return result

    # ── Review ───────────────────────────────────────────────────────────────

    def submit_review(
        self,
        submission_id: int,
        artifact,
        outcome,
        note: str,
        caller: CallerContext,
        *,
        on_behalf: bool = False,
        expected_version: int | None = None,
    ) -> dict:
        """Record a review outcome.

        An administrator may record the outcome for an assignment held by
        someone else only with ``on_behalf=True``; the record keeps the
        assigned reviewer as ``reviewer_key`` and the admin as
        ``submitted_by``, and the audit entry is ``review.admin_override``.
        """
        if caller.role not in (Role.REVIEWER, Role.ADMIN):
            raise PermissionDenied(caller.identity_key, "submit reviews", "reviewer role required")
        artifact = _artifact(artifact)

        errors = {}
        try:
            outcome = ReviewStatus(outcome)
        except ValueError:
            outcome = None
        if outcome not in REVIEW_OUTCOMES:
            errors["outcome"] = f"must be one of {sorted(o.value for o in REVIEW_OUTCOMES)}"
        note = (note or "").strip()
        if len(note) < MIN_NOTE_LENGTH:
            errors["note"] = f"review note must be at least {MIN_NOTE_LENGTH} characters"
        if errors:
            raise ValidationError("Invalid review", details=errors)

        with atomic(self.session, resource_id=submission_id):
            sub = self.repo.lock(submission_id)
            ensure_version(sub, expected_version)
            current = sub.status_of(artifact)
            assignment = self.repo.active_assignment(sub.id, artifact)
            if assignment is None or assignment.state != AssignmentState.ASSIGNED:
                raise InvalidTransition(
                    artifact.value,
                    current.value if current else None,
                    outcome.value,
                    "no open reviewer assignment",
                )

            override = assignment.reviewer_key != caller.identity_key
            if override:
                if not caller.is_admin:
                    raise PermissionDenied(
                        caller.identity_key, "review this artifact", "not the assigned reviewer",
                    )
                if not on_behalf:
                    raise PermissionDenied(
                        caller.identity_key, "review this artifact",
                        "reviewing on behalf of the assigned reviewer must be requested explicitly",
                    )

            self.state_machine.apply(sub, artifact, outcome, Trigger.REVIEW)
            reviewed_at = _now()
            record = REVIEW_MODELS[artifact](
                submission_id=sub.id,
                assignment_id=assignment.id,
                reviewer_key=assignment.reviewer_key,
                outcome=outcome,
                note=note,
                reviewed_at=reviewed_at,
                submitted_by=caller.identity_key,
            )
            self.session.add(record)
            sub.record_review(artifact, note, reviewed_at)
            assignment.state = AssignmentState.REVIEWED
            assignment.closed_at = reviewed_at
            sub.updated_by = caller.identity_key
            self.session.flush()

            diff = {
                "artifact": artifact.value,
                f"{artifact.value}_status": {"old": current.value, "new": outcome.value},
                "reviewer_key": assignment.reviewer_key,
            }
            write_audit(
                self.session,
                entity_type="submission",
                entity_id=sub.id,
                action="review.submit",
                diff=diff,
                **caller.audit_actor(),
            )
            if override:
                write_audit(
                    self.session,
                    entity_type="submission",
                    entity_id=sub.id,
                    action="review.admin_override",
                    diff={**diff, "submitted_by": caller.identity_key},
                    **caller.audit_actor(),
                )
            result = record.to_dict()

        if override:
            logger.warning(
                "Admin override review submission=%s artifact=%s reviewer=%s admin=%s",
                submission_id, artifact.value, result["reviewer_key"], caller.identity_key,
                extra={
                    "submission_id": submission_id, "artifact": artifact.value,
                    "reviewer_key": result["reviewer_key"], "override": True,
                },
            )
        logger.info(
            "Review submitted submission=%s artifact=%s outcome=%s",
            submission_id, artifact.value, outcome.value,
            extra={
                "submission_id": submission_id, "artifact": artifact.value,
                "reviewer_key": result["reviewer_key"], "outcome": outcome.value,
            },
        )
        return result
