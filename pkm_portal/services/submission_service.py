"""
Submission lifecycle manager.

Orchestrates create / revise / upload / announce / delete as atomic units
against one persistence session. Collaborators are injected at
construction (identity resolver, document storage, code generator, state
machine); nothing here reaches for a module-level connection.

Ordering inside every write:
    1. validate input (pure)
    2. strict identity lookups (network, before any transaction opens)
    3. lock the Submission row, check preconditions, mutate, audit
    4. commit, or roll back everything on any error

Document writes are the one side effect outside the database. A stored
document is removed again if the transaction that references it fails,
and a replaced document is removed only after the new reference has
committed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from pkm_portal.core.caller import CallerContext, Role
from pkm_portal.core.exceptions import (
    InvalidTransition,
    PermissionDenied,
    StorageError,
    ValidationError,
)
from pkm_portal.models.audit import write_audit
from pkm_portal.models.submission import (
    ArtifactKind,
    FinalStatus,
    ReviewStatus,
    Submission,
    TeamMember,
    Trigger,
)
from pkm_portal.services.repository import SubmissionRepository
from pkm_portal.services.review_state_machine import review_state_machine
from pkm_portal.services.submission_views import SubmissionViews
from pkm_portal.services.team_validator import MemberInput, normalize_team, validate_team
from pkm_portal.utils.helpers import atomic

logger = logging.getLogger(__name__)

TITLE_MIN_LENGTH = 10
TITLE_MAX_LENGTH = 500


def _validate_title(title) -> str:
    title = (title or "").strip()
    if not title:
        raise ValidationError("Title is required", details={"title": "required"})
    if not TITLE_MIN_LENGTH <= len(title) <= TITLE_MAX_LENGTH:
        raise ValidationError(
            f"Title must be between {TITLE_MIN_LENGTH} and {TITLE_MAX_LENGTH} characters",
            details={"title": f"length {len(title)}"},
        )
    return title


def _parse_year(year) -> int:
    if year in (None, ""):
        return datetime.now(timezone.utc).year
    if isinstance(year, bool):
        raise ValidationError("Year must be an integer", details={"year": "invalid"})
    try:
        return int(year)
    except (TypeError, ValueError):
        raise ValidationError("Year must be an integer", details={"year": "invalid"})


def _member_inputs(members) -> list[MemberInput]:
    if not isinstance(members, (list, tuple, type(None))):
        raise ValidationError("Members must be a list", details={"members": "invalid"})
    inputs = []
    for index, item in enumerate(members or []):
        if isinstance(item, MemberInput):
            inputs.append(item)
        elif isinstance(item, dict):
            inputs.append(MemberInput.from_dict(item))
        elif isinstance(item, (str, int)) and not isinstance(item, bool):
            inputs.append(MemberInput(member_key=str(item).strip()))
        else:
            raise ValidationError(
                "Each member must be an identity key or an object",
                details={f"members[{index}]": "invalid"},
            )
    return inputs


def _status_value(status):
    return status.value if status is not None else None


class SubmissionLifecycleManager:
    """Write operations on the Submission aggregate, plus the detail read path."""

    def __init__(
        self,
        session,
        resolver,
        storage,
        code_generator,
        state_machine=review_state_machine,
    ) -> None:
        self.session = session
        self.resolver = resolver
        self.storage = storage
        self.code_generator = code_generator
        self.state_machine = state_machine
        self.repo = SubmissionRepository(session)
        self.views = SubmissionViews(session, resolver)

    # ── Create ───────────────────────────────────────────────────────────────

    def create_submission(
        self,
        caller: CallerContext,
        *,
        category_id: int,
        title: str,
        members=None,
        form_answers: dict | None = None,
        lead_key: str | None = None,
        year: int | None = None,
    ) -> dict:
        """Create a submission with its team; returns the detail view.

        A lead always creates for themselves. An administrator creates on
        behalf of ``lead_key``, may do so outside the registration window,
        and does not need every member to resolve in the student directory.
        """
        if caller.role == Role.LEAD:
            lead_key = caller.identity_key
        elif caller.is_admin:
            if not lead_key:
                raise ValidationError("Lead is required", details={"lead_key": "required"})
        else:
            raise PermissionDenied(caller.identity_key, "create submissions")

        title = _validate_title(title)
        year = _parse_year(year)
        if form_answers is not None and not isinstance(form_answers, dict):
            raise ValidationError("Form answers must be an object", details={"form_answers": "invalid"})
        team = normalize_team(lead_key, _member_inputs(members))
        validate_team(team)

        if not caller.is_admin:
            self.resolver.require_students([m.member_key for m in team])

        with atomic(self.session):
            if not caller.is_admin and not self.repo.registration_open():
                raise ValidationError(
                    "Registration is closed",
                    details={"registration": "no registration window is open"},
                )
            category = self.repo.active_category(category_id)

            sub = Submission(
                category_id=category.id,
                title=title,
                year=year,
                lead_key=team[0].member_key,
                form_answers=form_answers or {},
                title_status=ReviewStatus.PENDING,
                final_status=FinalStatus.DRAFT,
                updated_by=caller.identity_key,
            )
            code = self.code_generator.insert_with_code(self.session, sub, category, year)
            for member in team:
                self.session.add(TeamMember(
                    submission_id=sub.id,
                    member_key=member.member_key,
                    is_lead=member.is_lead,
                    display_order=member.display_order,
                ))
            self.session.flush()

            write_audit(
                self.session,
                entity_type="submission",
                entity_id=sub.id,
                action="submission.create",
                diff={
                    "code": code,
                    "title": title,
                    "members": [m.member_key for m in team],
                },
                **caller.audit_actor(),
            )
            submission_id = sub.id

        logger.info(
            "Submission created id=%s code=%s lead=%s members=%d",
            submission_id, code, lead_key, len(team),
            extra={"submission_id": submission_id, "submission_code": code},
        )
        return self.views.get_submission_detail(submission_id)

    # ── Revise title ─────────────────────────────────────────────────────────

    def revise_title(
        self,
        submission_id: int,
        caller: CallerContext,
        *,
        title: str,
        members=None,
        form_answers: dict | None = None,
    ) -> dict:
        """needs_revision → pending, replacing the team if ``members`` is given."""
        title = _validate_title(title)
        # Unlocked pre-check so a non-lead never triggers directory lookups.
        self._require_lead(self.repo.get(submission_id), caller, "revise the title")
        team = None
        if members is not None:
            team = normalize_team(caller.identity_key, _member_inputs(members))
            validate_team(team)
            self.resolver.require_students([m.member_key for m in team])

        with atomic(self.session, resource_id=submission_id):
            sub = self.repo.lock(submission_id)
            self._require_lead(sub, caller, "revise the title")
            previous = self.state_machine.apply(
                sub, ArtifactKind.TITLE, ReviewStatus.PENDING, Trigger.REVISE
            )
            diff = {
                "title_status": {"old": previous.value, "new": ReviewStatus.PENDING.value},
                "title": {"old": sub.title, "new": title},
            }
            sub.title = title
            if form_answers is not None:
                sub.form_answers = form_answers
            if team is not None:
                old = self.repo.members(sub.id)
                for member in old:
                    member.soft_delete()
                for member in team:
                    self.session.add(TeamMember(
                        submission_id=sub.id,
                        member_key=member.member_key,
                        is_lead=member.is_lead,
                        display_order=member.display_order,
                    ))
                diff["members"] = {
                    "old": [m.member_key for m in old],
                    "new": [m.member_key for m in team],
                }
            sub.updated_by = caller.identity_key
            self.session.flush()

            write_audit(
                self.session,
                entity_type="submission",
                entity_id=sub.id,
                action="submission.revise_title",
                diff=diff,
                **caller.audit_actor(),
            )

        logger.info("Title revised submission=%s by=%s", submission_id, caller.identity_key)
        return self.views.get_submission_detail(submission_id)

    # ── Proposal document ────────────────────────────────────────────────────

    def upload_proposal(self, submission_id: int, caller: CallerContext, data: bytes, filename: str) -> dict:
        """First proposal upload; requires the title to be accepted."""
        stored_ref = None
        try:
            with atomic(self.session, resource_id=submission_id):
                sub = self.repo.lock(submission_id)
                self._require_lead(sub, caller, "upload the proposal")
                if sub.title_status != ReviewStatus.ACCEPTED:
                    raise InvalidTransition(
                        ArtifactKind.PROPOSAL.value,
                        _status_value(sub.proposal_status),
                        ReviewStatus.PENDING.value,
                        f"title must be accepted first (is {sub.title_status.value!r})",
                    )
                self.state_machine.check(
                    sub, ArtifactKind.PROPOSAL, ReviewStatus.PENDING, Trigger.UPLOAD
                )

                stored_ref = self.storage.store(data, filename, prefix=sub.code)
                sub.proposal_document_ref = stored_ref
                self.state_machine.apply(
                    sub, ArtifactKind.PROPOSAL, ReviewStatus.PENDING, Trigger.UPLOAD
                )
                sub.updated_by = caller.identity_key
                self.session.flush()

                write_audit(
                    self.session,
                    entity_type="submission",
                    entity_id=sub.id,
                    action="proposal.upload",
                    diff={
                        "proposal_document_ref": {"old": None, "new": stored_ref},
                        "proposal_status": {"old": None, "new": ReviewStatus.PENDING.value},
                    },
                    **caller.audit_actor(),
                )
        except Exception:
            self._discard(stored_ref)
            raise

        logger.info("Proposal uploaded submission=%s ref=%s", submission_id, stored_ref)
        return self.views.get_submission_detail(submission_id)

    def revise_proposal(self, submission_id: int, caller: CallerContext, data: bytes, filename: str) -> dict:
        """needs_revision → pending with a replacement document.

        The previous document is deleted only once the new reference has
        committed, so at most one document per submission survives.
        """
        stored_ref = None
        old_ref = None
        try:
            with atomic(self.session, resource_id=submission_id):
                sub = self.repo.lock(submission_id)
                self._require_lead(sub, caller, "revise the proposal")
                self.state_machine.check(
                    sub, ArtifactKind.PROPOSAL, ReviewStatus.PENDING, Trigger.REVISE
                )

                old_ref = sub.proposal_document_ref
                stored_ref = self.storage.store(data, filename, prefix=sub.code)
                sub.proposal_document_ref = stored_ref
                self.state_machine.apply(
                    sub, ArtifactKind.PROPOSAL, ReviewStatus.PENDING, Trigger.REVISE
                )
                sub.updated_by = caller.identity_key
                self.session.flush()

                write_audit(
                    self.session,
                    entity_type="submission",
                    entity_id=sub.id,
                    action="proposal.revise",
                    diff={
                        "proposal_document_ref": {"old": old_ref, "new": stored_ref},
                        "proposal_status": {
                            "old": ReviewStatus.NEEDS_REVISION.value,
                            "new": ReviewStatus.PENDING.value,
                        },
                    },
                    **caller.audit_actor(),
                )
        except Exception:
            self._discard(stored_ref)
            raise

        if old_ref and old_ref != stored_ref:
            self._discard(old_ref)
        logger.info(
            "Proposal revised submission=%s old_ref=%s new_ref=%s",
            submission_id, old_ref, stored_ref,
        )
        return self.views.get_submission_detail(submission_id)

    def _discard(self, ref: str | None) -> None:
        if not ref:
            return
        try:
            self.storage.delete(ref)
        except StorageError:
            logger.exception("Orphaned proposal document ref=%s could not be deleted", ref)

    # ── Announce / delete ────────────────────────────────────────────────────

    def announce_final_result(self, submission_id: int, result, caller: CallerContext) -> dict:
        """draft | submitted → passed | failed. Both artifacts must be accepted."""
        self._require_admin(caller, "announce results")
        try:
            result = FinalStatus(result)
        except ValueError:
            raise ValidationError(
                f"Unknown final result: {result!r}",
                details={"result": "must be 'passed' or 'failed'"},
            )

        with atomic(self.session, resource_id=submission_id):
            sub = self.repo.lock(submission_id)
            previous = self.state_machine.announce(sub, result)
            sub.updated_by = caller.identity_key
            self.session.flush()
            write_audit(
                self.session,
                entity_type="submission",
                entity_id=sub.id,
                action="submission.announce",
                diff={"final_status": {"old": previous.value, "new": result.value}},
                **caller.audit_actor(),
            )

        logger.info(
            "Final result announced submission=%s result=%s", submission_id, result.value,
            extra={"submission_id": submission_id, "outcome": result.value},
        )
        return self.views.get_submission_detail(submission_id)

    def delete_submission(self, submission_id: int, caller: CallerContext) -> None:
        """Soft delete the submission and its team. The document is kept for audit."""
        self._require_admin(caller, "delete submissions")
        with atomic(self.session, resource_id=submission_id):
            sub = self.repo.lock(submission_id)
            members = self.repo.members(sub.id)
            for member in members:
                member.soft_delete()
            sub.soft_delete()
            sub.updated_by = caller.identity_key
            self.session.flush()
            write_audit(
                self.session,
                entity_type="submission",
                entity_id=sub.id,
                action="submission.delete",
                diff={"code": sub.code, "members": len(members)},
                **caller.audit_actor(),
            )
        logger.info("Submission soft-deleted id=%s by=%s", submission_id, caller.identity_key)

    # ── Reads ────────────────────────────────────────────────────────────────

    def get_submission_detail(self, submission_id: int, caller: CallerContext | None = None) -> dict:
        return self.views.get_submission_detail(submission_id, caller)

    # ── Guards ───────────────────────────────────────────────────────────────

    @staticmethod
    def _require_lead(sub: Submission, caller: CallerContext, action: str) -> None:
        if not sub.is_lead(caller.identity_key):
            raise PermissionDenied(caller.identity_key, action, "only the team lead may do this")

    @staticmethod
    def _require_admin(caller: CallerContext, action: str) -> None:
        if not caller.is_admin:
            raise PermissionDenied(caller.identity_key, action, "administrator role required")
