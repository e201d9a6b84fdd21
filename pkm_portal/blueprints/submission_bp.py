"""
Submission workflow blueprint.

Endpoint groups:
  Submissions         POST/GET /api/v1/submissions
                      GET/DELETE /api/v1/submissions/<id>
  Title               PUT  /api/v1/submissions/<id>/title
  Proposal document   POST/PUT /api/v1/submissions/<id>/proposal   (multipart "file")
  Plotting            POST/DELETE /api/v1/submissions/<id>/reviewers/<artifact>
  Reviews             POST /api/v1/submissions/<id>/reviews/<artifact>
  Announcement        POST /api/v1/submissions/<id>/announce
  Reviewer inbox      GET  /api/v1/assignments

The caller comes from ``g.caller`` (see pkm_portal.auth). The service
layer owns all business logic and commits; views only parse and shape.
"""

from __future__ import annotations

import logging

from flask import Blueprint, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from pkm_portal.auth import current_caller, require_role
from pkm_portal.core.caller import Role
from pkm_portal.core.exceptions import (
    ConflictError,
    DependencyUnavailable,
    InvalidTransition,
    NotFoundError,
    PermissionDenied,
    StorageError,
    UnresolvedIdentityError,
    ValidationError,
)
from pkm_portal.models import db
from pkm_portal.utils.errors import E, api_error

logger = logging.getLogger(__name__)

submission_bp = Blueprint("submissions", __name__, url_prefix="/api/v1")


def _services():
    return current_app.extensions["pkm"]


# ── Request helpers ──────────────────────────────────────────────────────────


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object", details={"body": "invalid"})
    return data


def _expected_version(value) -> int | None:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError("expected_version must be an integer",
                              details={"expected_version": "invalid"})


def _uploaded_file() -> tuple[bytes, str]:
    upload = request.files.get("file")
    if upload is None or not upload.filename:
        raise ValidationError("Proposal file is required", details={"file": "required"})
    return upload.read(), upload.filename


# ── Error handlers ───────────────────────────────────────────────────────────


@submission_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return api_error(E.VALIDATION_INVALID, str(error), details=error.details)


@submission_bp.errorhandler(InvalidTransition)
def _handle_transition(error: InvalidTransition):
    return api_error(
        E.INVALID_TRANSITION,
        str(error),
        details={
            "artifact": error.artifact,
            "current": error.current,
            "attempted": error.attempted,
            "reason": error.reason,
        },
    )


@submission_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, str(error))


@submission_bp.errorhandler(UnresolvedIdentityError)
def _handle_unresolved(error: UnresolvedIdentityError):
    return api_error(E.UNRESOLVED_IDENTITY, str(error),
                     details={"kind": error.kind, "keys": error.keys})


@submission_bp.errorhandler(DependencyUnavailable)
def _handle_dependency(error: DependencyUnavailable):
    return api_error(E.DEPENDENCY_UNAVAILABLE, str(error),
                     details={"provider": error.provider, "retryable": True})


@submission_bp.errorhandler(ConflictError)
def _handle_conflict(error: ConflictError):
    return api_error(E.CONFLICT_STATE, str(error),
                     details={"resource": error.resource, "field": error.field, "retryable": True})


@submission_bp.errorhandler(PermissionDenied)
def _handle_forbidden(error: PermissionDenied):
    return api_error(E.FORBIDDEN, str(error))


@submission_bp.errorhandler(StorageError)
def _handle_storage(error: StorageError):
    return api_error(E.STORAGE, str(error))


@submission_bp.errorhandler(HTTPException)
def _handle_http(error: HTTPException):
    code = E.VALIDATION_INVALID if error.code < 500 else E.INTERNAL
    return api_error(code, error.description or error.name, status=error.code)


@submission_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    db.session.rollback()
    logger.exception("Unexpected error in submission_bp endpoint=%s", request.endpoint)
    return api_error(E.INTERNAL, "Internal server error")


# ═════════════════════════════════════════════════════════════════════════
# Submissions
# ═════════════════════════════════════════════════════════════════════════


@submission_bp.route("/submissions", methods=["POST"])
@require_role(Role.LEAD, Role.ADMIN)
def create_submission():
    """Create a submission with its team.

    Body: {category_id, title, members?: [{member_key}], form_answers?,
           lead_key? (admin only), year?}
    Returns: detail view (201).
    """
    data = _json_body()
    if data.get("category_id") in (None, ""):
        raise ValidationError("category_id is required", details={"category_id": "required"})
    try:
        category_id = int(data["category_id"])
    except (TypeError, ValueError):
        raise ValidationError("category_id must be an integer", details={"category_id": "invalid"})

    detail = _services().lifecycle(db.session).create_submission(
        current_caller(),
        category_id=category_id,
        title=data.get("title"),
        members=data.get("members"),
        form_answers=data.get("form_answers"),
        lead_key=data.get("lead_key"),
        year=data.get("year"),
    )
    return jsonify(detail), 201


@submission_bp.route("/submissions", methods=["GET"])
@require_role(Role.LEAD, Role.ADMIN)
def list_submissions():
    """Admin: every submission, filtered and paginated. Lead: their own.

    Query params (admin): title_status, proposal_status, final_status,
    category_id, year, page, per_page. Lead: title_status.
    """
    caller = current_caller()
    views = _services().views(db.session)
    if caller.is_admin:
        filters = {k: request.args.get(k) for k in
                   ("title_status", "proposal_status", "final_status", "category_id", "year")}
        page = views.list_submissions(
            filters,
            page=request.args.get("page", 1),
            per_page=request.args.get("per_page", 20),
        )
        return jsonify(page), 200
    items = views.list_my_submissions(caller, request.args.get("title_status"))
    return jsonify({"items": items, "total": len(items)}), 200


@submission_bp.route("/submissions/<int:submission_id>", methods=["GET"])
@require_role(Role.LEAD, Role.REVIEWER, Role.ADMIN)
def get_submission(submission_id):
    detail = _services().views(db.session).get_submission_detail(submission_id, current_caller())
    return jsonify(detail), 200


@submission_bp.route("/submissions/<int:submission_id>", methods=["DELETE"])
@require_role(Role.ADMIN)
def delete_submission(submission_id):
    _services().lifecycle(db.session).delete_submission(submission_id, current_caller())
    return jsonify({"deleted": True, "id": submission_id}), 200


# ═════════════════════════════════════════════════════════════════════════
# Title & proposal (team lead)
# ═════════════════════════════════════════════════════════════════════════


@submission_bp.route("/submissions/<int:submission_id>/title", methods=["PUT"])
@require_role(Role.LEAD)
def revise_title(submission_id):
    """Body: {title, members?, form_answers?}"""
    data = _json_body()
    detail = _services().lifecycle(db.session).revise_title(
        submission_id,
        current_caller(),
        title=data.get("title"),
        members=data.get("members"),
        form_answers=data.get("form_answers"),
    )
    return jsonify(detail), 200


@submission_bp.route("/submissions/<int:submission_id>/proposal", methods=["POST"])
@require_role(Role.LEAD)
def upload_proposal(submission_id):
    content, filename = _uploaded_file()
    detail = _services().lifecycle(db.session).upload_proposal(
        submission_id, current_caller(), content, filename
    )
    return jsonify(detail), 201


@submission_bp.route("/submissions/<int:submission_id>/proposal", methods=["PUT"])
@require_role(Role.LEAD)
def revise_proposal(submission_id):
    content, filename = _uploaded_file()
    detail = _services().lifecycle(db.session).revise_proposal(
        submission_id, current_caller(), content, filename
    )
    return jsonify(detail), 200


# ═════════════════════════════════════════════════════════════════════════
# Plotting & reviews
# ═════════════════════════════════════════════════════════════════════════


@submission_bp.route("/submissions/<int:submission_id>/reviewers/<artifact>", methods=["POST"])
@require_role(Role.ADMIN)
def assign_reviewer(submission_id, artifact):
    """Body: {reviewer_key, expected_version?, replaces?}

    Replacing a reviewer who is still assigned needs expected_version or
    replaces (the reviewer key being replaced); otherwise 409.
    """
    data = _json_body()
    assignment = _services().assignments(db.session).assign_reviewer(
        submission_id,
        artifact,
        data.get("reviewer_key"),
        current_caller(),
        expected_version=_expected_version(data.get("expected_version")),
        replaces=data.get("replaces"),
    )
    return jsonify(assignment), 201


@submission_bp.route("/submissions/<int:submission_id>/reviewers/<artifact>", methods=["DELETE"])
@require_role(Role.ADMIN)
def cancel_assignment(submission_id, artifact):
    assignment = _services().assignments(db.session).cancel_assignment(
        submission_id,
        artifact,
        current_caller(),
        expected_version=_expected_version(request.args.get("expected_version")),
    )
    return jsonify(assignment), 200


@submission_bp.route("/submissions/<int:submission_id>/reviews/<artifact>", methods=["POST"])
@require_role(Role.REVIEWER, Role.ADMIN)
def submit_review(submission_id, artifact):
    """Body: {outcome, note, on_behalf? (admin), expected_version?}"""
    data = _json_body()
    record = _services().assignments(db.session).submit_review(
        submission_id,
        artifact,
        data.get("outcome"),
        data.get("note"),
        current_caller(),
        on_behalf=bool(data.get("on_behalf", False)),
        expected_version=_expected_version(data.get("expected_version")),
    )
    return jsonify(record), 201


@submission_bp.route("/submissions/<int:submission_id>/announce", methods=["POST"])
@require_role(Role.ADMIN)
def announce(submission_id):
    """Body: {result: "passed" | "failed"}"""
    data = _json_body()
    detail = _services().lifecycle(db.session).announce_final_result(
        submission_id, data.get("result"), current_caller()
    )
    return jsonify(detail), 200


@submission_bp.route("/assignments", methods=["GET"])
@require_role(Role.REVIEWER)
def my_assignments():
    """Query params: artifact (title | proposal)"""
    items = _services().views(db.session).list_my_assignments(
        current_caller(), request.args.get("artifact")
    )
    return jsonify({"items": items, "total": len(items)}), 200
