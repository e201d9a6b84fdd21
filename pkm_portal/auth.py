"""
PKM Submission Portal
Caller context middleware.

Authentication happens upstream: the auth gateway in front of this service
validates the token and forwards the caller as two trusted headers.

    X-Caller-Id    — student number, staff id or admin username
    X-Caller-Role  — admin | lead | reviewer

Provides:
    - init_caller_context(app): before_request hook that stores a
      CallerContext on ``g.caller`` (or None when the headers are absent)
    - current_caller(): the CallerContext for this request, 401 if missing
    - require_role(*roles): decorator rejecting any other role with 403
"""

import functools
import logging

from flask import g, request

from pkm_portal.core.caller import CallerContext, Role
from pkm_portal.utils.errors import E, api_error

logger = logging.getLogger(__name__)

CALLER_ID_HEADER = "X-Caller-Id"
CALLER_ROLE_HEADER = "X-Caller-Role"


def _caller_from_headers() -> CallerContext | None:
    identity = request.headers.get(CALLER_ID_HEADER, "").strip()
    role = request.headers.get(CALLER_ROLE_HEADER, "").strip().lower()
    if not identity or not role:
        return None
    try:
        return CallerContext(identity_key=identity, role=Role(role))
    except ValueError:
        logger.warning("Unknown caller role '%s' for %s", role, identity)
        return None


def init_caller_context(app):
    """Register the before_request hook that populates ``g.caller``."""

    @app.before_request
    def _load_caller():
        g.caller = _caller_from_headers()


def current_caller() -> CallerContext | None:
    return getattr(g, "caller", None)


def require_role(*roles: Role):
    """
    Decorator: require the caller to hold one of ``roles``.

    Usage:
        @bp.route("/submissions/<int:sid>/announce", methods=["POST"])
        @require_role(Role.ADMIN)
        def announce(sid): ...
    """
    allowed = {Role(r) for r in roles}

    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            caller = current_caller()
            if caller is None:
                return api_error(E.UNAUTHENTICATED, "Caller identity required")
            if allowed and caller.role not in allowed:
                logger.warning(
                    "Access denied: role '%s' tried %s %s",
                    caller.role.value, request.method, request.path,
                )
                return api_error(
                    E.FORBIDDEN,
                    f"Role '{caller.role.value}' may not perform this action",
                )
            return f(*args, **kwargs)

        return decorated

    return decorator
