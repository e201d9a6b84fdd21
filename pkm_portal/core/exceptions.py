"""
Portal-wide exception hierarchy.

Services raise these types and nothing else for expected failures. The
HTTP boundary registers one handler per type and gets consistent status
codes everywhere; callers of the services in-process can branch on the
class without parsing messages.

Usage:
    from pkm_portal.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Submission", resource_id=42)
    raise ValidationError("Title is required", details={"title": "required"})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist (or is soft-deleted).

    Args:
        resource: Human-readable entity name (e.g. "Submission", "Category").
        resource_id: The key that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is malformed or violates a business rule.

    Always recoverable by the caller: ``details`` carries a field-level
    breakdown (field name → description) for structured responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InvalidTransition(Exception):
    """Raised when an operation is not legal for the artifact's current status.

    Carries both the current and the attempted status so the caller can
    react (refresh, wait for review, revise first).
    """

    def __init__(
        self,
        artifact: str,
        current: str | None,
        attempted: str | None,
        reason: str | None = None,
    ) -> None:
        self.artifact = artifact
        self.current = current
        self.attempted = attempted
        self.reason = reason
        msg = f"Cannot move {artifact} from {current!r} to {attempted!r}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class UnresolvedIdentityError(Exception):
    """Base for strict external lookup misses.

    Distinct from NotFoundError: the key is present locally (or was
    supplied by the caller) but the owning external directory has no record.
    """

    kind = "identity"

    def __init__(self, keys) -> None:
        self.keys = sorted(set(keys))
        super().__init__(f"Unresolved {self.kind} key(s): {', '.join(self.keys)}")


class UnresolvedMember(UnresolvedIdentityError):
    kind = "student"


class UnresolvedReviewer(UnresolvedIdentityError):
    kind = "staff"


class DependencyUnavailable(Exception):
    """Raised when an external provider times out or errors during a strict lookup.

    Retryable. Never treated as "not found".
    """

    def __init__(self, provider: str, reason: str | None = None) -> None:
        self.provider = provider
        self.reason = reason
        msg = f"{provider} directory unavailable"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class ConflictError(Exception):
    """Raised when a concurrent writer won the race or a unique value already exists.

    Callers should re-read and retry.
    """

    def __init__(self, resource: str, field: str, value: str | int | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} {field}={value!r} was changed concurrently or already exists"
        super().__init__(msg)


class PermissionDenied(Exception):
    """Raised when the caller's role or identity may not perform an action."""

    def __init__(self, caller: str | None, action: str, reason: str | None = None) -> None:
        self.caller = caller
        self.action = action
        self.reason = reason
        msg = f"Caller {caller!r} may not {action}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class StorageError(Exception):
    """Raised when the document store fails to write or delete a blob."""
