"""
Review state machine.

Two independent instances per submission (title, proposal) over
ReviewStatus, plus the administrative final status. Legality lives in one
place: ``REVIEW_TRANSITIONS`` (models.submission) maps

    current status → {target status: the only trigger allowed to cause it}

and every status write in the services goes through ``apply`` so no code
path can move an artifact by assigning the column directly.

    pending        → under_review     assign
    under_review   → accepted         review
    under_review   → needs_revision   review
    under_review   → rejected         review
    under_review   → pending          cancel
    needs_revision → pending          revise
    (no document)  → pending          upload      (proposal only)

Usage:
    from pkm_portal.services.review_state_machine import review_state_machine

    review_state_machine.apply(sub, ArtifactKind.TITLE, ReviewStatus.UNDER_REVIEW, Trigger.ASSIGN)
"""

from __future__ import annotations

import logging

from pkm_portal.core.exceptions import InvalidTransition
from pkm_portal.models.submission import (
    ANNOUNCEABLE_FROM,
    ANNOUNCEABLE_RESULTS,
    REVIEW_TRANSITIONS,
    ArtifactKind,
    FinalStatus,
    ReviewStatus,
    Submission,
    Trigger,
)

logger = logging.getLogger(__name__)


def _value(status) -> str | None:
    return status.value if status is not None else None


class ReviewStateMachine:
    """Validates and applies artifact and final-status transitions."""

    def __init__(self, transitions=REVIEW_TRANSITIONS) -> None:
        self.transitions = transitions

    # ── Artifact status ──────────────────────────────────────────────────────

    def allowed_targets(self, current: ReviewStatus | None) -> dict[ReviewStatus, Trigger]:
        return dict(self.transitions.get(current, {}))

    def can_transition(self, current, target, trigger) -> bool:
        return self.transitions.get(current, {}).get(target) == trigger

    def check(
        self,
        submission: Submission,
        artifact: ArtifactKind,
        target: ReviewStatus,
        trigger: Trigger,
    ) -> None:
        """Raise InvalidTransition unless ``trigger`` may move ``artifact`` to ``target``."""
        artifact = ArtifactKind(artifact)
        current = submission.status_of(artifact)
        if self.can_transition(current, target, trigger):
            return
        allowed = self.transitions.get(current, {}).get(target)
        if allowed is None:
            reason = f"no transition from {_value(current)!r} to {target.value!r}"
        else:
            reason = f"only '{allowed.value}' may cause this transition, not '{trigger.value}'"
        raise InvalidTransition(artifact.value, _value(current), target.value, reason)

    def apply(
        self,
        submission: Submission,
        artifact: ArtifactKind,
        target: ReviewStatus,
        trigger: Trigger,
    ) -> ReviewStatus | None:
        """Check then set the artifact status. Returns the previous status."""
        self.check(submission, artifact, target, trigger)
        previous = submission.status_of(artifact)
        submission.set_status(artifact, target)
        logger.debug(
            "Submission %s %s: %s → %s (%s)",
            submission.code, ArtifactKind(artifact).value,
            _value(previous), target.value, trigger.value,
        )
        return previous

    # ── Final status ─────────────────────────────────────────────────────────

    def announce(self, submission: Submission, result: FinalStatus) -> FinalStatus:
        """Set the final result; requires both artifacts accepted. One-way."""
        result = FinalStatus(result)
        current = submission.final_status
        if result not in ANNOUNCEABLE_RESULTS:
            raise InvalidTransition(
                "final", current.value, result.value,
                f"result must be one of {sorted(r.value for r in ANNOUNCEABLE_RESULTS)}",
            )
        if current not in ANNOUNCEABLE_FROM:
            raise InvalidTransition("final", current.value, result.value, "result already announced")
        for artifact in (ArtifactKind.TITLE, ArtifactKind.PROPOSAL):
            status = submission.status_of(artifact)
            if status != ReviewStatus.ACCEPTED:
                raise InvalidTransition(
                    "final", current.value, result.value,
                    f"{artifact.value} must be accepted first (is {_value(status)!r})",
                )
        submission.final_status = result
        return current


review_state_machine = ReviewStateMachine()
