"""Review state machine: transition table, trigger checks and announcement."""

import pytest

from pkm_portal.core.exceptions import InvalidTransition
from pkm_portal.models.submission import (
    REVIEW_TRANSITIONS,
    ArtifactKind,
    FinalStatus,
    ReviewStatus,
    Submission,
    Trigger,
)
from pkm_portal.services.review_state_machine import ReviewStateMachine

sm = ReviewStateMachine()


def _sub(title=ReviewStatus.PENDING, proposal=None, final=FinalStatus.DRAFT):
    return Submission(
        code="PKM-K-2026-001",
        title="A title long enough",
        title_status=title,
        proposal_status=proposal,
        final_status=final,
    )


class TestArtifactTransitions:
    def test_assign_moves_pending_to_under_review(self):
        sub = _sub()
        previous = sm.apply(sub, ArtifactKind.TITLE, ReviewStatus.UNDER_REVIEW, Trigger.ASSIGN)
        assert previous == ReviewStatus.PENDING
        assert sub.title_status == ReviewStatus.UNDER_REVIEW

    @pytest.mark.parametrize("outcome", [
        ReviewStatus.ACCEPTED, ReviewStatus.NEEDS_REVISION, ReviewStatus.REJECTED,
    ])
    def test_review_outcomes_from_under_review(self, outcome):
        sub = _sub(title=ReviewStatus.UNDER_REVIEW)
        sm.apply(sub, ArtifactKind.TITLE, outcome, Trigger.REVIEW)
        assert sub.title_status == outcome

    def test_revise_returns_to_pending(self):
        sub = _sub(title=ReviewStatus.NEEDS_REVISION)
        sm.apply(sub, ArtifactKind.TITLE, ReviewStatus.PENDING, Trigger.REVISE)
        assert sub.title_status == ReviewStatus.PENDING

    def test_upload_creates_proposal_status(self):
        sub = _sub(title=ReviewStatus.ACCEPTED)
        sm.apply(sub, ArtifactKind.PROPOSAL, ReviewStatus.PENDING, Trigger.UPLOAD)
        assert sub.proposal_status == ReviewStatus.PENDING

    def test_wrong_trigger_is_rejected(self):
        sub = _sub()
        with pytest.raises(InvalidTransition) as exc:
            sm.apply(sub, ArtifactKind.TITLE, ReviewStatus.UNDER_REVIEW, Trigger.REVIEW)
        assert "assign" in exc.value.reason
        assert sub.title_status == ReviewStatus.PENDING

    def test_pending_cannot_be_accepted_directly(self):
        sub = _sub()
        with pytest.raises(InvalidTransition) as exc:
            sm.apply(sub, ArtifactKind.TITLE, ReviewStatus.ACCEPTED, Trigger.REVIEW)
        assert exc.value.current == "pending"
        assert exc.value.attempted == "accepted"

    @pytest.mark.parametrize("terminal", [ReviewStatus.ACCEPTED, ReviewStatus.REJECTED])
    def test_terminal_statuses_have_no_exits(self, terminal):
        assert sm.allowed_targets(terminal) == {}
        sub = _sub(title=terminal)
        with pytest.raises(InvalidTransition):
            sm.apply(sub, ArtifactKind.TITLE, ReviewStatus.PENDING, Trigger.REVISE)

    def test_reachable_statuses_from_pending(self):
        seen, frontier = set(), [ReviewStatus.PENDING]
        while frontier:
            status = frontier.pop()
            if status in seen:
                continue
            seen.add(status)
            frontier.extend(REVIEW_TRANSITIONS.get(status, {}))
        assert seen == set(ReviewStatus)

    def test_each_target_has_exactly_one_trigger(self):
        for current, targets in REVIEW_TRANSITIONS.items():
            for target, trigger in targets.items():
                others = [t for t in Trigger if t != trigger]
                assert sm.can_transition(current, target, trigger)
                assert not any(sm.can_transition(current, target, t) for t in others)


class TestAnnounce:
    def test_requires_both_artifacts_accepted(self):
        sub = _sub(title=ReviewStatus.ACCEPTED, proposal=ReviewStatus.UNDER_REVIEW)
        with pytest.raises(InvalidTransition) as exc:
            sm.announce(sub, FinalStatus.PASSED)
        assert "proposal" in exc.value.reason
        assert sub.final_status == FinalStatus.DRAFT

    def test_passes_when_both_accepted(self):
        sub = _sub(title=ReviewStatus.ACCEPTED, proposal=ReviewStatus.ACCEPTED)
        assert sm.announce(sub, FinalStatus.PASSED) == FinalStatus.DRAFT
        assert sub.final_status == FinalStatus.PASSED

    def test_from_submitted(self):
        sub = _sub(
            title=ReviewStatus.ACCEPTED, proposal=ReviewStatus.ACCEPTED,
            final=FinalStatus.SUBMITTED,
        )
        sm.announce(sub, FinalStatus.FAILED)
        assert sub.final_status == FinalStatus.FAILED

    def test_one_way(self):
        sub = _sub(
            title=ReviewStatus.ACCEPTED, proposal=ReviewStatus.ACCEPTED,
            final=FinalStatus.PASSED,
        )
        with pytest.raises(InvalidTransition):
            sm.announce(sub, FinalStatus.FAILED)
        assert sub.final_status == FinalStatus.PASSED

    @pytest.mark.parametrize("result", [FinalStatus.DRAFT, FinalStatus.SUBMITTED])
    def test_only_terminal_results(self, result):
        sub = _sub(title=ReviewStatus.ACCEPTED, proposal=ReviewStatus.ACCEPTED)
        with pytest.raises(InvalidTransition):
            sm.announce(sub, result)
