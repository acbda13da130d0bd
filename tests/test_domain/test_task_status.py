"""
Tests for the status-change plan:
- approval set persisted / kept / cleared
- approval fan-out recipients
- completion fan-out recipients (actor excluded, only on entering DONE)
- proof and user-id validation
"""
import pytest

from agencyflow.domain.task_status import (
    DONE,
    IN_PROGRESS,
    NEEDS_APPROVAL,
    REVIEW,
    TODO,
    TaskStatusValidationError,
    normalize_user_ids,
    plan_status_change,
    validate_proof,
)


def _plan(**overrides):
    params = dict(
        old_status=TODO,
        old_approval_user_ids=None,
        new_status=IN_PROGRESS,
        requested_approval_user_ids=None,
        actor_user_id=1,
        creator_id=2,
        active_client_member_ids=(),
    )
    params.update(overrides)
    return plan_status_change(**params)


class TestApprovalSet:
    def test_needs_approval_persists_and_notifies_exactly_requested(self):
        change = _plan(new_status=NEEDS_APPROVAL, requested_approval_user_ids=[11, 12])
        assert change.approval_notify_user_ids == [11, 12]
        assert change.approval_recipients == (11, 12)
        assert change.completion_recipients == ()

    def test_requested_ids_are_deduplicated(self):
        change = _plan(new_status=NEEDS_APPROVAL, requested_approval_user_ids=[11, 12, 11])
        assert change.approval_recipients == (11, 12)

    def test_empty_request_keeps_stored_set_without_notifying(self):
        change = _plan(
            old_status=NEEDS_APPROVAL, old_approval_user_ids=[11],
            new_status=NEEDS_APPROVAL, requested_approval_user_ids=[],
        )
        assert change.approval_notify_user_ids == [11]
        assert change.approval_recipients == ()

    @pytest.mark.parametrize("status", [TODO, IN_PROGRESS, REVIEW, DONE])
    def test_other_statuses_clear_the_set(self, status):
        change = _plan(
            old_status=NEEDS_APPROVAL, old_approval_user_ids=[11, 12],
            new_status=status, requested_approval_user_ids=[13],
        )
        assert change.approval_notify_user_ids is None
        assert change.approval_recipients == ()


class TestCompletion:
    def test_entering_done_notifies_members_creator_and_approvers(self):
        change = _plan(
            old_status=NEEDS_APPROVAL, old_approval_user_ids=[11, 12],
            new_status=DONE, actor_user_id=5, creator_id=2,
            active_client_member_ids=[30, 31],
        )
        assert change.completed
        assert change.completion_recipients == (30, 31, 2, 11, 12)

    def test_completing_actor_is_excluded(self):
        change = _plan(
            old_status=REVIEW, old_approval_user_ids=[11],
            new_status=DONE, actor_user_id=11, creator_id=11,
            active_client_member_ids=[11, 30],
        )
        assert change.completion_recipients == (30,)

    def test_recipients_are_unique(self):
        change = _plan(
            new_status=DONE, creator_id=30, old_approval_user_ids=[30],
            active_client_member_ids=[30],
        )
        assert change.completion_recipients == (30,)

    def test_done_to_done_sends_nothing(self):
        change = _plan(old_status=DONE, new_status=DONE, active_client_member_ids=[30])
        assert not change.completed
        assert change.completion_recipients == ()


class TestValidation:
    def test_invalid_status(self):
        with pytest.raises(TaskStatusValidationError, match="Invalid task status"):
            _plan(new_status="ARCHIVED")

    @pytest.mark.parametrize("bad", [[0], [-3], ["7"], [True]])
    def test_invalid_user_ids(self, bad):
        with pytest.raises(TaskStatusValidationError):
            normalize_user_ids(bad)

    def test_proof_normalized(self):
        proof = validate_proof([{"type": "url", "value": " https://example.com/a ", "name": "Brief"}])
        assert proof == [{"type": "url", "value": "https://example.com/a", "name": "Brief"}]

    def test_proof_none_passes_through(self):
        assert validate_proof(None) is None

    @pytest.mark.parametrize("item", [
        {"type": "pdf", "value": "https://example.com/a.pdf"},
        {"type": "image", "value": "ftp://example.com/a.png"},
        "https://example.com",
    ])
    def test_proof_rejected(self, item):
        with pytest.raises(TaskStatusValidationError):
            validate_proof([item])
