"""Unit tests for the license workflow rules."""

from datetime import datetime, timedelta, timezone

import pytest

from umkm_licensing.business.license_rules import (
    ACTIVE_REVIEW_STATUSES,
    ALLOWED_FROM,
    ApplicationStatus,
    LicenseType,
    PriorityLevel,
    ReviewDecision,
    TERMINAL_STATUSES,
    WorkflowAction,
    advance_stage,
    decision_action,
    default_processing_days,
    is_allowed,
    sla_deadline,
    target_status,
    whole_days_between,
)


@pytest.mark.unit
class TestTransitionTable:
    """Test which actions are permitted from which statuses."""

    def test_submit_only_from_draft(self):
        for status in ApplicationStatus:
            assert is_allowed(WorkflowAction.SUBMIT, status) == (status == ApplicationStatus.DRAFT)

    def test_terminal_statuses_accept_no_review_actions(self):
        review_actions = [
            WorkflowAction.START_REVIEW,
            WorkflowAction.APPROVE,
            WorkflowAction.REJECT,
            WorkflowAction.REQUEST_REVISION,
            WorkflowAction.ESCALATE,
            WorkflowAction.ASSIGN_REVIEWER,
        ]
        for status in TERMINAL_STATUSES:
            for action in review_actions:
                assert not is_allowed(action, status), (action, status)

    def test_decisions_need_processing_or_pending_documents(self):
        assert is_allowed(WorkflowAction.APPROVE, ApplicationStatus.PROCESSING)
        assert is_allowed(WorkflowAction.APPROVE, ApplicationStatus.PENDING_DOCUMENTS)
        assert is_allowed(WorkflowAction.REJECT, ApplicationStatus.PENDING_DOCUMENTS)
        assert not is_allowed(WorkflowAction.APPROVE, ApplicationStatus.SUBMITTED)
        assert not is_allowed(WorkflowAction.REJECT, ApplicationStatus.DRAFT)

    def test_revision_only_from_processing(self):
        assert ALLOWED_FROM[WorkflowAction.REQUEST_REVISION] == frozenset({
            ApplicationStatus.PROCESSING
        })

    def test_assignment_and_escalation_follow_active_review(self):
        assert ALLOWED_FROM[WorkflowAction.ASSIGN_REVIEWER] == ACTIVE_REVIEW_STATUSES
        assert not is_allowed(WorkflowAction.ESCALATE, ApplicationStatus.DRAFT)

    def test_lifecycle_actions(self):
        assert is_allowed(WorkflowAction.EXPIRE, ApplicationStatus.APPROVED)
        assert is_allowed(WorkflowAction.EXPIRE, ApplicationStatus.SUSPENDED)
        assert is_allowed(WorkflowAction.SUSPEND, ApplicationStatus.APPROVED)
        assert not is_allowed(WorkflowAction.SUSPEND, ApplicationStatus.EXPIRED)
        assert is_allowed(WorkflowAction.DELETE, ApplicationStatus.DRAFT)
        assert not is_allowed(WorkflowAction.DELETE, ApplicationStatus.SUBMITTED)

    def test_every_action_has_an_entry(self):
        assert set(ALLOWED_FROM) == set(WorkflowAction)


@pytest.mark.unit
class TestTargetStatus:
    """Test resolution of the status an action leads to."""

    @pytest.mark.parametrize("action,expected", [
        (WorkflowAction.SUBMIT, ApplicationStatus.SUBMITTED),
        (WorkflowAction.START_REVIEW, ApplicationStatus.PROCESSING),
        (WorkflowAction.RESUME_PROCESSING, ApplicationStatus.PROCESSING),
        (WorkflowAction.ESCALATE, ApplicationStatus.PROCESSING),
        (WorkflowAction.APPROVE, ApplicationStatus.APPROVED),
        (WorkflowAction.REJECT, ApplicationStatus.REJECTED),
        (WorkflowAction.REQUEST_REVISION, ApplicationStatus.PENDING_DOCUMENTS),
        (WorkflowAction.EXPIRE, ApplicationStatus.EXPIRED),
        (WorkflowAction.SUSPEND, ApplicationStatus.SUSPENDED),
    ])
    def test_target(self, action, expected):
        assert target_status(action, ApplicationStatus.PROCESSING) == expected

    def test_assignment_keeps_status(self):
        assert target_status(
            WorkflowAction.ASSIGN_REVIEWER, ApplicationStatus.PENDING_DOCUMENTS
        ) == ApplicationStatus.PENDING_DOCUMENTS

    def test_decision_mapping(self):
        assert decision_action(ReviewDecision.APPROVE) == WorkflowAction.APPROVE
        assert decision_action(ReviewDecision.REJECT) == WorkflowAction.REJECT
        assert decision_action(ReviewDecision.REQUEST_REVISION) == WorkflowAction.REQUEST_REVISION
        assert decision_action(ReviewDecision.ESCALATE) == WorkflowAction.ESCALATE


@pytest.mark.unit
class TestEstimates:
    """Test SLA windows and processing-day helpers."""

    def test_sla_windows(self):
        start = datetime(2025, 1, 1, tzinfo=timezone.utc)
        assert sla_deadline(PriorityLevel.URGENT, start) == start + timedelta(hours=24)
        assert sla_deadline(PriorityLevel.HIGH, start) == start + timedelta(hours=72)
        assert sla_deadline(PriorityLevel.NORMAL, start) == start + timedelta(hours=168)
        assert sla_deadline(PriorityLevel.LOW, start) == start + timedelta(hours=336)

    def test_higher_priority_never_later(self):
        start = datetime(2025, 1, 1, tzinfo=timezone.utc)
        ordered = [PriorityLevel.URGENT, PriorityLevel.HIGH, PriorityLevel.NORMAL, PriorityLevel.LOW]
        deadlines = [sla_deadline(priority, start) for priority in ordered]
        assert deadlines == sorted(deadlines)

    def test_default_processing_days(self):
        assert default_processing_days(LicenseType.NIB) == 7
        assert default_processing_days(LicenseType.ENVIRONMENTAL) == 45
        assert all(default_processing_days(t) > 0 for t in LicenseType)

    def test_whole_days_floor(self):
        start = datetime(2025, 1, 1, 12, tzinfo=timezone.utc)
        assert whole_days_between(start, start + timedelta(days=2, hours=23)) == 2
        assert whole_days_between(start, start + timedelta(hours=5)) == 0


@pytest.mark.unit
class TestStages:
    """Test stage counter progression."""

    def test_stage_advances_with_status(self):
        assert advance_stage(1, 4, ApplicationStatus.SUBMITTED) == 2
        assert advance_stage(2, 4, ApplicationStatus.PROCESSING) == 3
        assert advance_stage(3, 4, ApplicationStatus.APPROVED) == 4

    def test_stage_never_moves_backwards(self):
        assert advance_stage(3, 4, ApplicationStatus.PENDING_DOCUMENTS) == 3
        assert advance_stage(4, 4, ApplicationStatus.PROCESSING) == 4

    def test_stage_capped_by_total(self):
        assert advance_stage(2, 3, ApplicationStatus.APPROVED) == 3
