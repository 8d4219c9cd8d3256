"""Unit tests for the license workflow engine."""

import re
from datetime import timedelta, timezone

import pytest

from tests.factories.data_factories import ApplicationFactory
from umkm_licensing.business.license_rules import (
    ACTIVE_REVIEW_STATUSES,
    ApplicationStatus,
    LicenseType,
    PriorityLevel,
    ReviewDecision,
    WorkflowAction,
    is_allowed,
)
from umkm_licensing.dependencies import build_services
from umkm_licensing.errors import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from umkm_licensing.schemas.license import SYSTEM_ACTOR
from umkm_licensing.services import notifications
from umkm_licensing.services.workflow_engine import generate_license_number
from umkm_licensing.storage.application_store import InMemoryApplicationStore


class InterleavingStore(InMemoryApplicationStore):
    """Runs a one-shot hook right before the next conditional write."""

    def __init__(self):
        super().__init__()
        self.interleave = None

    async def update_application(self, application, expected_status, history=None):
        hook, self.interleave = self.interleave, None
        if hook is not None:
            await hook()
        return await super().update_application(application, expected_status, history)


class HistoryRejectingStore(InMemoryApplicationStore):
    """Refuses the next history entry, as a failed audit insert would."""

    def __init__(self):
        super().__init__()
        self.reject_next_history = False

    def _check_history(self, entry, application_id):
        if self.reject_next_history:
            self.reject_next_history = False
            raise StoreError("history insert failed: connection reset")
        super()._check_history(entry, application_id)


class FailingNotifier:
    async def send(self, recipient, template, variables):
        raise ConnectionError("smtp unavailable")


async def _draft(engine, **kwargs):
    values = {
        "company_id": "company-1",
        "applicant_id": "user-1",
        "license_type": LicenseType.NIB,
        "title": "Warung Makan Sederhana",
    }
    values.update(kwargs)
    return await engine.create_application(**values)


async def _processing(engine, reviewer_id="rev-1", **kwargs):
    draft = await _draft(engine, **kwargs)
    await engine.submit(draft.id, draft.applicant_id)
    return await engine.start_review(draft.id, reviewer_id)


@pytest.mark.unit
class TestCreateAndSubmit:
    """Test draft creation and submission."""

    @pytest.mark.asyncio
    async def test_create_draft(self, engine, clock):
        app = await _draft(engine)

        assert app.status == ApplicationStatus.DRAFT
        assert app.current_stage == 1
        assert app.total_stages == 4
        assert app.estimated_processing_days == 7
        assert app.estimated_completion_at == clock.now + timedelta(days=7)
        assert await engine.get_history(app.id) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field,kwargs", [
        ("title", {"title": "   "}),
        ("company_id", {"company_id": ""}),
        ("applicant_id", {"applicant_id": ""}),
        ("title", {"title": "x" * 256}),
    ])
    async def test_create_rejects_invalid_input(self, engine, field, kwargs):
        with pytest.raises(ValidationError) as exc_info:
            await _draft(engine, **kwargs)
        assert exc_info.value.field == field

    @pytest.mark.asyncio
    async def test_submit_starts_sla_clock(self, engine, clock, services, notifier):
        draft = await _draft(engine, priority=PriorityLevel.HIGH)
        clock.advance(hours=2)

        submitted = await engine.submit(draft.id, "user-1")
        await services.notifications.drain()

        assert submitted.status == ApplicationStatus.SUBMITTED
        assert submitted.submitted_at == clock.now
        assert submitted.estimated_completion_at == clock.now + timedelta(hours=72)
        assert submitted.current_stage == 2
        assert notifier.templates() == [notifications.LICENSE_SUBMITTED]
        assert notifier.sent[0][0] == "user-1"

        history = await engine.get_history(draft.id)
        assert len(history) == 1
        assert history[0].from_status == ApplicationStatus.DRAFT
        assert history[0].to_status == ApplicationStatus.SUBMITTED
        assert history[0].changed_by == "user-1"
        assert not history[0].is_system_generated

    @pytest.mark.asyncio
    async def test_submit_twice_is_rejected(self, engine):
        draft = await _draft(engine)
        await engine.submit(draft.id, "user-1")

        with pytest.raises(InvalidTransitionError) as exc_info:
            await engine.submit(draft.id, "user-1")

        assert exc_info.value.current_status == "submitted"
        assert len(await engine.get_history(draft.id)) == 1

    @pytest.mark.asyncio
    async def test_submit_application_in_one_step(self, engine):
        app = await engine.submit_application("company-1", "user-1", LicenseType.SIUP, "Toko Kelontong")
        assert app.status == ApplicationStatus.SUBMITTED

    @pytest.mark.asyncio
    async def test_submit_unknown_application(self, engine):
        with pytest.raises(NotFoundError):
            await engine.submit("missing", "user-1")


@pytest.mark.unit
class TestReviewFlow:
    """Test reviewer decisions and the resulting history."""

    @pytest.mark.asyncio
    async def test_full_approval_records_three_transitions(self, engine, clock, services, notifier):
        draft = await _draft(engine)
        await engine.submit(draft.id, "user-1")
        clock.advance(hours=1)
        processing = await engine.start_review(draft.id, "rev-1")
        clock.advance(days=3)

        approved = await engine.record_review(draft.id, "rev-1", ReviewDecision.APPROVE, "All good")
        await services.notifications.drain()

        assert processing.status == ApplicationStatus.PROCESSING
        assert processing.assigned_reviewer_id == "rev-1"
        assert approved.status == ApplicationStatus.APPROVED
        assert approved.approved_at == clock.now
        assert approved.current_stage == 4
        assert approved.assigned_reviewer_id is None
        assert approved.issuing_authority == "DPMPTSP"
        assert approved.actual_processing_days == 3
        assert approved.license_number == generate_license_number(draft, clock.now)
        assert re.fullmatch(r"NIB-\d{8}-[0-9A-F]{8}", approved.license_number)

        history = await engine.get_history(draft.id)
        assert [(h.from_status, h.to_status) for h in history] == [
            (ApplicationStatus.DRAFT, ApplicationStatus.SUBMITTED),
            (ApplicationStatus.SUBMITTED, ApplicationStatus.PROCESSING),
            (ApplicationStatus.PROCESSING, ApplicationStatus.APPROVED),
        ]
        assert [h.changed_at for h in history] == sorted(h.changed_at for h in history)
        assert notifier.templates() == [
            notifications.LICENSE_SUBMITTED,
            notifications.LICENSE_APPROVED,
        ]

    @pytest.mark.asyncio
    async def test_reject_requires_comments(self, engine):
        app = await _processing(engine)

        with pytest.raises(ValidationError) as exc_info:
            await engine.record_review(app.id, "rev-1", ReviewDecision.REJECT, "  ")

        assert exc_info.value.field == "comments"
        assert (await engine.get_status(app.id)).status == ApplicationStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_reject_is_terminal(self, engine, services, notifier):
        app = await _processing(engine)

        rejected = await engine.record_review(app.id, "rev-1", ReviewDecision.REJECT, "Incomplete deed")
        await services.notifications.drain()

        assert rejected.status == ApplicationStatus.REJECTED
        assert rejected.rejection_reason == "Incomplete deed"
        assert rejected.rejected_at is not None
        assert rejected.approved_at is None
        assert notifier.templates()[-1] == notifications.LICENSE_REJECTED

        for decision in ReviewDecision:
            with pytest.raises(InvalidTransitionError):
                await engine.record_review(app.id, "rev-1", decision, "again")
        assert len(await engine.get_history(app.id)) == 3

    @pytest.mark.asyncio
    async def test_decision_from_wrong_reviewer(self, engine):
        app = await _processing(engine, reviewer_id="rev-1")

        with pytest.raises(ValidationError) as exc_info:
            await engine.record_review(app.id, "rev-2", ReviewDecision.APPROVE)

        assert exc_info.value.field == "reviewer_id"

    @pytest.mark.asyncio
    async def test_approve_draft_is_invalid(self, engine):
        draft = await _draft(engine)

        with pytest.raises(InvalidTransitionError) as exc_info:
            await engine.record_review(draft.id, "rev-1", ReviewDecision.APPROVE)

        assert exc_info.value.action == "approve"
        assert (await engine.get_status(draft.id)).status == ApplicationStatus.DRAFT
        assert await engine.get_history(draft.id) == []

    @pytest.mark.asyncio
    async def test_revision_round_trip_keeps_reviewer(self, engine):
        app = await _processing(engine)

        pending = await engine.record_review(
            app.id, "rev-1", ReviewDecision.REQUEST_REVISION, "Upload a clearer KTP scan"
        )
        resumed = await engine.resume_processing(app.id, "user-1", "Uploaded new scan")

        assert pending.status == ApplicationStatus.PENDING_DOCUMENTS
        assert pending.assigned_reviewer_id == "rev-1"
        assert pending.admin_notes == "Upload a clearer KTP scan"
        assert pending.current_stage == 3
        assert resumed.status == ApplicationStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_revision_can_release_reviewer(self, store, cache, test_settings, clock, notifier):
        config = test_settings.model_copy(update={"RELEASE_REVIEWER_ON_REVISION": True})
        engine = build_services(store, cache, config=config, clock=clock, notifier=notifier).engine
        app = await _processing(engine)

        pending = await engine.record_review(app.id, "rev-1", ReviewDecision.REQUEST_REVISION)

        assert pending.assigned_reviewer_id is None

    @pytest.mark.asyncio
    async def test_revision_only_from_processing(self, engine):
        app = await _processing(engine)
        await engine.record_review(app.id, "rev-1", ReviewDecision.REQUEST_REVISION)

        with pytest.raises(InvalidTransitionError):
            await engine.record_review(app.id, "rev-1", ReviewDecision.REQUEST_REVISION)

    @pytest.mark.asyncio
    async def test_explicit_approve_and_reject(self, engine, clock):
        first = await _processing(engine)
        second = await _processing(engine, reviewer_id="rev-2", title="Second shop")

        approved = await engine.approve(
            first.id,
            "NIB-CUSTOM-1",
            clock.now,
            "DPMPTSP Kota Bandung",
            expiry_date=clock.now + timedelta(days=365),
            approved_by="officer-1",
        )
        rejected = await engine.reject(second.id, "Location not permitted")

        assert approved.license_number == "NIB-CUSTOM-1"
        assert approved.expiry_date == clock.now + timedelta(days=365)
        assert rejected.status == ApplicationStatus.REJECTED

        history = await engine.get_history(second.id)
        assert history[-1].changed_by == SYSTEM_ACTOR
        assert history[-1].is_system_generated

    @pytest.mark.asyncio
    async def test_expiry_must_follow_issue(self, engine, clock):
        app = await _processing(engine)

        with pytest.raises(ValidationError) as exc_info:
            await engine.approve(app.id, "NIB-1", clock.now, "DPMPTSP", expiry_date=clock.now)

        assert exc_info.value.field == "expiry_date"

    @pytest.mark.asyncio
    async def test_naive_license_dates_are_stored_as_utc(self, engine, clock):
        app = await _processing(engine)
        naive_expiry = clock.now.replace(tzinfo=None) + timedelta(days=365)

        approved = await engine.approve(app.id, "NIB-1", clock.now, "DPMPTSP", expiry_date=naive_expiry)

        assert approved.expiry_date == clock.now + timedelta(days=365)
        assert approved.expiry_date.tzinfo == timezone.utc
        assert (await engine.get_status(app.id)).expiry_date.tzinfo == timezone.utc

    @pytest.mark.asyncio
    async def test_naive_expiry_is_swept_once_past(self, engine, clock):
        app = await _processing(engine)
        naive_issue = clock.now.replace(tzinfo=None) - timedelta(days=400)
        await engine.approve(
            app.id, "NIB-2", naive_issue, "DPMPTSP", expiry_date=clock.now - timedelta(days=1)
        )

        expired = await engine.expire_due(clock.now.replace(tzinfo=None))

        assert [a.id for a in expired] == [app.id]
        assert expired[0].status == ApplicationStatus.EXPIRED


@pytest.mark.unit
class TestEscalation:
    """Test escalation and its effect on the SLA estimate."""

    @pytest.mark.asyncio
    async def test_escalate_tightens_estimate(self, engine, clock):
        draft = await _draft(engine)
        await engine.submit(draft.id, "user-1")
        clock.advance(hours=1)

        escalated = await engine.record_review(draft.id, "rev-1", ReviewDecision.ESCALATE, "Export deadline")

        assert escalated.status == ApplicationStatus.PROCESSING
        assert escalated.priority == PriorityLevel.URGENT
        assert escalated.estimated_completion_at == clock.now + timedelta(hours=24)

    @pytest.mark.asyncio
    async def test_escalate_never_pushes_estimate_later(self, engine, clock):
        draft = await _draft(engine, priority=PriorityLevel.HIGH)
        submitted = await engine.submit(draft.id, "user-1")
        clock.advance(hours=60)

        escalated = await engine.record_review(draft.id, "rev-1", ReviewDecision.ESCALATE)

        assert escalated.estimated_completion_at == submitted.estimated_completion_at

    @pytest.mark.asyncio
    async def test_escalate_draft_is_invalid(self, engine):
        draft = await _draft(engine)
        with pytest.raises(InvalidTransitionError):
            await engine.record_review(draft.id, "rev-1", ReviewDecision.ESCALATE)


@pytest.mark.unit
class TestConcurrentTransitions:
    """Test conditional writes against a status that moved underneath."""

    @pytest.mark.asyncio
    async def test_stale_transition_raises_conflict(self, cache, test_settings, clock, notifier):
        store = InterleavingStore()
        engine = build_services(store, cache, config=test_settings, clock=clock, notifier=notifier).engine
        app = await _processing(engine)

        async def rejected_elsewhere():
            current = await store.get_application(app.id)
            await store.update_application(
                current.model_copy(update={"status": ApplicationStatus.REJECTED}),
                ApplicationStatus.PROCESSING,
            )

        store.interleave = rejected_elsewhere
        with pytest.raises(ConflictError) as exc_info:
            await engine.record_review(app.id, "rev-1", ReviewDecision.APPROVE)

        assert exc_info.value.retryable
        assert exc_info.value.expected_status == "processing"
        assert (await engine.get_status(app.id)).status == ApplicationStatus.REJECTED
        assert len(await engine.get_history(app.id)) == 2


@pytest.mark.unit
class TestHistoryIsWrittenWithStatus:
    """Test that a status change is never stored without its history entry."""

    @pytest.mark.asyncio
    async def test_failed_history_insert_leaves_status_unchanged(self, cache, test_settings, clock, notifier):
        store = HistoryRejectingStore()
        engine = build_services(store, cache, config=test_settings, clock=clock, notifier=notifier).engine
        draft = await _draft(engine)

        store.reject_next_history = True
        with pytest.raises(StoreError):
            await engine.submit(draft.id, "user-1")

        assert (await store.get_application(draft.id)).status == ApplicationStatus.DRAFT
        assert await store.list_status_history(draft.id) == []

    @pytest.mark.asyncio
    async def test_submit_can_be_retried_after_failed_write(self, cache, test_settings, clock, notifier):
        store = HistoryRejectingStore()
        engine = build_services(store, cache, config=test_settings, clock=clock, notifier=notifier).engine
        draft = await _draft(engine)
        store.reject_next_history = True
        with pytest.raises(StoreError):
            await engine.submit(draft.id, "user-1")

        submitted = await engine.submit(draft.id, "user-1")

        history = await engine.get_history(draft.id)
        assert submitted.status == ApplicationStatus.SUBMITTED
        assert [(e.from_status, e.to_status) for e in history] == [
            (ApplicationStatus.DRAFT, ApplicationStatus.SUBMITTED)
        ]


@pytest.mark.unit
class TestDrafts:
    """Test draft deletion rules."""

    @pytest.mark.asyncio
    async def test_owner_deletes_draft(self, engine):
        draft = await _draft(engine)

        await engine.delete_draft(draft.id, "user-1")

        with pytest.raises(NotFoundError):
            await engine.get_status(draft.id)

    @pytest.mark.asyncio
    async def test_other_user_cannot_delete(self, engine):
        draft = await _draft(engine)

        with pytest.raises(ForbiddenError):
            await engine.delete_draft(draft.id, "user-2")

    @pytest.mark.asyncio
    async def test_submitted_application_cannot_be_deleted(self, engine):
        draft = await _draft(engine)
        await engine.submit(draft.id, "user-1")

        with pytest.raises(InvalidTransitionError):
            await engine.delete_draft(draft.id, "user-1")


@pytest.mark.unit
class TestLifecycle:
    """Test expiry and suspension of issued licenses."""

    @pytest.mark.asyncio
    async def test_expire_due_only_touches_past_expiry(self, engine, store, clock):
        factory = ApplicationFactory()
        due = await store.create_application(factory.approved(expiry_date=clock.now - timedelta(days=1)))
        valid = await store.create_application(factory.approved(expiry_date=clock.now + timedelta(days=30)))
        await store.create_application(factory.processing(reviewer_id="rev-1"))

        expired = await engine.expire_due()

        assert [app.id for app in expired] == [due.id]
        assert (await engine.get_status(due.id)).status == ApplicationStatus.EXPIRED
        assert (await engine.get_status(valid.id)).status == ApplicationStatus.APPROVED

        history = await engine.get_history(due.id)
        assert history[-1].changed_by == SYSTEM_ACTOR
        assert history[-1].is_system_generated

    @pytest.mark.asyncio
    async def test_expire_due_is_idempotent(self, engine, store, clock):
        await store.create_application(
            ApplicationFactory().approved(expiry_date=clock.now - timedelta(days=1))
        )

        assert len(await engine.expire_due()) == 1
        assert await engine.expire_due() == []

    @pytest.mark.asyncio
    async def test_suspend_then_expire(self, engine, store):
        app = await store.create_application(ApplicationFactory().approved())

        suspended = await engine.suspend(app.id, "Tax arrears", "officer-1")
        expired = await engine.expire(app.id)

        assert suspended.status == ApplicationStatus.SUSPENDED
        assert suspended.admin_notes == "Tax arrears"
        assert expired.status == ApplicationStatus.EXPIRED
        with pytest.raises(InvalidTransitionError):
            await engine.suspend(app.id, "again", "officer-1")


@pytest.mark.unit
class TestNotifications:
    """Test that notification failures never fail a transition."""

    @pytest.mark.asyncio
    async def test_failed_delivery_is_absorbed(self, store, cache, test_settings, clock):
        services = build_services(store, cache, config=test_settings, clock=clock, notifier=FailingNotifier())
        draft = await _draft(services.engine)

        submitted = await services.engine.submit(draft.id, "user-1")
        await services.notifications.drain()

        assert submitted.status == ApplicationStatus.SUBMITTED
        assert services.notifications.pending == 0

    @pytest.mark.asyncio
    async def test_disabled_notifications(self, store, cache, test_settings, clock, notifier):
        config = test_settings.model_copy(update={"NOTIFICATIONS_ENABLED": False})
        services = build_services(store, cache, config=config, clock=clock, notifier=notifier)
        draft = await _draft(services.engine)

        await services.engine.submit(draft.id, "user-1")
        await services.notifications.drain()

        assert notifier.sent == []


def _attempt(engine, action, application_id):
    match action:
        case WorkflowAction.SUBMIT:
            return engine.submit(application_id, "user-1")
        case WorkflowAction.ASSIGN_REVIEWER:
            return engine.assign_reviewer(application_id, "rev-2")
        case WorkflowAction.START_REVIEW:
            return engine.start_review(application_id, "rev-1")
        case WorkflowAction.RESUME_PROCESSING:
            return engine.resume_processing(application_id, "user-1")
        case WorkflowAction.APPROVE:
            return engine.record_review(application_id, "rev-1", ReviewDecision.APPROVE)
        case WorkflowAction.REJECT:
            return engine.record_review(application_id, "rev-1", ReviewDecision.REJECT, "No")
        case WorkflowAction.REQUEST_REVISION:
            return engine.record_review(application_id, "rev-1", ReviewDecision.REQUEST_REVISION)
        case WorkflowAction.ESCALATE:
            return engine.record_review(application_id, "rev-1", ReviewDecision.ESCALATE)
        case WorkflowAction.EXPIRE:
            return engine.expire(application_id)
        case WorkflowAction.SUSPEND:
            return engine.suspend(application_id, "Audit", "officer-1")
        case WorkflowAction.DELETE:
            return engine.delete_draft(application_id, "user-1")


@pytest.mark.unit
class TestTransitionLegality:
    """Test that every disallowed action leaves record and history untouched."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", list(ApplicationStatus))
    async def test_disallowed_actions_write_nothing(self, engine, store, status):
        reviewer = "rev-1" if status in ACTIVE_REVIEW_STATUSES else None
        app = await store.create_application(
            ApplicationFactory().create(status=status, assigned_reviewer_id=reviewer)
        )

        for action in WorkflowAction:
            if is_allowed(action, status):
                continue
            with pytest.raises(InvalidTransitionError):
                await _attempt(engine, action, app.id)

        assert await store.get_application(app.id) == app
        assert await store.list_status_history(app.id) == []

    @pytest.mark.asyncio
    async def test_reject_draft_leaves_it_unchanged(self, engine, store):
        draft = await _draft(engine)

        with pytest.raises(InvalidTransitionError):
            await engine.reject(draft.id, "Not eligible")

        assert await store.get_application(draft.id) == draft
        assert await engine.get_history(draft.id) == []

    @pytest.mark.asyncio
    async def test_nib_application_approved_after_explicit_assignment(self, engine, clock):
        draft = await _draft(engine)
        assert draft.status == ApplicationStatus.DRAFT
        assert draft.estimated_processing_days == 7

        submitted = await engine.submit(draft.id, "user-1")
        assert submitted.submitted_at == clock.now
        assert submitted.estimated_completion_at == clock.now + timedelta(hours=168)

        assigned = await engine.assign_reviewer(draft.id, "R1")
        assert assigned.assigned_reviewer_id == "R1"

        await engine.start_review(draft.id, "R1")
        clock.advance(days=6, hours=5)
        approved = await engine.record_review(draft.id, "R1", ReviewDecision.APPROVE, "ok")

        assert approved.status == ApplicationStatus.APPROVED
        assert approved.actual_processing_days == 6
        assert approved.rejected_at is None
        assert [(h.from_status, h.to_status) for h in await engine.get_history(draft.id)] == [
            (ApplicationStatus.DRAFT, ApplicationStatus.SUBMITTED),
            (ApplicationStatus.SUBMITTED, ApplicationStatus.PROCESSING),
            (ApplicationStatus.PROCESSING, ApplicationStatus.APPROVED),
        ]
