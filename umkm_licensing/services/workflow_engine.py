# ==== LICENSE WORKFLOW ENGINE ==== #

"""
State machine for license applications.

The engine validates each action against the transition table, applies the
status change and its side effects (timestamps, SLA estimate, stage counter,
license issuance), persists it with a conditional write on the previous
status and appends exactly one history entry per transition.
"""

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from umkm_licensing.business.license_rules import (
    ApplicationStatus,
    LicenseType,
    PriorityLevel,
    ReviewDecision,
    UNASSIGNED_STATUSES,
    WorkflowAction,
    advance_stage,
    decision_action,
    default_processing_days,
    is_allowed,
    sla_deadline,
    target_status,
    whole_days_between,
)
from umkm_licensing.errors import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    ValidationError,
)
from umkm_licensing.observability.logging import get_logger, log_business_event
from umkm_licensing.observability.metrics import (
    workflow_conflicts_total,
    workflow_rejected_actions_total,
    workflow_transitions_total,
)
from umkm_licensing.observability.tracing import get_tracer
from umkm_licensing.repositories.cached_application_repository import CachedApplicationRepository
from umkm_licensing.schemas.license import (
    SYSTEM_ACTOR,
    Application,
    StatusHistoryEntry,
    as_utc,
    utc_now,
)
from umkm_licensing.services import notifications
from umkm_licensing.services.notifications import NotificationDispatcher
from umkm_licensing.services.reviewer_assignment import ReviewerAssignmentService


# ==== MODULE INITIALIZATION ==== #


logger = get_logger(__name__)
tracer = get_tracer(__name__)

DEFAULT_ISSUING_AUTHORITY = "DPMPTSP"
MAX_TITLE_LENGTH = 255


def generate_license_number(application: Application, issued_at: datetime) -> str:
    """License number in the form ``{TYPE}-{YYYYMMDD}-{ID8}``."""
    short_id = application.id.replace("-", "")[:8].upper()
    return f"{application.license_type.value.upper()}-{issued_at:%Y%m%d}-{short_id}"


def _require_text(field: str, value: Optional[str], message: str = "must not be empty") -> str:
    if value is None or not value.strip():
        raise ValidationError(field, message)
    return value.strip()


# ==== WORKFLOW ENGINE CLASS ==== #


class LicenseWorkflowEngine:
    """
    Drives applications through the licensing workflow.

    All reads used to decide a transition come straight from the store; the
    write is conditional on the status that was read, so two concurrent
    actions on the same application cannot both succeed.
    """

    def __init__(
        self,
        repository: CachedApplicationRepository,
        assignment: ReviewerAssignmentService,
        notifier: Optional[NotificationDispatcher] = None,
        clock: Callable[[], datetime] = utc_now,
        total_stages: int = 4,
        issuing_authority: str = DEFAULT_ISSUING_AUTHORITY,
        release_reviewer_on_revision: bool = False,
    ):
        self.repository = repository
        self.assignment = assignment
        self.notifier = notifier or NotificationDispatcher(enabled=False)
        self._clock = clock
        self.total_stages = total_stages
        self.issuing_authority = issuing_authority
        self.release_reviewer_on_revision = release_reviewer_on_revision


    # ==== TRANSITION CORE ==== #


    def _check(self, application: Application, action: WorkflowAction) -> None:
        if not is_allowed(action, application.status):
            workflow_rejected_actions_total.labels(
                action=action.value, status=application.status.value
            ).inc()
            raise InvalidTransitionError(application.status, action.value)

    async def _transition(
        self,
        application: Application,
        action: WorkflowAction,
        changed_by: str,
        changes: Optional[Dict[str, Any]] = None,
        notes: Optional[str] = None,
        system_generated: bool = False,
    ) -> Application:
        """Apply ``action`` and persist it together with its history entry.

        The write is conditional on ``from_status``; if it fails neither the
        status change nor the entry is stored, so the action can be retried.
        """
        self._check(application, action)

        now = self._clock()
        from_status = application.status
        to_status = target_status(action, from_status)

        update: Dict[str, Any] = dict(changes or {})
        update["status"] = to_status
        update["updated_at"] = now
        update["current_stage"] = advance_stage(
            application.current_stage, application.total_stages, to_status
        )
        if to_status in UNASSIGNED_STATUSES:
            update["assigned_reviewer_id"] = None

        updated = application.model_copy(update=update)
        entry = StatusHistoryEntry(
            application_id=application.id,
            from_status=from_status,
            to_status=to_status,
            changed_by=changed_by,
            changed_at=now,
            notes=notes,
            is_system_generated=system_generated,
        )

        try:
            saved = await self.repository.update_application(updated, from_status, history=entry)
        except ConflictError:
            workflow_conflicts_total.labels(action=action.value).inc()
            logger.warning(
                "Concurrent transition detected",
                application_id=application.id,
                action=action.value,
                expected_status=from_status.value,
            )
            raise

        workflow_transitions_total.labels(action=action.value, to_status=to_status.value).inc()
        log_business_event(
            f"license_{action.value}",
            application.id,
            from_status=from_status.value,
            to_status=to_status.value,
            changed_by=changed_by,
        )
        return saved

    def _processing_days(self, application: Application, finished_at: datetime) -> Optional[int]:
        if application.submitted_at is None:
            return None
        return whole_days_between(application.submitted_at, finished_at)


    # ==== APPLICANT ACTIONS ==== #


    async def create_application(
        self,
        company_id: str,
        applicant_id: str,
        license_type: LicenseType,
        title: str,
        description: Optional[str] = None,
        priority: PriorityLevel = PriorityLevel.NORMAL,
    ) -> Application:
        """
        Create a draft application.

        The initial estimate comes from the license type's typical processing
        time; it is replaced by the priority SLA on submission. Creating a
        draft writes no history entry.
        """
        company_id = _require_text("company_id", company_id)
        applicant_id = _require_text("applicant_id", applicant_id)
        title = _require_text("title", title)
        if len(title) > MAX_TITLE_LENGTH:
            raise ValidationError("title", f"must be at most {MAX_TITLE_LENGTH} characters")

        now = self._clock()
        processing_days = default_processing_days(license_type)
        application = Application(
            company_id=company_id,
            applicant_id=applicant_id,
            license_type=license_type,
            title=title,
            description=description,
            priority=priority,
            current_stage=1,
            total_stages=self.total_stages,
            estimated_processing_days=processing_days,
            estimated_completion_at=now + timedelta(days=processing_days),
            created_at=now,
            updated_at=now,
        )

        with tracer.start_as_current_span("workflow.create_application") as span:
            span.set_attribute("license_type", license_type.value)
            created = await self.repository.create_application(application)

        log_business_event("license_created", created.id, license_type=license_type.value)
        return created

    async def submit(self, application_id: str, submitted_by: str) -> Application:
        """Draft → Submitted; starts the priority SLA clock."""
        submitted_by = _require_text("submitted_by", submitted_by)

        with tracer.start_as_current_span("workflow.submit") as span:
            span.set_attribute("application_id", application_id)
            application = await self.repository.load_for_update(application_id)
            self._check(application, WorkflowAction.SUBMIT)

            now = self._clock()
            saved = await self._transition(
                application,
                WorkflowAction.SUBMIT,
                changed_by=submitted_by,
                changes={
                    "submitted_at": now,
                    "estimated_completion_at": sla_deadline(application.priority, now),
                },
            )

        self.notifier.dispatch(saved.applicant_id, notifications.LICENSE_SUBMITTED, {
            "application_id": saved.id,
            "license_type": saved.license_type.value,
            "title": saved.title,
        })
        return saved

    async def submit_application(
        self,
        company_id: str,
        applicant_id: str,
        license_type: LicenseType,
        title: str,
        description: Optional[str] = None,
        priority: PriorityLevel = PriorityLevel.NORMAL,
    ) -> Application:
        """Create a draft and submit it on behalf of the applicant."""
        draft = await self.create_application(
            company_id, applicant_id, license_type, title, description, priority
        )
        return await self.submit(draft.id, applicant_id)

    async def delete_draft(self, application_id: str, user_id: str) -> None:
        """Delete a draft; only its applicant may do so."""
        application = await self.repository.load_for_update(application_id)
        if application.applicant_id != user_id:
            raise ForbiddenError(f"User {user_id} does not own application {application_id}")
        self._check(application, WorkflowAction.DELETE)

        await self.repository.delete_application(application)
        log_business_event("license_draft_deleted", application_id, user_id=user_id)


    # ==== REVIEWER ACTIONS ==== #


    async def assign_reviewer(self, application_id: str, reviewer_id: str) -> Application:
        """Attach a reviewer without changing status."""
        return await self.assignment.assign(application_id, reviewer_id)

    async def start_review(self, application_id: str, reviewer_id: str) -> Application:
        """Submitted → Processing, assigning ``reviewer_id`` first when needed."""
        reviewer_id = _require_text("reviewer_id", reviewer_id)

        with tracer.start_as_current_span("workflow.start_review") as span:
            span.set_attribute("application_id", application_id)
            application = await self.repository.load_for_update(application_id)
            self._check(application, WorkflowAction.START_REVIEW)

            if application.assigned_reviewer_id != reviewer_id:
                application = await self.assignment.assign(application_id, reviewer_id)

            return await self._transition(
                application, WorkflowAction.START_REVIEW, changed_by=reviewer_id
            )

    async def resume_processing(
        self, application_id: str, changed_by: str, notes: Optional[str] = None
    ) -> Application:
        """PendingDocuments → Processing once the applicant has resubmitted documents."""
        changed_by = _require_text("changed_by", changed_by)
        application = await self.repository.load_for_update(application_id)
        return await self._transition(
            application, WorkflowAction.RESUME_PROCESSING, changed_by=changed_by, notes=notes
        )

    async def record_review(
        self,
        application_id: str,
        reviewer_id: str,
        decision: ReviewDecision,
        comments: Optional[str] = None,
    ) -> Application:
        """
        Fold a reviewer decision into a transition.

        Args:
            application_id (str): Application under review
            reviewer_id (str): Reviewer recording the decision; must match the
                assigned reviewer when one is set
            decision (ReviewDecision): approve, reject, request_revision or escalate
            comments (Optional[str]): Reviewer comments; required for reject

        Returns:
            Application: The application after the transition
        """
        reviewer_id = _require_text("reviewer_id", reviewer_id)
        action = decision_action(decision)

        with tracer.start_as_current_span("workflow.record_review") as span:
            span.set_attribute("application_id", application_id)
            span.set_attribute("decision", decision.value)

            application = await self.repository.load_for_update(application_id)
            self._check(application, action)

            if application.assigned_reviewer_id and application.assigned_reviewer_id != reviewer_id:
                raise ValidationError(
                    "reviewer_id",
                    f"application is assigned to reviewer {application.assigned_reviewer_id}",
                )

            match decision:
                case ReviewDecision.APPROVE:
                    now = self._clock()
                    return await self._approve(
                        application,
                        license_number=generate_license_number(application, now),
                        issue_date=now,
                        issuing_authority=self.issuing_authority,
                        expiry_date=None,
                        notes=comments,
                        approved_by=reviewer_id,
                    )
                case ReviewDecision.REJECT:
                    reason = _require_text("comments", comments, "a rejection reason is required")
                    return await self._reject(application, reason, None, reviewer_id)
                case ReviewDecision.REQUEST_REVISION:
                    return await self._request_revision(application, reviewer_id, comments)
                case ReviewDecision.ESCALATE:
                    return await self._escalate(application, reviewer_id, comments)

    async def approve(
        self,
        application_id: str,
        license_number: str,
        issue_date: datetime,
        issuing_authority: str,
        expiry_date: Optional[datetime] = None,
        notes: Optional[str] = None,
        approved_by: str = SYSTEM_ACTOR,
    ) -> Application:
        """Approve with explicit license details."""
        license_number = _require_text("license_number", license_number)
        issuing_authority = _require_text("issuing_authority", issuing_authority)
        issue_date = as_utc(issue_date)
        expiry_date = as_utc(expiry_date)
        if expiry_date is not None and expiry_date <= issue_date:
            raise ValidationError("expiry_date", "must be after issue_date")

        application = await self.repository.load_for_update(application_id)
        return await self._approve(
            application, license_number, issue_date, issuing_authority,
            expiry_date, notes, approved_by,
        )

    async def reject(
        self,
        application_id: str,
        reason: str,
        notes: Optional[str] = None,
        rejected_by: str = SYSTEM_ACTOR,
    ) -> Application:
        """Reject with an explicit reason."""
        reason = _require_text("reason", reason)
        application = await self.repository.load_for_update(application_id)
        return await self._reject(application, reason, notes, rejected_by)

    async def _approve(
        self,
        application: Application,
        license_number: str,
        issue_date: datetime,
        issuing_authority: str,
        expiry_date: Optional[datetime],
        notes: Optional[str],
        approved_by: str,
    ) -> Application:
        now = self._clock()
        saved = await self._transition(
            application,
            WorkflowAction.APPROVE,
            changed_by=approved_by,
            changes={
                "approved_at": now,
                "license_number": license_number,
                "issue_date": issue_date,
                "expiry_date": expiry_date,
                "issuing_authority": issuing_authority,
                "admin_notes": notes,
                "actual_processing_days": self._processing_days(application, now),
            },
            notes=notes,
            system_generated=approved_by == SYSTEM_ACTOR,
        )

        self.notifier.dispatch(saved.applicant_id, notifications.LICENSE_APPROVED, {
            "application_id": saved.id,
            "license_number": license_number,
            "issuing_authority": issuing_authority,
        })
        return saved

    async def _reject(
        self,
        application: Application,
        reason: str,
        notes: Optional[str],
        rejected_by: str,
    ) -> Application:
        now = self._clock()
        saved = await self._transition(
            application,
            WorkflowAction.REJECT,
            changed_by=rejected_by,
            changes={
                "rejected_at": now,
                "rejection_reason": reason,
                "admin_notes": notes,
                "actual_processing_days": self._processing_days(application, now),
            },
            notes=notes or reason,
            system_generated=rejected_by == SYSTEM_ACTOR,
        )

        self.notifier.dispatch(saved.applicant_id, notifications.LICENSE_REJECTED, {
            "application_id": saved.id,
            "reason": reason,
        })
        return saved

    async def _request_revision(
        self, application: Application, reviewer_id: str, comments: Optional[str]
    ) -> Application:
        changes: Dict[str, Any] = {"admin_notes": comments}
        if self.release_reviewer_on_revision:
            changes["assigned_reviewer_id"] = None
        return await self._transition(
            application,
            WorkflowAction.REQUEST_REVISION,
            changed_by=reviewer_id,
            changes=changes,
            notes=comments,
        )

    async def _escalate(
        self, application: Application, changed_by: str, comments: Optional[str]
    ) -> Application:
        urgent_deadline = sla_deadline(PriorityLevel.URGENT, self._clock())
        previous = application.estimated_completion_at
        estimate = urgent_deadline if previous is None else min(previous, urgent_deadline)

        return await self._transition(
            application,
            WorkflowAction.ESCALATE,
            changed_by=changed_by,
            changes={
                "priority": PriorityLevel.URGENT,
                "estimated_completion_at": estimate,
            },
            notes=comments,
        )


    # ==== LIFECYCLE EVENTS ==== #


    async def expire(self, application_id: str, changed_by: str = SYSTEM_ACTOR) -> Application:
        """Approved/Suspended → Expired."""
        application = await self.repository.load_for_update(application_id)
        return await self._transition(
            application,
            WorkflowAction.EXPIRE,
            changed_by=changed_by,
            notes="License expired",
            system_generated=changed_by == SYSTEM_ACTOR,
        )

    async def suspend(self, application_id: str, reason: str, changed_by: str) -> Application:
        """Approved → Suspended."""
        reason = _require_text("reason", reason)
        changed_by = _require_text("changed_by", changed_by)
        application = await self.repository.load_for_update(application_id)
        return await self._transition(
            application,
            WorkflowAction.SUSPEND,
            changed_by=changed_by,
            changes={"admin_notes": reason},
            notes=reason,
        )

    async def expire_due(self, now: Optional[datetime] = None) -> List[Application]:
        """Expire every approved license whose expiry date has passed.

        Applications that change concurrently are skipped and picked up by
        the next sweep.
        """
        cutoff = as_utc(now) if now is not None else self._clock()
        expired: List[Application] = []

        with tracer.start_as_current_span("workflow.expire_due") as span:
            for application in await self.repository.list_due_for_expiry(cutoff):
                try:
                    expired.append(await self._transition(
                        application,
                        WorkflowAction.EXPIRE,
                        changed_by=SYSTEM_ACTOR,
                        notes="License expired",
                        system_generated=True,
                    ))
                except (ConflictError, InvalidTransitionError) as e:
                    logger.info(
                        "Skipping application during expiry sweep",
                        application_id=application.id,
                        reason=str(e),
                    )
            span.set_attribute("expired_count", len(expired))

        logger.info("Expiry sweep finished", cutoff=cutoff.isoformat(), expired=len(expired))
        return expired


    # ==== READS ==== #


    async def get_status(self, application_id: str) -> Application:
        """Current application state, served from the cache when possible."""
        return await self.repository.require(application_id)

    async def get_history(self, application_id: str) -> List[StatusHistoryEntry]:
        await self.repository.require(application_id)
        return await self.repository.list_status_history(application_id)

    async def list_for_reviewer(self, reviewer_id: str) -> List[Application]:
        return await self.repository.list_by_reviewer(reviewer_id)
