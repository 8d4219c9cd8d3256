# ==== REVIEWER ASSIGNMENT SERVICE ==== #

"""
Reviewer assignment with a per-reviewer workload cap.

A reviewer's workload is the number of applications assigned to them that
are still under review (submitted, processing or pending documents). It is
recomputed from the store on each request, so the cap is best-effort when two
assignments for the same reviewer race each other.
"""

from datetime import datetime
from typing import Callable, Dict, Iterable, Optional, Protocol

from umkm_licensing.business.license_rules import WorkflowAction, is_allowed
from umkm_licensing.errors import (
    CapacityError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from umkm_licensing.observability.logging import get_logger
from umkm_licensing.observability.metrics import (
    reviewer_capacity_rejections_total,
    workflow_rejected_actions_total,
)
from umkm_licensing.observability.tracing import get_tracer
from umkm_licensing.repositories.cached_application_repository import CachedApplicationRepository
from umkm_licensing.schemas.license import Application, utc_now


logger = get_logger(__name__)
tracer = get_tracer(__name__)

DEFAULT_MAX_WORKLOAD = 10


class ReviewerDirectory(Protocol):
    """Lookup of known reviewers, usually backed by the user service."""

    async def exists(self, reviewer_id: str) -> bool:
        ...


class StaticReviewerDirectory:
    """Directory over a fixed set of reviewer ids, configured with ``KNOWN_REVIEWER_IDS``."""

    def __init__(self, reviewer_ids: Iterable[str]):
        self._reviewer_ids = frozenset(reviewer_ids)

    async def exists(self, reviewer_id: str) -> bool:
        return reviewer_id in self._reviewer_ids


class ReviewerAssignmentService:
    """Attach reviewers to applications without exceeding their workload cap."""

    def __init__(
        self,
        repository: CachedApplicationRepository,
        max_workload: int = DEFAULT_MAX_WORKLOAD,
        directory: Optional[ReviewerDirectory] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.max_workload = max_workload
        self.directory = directory
        self._clock = clock

    async def workload(self, reviewer_id: str) -> int:
        """Active applications currently assigned to ``reviewer_id``."""
        return await self.repository.count_active_by_reviewer(reviewer_id)

    async def workloads(self, reviewer_ids: Iterable[str]) -> Dict[str, int]:
        return {reviewer_id: await self.workload(reviewer_id) for reviewer_id in reviewer_ids}

    async def assign(self, application_id: str, reviewer_id: str) -> Application:
        """
        Assign ``reviewer_id`` to an application under review.

        Re-assigning the reviewer who already holds the application is a
        no-op. Assigning a different reviewer replaces the previous one.
        Status and history are never touched.

        Raises:
            ValidationError: Empty reviewer id
            NotFoundError: Unknown application or reviewer
            InvalidTransitionError: Application is not under review
            CapacityError: Reviewer already holds ``max_workload`` applications
            ConflictError: Application changed status concurrently
        """
        if not reviewer_id or not reviewer_id.strip():
            raise ValidationError("reviewer_id", "must not be empty")

        with tracer.start_as_current_span("reviewer.assign") as span:
            span.set_attribute("application_id", application_id)
            span.set_attribute("reviewer_id", reviewer_id)

            application = await self.repository.load_for_update(application_id)
            if not is_allowed(WorkflowAction.ASSIGN_REVIEWER, application.status):
                workflow_rejected_actions_total.labels(
                    action=WorkflowAction.ASSIGN_REVIEWER.value,
                    status=application.status.value,
                ).inc()
                raise InvalidTransitionError(
                    application.status, WorkflowAction.ASSIGN_REVIEWER.value
                )

            if self.directory is not None and not await self.directory.exists(reviewer_id):
                raise NotFoundError("reviewer", reviewer_id)

            if application.assigned_reviewer_id == reviewer_id:
                return application

            await self.ensure_capacity(reviewer_id)

            updated = application.model_copy(update={
                "assigned_reviewer_id": reviewer_id,
                "updated_at": self._clock(),
            })
            saved = await self.repository.update_application(updated, application.status)

            logger.info(
                "Reviewer assigned",
                application_id=application_id,
                reviewer_id=reviewer_id,
                previous_reviewer_id=application.assigned_reviewer_id,
            )
            return saved

    async def ensure_capacity(self, reviewer_id: str) -> int:
        """Current workload, or ``CapacityError`` when the cap is reached."""
        current = await self.workload(reviewer_id)
        if current >= self.max_workload:
            reviewer_capacity_rejections_total.inc()
            logger.warning(
                "Reviewer at capacity",
                reviewer_id=reviewer_id,
                workload=current,
                limit=self.max_workload,
            )
            raise CapacityError(reviewer_id, current, self.max_workload)
        return current
