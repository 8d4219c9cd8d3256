# ==== LICENSE APPLICATION ROUTES ==== #

"""
License application workflow endpoints.

Thin HTTP layer over the workflow engine and the statistics aggregator.
Domain errors propagate to the exception handlers registered in ``main``,
which map them onto status codes.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status

from umkm_licensing.business.license_rules import ApplicationStatus, PriorityLevel
from umkm_licensing.dependencies import LicensingServices, get_services
from umkm_licensing.observability.tracing import get_tracer
from umkm_licensing.schemas.license import (
    Application,
    ApproveRequest,
    AssignReviewerRequest,
    CreateApplicationRequest,
    LicenseStatistics,
    RejectRequest,
    ReviewRequest,
    StatusHistoryEntry,
    SubmitRequest,
)


# ==== ROUTER INITIALIZATION ==== #


router = APIRouter()
tracer = get_tracer(__name__)


# ==== COLLECTION ENDPOINTS ==== #


@router.post("/applications", response_model=Application, status_code=status.HTTP_201_CREATED)
async def create_application(
    request: CreateApplicationRequest,
    services: LicensingServices = Depends(get_services),
) -> Application:
    """Create a draft application, or create and submit it when ``submit`` is set."""
    if request.submit:
        return await services.engine.submit_application(
            request.company_id,
            request.applicant_id,
            request.license_type,
            request.title,
            request.description,
        )
    return await services.engine.create_application(
        request.company_id,
        request.applicant_id,
        request.license_type,
        request.title,
        request.description,
    )


@router.get("/statistics", response_model=LicenseStatistics)
async def get_statistics(
    user_id: Optional[str] = Query(None, description="Restrict to one applicant"),
    services: LicensingServices = Depends(get_services),
) -> LicenseStatistics:
    """Aggregate counts for one applicant or the whole platform."""
    return await services.statistics.get_statistics(user_id)


@router.get("/assigned/{reviewer_id}", response_model=List[Application])
async def list_assigned(
    reviewer_id: str,
    services: LicensingServices = Depends(get_services),
) -> List[Application]:
    """Applications currently assigned to a reviewer."""
    return await services.engine.list_for_reviewer(reviewer_id)


@router.get("/by-status/{application_status}", response_model=List[Application])
async def list_by_status(
    application_status: ApplicationStatus,
    services: LicensingServices = Depends(get_services),
) -> List[Application]:
    return await services.repository.list_by_status(application_status)


@router.get("/by-priority/{priority}", response_model=List[Application])
async def list_by_priority(
    priority: PriorityLevel,
    services: LicensingServices = Depends(get_services),
) -> List[Application]:
    return await services.repository.list_by_priority(priority)


@router.get("/expiring", response_model=List[Application])
async def list_expiring(
    days: int = Query(30, ge=0, le=365),
    services: LicensingServices = Depends(get_services),
) -> List[Application]:
    """Approved licenses expiring within ``days``."""
    return await services.repository.list_expiring(days)


@router.get("/search", response_model=List[Application])
async def search_applications(
    q: str = Query(..., min_length=1),
    user_id: Optional[str] = Query(None),
    services: LicensingServices = Depends(get_services),
) -> List[Application]:
    return await services.repository.search(q, user_id)


# ==== SINGLE APPLICATION ENDPOINTS ==== #


@router.get("/{application_id}", response_model=Application)
async def get_application(
    application_id: str,
    services: LicensingServices = Depends(get_services),
) -> Application:
    return await services.engine.get_status(application_id)


@router.get("/{application_id}/history", response_model=List[StatusHistoryEntry])
async def get_history(
    application_id: str,
    services: LicensingServices = Depends(get_services),
) -> List[StatusHistoryEntry]:
    """Status history, oldest first."""
    return await services.engine.get_history(application_id)


@router.post("/{application_id}/submit", response_model=Application)
async def submit_application(
    application_id: str,
    request: SubmitRequest,
    services: LicensingServices = Depends(get_services),
) -> Application:
    return await services.engine.submit(application_id, request.submitted_by)


@router.post("/{application_id}/assign", response_model=Application)
async def assign_reviewer(
    application_id: str,
    request: AssignReviewerRequest,
    services: LicensingServices = Depends(get_services),
) -> Application:
    return await services.engine.assign_reviewer(application_id, request.reviewer_id)


@router.post("/{application_id}/start-review", response_model=Application)
async def start_review(
    application_id: str,
    request: AssignReviewerRequest,
    services: LicensingServices = Depends(get_services),
) -> Application:
    return await services.engine.start_review(application_id, request.reviewer_id)


@router.post("/{application_id}/review", response_model=Application)
async def record_review(
    application_id: str,
    request: ReviewRequest,
    services: LicensingServices = Depends(get_services),
) -> Application:
    """Record a reviewer decision (approve, reject, request_revision, escalate)."""
    with tracer.start_as_current_span("review_endpoint") as span:
        span.set_attribute("decision", request.decision.value)
        return await services.engine.record_review(
            application_id, request.reviewer_id, request.decision, request.comments
        )


@router.post("/{application_id}/approve", response_model=Application)
async def approve_application(
    application_id: str,
    request: ApproveRequest,
    services: LicensingServices = Depends(get_services),
) -> Application:
    return await services.engine.approve(
        application_id,
        request.license_number,
        request.issue_date,
        request.issuing_authority,
        expiry_date=request.expiry_date,
        notes=request.notes,
        approved_by=request.approved_by,
    )


@router.post("/{application_id}/reject", response_model=Application)
async def reject_application(
    application_id: str,
    request: RejectRequest,
    services: LicensingServices = Depends(get_services),
) -> Application:
    return await services.engine.reject(
        application_id,
        request.reason,
        notes=request.notes,
        rejected_by=request.rejected_by,
    )


@router.delete("/{application_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_draft(
    application_id: str,
    user_id: str = Query(..., min_length=1, description="Applicant deleting the draft"),
    services: LicensingServices = Depends(get_services),
) -> Response:
    await services.engine.delete_draft(application_id, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
