"""Pydantic schemas for license applications, documents, history and statistics."""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import AwareDatetime, BaseModel, Field, field_validator

from umkm_licensing.business.license_rules import (
    ApplicationStatus,
    DocumentType,
    LicenseType,
    PriorityLevel,
    ReviewDecision,
    TERMINAL_STATUSES,
)


SYSTEM_ACTOR = "system"


def utc_now() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def as_utc(value: Any) -> Any:
    """Normalise a datetime to aware UTC; naive values are taken to be UTC already."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    return value


def new_id() -> str:
    """Opaque identifier for new records."""
    return str(uuid.uuid4())


# ==== DOMAIN RECORDS ==== #


class Application(BaseModel):
    """A single license request moving through the review workflow."""

    id: str = Field(default_factory=new_id)
    company_id: str
    applicant_id: str
    license_type: LicenseType
    title: str
    description: Optional[str] = None

    status: ApplicationStatus = ApplicationStatus.DRAFT
    priority: PriorityLevel = PriorityLevel.NORMAL
    current_stage: int = Field(1, ge=1)
    total_stages: int = Field(4, ge=1)
    assigned_reviewer_id: Optional[str] = None

    estimated_processing_days: Optional[int] = None
    actual_processing_days: Optional[int] = None
    estimated_completion_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    submitted_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None

    # Populated on approval
    license_number: Optional[str] = None
    issue_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    issuing_authority: Optional[str] = None

    # Reviewer actions
    admin_notes: Optional[str] = None
    rejection_reason: Optional[str] = None

    @field_validator("*", mode="after")
    @classmethod
    def _timestamps_in_utc(cls, value: Any) -> Any:
        return as_utc(value)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Check if the issued license has passed its expiry date."""
        if self.expiry_date is None:
            return False
        return self.expiry_date < (now or utc_now())

    def is_active(self, now: Optional[datetime] = None) -> bool:
        """Approved and not expired."""
        return self.status == ApplicationStatus.APPROVED and not self.is_expired(now)

    def days_until_expiry(self, now: Optional[datetime] = None) -> Optional[int]:
        """Whole days until expiry, negative once expired."""
        if self.expiry_date is None:
            return None
        return (self.expiry_date - (now or utc_now())).days

    def needs_renewal(self, now: Optional[datetime] = None, window_days: int = 30) -> bool:
        """Check if the license expires within the renewal window."""
        days = self.days_until_expiry(now)
        return days is not None and 0 < days <= window_days


class StatusHistoryEntry(BaseModel):
    """Immutable audit record of one status transition."""

    id: str = Field(default_factory=new_id)
    application_id: str
    from_status: Optional[ApplicationStatus] = None
    to_status: ApplicationStatus
    changed_by: str
    changed_at: datetime = Field(default_factory=utc_now)
    notes: Optional[str] = None
    is_system_generated: bool = False

    model_config = {"frozen": True}


class LicenseDocument(BaseModel):
    """Supporting document uploaded for an application."""

    id: str = Field(default_factory=new_id)
    application_id: str
    document_type: DocumentType
    file_name: str
    original_file_name: str
    file_path: str
    file_size: int = Field(..., ge=0)
    mime_type: str
    uploaded_at: datetime = Field(default_factory=utc_now)
    is_verified: bool = False
    verified_at: Optional[datetime] = None
    verified_by: Optional[str] = None
    notes: Optional[str] = None


class LicenseStatistics(BaseModel):
    """Aggregate counts per user or across the platform."""

    total: int = 0
    draft: int = 0
    submitted: int = 0
    processing: int = 0
    pending_documents: int = 0
    approved: int = 0
    rejected: int = 0
    avg_processing_days: Optional[float] = None
    avg_processing_days_by_type: Dict[str, float] = Field(default_factory=dict)
    by_type: Dict[str, int] = Field(default_factory=dict)
    by_priority: Dict[str, int] = Field(default_factory=dict)

    class Config:
        """Pydantic configuration."""
        json_schema_extra = {
            "example": {
                "total": 42,
                "draft": 5,
                "submitted": 8,
                "processing": 10,
                "pending_documents": 3,
                "approved": 12,
                "rejected": 4,
                "avg_processing_days": 9.5,
                "avg_processing_days_by_type": {"nib": 6.0, "halal": 12.5},
                "by_type": {"nib": 20, "halal": 22},
                "by_priority": {"normal": 38, "urgent": 4}
            }
        }


# ==== API REQUEST SCHEMAS ==== #


class CreateApplicationRequest(BaseModel):
    """Request schema for creating a draft (optionally submitting it)."""

    company_id: str = Field(..., min_length=1)
    applicant_id: str = Field(..., min_length=1)
    license_type: LicenseType
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=5000)
    submit: bool = False


class SubmitRequest(BaseModel):
    """Request schema for submitting a draft."""

    submitted_by: str = Field(..., min_length=1)


class AssignReviewerRequest(BaseModel):
    """Request schema for assigning a reviewer."""

    reviewer_id: str = Field(..., min_length=1)


class ReviewRequest(BaseModel):
    """Request schema for recording a reviewer decision."""

    reviewer_id: str = Field(..., min_length=1)
    decision: ReviewDecision
    comments: Optional[str] = Field(None, max_length=2000)


class ApproveRequest(BaseModel):
    """Request schema for an explicit approval."""

    license_number: str = Field(..., min_length=1)
    issue_date: AwareDatetime
    issuing_authority: str = Field(..., min_length=1)
    expiry_date: Optional[AwareDatetime] = None
    notes: Optional[str] = Field(None, max_length=2000)
    approved_by: str = SYSTEM_ACTOR


class RejectRequest(BaseModel):
    """Request schema for an explicit rejection."""

    reason: str = Field(..., min_length=1, max_length=1000)
    notes: Optional[str] = Field(None, max_length=2000)
    rejected_by: str = SYSTEM_ACTOR
