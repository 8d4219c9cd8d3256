"""Data factories for generating test data."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from umkm_licensing.business.license_rules import (
    ApplicationStatus,
    DocumentType,
    LicenseType,
    PriorityLevel,
)
from umkm_licensing.schemas.license import (
    Application,
    LicenseDocument,
    StatusHistoryEntry,
)


@dataclass
class ApplicationFactory:
    """Factory for applications in any workflow state."""

    company_id: str = "company-1"
    applicant_id: str = "user-1"
    base_time: datetime = field(
        default_factory=lambda: datetime(2025, 3, 3, 9, 0, tzinfo=timezone.utc)
    )

    def create(self, **overrides: Any) -> Application:
        """Create a draft application, applying ``overrides``."""
        values = {
            "id": str(uuid.uuid4()),
            "company_id": self.company_id,
            "applicant_id": self.applicant_id,
            "license_type": LicenseType.NIB,
            "title": f"Business registration {uuid.uuid4().hex[:6]}",
            "status": ApplicationStatus.DRAFT,
            "priority": PriorityLevel.NORMAL,
            "created_at": self.base_time,
            "updated_at": self.base_time,
        }
        values.update(overrides)
        return Application(**values)

    def submitted(self, reviewer_id: Optional[str] = None, **overrides: Any) -> Application:
        values = {
            "status": ApplicationStatus.SUBMITTED,
            "current_stage": 2,
            "submitted_at": self.base_time,
            "assigned_reviewer_id": reviewer_id,
        }
        values.update(overrides)
        return self.create(**values)

    def processing(self, reviewer_id: Optional[str] = None, **overrides: Any) -> Application:
        values = {
            "status": ApplicationStatus.PROCESSING,
            "current_stage": 3,
            "submitted_at": self.base_time,
            "assigned_reviewer_id": reviewer_id,
        }
        values.update(overrides)
        return self.create(**values)

    def approved(self, expiry_date: Optional[datetime] = None, **overrides: Any) -> Application:
        issued_at = self.base_time + timedelta(days=5)
        values = {
            "status": ApplicationStatus.APPROVED,
            "current_stage": 4,
            "submitted_at": self.base_time,
            "approved_at": issued_at,
            "license_number": f"NIB-{issued_at:%Y%m%d}-{uuid.uuid4().hex[:8].upper()}",
            "issue_date": issued_at,
            "expiry_date": expiry_date,
            "issuing_authority": "DPMPTSP",
            "actual_processing_days": 5,
        }
        values.update(overrides)
        return self.create(**values)


@dataclass
class DocumentFactory:
    """Factory for supporting documents."""

    base_time: datetime = field(
        default_factory=lambda: datetime(2025, 3, 3, 9, 0, tzinfo=timezone.utc)
    )

    def create(self, application_id: str, **overrides: Any) -> LicenseDocument:
        name = f"{uuid.uuid4().hex[:8]}.pdf"
        values = {
            "application_id": application_id,
            "document_type": DocumentType.KTP,
            "file_name": name,
            "original_file_name": "ktp-scan.pdf",
            "file_path": f"/uploads/{application_id}/{name}",
            "file_size": 204800,
            "mime_type": "application/pdf",
            "uploaded_at": self.base_time,
        }
        values.update(overrides)
        return LicenseDocument(**values)


def history_entry(
    application_id: str,
    from_status: Optional[ApplicationStatus],
    to_status: ApplicationStatus,
    changed_at: datetime,
    changed_by: str = "user-1",
) -> StatusHistoryEntry:
    """Build a single status history entry."""
    return StatusHistoryEntry(
        application_id=application_id,
        from_status=from_status,
        to_status=to_status,
        changed_by=changed_by,
        changed_at=changed_at,
    )
