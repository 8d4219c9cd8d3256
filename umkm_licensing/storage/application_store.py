# ==== APPLICATION STORE ==== #

"""
Application store contract and its in-process implementation.

The store is the source of truth for applications, their status history and
supporting documents. ``update_application`` is a conditional write: it only
applies when the stored status still equals ``expected_status``, which is how
concurrent transitions on the same application are detected. When a history
entry is passed it is recorded in the same write, so a status change is never
stored without its audit entry.
"""

from collections import Counter
from datetime import datetime
from typing import Dict, List, Optional, Protocol

from umkm_licensing.business.license_rules import (
    ACTIVE_REVIEW_STATUSES,
    ApplicationStatus,
    LicenseType,
    PriorityLevel,
    WorkflowAction,
)
from umkm_licensing.errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    StoreError,
)
from umkm_licensing.schemas.license import (
    Application,
    LicenseDocument,
    LicenseStatistics,
    StatusHistoryEntry,
    as_utc,
)


class ApplicationStore(Protocol):
    """Persistence operations the licensing core relies on."""

    async def create_application(self, application: Application) -> Application: ...

    async def get_application(self, application_id: str) -> Optional[Application]: ...

    async def update_application(
        self,
        application: Application,
        expected_status: ApplicationStatus,
        history: Optional[StatusHistoryEntry] = None,
    ) -> Application: ...

    async def delete_application(self, application_id: str) -> None: ...

    async def list_by_user(self, user_id: str) -> List[Application]: ...

    async def list_by_company(self, company_id: str) -> List[Application]: ...

    async def list_by_status(self, status: ApplicationStatus) -> List[Application]: ...

    async def list_by_type(self, license_type: LicenseType) -> List[Application]: ...

    async def list_by_priority(self, priority: PriorityLevel) -> List[Application]: ...

    async def list_by_reviewer(self, reviewer_id: str) -> List[Application]: ...

    async def count_active_by_reviewer(self, reviewer_id: str) -> int: ...

    async def search(self, query: str, user_id: Optional[str] = None) -> List[Application]: ...

    async def list_expiring(self, until: datetime) -> List[Application]: ...

    async def create_status_history(self, entry: StatusHistoryEntry) -> StatusHistoryEntry: ...

    async def list_status_history(self, application_id: str) -> List[StatusHistoryEntry]: ...

    async def create_document(self, document: LicenseDocument) -> LicenseDocument: ...

    async def get_document(self, document_id: str) -> Optional[LicenseDocument]: ...

    async def list_documents(self, application_id: str) -> List[LicenseDocument]: ...

    async def update_document(self, document: LicenseDocument) -> LicenseDocument: ...

    async def delete_document(self, document_id: str) -> None: ...

    async def aggregate_statistics(self, user_id: Optional[str] = None) -> LicenseStatistics: ...


# ==== SHARED HELPERS ==== #


def matches_query(application: Application, query: str) -> bool:
    """Case-insensitive substring match over the searchable fields."""
    needle = query.strip().lower()
    haystack = (
        application.title,
        application.description or "",
        application.license_number or "",
    )
    return any(needle in field.lower() for field in haystack)


def build_statistics(applications: List[Application]) -> LicenseStatistics:
    """Fold a list of applications into ``LicenseStatistics``."""
    by_status = Counter(app.status for app in applications)
    processed = [
        app for app in applications
        if app.status == ApplicationStatus.APPROVED and app.actual_processing_days is not None
    ]
    days_by_type: Dict[str, List[int]] = {}
    for app in processed:
        days_by_type.setdefault(app.license_type.value, []).append(app.actual_processing_days)

    return LicenseStatistics(
        total=len(applications),
        draft=by_status[ApplicationStatus.DRAFT],
        submitted=by_status[ApplicationStatus.SUBMITTED],
        processing=by_status[ApplicationStatus.PROCESSING],
        pending_documents=by_status[ApplicationStatus.PENDING_DOCUMENTS],
        approved=by_status[ApplicationStatus.APPROVED],
        rejected=by_status[ApplicationStatus.REJECTED],
        avg_processing_days=(
            sum(app.actual_processing_days for app in processed) / len(processed)
        ) if processed else None,
        avg_processing_days_by_type={
            license_type: sum(days) / len(days) for license_type, days in days_by_type.items()
        },
        by_type=dict(Counter(app.license_type.value for app in applications)),
        by_priority=dict(Counter(app.priority.value for app in applications)),
    )


def _newest_first(applications: List[Application]) -> List[Application]:
    return sorted(applications, key=lambda app: app.created_at, reverse=True)


# ==== IN-MEMORY IMPLEMENTATION ==== #


class InMemoryApplicationStore:
    """
    Dictionary-backed store.

    Records are copied on the way in and out so callers can never mutate the
    stored state without going through ``update_application``.
    """

    def __init__(self):
        self._applications: Dict[str, Application] = {}
        self._history: Dict[str, List[StatusHistoryEntry]] = {}
        self._documents: Dict[str, LicenseDocument] = {}

    def _all(self) -> List[Application]:
        return [app.model_copy(deep=True) for app in self._applications.values()]

    @staticmethod
    def _normalised(application: Application) -> Application:
        # model_copy skips validation; re-validate so stored timestamps are UTC like SQL rows.
        return Application.model_validate(application.model_dump())

    # --► APPLICATIONS

    async def create_application(self, application: Application) -> Application:
        if application.id in self._applications:
            raise StoreError(f"Application {application.id} already exists")
        stored = self._normalised(application)
        self._applications[application.id] = stored
        return stored.model_copy(deep=True)

    async def get_application(self, application_id: str) -> Optional[Application]:
        stored = self._applications.get(application_id)
        return stored.model_copy(deep=True) if stored else None

    async def update_application(
        self,
        application: Application,
        expected_status: ApplicationStatus,
        history: Optional[StatusHistoryEntry] = None,
    ) -> Application:
        stored = self._applications.get(application.id)
        if stored is None:
            raise NotFoundError("application", application.id)
        if stored.status != expected_status:
            raise ConflictError(application.id, expected_status)
        updated = self._normalised(application)
        if history is not None:
            self._check_history(history, application.id)
            self._history.setdefault(application.id, []).append(history)
        self._applications[application.id] = updated
        return updated.model_copy(deep=True)

    async def delete_application(self, application_id: str) -> None:
        stored = self._applications.get(application_id)
        if stored is None:
            raise NotFoundError("application", application_id)
        if stored.status != ApplicationStatus.DRAFT:
            raise InvalidTransitionError(stored.status, WorkflowAction.DELETE.value)
        del self._applications[application_id]
        self._history.pop(application_id, None)
        self._documents = {
            doc_id: doc for doc_id, doc in self._documents.items()
            if doc.application_id != application_id
        }

    async def list_by_user(self, user_id: str) -> List[Application]:
        return _newest_first([app for app in self._all() if app.applicant_id == user_id])

    async def list_by_company(self, company_id: str) -> List[Application]:
        return _newest_first([app for app in self._all() if app.company_id == company_id])

    async def list_by_status(self, status: ApplicationStatus) -> List[Application]:
        return _newest_first([app for app in self._all() if app.status == status])

    async def list_by_type(self, license_type: LicenseType) -> List[Application]:
        return _newest_first([app for app in self._all() if app.license_type == license_type])

    async def list_by_priority(self, priority: PriorityLevel) -> List[Application]:
        return _newest_first([app for app in self._all() if app.priority == priority])

    async def list_by_reviewer(self, reviewer_id: str) -> List[Application]:
        return _newest_first([
            app for app in self._all() if app.assigned_reviewer_id == reviewer_id
        ])

    async def count_active_by_reviewer(self, reviewer_id: str) -> int:
        return sum(
            1 for app in self._applications.values()
            if app.assigned_reviewer_id == reviewer_id and app.status in ACTIVE_REVIEW_STATUSES
        )

    async def search(self, query: str, user_id: Optional[str] = None) -> List[Application]:
        return _newest_first([
            app for app in self._all()
            if (user_id is None or app.applicant_id == user_id) and matches_query(app, query)
        ])

    async def list_expiring(self, until: datetime) -> List[Application]:
        until = as_utc(until)
        due = [
            app for app in self._all()
            if app.status == ApplicationStatus.APPROVED
            and app.expiry_date is not None
            and as_utc(app.expiry_date) <= until
        ]
        return sorted(due, key=lambda app: as_utc(app.expiry_date))

    # --► STATUS HISTORY

    def _check_history(self, entry: StatusHistoryEntry, application_id: str) -> None:
        if entry.application_id != application_id:
            raise StoreError(f"History entry {entry.id} belongs to {entry.application_id}")
        if any(e.id == entry.id for e in self._history.get(application_id, [])):
            raise StoreError(f"History entry {entry.id} already exists")

    async def create_status_history(self, entry: StatusHistoryEntry) -> StatusHistoryEntry:
        if entry.application_id not in self._applications:
            raise NotFoundError("application", entry.application_id)
        self._check_history(entry, entry.application_id)
        self._history.setdefault(entry.application_id, []).append(entry)
        return entry

    async def list_status_history(self, application_id: str) -> List[StatusHistoryEntry]:
        # sorted() is stable, so equal timestamps keep insertion order
        return sorted(self._history.get(application_id, []), key=lambda e: e.changed_at)

    # --► DOCUMENTS

    async def create_document(self, document: LicenseDocument) -> LicenseDocument:
        if document.application_id not in self._applications:
            raise NotFoundError("application", document.application_id)
        self._documents[document.id] = document.model_copy(deep=True)
        return document.model_copy(deep=True)

    async def get_document(self, document_id: str) -> Optional[LicenseDocument]:
        stored = self._documents.get(document_id)
        return stored.model_copy(deep=True) if stored else None

    async def list_documents(self, application_id: str) -> List[LicenseDocument]:
        docs = [
            doc.model_copy(deep=True) for doc in self._documents.values()
            if doc.application_id == application_id
        ]
        return sorted(docs, key=lambda doc: doc.uploaded_at)

    async def update_document(self, document: LicenseDocument) -> LicenseDocument:
        if document.id not in self._documents:
            raise NotFoundError("document", document.id)
        self._documents[document.id] = document.model_copy(deep=True)
        return document.model_copy(deep=True)

    async def delete_document(self, document_id: str) -> None:
        if self._documents.pop(document_id, None) is None:
            raise NotFoundError("document", document_id)

    # --► STATISTICS

    async def aggregate_statistics(self, user_id: Optional[str] = None) -> LicenseStatistics:
        applications = self._all()
        if user_id is not None:
            applications = [app for app in applications if app.applicant_id == user_id]
        return build_statistics(applications)
