# ==== SQLALCHEMY APPLICATION STORE ==== #

"""
SQLAlchemy async implementation of the application store.

Runs on PostgreSQL through asyncpg in deployment and on SQLite through
aiosqlite in tests. Timestamps are written as UTC and read back as aware UTC
datetimes regardless of whether the backend preserves the offset.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from enum import Enum
from typing import Any, AsyncGenerator, Dict, List, Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from umkm_licensing.business.license_rules import (
    ACTIVE_REVIEW_STATUSES,
    ApplicationStatus,
    LicenseType,
    PriorityLevel,
    WorkflowAction,
)
from umkm_licensing.errors import ConflictError, InvalidTransitionError, NotFoundError, StoreError
from umkm_licensing.resilience.decorators import database_resilient
from umkm_licensing.schemas.license import (
    Application,
    LicenseDocument,
    LicenseStatistics,
    StatusHistoryEntry,
    as_utc,
)
from umkm_licensing.storage.models import (
    LicenseApplicationRecord,
    LicenseDocumentRecord,
    StatusHistoryRecord,
)


# ==== ROW CONVERSION ==== #


def _column_values(model: Any, exclude: frozenset = frozenset()) -> Dict[str, Any]:
    """Plain column values for a pydantic record: enum values, UTC datetimes."""
    values = {}
    for name, value in model.model_dump().items():
        if name in exclude:
            continue
        if isinstance(value, Enum):
            value = value.value
        values[name] = as_utc(value)
    return values


def _row_values(record: Any, exclude: frozenset = frozenset()) -> Dict[str, Any]:
    return {
        column.key: as_utc(getattr(record, column.key))
        for column in record.__table__.columns
        if column.key not in exclude
    }


def _to_application(record: LicenseApplicationRecord) -> Application:
    return Application.model_validate(_row_values(record))


def _to_history(record: StatusHistoryRecord) -> StatusHistoryEntry:
    return StatusHistoryEntry.model_validate(_row_values(record, frozenset({"seq"})))


def _to_document(record: LicenseDocumentRecord) -> LicenseDocument:
    return LicenseDocument.model_validate(_row_values(record))


def _like_pattern(query: str) -> str:
    escaped = query.strip().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


# ==== STORE ==== #


class SqlAlchemyApplicationStore:
    """Application store backed by an async SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _transaction(self) -> AsyncGenerator[AsyncSession, None]:
        async with self._session_factory() as session:
            async with session.begin():
                yield session

    async def _list(self, *criteria: Any) -> List[Application]:
        async with self._transaction() as session:
            result = await session.execute(
                select(LicenseApplicationRecord)
                .where(*criteria)
                .order_by(LicenseApplicationRecord.created_at.desc())
            )
            return [_to_application(row) for row in result.scalars()]

    async def _require_application(self, session: AsyncSession, application_id: str) -> None:
        if await session.get(LicenseApplicationRecord, application_id) is None:
            raise NotFoundError("application", application_id)

    # --► APPLICATIONS

    @database_resilient("create_application")
    async def create_application(self, application: Application) -> Application:
        async with self._transaction() as session:
            session.add(LicenseApplicationRecord(**_column_values(application)))
        return application

    @database_resilient("get_application")
    async def get_application(self, application_id: str) -> Optional[Application]:
        async with self._transaction() as session:
            record = await session.get(LicenseApplicationRecord, application_id)
            return _to_application(record) if record else None

    @database_resilient("update_application")
    async def update_application(
        self,
        application: Application,
        expected_status: ApplicationStatus,
        history: Optional[StatusHistoryEntry] = None,
    ) -> Application:
        """Conditional update; ``history`` commits or rolls back with it."""
        values = _column_values(application, frozenset({"id"}))
        async with self._transaction() as session:
            result = await session.execute(
                update(LicenseApplicationRecord)
                .where(
                    LicenseApplicationRecord.id == application.id,
                    LicenseApplicationRecord.status == expected_status.value,
                )
                .values(**values)
            )
            if result.rowcount == 0:
                await self._require_application(session, application.id)
                raise ConflictError(application.id, expected_status)
            if history is not None:
                if history.application_id != application.id:
                    raise StoreError(f"History entry {history.id} belongs to {history.application_id}")
                session.add(StatusHistoryRecord(**_column_values(history)))
        return application

    @database_resilient("delete_application")
    async def delete_application(self, application_id: str) -> None:
        async with self._transaction() as session:
            record = await session.get(LicenseApplicationRecord, application_id)
            if record is None:
                raise NotFoundError("application", application_id)
            if record.status != ApplicationStatus.DRAFT.value:
                raise InvalidTransitionError(record.status, WorkflowAction.DELETE.value)

            await session.execute(
                delete(StatusHistoryRecord).where(StatusHistoryRecord.application_id == application_id)
            )
            await session.execute(
                delete(LicenseDocumentRecord).where(LicenseDocumentRecord.application_id == application_id)
            )
            result = await session.execute(
                delete(LicenseApplicationRecord).where(
                    LicenseApplicationRecord.id == application_id,
                    LicenseApplicationRecord.status == ApplicationStatus.DRAFT.value,
                )
            )
            if result.rowcount == 0:
                raise ConflictError(application_id, ApplicationStatus.DRAFT)

    @database_resilient("list_by_user")
    async def list_by_user(self, user_id: str) -> List[Application]:
        return await self._list(LicenseApplicationRecord.applicant_id == user_id)

    @database_resilient("list_by_company")
    async def list_by_company(self, company_id: str) -> List[Application]:
        return await self._list(LicenseApplicationRecord.company_id == company_id)

    @database_resilient("list_by_status")
    async def list_by_status(self, status: ApplicationStatus) -> List[Application]:
        return await self._list(LicenseApplicationRecord.status == status.value)

    @database_resilient("list_by_type")
    async def list_by_type(self, license_type: LicenseType) -> List[Application]:
        return await self._list(LicenseApplicationRecord.license_type == license_type.value)

    @database_resilient("list_by_priority")
    async def list_by_priority(self, priority: PriorityLevel) -> List[Application]:
        return await self._list(LicenseApplicationRecord.priority == priority.value)

    @database_resilient("list_by_reviewer")
    async def list_by_reviewer(self, reviewer_id: str) -> List[Application]:
        return await self._list(LicenseApplicationRecord.assigned_reviewer_id == reviewer_id)

    @database_resilient("count_active_by_reviewer")
    async def count_active_by_reviewer(self, reviewer_id: str) -> int:
        async with self._transaction() as session:
            result = await session.execute(
                select(func.count()).select_from(LicenseApplicationRecord).where(
                    LicenseApplicationRecord.assigned_reviewer_id == reviewer_id,
                    LicenseApplicationRecord.status.in_([s.value for s in ACTIVE_REVIEW_STATUSES]),
                )
            )
            return int(result.scalar_one())

    @database_resilient("search")
    async def search(self, query: str, user_id: Optional[str] = None) -> List[Application]:
        pattern = _like_pattern(query)
        criteria = [
            or_(
                LicenseApplicationRecord.title.ilike(pattern, escape="\\"),
                LicenseApplicationRecord.description.ilike(pattern, escape="\\"),
                LicenseApplicationRecord.license_number.ilike(pattern, escape="\\"),
            )
        ]
        if user_id is not None:
            criteria.append(LicenseApplicationRecord.applicant_id == user_id)
        return await self._list(*criteria)

    @database_resilient("list_expiring")
    async def list_expiring(self, until: datetime) -> List[Application]:
        async with self._transaction() as session:
            result = await session.execute(
                select(LicenseApplicationRecord)
                .where(
                    LicenseApplicationRecord.status == ApplicationStatus.APPROVED.value,
                    LicenseApplicationRecord.expiry_date.is_not(None),
                    LicenseApplicationRecord.expiry_date <= as_utc(until),
                )
                .order_by(LicenseApplicationRecord.expiry_date.asc())
            )
            return [_to_application(row) for row in result.scalars()]

    # --► STATUS HISTORY

    @database_resilient("create_status_history")
    async def create_status_history(self, entry: StatusHistoryEntry) -> StatusHistoryEntry:
        async with self._transaction() as session:
            await self._require_application(session, entry.application_id)
            session.add(StatusHistoryRecord(**_column_values(entry)))
        return entry

    @database_resilient("list_status_history")
    async def list_status_history(self, application_id: str) -> List[StatusHistoryEntry]:
        async with self._transaction() as session:
            result = await session.execute(
                select(StatusHistoryRecord)
                .where(StatusHistoryRecord.application_id == application_id)
                .order_by(StatusHistoryRecord.changed_at.asc(), StatusHistoryRecord.seq.asc())
            )
            return [_to_history(row) for row in result.scalars()]

    # --► DOCUMENTS

    @database_resilient("create_document")
    async def create_document(self, document: LicenseDocument) -> LicenseDocument:
        async with self._transaction() as session:
            await self._require_application(session, document.application_id)
            session.add(LicenseDocumentRecord(**_column_values(document)))
        return document

    @database_resilient("get_document")
    async def get_document(self, document_id: str) -> Optional[LicenseDocument]:
        async with self._transaction() as session:
            record = await session.get(LicenseDocumentRecord, document_id)
            return _to_document(record) if record else None

    @database_resilient("list_documents")
    async def list_documents(self, application_id: str) -> List[LicenseDocument]:
        async with self._transaction() as session:
            result = await session.execute(
                select(LicenseDocumentRecord)
                .where(LicenseDocumentRecord.application_id == application_id)
                .order_by(LicenseDocumentRecord.uploaded_at.asc())
            )
            return [_to_document(row) for row in result.scalars()]

    @database_resilient("update_document")
    async def update_document(self, document: LicenseDocument) -> LicenseDocument:
        async with self._transaction() as session:
            result = await session.execute(
                update(LicenseDocumentRecord)
                .where(LicenseDocumentRecord.id == document.id)
                .values(**_column_values(document, frozenset({"id"})))
            )
            if result.rowcount == 0:
                raise NotFoundError("document", document.id)
        return document

    @database_resilient("delete_document")
    async def delete_document(self, document_id: str) -> None:
        async with self._transaction() as session:
            result = await session.execute(
                delete(LicenseDocumentRecord).where(LicenseDocumentRecord.id == document_id)
            )
            if result.rowcount == 0:
                raise NotFoundError("document", document_id)

    # --► STATISTICS

    @database_resilient("aggregate_statistics")
    async def aggregate_statistics(self, user_id: Optional[str] = None) -> LicenseStatistics:
        scope = []
        if user_id is not None:
            scope.append(LicenseApplicationRecord.applicant_id == user_id)

        async with self._transaction() as session:
            by_status = await self._grouped_counts(session, LicenseApplicationRecord.status, scope)
            by_type = await self._grouped_counts(session, LicenseApplicationRecord.license_type, scope)
            by_priority = await self._grouped_counts(session, LicenseApplicationRecord.priority, scope)

            processed = [
                LicenseApplicationRecord.status == ApplicationStatus.APPROVED.value,
                LicenseApplicationRecord.actual_processing_days.is_not(None),
                *scope,
            ]
            avg_result = await session.execute(
                select(func.avg(LicenseApplicationRecord.actual_processing_days)).where(*processed)
            )
            avg_days = avg_result.scalar_one_or_none()
            by_type_result = await session.execute(
                select(
                    LicenseApplicationRecord.license_type,
                    func.avg(LicenseApplicationRecord.actual_processing_days),
                )
                .where(*processed)
                .group_by(LicenseApplicationRecord.license_type)
            )
            avg_by_type = {key: float(avg) for key, avg in by_type_result.all()}

        return LicenseStatistics(
            total=sum(by_status.values()),
            draft=by_status.get(ApplicationStatus.DRAFT.value, 0),
            submitted=by_status.get(ApplicationStatus.SUBMITTED.value, 0),
            processing=by_status.get(ApplicationStatus.PROCESSING.value, 0),
            pending_documents=by_status.get(ApplicationStatus.PENDING_DOCUMENTS.value, 0),
            approved=by_status.get(ApplicationStatus.APPROVED.value, 0),
            rejected=by_status.get(ApplicationStatus.REJECTED.value, 0),
            avg_processing_days=float(avg_days) if avg_days is not None else None,
            avg_processing_days_by_type=avg_by_type,
            by_type=by_type,
            by_priority=by_priority,
        )

    @staticmethod
    async def _grouped_counts(session: AsyncSession, column: Any, scope: list) -> Dict[str, int]:
        result = await session.execute(
            select(column, func.count()).where(*scope).group_by(column)
        )
        return {key: int(count) for key, count in result.all()}
