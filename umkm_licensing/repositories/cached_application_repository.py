# ==== CACHED APPLICATION REPOSITORY ==== #

"""
Cache-aside repository in front of the application store.

Reads consult the cache first and populate it on a miss; writes go to the
store and then drop every cache entry that could now be stale. The workflow
engine, reviewer assignment and statistics all read and write through this
class.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from umkm_licensing.business.license_rules import ApplicationStatus, LicenseType, PriorityLevel
from umkm_licensing.errors import NotFoundError
from umkm_licensing.repositories import cache_keys
from umkm_licensing.repositories.cache_aside import CacheAside
from umkm_licensing.schemas.license import (
    Application,
    LicenseDocument,
    LicenseStatistics,
    StatusHistoryEntry,
    utc_now,
)
from umkm_licensing.settings import Settings
from umkm_licensing.storage.application_store import ApplicationStore
from umkm_licensing.storage.cache import CachePort


@dataclass(frozen=True)
class CacheTTLPolicy:
    """TTL in seconds per cached read family."""

    application: int = 300
    owner_list: int = 120
    status_list: int = 60
    type_list: int = 300
    reviewer_list: int = 60
    search: int = 60
    expiring: int = 300
    detail: int = 300
    statistics: int = 120

    @classmethod
    def from_settings(cls, settings: Settings) -> "CacheTTLPolicy":
        return cls(
            application=settings.CACHE_TTL_APPLICATION,
            owner_list=settings.CACHE_TTL_OWNER_LIST,
            status_list=settings.CACHE_TTL_STATUS_LIST,
            type_list=settings.CACHE_TTL_TYPE_LIST,
            reviewer_list=settings.CACHE_TTL_REVIEWER_LIST,
            search=settings.CACHE_TTL_SEARCH,
            expiring=settings.CACHE_TTL_EXPIRING,
            detail=settings.CACHE_TTL_DETAIL,
            statistics=settings.CACHE_TTL_STATISTICS,
        )


class CachedApplicationRepository:
    """Application reads and writes with cache-aside semantics."""

    def __init__(
        self,
        store: ApplicationStore,
        cache: CachePort,
        ttl: CacheTTLPolicy | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.cache = CacheAside(cache)
        self.ttl = ttl or CacheTTLPolicy()
        self._clock = clock

    # ==== READS ==== #

    async def get_by_id(self, application_id: str) -> Optional[Application]:
        """Single application; absent applications are not cached."""
        return await self.cache.read_through(
            "get_by_id",
            cache_keys.application(application_id),
            Application,
            self.ttl.application,
            lambda: self.store.get_application(application_id),
        )

    async def require(self, application_id: str) -> Application:
        """Like ``get_by_id`` but raises ``NotFoundError`` when absent."""
        application = await self.get_by_id(application_id)
        if application is None:
            raise NotFoundError("application", application_id)
        return application

    async def load_for_update(self, application_id: str) -> Application:
        """Authoritative copy from the store, bypassing the cache.

        Transitions start from this copy so a stale cache entry can never be
        written back over newer fields.
        """
        application = await self.store.get_application(application_id)
        if application is None:
            raise NotFoundError("application", application_id)
        return application

    async def list_by_user(self, user_id: str) -> List[Application]:
        return await self.cache.read_through(
            "list_by_user",
            cache_keys.user_applications(user_id),
            List[Application],
            self.ttl.owner_list,
            lambda: self.store.list_by_user(user_id),
        )

    async def list_by_company(self, company_id: str) -> List[Application]:
        return await self.cache.read_through(
            "list_by_company",
            cache_keys.company_applications(company_id),
            List[Application],
            self.ttl.owner_list,
            lambda: self.store.list_by_company(company_id),
        )

    async def list_by_status(self, status: ApplicationStatus) -> List[Application]:
        return await self.cache.read_through(
            "list_by_status",
            cache_keys.status_applications(status),
            List[Application],
            self.ttl.status_list,
            lambda: self.store.list_by_status(status),
        )

    async def list_by_type(self, license_type: LicenseType) -> List[Application]:
        return await self.cache.read_through(
            "list_by_type",
            cache_keys.type_applications(license_type),
            List[Application],
            self.ttl.type_list,
            lambda: self.store.list_by_type(license_type),
        )

    async def list_by_priority(self, priority: PriorityLevel) -> List[Application]:
        return await self.cache.read_through(
            "list_by_priority",
            cache_keys.priority_applications(priority),
            List[Application],
            self.ttl.status_list,
            lambda: self.store.list_by_priority(priority),
        )

    async def list_by_reviewer(self, reviewer_id: str) -> List[Application]:
        return await self.cache.read_through(
            "list_by_reviewer",
            cache_keys.reviewer_applications(reviewer_id),
            List[Application],
            self.ttl.reviewer_list,
            lambda: self.store.list_by_reviewer(reviewer_id),
        )

    async def search(self, query: str, user_id: Optional[str] = None) -> List[Application]:
        return await self.cache.read_through(
            "search",
            cache_keys.search(query, user_id),
            List[Application],
            self.ttl.search,
            lambda: self.store.search(query, user_id),
        )

    async def list_expiring(self, days: int) -> List[Application]:
        """Approved licenses expiring within ``days`` from now."""
        until = self._clock() + timedelta(days=days)
        return await self.cache.read_through(
            "list_expiring",
            cache_keys.expiring(days),
            List[Application],
            self.ttl.expiring,
            lambda: self.store.list_expiring(until),
        )

    async def list_due_for_expiry(self, now: datetime) -> List[Application]:
        """Approved licenses past their expiry date. Always read from the store."""
        return await self.store.list_expiring(now)

    async def list_documents(self, application_id: str) -> List[LicenseDocument]:
        return await self.cache.read_through(
            "list_documents",
            cache_keys.documents(application_id),
            List[LicenseDocument],
            self.ttl.detail,
            lambda: self.store.list_documents(application_id),
        )

    async def list_status_history(self, application_id: str) -> List[StatusHistoryEntry]:
        return await self.cache.read_through(
            "list_status_history",
            cache_keys.status_history(application_id),
            List[StatusHistoryEntry],
            self.ttl.detail,
            lambda: self.store.list_status_history(application_id),
        )

    async def get_statistics(self, user_id: Optional[str] = None) -> LicenseStatistics:
        return await self.cache.read_through(
            "statistics",
            cache_keys.statistics(user_id),
            LicenseStatistics,
            self.ttl.statistics,
            lambda: self.store.aggregate_statistics(user_id),
        )

    async def count_active_by_reviewer(self, reviewer_id: str) -> int:
        """Reviewer workload; recomputed from the store on every call."""
        return await self.store.count_active_by_reviewer(reviewer_id)

    # ==== WRITES ==== #

    async def create_application(self, application: Application) -> Application:
        created = await self.store.create_application(application)
        await self._invalidate_application(created)
        return created

    async def update_application(
        self,
        application: Application,
        expected_status: ApplicationStatus,
        history: Optional[StatusHistoryEntry] = None,
    ) -> Application:
        """Conditional write; raises ``ConflictError`` if the status moved underneath.

        ``history`` is stored in the same write as the application.
        """
        updated = await self.store.update_application(application, expected_status, history)
        await self._invalidate_application(updated)
        if history is not None:
            await self.cache.invalidate(keys=[cache_keys.status_history(application.id)])
        return updated

    async def delete_application(self, application: Application) -> None:
        await self.store.delete_application(application.id)
        await self._invalidate_application(application)
        await self.cache.invalidate(keys=[
            cache_keys.status_history(application.id),
            cache_keys.documents(application.id),
        ])

    async def add_document(self, document: LicenseDocument) -> LicenseDocument:
        created = await self.store.create_document(document)
        await self.cache.invalidate(keys=[cache_keys.documents(document.application_id)])
        return created

    async def verify_document(
        self, document_id: str, verified_by: str, notes: Optional[str] = None
    ) -> LicenseDocument:
        document = await self.store.get_document(document_id)
        if document is None:
            raise NotFoundError("document", document_id)

        verified = document.model_copy(update={
            "is_verified": True,
            "verified_at": self._clock(),
            "verified_by": verified_by,
            "notes": notes if notes is not None else document.notes,
        })
        updated = await self.store.update_document(verified)
        await self.cache.invalidate(keys=[cache_keys.documents(document.application_id)])
        return updated

    async def delete_document(self, document_id: str) -> None:
        document = await self.store.get_document(document_id)
        if document is None:
            raise NotFoundError("document", document_id)
        await self.store.delete_document(document_id)
        await self.cache.invalidate(keys=[cache_keys.documents(document.application_id)])

    async def _invalidate_application(self, application: Application) -> None:
        await self.cache.invalidate(
            keys=[
                cache_keys.application(application.id),
                cache_keys.user_applications(application.applicant_id),
                cache_keys.company_applications(application.company_id),
            ],
            patterns=cache_keys.LIST_PATTERNS,
        )
