# ==== LICENSE STATISTICS ==== #

"""
Statistics aggregation over license applications.

Counts are computed by the store and cached for a short TTL per scope (one
user or the whole platform). Every application write drops the cached
figures, so readers see at most one TTL of staleness only when invalidation
itself failed.
"""

from typing import Dict, Iterable, Optional

from umkm_licensing.observability.tracing import get_tracer
from umkm_licensing.repositories.cached_application_repository import CachedApplicationRepository
from umkm_licensing.schemas.license import LicenseStatistics


tracer = get_tracer(__name__)


class StatisticsAggregator:
    """Read-only reporting over the application store."""

    def __init__(self, repository: CachedApplicationRepository):
        self.repository = repository

    async def get_statistics(self, user_id: Optional[str] = None) -> LicenseStatistics:
        """
        Aggregate counts for one applicant, or globally when ``user_id`` is None.

        Raises:
            StoreError: The store could not compute the aggregate
        """
        with tracer.start_as_current_span("statistics.get") as span:
            span.set_attribute("scope", "user" if user_id else "global")
            return await self.repository.get_statistics(user_id)

    async def reviewer_workloads(self, reviewer_ids: Iterable[str]) -> Dict[str, int]:
        """Active application count per reviewer."""
        return {
            reviewer_id: await self.repository.count_active_by_reviewer(reviewer_id)
            for reviewer_id in reviewer_ids
        }
