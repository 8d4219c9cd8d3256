# ==== SERVICE WIRING ==== #

"""
Construction of the licensing services and their FastAPI dependency.

``build_services`` wires a store and a cache into the repository, the
reviewer assignment service, the workflow engine and the statistics
aggregator. The HTTP app and the CLI both go through it; tests call it with
in-memory collaborators.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from fastapi import Request

from umkm_licensing.repositories.cached_application_repository import (
    CacheTTLPolicy,
    CachedApplicationRepository,
)
from umkm_licensing.schemas.license import utc_now
from umkm_licensing.services.notifications import NotificationDispatcher, Notifier
from umkm_licensing.services.reviewer_assignment import (
    ReviewerAssignmentService,
    ReviewerDirectory,
    StaticReviewerDirectory,
)
from umkm_licensing.services.statistics import StatisticsAggregator
from umkm_licensing.services.workflow_engine import LicenseWorkflowEngine
from umkm_licensing.settings import Settings, get_settings
from umkm_licensing.storage.application_store import ApplicationStore
from umkm_licensing.storage.cache import CachePort, NullCache, RedisCache


@dataclass
class LicensingServices:
    """Everything the HTTP and CLI surfaces need, built once per process."""

    store: ApplicationStore
    cache: CachePort
    repository: CachedApplicationRepository
    assignment: ReviewerAssignmentService
    engine: LicenseWorkflowEngine
    statistics: StatisticsAggregator
    notifications: NotificationDispatcher


def reviewer_directory_from_settings(config: Settings) -> Optional[ReviewerDirectory]:
    """Directory over ``KNOWN_REVIEWER_IDS``, or ``None`` when the list is empty."""
    reviewer_ids = [rid.strip() for rid in config.KNOWN_REVIEWER_IDS.split(",") if rid.strip()]
    if not reviewer_ids:
        return None
    return StaticReviewerDirectory(reviewer_ids)


def build_services(
    store: ApplicationStore,
    cache: CachePort,
    config: Optional[Settings] = None,
    clock: Callable[[], datetime] = utc_now,
    notifier: Optional[Notifier] = None,
    directory: Optional[ReviewerDirectory] = None,
) -> LicensingServices:
    """Wire the licensing services around ``store`` and ``cache``."""
    config = config or get_settings()
    if directory is None:
        directory = reviewer_directory_from_settings(config)

    repository = CachedApplicationRepository(
        store, cache, ttl=CacheTTLPolicy.from_settings(config), clock=clock
    )
    assignment = ReviewerAssignmentService(
        repository,
        max_workload=config.REVIEWER_MAX_WORKLOAD,
        directory=directory,
        clock=clock,
    )
    dispatcher = NotificationDispatcher(notifier, enabled=config.NOTIFICATIONS_ENABLED)
    engine = LicenseWorkflowEngine(
        repository,
        assignment,
        notifier=dispatcher,
        clock=clock,
        total_stages=config.DEFAULT_TOTAL_STAGES,
        issuing_authority=config.DEFAULT_ISSUING_AUTHORITY,
        release_reviewer_on_revision=config.RELEASE_REVIEWER_ON_REVISION,
    )

    return LicensingServices(
        store=store,
        cache=cache,
        repository=repository,
        assignment=assignment,
        engine=engine,
        statistics=StatisticsAggregator(repository),
        notifications=dispatcher,
    )


def build_default_services(config: Optional[Settings] = None) -> LicensingServices:
    """Services backed by the configured database and Redis."""
    from umkm_licensing.storage.db import init_database
    from umkm_licensing.storage.redis import get_redis_client
    from umkm_licensing.storage.sql_application_store import SqlAlchemyApplicationStore

    config = config or get_settings()
    store = SqlAlchemyApplicationStore(init_database(config.DATABASE_URL))

    cache: CachePort
    if config.CACHE_ENABLED:
        cache = RedisCache(
            get_redis_client(config.REDIS_URL, verify_ssl=config.REDIS_SSL_VERIFY),
            scan_batch_size=config.CACHE_SCAN_BATCH_SIZE,
        )
    else:
        cache = NullCache()

    return build_services(store, cache, config=config)


def get_services(request: Request) -> LicensingServices:
    """FastAPI dependency returning the services attached at startup."""
    return request.app.state.services
