"""
Service container for dependency injection.

Manages creation and lifecycle of the orchestration services.
Provides lazy-loading and singleton pattern for efficiency.
"""

from __future__ import annotations

import threading
from typing import Optional

from pipeline_scheduler.config import Config
from pipeline_scheduler.models import (
    AccessEntity,
    HistoryEntity,
    HistoryLogEntity,
    PipelineEntity,
    StorageEntity,
)
from pipeline_scheduler.orchestrator.cron import CronRegistry
from pipeline_scheduler.orchestrator.executor import ExecutorFactory, load_executor_class
from pipeline_scheduler.orchestrator.history_recorder import RunHistoryRecorder
from pipeline_scheduler.orchestrator.pipeline_service import PipelineService
from pipeline_scheduler.orchestrator.tracker import ExecutionTracker
from pipeline_scheduler.services import db_pool
from pipeline_scheduler.services.access_service import AccessService, AccessStore
from pipeline_scheduler.services.email_service import EmailService
from pipeline_scheduler.services.history_store import HistoryLogStore, HistoryStore
from pipeline_scheduler.services.pipeline_store import PipelineStore
from pipeline_scheduler.services.repository import MemoryRepository, Repository
from pipeline_scheduler.services.storage_service import StorageService, StorageStore
from pipeline_scheduler.utils import get_logger


class ServiceContainer:
    """
    Dependency injection container for application services.

    Repositories are PostgreSQL-backed when DATABASE_URL is set and
    in-memory otherwise.

    Usage:
        container = get_container()
        service = container.pipeline_service
        service.on_startup()
    """

    _instance: Optional[ServiceContainer] = None
    _instance_lock: threading.Lock = threading.Lock()

    def __init__(self):
        """Initialize service container (singleton)."""
        # Skip re-initialization if already initialized
        if hasattr(self, "logger"):
            return

        self.logger = get_logger("container")
        self._init_lock = threading.RLock()

        self._repositories: dict[type, Repository] = {}
        self._cron: Optional[CronRegistry] = None
        self._tracker: Optional[ExecutionTracker] = None
        self._recorder: Optional[RunHistoryRecorder] = None
        self._access_service: Optional[AccessService] = None
        self._storage_service: Optional[StorageService] = None
        self._email_service: Optional[EmailService] = None
        self._pipeline_service: Optional[PipelineService] = None
        self._executor_factory: Optional[ExecutorFactory] = None

    def __new__(cls) -> ServiceContainer:
        """Ensure singleton pattern with double-checked locking."""
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
        return cls._instance

    # ── repositories ────────────────────────────────────────────────

    _STORES = {
        PipelineEntity: PipelineStore,
        HistoryEntity: HistoryStore,
        HistoryLogEntity: HistoryLogStore,
        AccessEntity: AccessStore,
        StorageEntity: StorageStore,
    }

    def repository(self, entity_cls: type) -> Repository:
        """Get the repository for an entity class (lazy-loaded singleton)."""
        with self._init_lock:
            if entity_cls not in self._repositories:
                if db_pool.is_configured():
                    store_cls = self._STORES[entity_cls]
                    self._repositories[entity_cls] = store_cls(db_pool.get_pool())
                    self.logger.debug(f"Initialized {store_cls.__name__}")
                else:
                    self._repositories[entity_cls] = MemoryRepository(entity_cls)
                    self.logger.warning(
                        f"DATABASE_URL not set; {entity_cls.__name__} records are kept in memory only"
                    )
            return self._repositories[entity_cls]

    def ensure_schemas(self) -> list[str]:
        """Create every PostgreSQL table up front; no-op for in-memory stores."""
        if not db_pool.is_configured():
            return []
        return db_pool.ensure_schemas(self.repository(e) for e in self._STORES)

    # ── orchestration ───────────────────────────────────────────────

    @property
    def cron(self) -> CronRegistry:
        """Get cron registry singleton."""
        with self._init_lock:
            if self._cron is None:
                self._cron = CronRegistry(tick_seconds=Config.CRON_TICK_SECONDS)
                self.logger.debug("Initialized CronRegistry")
            return self._cron

    @property
    def tracker(self) -> ExecutionTracker:
        """Get execution tracker singleton."""
        with self._init_lock:
            if self._tracker is None:
                self._tracker = ExecutionTracker()
            return self._tracker

    @property
    def recorder(self) -> RunHistoryRecorder:
        with self._init_lock:
            if self._recorder is None:
                self._recorder = RunHistoryRecorder(
                    pipelines=self.repository(PipelineEntity),
                    histories=self.repository(HistoryEntity),
                    history_logs=self.repository(HistoryLogEntity),
                )
            return self._recorder

    @property
    def executor_factory(self) -> ExecutorFactory:
        """
        Get the Executor factory.

        Raises:
            ConfigurationError: If no factory was set and EXECUTOR_CLASS is unusable
        """
        with self._init_lock:
            if self._executor_factory is None:
                self._executor_factory = load_executor_class(Config.EXECUTOR_CLASS)
                self.logger.info(f"Loaded executor class {Config.EXECUTOR_CLASS}")
            return self._executor_factory

    def set_executor_factory(self, factory: ExecutorFactory) -> None:
        """Inject an Executor factory (embedding applications and tests)."""
        with self._init_lock:
            self._executor_factory = factory
            self._pipeline_service = None

    @property
    def pipeline_service(self) -> PipelineService:
        """
        Get pipeline orchestration service (lazy-loaded singleton).

        Raises:
            ConfigurationError: If no Executor is available
        """
        with self._init_lock:
            if self._pipeline_service is None:
                self._pipeline_service = PipelineService(
                    pipelines=self.repository(PipelineEntity),
                    recorder=self.recorder,
                    cron=self.cron,
                    tracker=self.tracker,
                    executor_factory=self.executor_factory,
                    access_service=self.access_service,
                    storage_service=self.storage_service,
                    email_service=self.email_service,
                    file_root_dir=Config.FILE_ROOT_DIR,
                    batch_size=Config.TRIGGER_RELOAD_BATCH_SIZE,
                    allow_overlap=Config.ALLOW_OVERLAPPING_RUNS,
                )
                self.logger.debug("Initialized PipelineService")
            return self._pipeline_service

    # ── collaborators handed to Executors ───────────────────────────

    @property
    def access_service(self) -> AccessService:
        with self._init_lock:
            if self._access_service is None:
                self._access_service = AccessService(self.repository(AccessEntity))
            return self._access_service

    @property
    def storage_service(self) -> StorageService:
        with self._init_lock:
            if self._storage_service is None:
                self._storage_service = StorageService(self.repository(StorageEntity))
            return self._storage_service

    @property
    def email_service(self) -> EmailService:
        with self._init_lock:
            if self._email_service is None:
                self._email_service = EmailService()
                if not self._email_service.is_configured:
                    self.logger.info("SMTP not configured; email notifications disabled")
            return self._email_service

    def reset(self):
        """
        Reset all cached service instances.

        Stops the cron loop if it is running. Forces re-initialization on
        next access.
        """
        with self._init_lock:
            if self._cron is not None and self._cron.running:
                self._cron.stop()
            self._repositories = {}
            self._cron = None
            self._tracker = None
            self._recorder = None
            self._access_service = None
            self._storage_service = None
            self._email_service = None
            self._pipeline_service = None
            self._executor_factory = None
        self.logger.debug("Service container reset")


# Module-level singleton accessor
_container: Optional[ServiceContainer] = None


def get_container() -> ServiceContainer:
    """
    Get the global service container instance.

    Returns:
        ServiceContainer singleton
    """
    global _container
    if _container is None:
        _container = ServiceContainer()
    return _container


def reset_container():
    """Reset the global service container (for testing)."""
    global _container
    with ServiceContainer._instance_lock:
        if _container:
            _container.reset()
        _container = None
        ServiceContainer._instance = None
