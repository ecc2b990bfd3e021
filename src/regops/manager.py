"""Manager - wires the job subsystem together and runs it.

ARCHITECTURE
────────────
::

    Manager(store, settings)
      ├── register_handler(job_type, handler)     ─ before start()
      ├── validate()                              ─ MissingHandlerError aborts startup
      └── start()
            ├── HandlerRegistry.freeze()
            ├── Lifecycle handlers .start()       ─ e.g. the scan worker pool
            ├── JobDispatcher (ThreadPoolExecutor, max_concurrent_jobs)
            ├── Controller "jobs"                 ─ JobReconciler
            ├── Controller "image-replicates"     ─ ImageReplicateReconciler
            │     └── also watches Jobs, keyed by owning ImageReplicate
            ├── IntervalTimer "ttl-sweep"         ─ TTLCollector.sweep
            └── IntervalTimer "cron-sync"         ─ CronJobScheduler.sync_all

``stop()`` tears down in reverse: timers, controllers, dispatcher, then
handlers.

Tags:
    regops-core, manager, wiring, startup-validation
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any

from regops.controller import Controller, owner_keys
from regops.core.logging import get_logger
from regops.core.models import ImageReplicate, Job, JobType
from regops.core.settings import RegopsSettings, get_settings
from regops.core.store.protocol import ObjectStore
from regops.core.timestamps import utc_now
from regops.execution.dispatcher import JobDispatcher
from regops.execution.finalizer import FinalizerGuard
from regops.execution.reconciler import JobReconciler
from regops.execution.registry import HandlerRegistry, JobHandler, Lifecycle
from regops.execution.state import JobStateMachine
from regops.execution.ttl import TTLCollector
from regops.handlers.clients import ImageSigner, RegistryClientFactory, VulnerabilityScanner
from regops.handlers.replicate import ImageReplicateHandler
from regops.handlers.scan import ImageScanHandler
from regops.handlers.sign import ImageSignHandler
from regops.handlers.sync import ExternalRegistrySyncHandler
from regops.pipeline.replicate import ImageReplicateReconciler
from regops.scheduling.cron import CronJobScheduler
from regops.scheduling.timers import IntervalTimer

logger = get_logger(__name__)

# Job types the ImageReplicate pipeline creates on its own
REQUIRED_JOB_TYPES = (
    JobType.SYNCHRONIZE_EXT_REG,
    JobType.IMAGE_REPLICATE,
    JobType.IMAGE_SIGN,
)


class Manager:
    def __init__(
        self,
        store: ObjectStore,
        settings: RegopsSettings | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
        required_job_types: Iterable[JobType] = REQUIRED_JOB_TYPES,
    ) -> None:
        self.store = store
        self.settings = settings or get_settings()
        self._clock = clock
        self._required = tuple(required_job_types)
        s = self.settings

        self.registry = HandlerRegistry()
        self.state_machine = JobStateMachine(store, clock=clock, conflict_retries=s.conflict_retries)
        self.guard = FinalizerGuard(store, s.finalizer_token, conflict_retries=s.conflict_retries)
        self.ttl_collector = TTLCollector(store, clock=clock)
        self.cron_scheduler = CronJobScheduler(
            store,
            clock=clock,
            max_missed=s.max_missed_schedules,
            conflict_retries=s.conflict_retries,
        )
        self.ttl_timer = IntervalTimer("ttl-sweep")
        self.cron_timer = IntervalTimer("cron-sync")

        self.dispatcher: JobDispatcher | None = None
        self.job_controller: Controller | None = None
        self.replicate_controller: Controller | None = None
        self._started = False

    # === Registration ===

    def register_handler(self, job_type: JobType, handler: JobHandler) -> Manager:
        self.registry.register(job_type, handler)
        return self

    def register_builtin_handlers(
        self,
        clients: RegistryClientFactory,
        signer: ImageSigner,
        scanner: VulnerabilityScanner | None = None,
    ) -> Manager:
        """Register the sync, replicate, sign (and optionally scan) handlers."""
        s = self.settings
        self.register_handler(JobType.SYNCHRONIZE_EXT_REG, ExternalRegistrySyncHandler(clients))
        self.register_handler(JobType.IMAGE_REPLICATE, ImageReplicateHandler(self.store, clients))
        self.register_handler(JobType.IMAGE_SIGN, ImageSignHandler(self.store, signer))
        if scanner is not None:
            self.register_handler(
                JobType.IMAGE_SCAN,
                ImageScanHandler(
                    self.store,
                    self.state_machine,
                    scanner,
                    workers=s.scan_workers,
                    queue_size=s.scan_queue_size,
                ),
            )
        return self

    def validate(self) -> None:
        """Raise ``MissingHandlerError`` if a required job type has no handler."""
        self.registry.require(self._required)

    # === Lifecycle ===

    def start(self) -> None:
        if self._started:
            logger.warning("manager_already_started")
            return
        self.validate()
        s = self.settings
        handlers = self.registry.freeze()

        for handler in self._lifecycle_handlers():
            handler.start()

        self.dispatcher = JobDispatcher(
            self.store,
            handlers,
            self.state_machine,
            max_concurrent_jobs=s.max_concurrent_jobs,
            executor=ThreadPoolExecutor(
                max_workers=s.max_concurrent_jobs, thread_name_prefix="regops-dispatch"
            ),
            requeue=self._requeue_job,
            requeue_after=s.requeue_after,
        )
        job_reconciler = JobReconciler(
            self.store,
            self.guard,
            self.dispatcher,
            self.state_machine,
            requeue_after=s.requeue_after,
        )
        replicate_reconciler = ImageReplicateReconciler(
            self.store,
            self.guard,
            self.state_machine,
            clock=self._clock,
            requeue_after=s.requeue_after,
            conflict_retries=s.conflict_retries,
        )
        self.job_controller = Controller(
            self.store, Job, job_reconciler.reconcile, name="jobs", requeue_after=s.requeue_after
        )
        self.replicate_controller = Controller(
            self.store,
            ImageReplicate,
            replicate_reconciler.reconcile,
            name="image-replicates",
            requeue_after=s.requeue_after,
        ).watches(Job, owner_keys(ImageReplicate.kind))

        self.job_controller.start()
        self.replicate_controller.start()
        self.ttl_timer.start(self.ttl_collector.sweep, s.ttl_sweep_interval)
        self.cron_timer.start(self.cron_scheduler.sync_all, s.cron_sync_interval)
        self._started = True
        logger.info(
            "manager_started",
            handlers=[t.value for t in self.registry.list_handlers()],
            max_concurrent_jobs=s.max_concurrent_jobs,
        )

    def stop(self) -> None:
        if not self._started:
            return
        self.cron_timer.stop()
        self.ttl_timer.stop()
        for controller in (self.replicate_controller, self.job_controller):
            if controller is not None:
                controller.stop()
        if self.dispatcher is not None:
            self.dispatcher.stop()
        for handler in self._lifecycle_handlers():
            handler.stop()
        self._started = False
        logger.info("manager_stopped")

    def health(self) -> dict[str, Any]:
        return {
            "running": self._started,
            "handlers": [t.value for t in self.registry.list_handlers()],
            "dispatcher": self.dispatcher.stats.to_dict() if self.dispatcher else None,
            "timers": [self.ttl_timer.health(), self.cron_timer.health()],
        }

    # === Internals ===

    def _lifecycle_handlers(self) -> list[Lifecycle]:
        handlers = self.registry.freeze() if self.registry.frozen else {}
        return [h for h in handlers.values() if isinstance(h, Lifecycle)]

    def _requeue_job(self, job: Job, after: float | None) -> None:
        if self.job_controller is not None:
            self.job_controller.enqueue(job.metadata.key, after)


__all__ = ["Manager", "REQUIRED_JOB_TYPES"]
