"""Job execution: state machine, finalizer guard, dispatch, TTL and worker pool.

ARCHITECTURE
────────────
::

    watch event (Job)
      │
      ▼
    JobReconciler.reconcile(namespace, name)
      ├── FinalizerGuard     ─ token on create, cleanup before removal
      ├── JobStateMachine    ─ the only writer of status.state
      └── JobDispatcher      ─ notify(job) → handler.handle / handler.cleanup
            ├── HandlerRegistry  ─ frozen job_type → handler mapping
            └── JobPool          ─ priority-ordered pending jobs
      │
      ▼
    TTLCollector (interval)   ─ deletes expired terminal jobs
    BoundedWorkerPool         ─ parallel handler work (scans)
"""

from regops.execution.dispatcher import JobDispatcher
from regops.execution.finalizer import FinalizerGuard
from regops.execution.reconciler import JobReconciler
from regops.execution.registry import HandlerRegistry, JobHandler, Lifecycle, Releasable
from regops.execution.results import (
    Outcome,
    Progressed,
    ReconcileResult,
    Terminal,
    WaitingOnDependency,
)
from regops.execution.state import InvalidTransitionError, JobStateMachine
from regops.execution.ttl import TTLCollector, is_expired
from regops.execution.worker_pool import BoundedWorkerPool, Task, TaskResult

__all__ = [
    "BoundedWorkerPool",
    "FinalizerGuard",
    "HandlerRegistry",
    "InvalidTransitionError",
    "JobDispatcher",
    "JobHandler",
    "JobReconciler",
    "JobStateMachine",
    "Lifecycle",
    "Outcome",
    "Progressed",
    "ReconcileResult",
    "Releasable",
    "TTLCollector",
    "Task",
    "TaskResult",
    "Terminal",
    "WaitingOnDependency",
    "is_expired",
]
