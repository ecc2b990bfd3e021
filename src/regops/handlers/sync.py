"""External registry catalog sync (``SynchronizeExtReg`` jobs)."""

from __future__ import annotations

from regops.core.logging import get_logger
from regops.core.models import Job, ObjectRef
from regops.execution.results import Outcome, Terminal
from regops.handlers.clients import RegistryClientFactory

logger = get_logger(__name__)


def claim_target(job: Job) -> ObjectRef:
    """The claim's object reference, defaulted to the job's namespace."""
    ref = job.spec.claim.handle_object
    return ObjectRef(ref.name, ref.namespace or job.namespace)


class ExternalRegistrySyncHandler:
    """Mirrors an external registry's repository list.

    Re-running a sync is harmless, so the handler keeps no per-job state and
    its cleanup does nothing.
    """

    def __init__(self, clients: RegistryClientFactory) -> None:
        self._clients = clients

    def handle(self, job: Job) -> Outcome:
        registry = claim_target(job)
        client = self._clients.synchronizable(registry)
        count = client.synchronize()
        logger.info(
            "external_registry_synced",
            job=job.name,
            registry=f"{registry.namespace}/{registry.name}",
            repositories=count,
        )
        return Terminal.succeeded(f"synchronized {count} repositories")

    def cleanup(self, job: Job) -> None:
        logger.debug("external_registry_sync_cleanup", job=job.name)


__all__ = ["ExternalRegistrySyncHandler", "claim_target"]
