"""Vulnerability scanning of registry images (``ImageScan`` jobs).

Scanning many images is slow, so the handler never scans on the
notification path. It expands the job's patterns against the registry
catalog, packages one unit of work per image into a worker-pool
:class:`~regops.execution.worker_pool.Task`, and returns
``Progressed("scan in progress")``. The pool's continuations finish the
job through the state machine::

    handle(job)
      ├── task already in flight   → Progressed
      ├── no image matches         → Terminal.succeeded
      └── submit Task(scan image 1, scan image 2, ...)
                 ├── on_success → summarize → Completed, or Failed if fatal
                 └── on_fail    → retryable: message only (next pass resubmits)
                                  permanent: Failed

Patterns come from the job annotation ``regops.io/scan-patterns``
(comma-separated, ``*`` and ``?`` wildcards over ``repo:tag``).
"""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass, field
from typing import Any

from regops.core.errors import NotFoundError, is_retryable
from regops.core.logging import get_logger
from regops.core.models import Job, ObjectRef
from regops.core.store.protocol import ObjectStore
from regops.execution.results import Outcome, Progressed, Terminal
from regops.execution.state import JobStateMachine
from regops.execution.worker_pool import BoundedWorkerPool, Task
from regops.handlers.clients import VulnerabilityReport, VulnerabilityScanner
from regops.handlers.sync import claim_target

logger = get_logger(__name__)

SCAN_PATTERNS_ANNOTATION = "regops.io/scan-patterns"
SEVERITIES = ("Unknown", "Negligible", "Low", "Medium", "High", "Critical", "Defcon1")
BAD_SEVERITIES = ("High", "Critical", "Defcon1")
MAX_BAD_VULNERABILITIES = 10

_IMAGE_CHAR = r"[\w:./_-]"


def image_matches(pattern: str, image: str) -> bool:
    """Wildcard match over ``repo:tag``; a trailing ``*`` leaves the end open."""
    regex = "^" + "".join(
        f"{_IMAGE_CHAR}*" if ch == "*" else _IMAGE_CHAR if ch == "?" else re.escape(ch)
        for ch in pattern
    )
    if not pattern.endswith("*"):
        regex += "$"
    return re.match(regex, image) is not None


def scan_patterns(job: Job) -> list[str]:
    raw = job.metadata.annotations.get(SCAN_PATTERNS_ANNOTATION, "*")
    return [p.strip() for p in raw.split(",") if p.strip()] or ["*"]


@dataclass
class ScanSummary:
    images: int = 0
    counts: dict[str, int] = field(default_factory=lambda: dict.fromkeys(SEVERITIES, 0))
    fatal: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"images": self.images, "counts": dict(self.counts), "fatal": list(self.fatal)}


def summarize_reports(reports: list[VulnerabilityReport], fixable_threshold: int = 0) -> ScanSummary:
    summary = ScanSummary(images=len(reports))
    for report in reports:
        for severity, findings in report.by_severity.items():
            if severity == "Fixable":
                continue
            summary.counts[severity] = summary.counts.get(severity, 0) + len(findings)

        fixable = len(report.by_severity.get("Fixable", []))
        if fixable > fixable_threshold:
            summary.fatal.append(f"{report.image}: {fixable} fixable vulnerabilities found")
        bad = sum(len(report.by_severity.get(s, [])) for s in BAD_SEVERITIES)
        if bad > MAX_BAD_VULNERABILITIES:
            summary.fatal.append(f"{report.image}: {bad} bad vulnerabilities found")
    return summary


class ImageScanHandler:
    """Owns a bounded worker pool; implements ``start`` / ``stop``."""

    def __init__(
        self,
        store: ObjectStore,
        state_machine: JobStateMachine,
        scanner: VulnerabilityScanner,
        *,
        workers: int = 4,
        queue_size: int = 16,
        fixable_threshold: int = 0,
    ) -> None:
        self._store = store
        self._states = state_machine
        self._scanner = scanner
        self._workers = workers
        self._fixable_threshold = fixable_threshold
        self.pool = BoundedWorkerPool(queue_size=queue_size, name="scan")
        self._lock = threading.Lock()
        self._in_flight: set[str] = set()
        self._results: dict[str, ScanSummary] = {}

    # === Lifecycle ===

    def start(self) -> None:
        self.pool.start(self._workers)

    def stop(self) -> None:
        self.pool.stop()

    # === Handler ===

    def handle(self, job: Job) -> Outcome:
        uid = job.metadata.uid
        with self._lock:
            if uid in self._in_flight:
                return Progressed("scan in progress")

        registry = claim_target(job)
        images = self.expand(registry, scan_patterns(job))
        if not images:
            return Terminal.succeeded("no images matched")

        reports: list[VulnerabilityReport] = []
        task = Task(
            name=f"scan-{job.namespace}-{job.name}",
            jobs=[self._unit(registry, image, reports) for image in images],
        )
        with self._lock:
            self._in_flight.add(uid)
        try:
            self.pool.submit(
                task,
                on_success=lambda _task: self._finish(job, reports, None),
                on_fail=lambda error: self._finish(job, reports, error),
            )
        except Exception:
            with self._lock:
                self._in_flight.discard(uid)
            raise
        logger.info("scan_submitted", job=job.name, registry=registry.name, images=len(images))
        return Progressed("scan in progress")

    def cleanup(self, job: Job) -> None:
        # a queued task cannot be cancelled; its continuation finds the job gone
        with self._lock:
            self._in_flight.discard(job.metadata.uid)
            self._results.pop(job.metadata.uid, None)

    def expand(self, registry: ObjectRef, patterns: list[str]) -> list[str]:
        images = []
        for repository in self._scanner.catalog(registry):
            for tag in self._scanner.tags(registry, repository):
                image = f"{repository}:{tag}"
                if any(image_matches(p, image) for p in patterns):
                    images.append(image)
        return images

    def result_for(self, job: Job) -> ScanSummary | None:
        with self._lock:
            return self._results.get(job.metadata.uid)

    # === Continuations ===

    def _unit(self, registry: ObjectRef, image: str, reports: list[VulnerabilityReport]):
        def scan() -> VulnerabilityReport:
            report = self._scanner.scan(registry, image)
            reports.append(report)
            return report

        return scan

    def _finish(self, job: Job, reports: list[VulnerabilityReport], error: BaseException | None) -> None:
        uid = job.metadata.uid
        with self._lock:
            self._in_flight.discard(uid)
        try:
            fresh = self._store.get(Job, job.namespace, job.name)
        except NotFoundError:
            return
        if fresh.metadata.is_deleting or fresh.is_terminal:
            return

        if error is not None:
            if is_retryable(error):
                logger.warning("scan_transient_error", job=job.name, error=str(error))
                self._states.set_message(fresh, f"scan interrupted: {error}")
            else:
                logger.error("scan_failed", job=job.name, error=str(error))
                self._states.mark_completed(fresh, False, f"scan failed: {error}")
            return

        summary = summarize_reports(reports, self._fixable_threshold)
        with self._lock:
            self._results[uid] = summary
        if summary.fatal:
            self._states.mark_completed(fresh, False, "; ".join(summary.fatal))
        else:
            self._states.mark_completed(fresh, True, f"scanned {summary.images} images")
        logger.info("scan_finished", job=job.name, **summary.to_dict())


__all__ = [
    "ImageScanHandler",
    "SCAN_PATTERNS_ANNOTATION",
    "ScanSummary",
    "image_matches",
    "scan_patterns",
    "summarize_reports",
]
