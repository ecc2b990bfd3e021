"""
regops-core - asynchronous job subsystem for a container-registry operator.

Packages:
    core        errors, logging, settings, records, condition ledger, store
    execution   job state machine, finalizer guard, TTL collector,
                dispatch core, bounded worker pool
    scheduling  cron catch-up scheduler, interval timers
    pipeline    condition-gated stages and the ImageReplicate pipeline
    handlers    per-job-type handlers against collaborator protocols
"""

__version__ = "0.1.0"
