"""Condition-gated pipelines and the ImageReplicate pipeline."""

from regops.pipeline.phase import derive_phase
from regops.pipeline.replicate import (
    ConditionTypes,
    ImageReplicatePipeline,
    ImageReplicateReconciler,
    expected_condition_types,
)
from regops.pipeline.stage import JobStage, Stage

__all__ = [
    "ConditionTypes",
    "ImageReplicatePipeline",
    "ImageReplicateReconciler",
    "JobStage",
    "Stage",
    "derive_phase",
    "expected_condition_types",
]
