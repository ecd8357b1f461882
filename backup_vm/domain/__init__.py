"""Domain models for VM disk backups."""

from __future__ import annotations

from .models import (
    BackupMode,
    BackupUnit,
    JobResult,
    OutputDescriptor,
    PartitionSet,
    PipelineOutcome,
)


__all__ = [
    "BackupMode",
    "BackupUnit",
    "JobResult",
    "OutputDescriptor",
    "PartitionSet",
    "PipelineOutcome",
]
