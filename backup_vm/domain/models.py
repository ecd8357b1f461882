"""Domain model for VM disk backups.

These objects are transient: they live for one job invocation and are never
persisted. The only durable artifacts are the uploaded objects themselves.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


# ==============================================================================
# Backup Units
# ==============================================================================


class BackupMode(Enum):
    """How a unit is turned into a byte stream."""

    IMAGE = "image"  # raw block copy of a disk or partition
    TAR = "tar"  # mount the partition and tar its contents


@dataclass(frozen=True)
class BackupUnit:
    """One whole-disk-or-partition target streamed in a single pipeline run.

    A Tar unit always targets a partition; an Image unit targets the whole
    disk when partition_id is None.
    """

    mode: BackupMode
    vm_id: str
    disk_index: int
    partition_id: Optional[int] = None

    def __post_init__(self) -> None:
        if self.mode is BackupMode.TAR and self.partition_id is None:
            raise ValueError("Tar backups operate on a single partition")
        if self.disk_index < 0:
            raise ValueError(f"Disk index must be non-negative, got {self.disk_index}")

    @property
    def is_whole_disk(self) -> bool:
        return self.partition_id is None

    @property
    def suffix(self) -> Optional[str]:
        """Output name suffix: p<N> for a partition, nothing for a whole disk."""
        if self.partition_id is None:
            return None
        return f"p{self.partition_id}"

    def describe(self) -> str:
        target = "whole disk" if self.is_whole_disk else f"partition {self.partition_id}"
        return f"VM {self.vm_id} disk {self.disk_index} {target} ({self.mode.value})"


@dataclass(frozen=True)
class OutputDescriptor:
    """Where a unit's compressed stream ends up."""

    name: str  # e.g. "vm-1234-p1-2023-05-01_1200.tar.bz2"
    remote_path: str  # e.g. "remote:bucket/vmbackups/vm-1234-p1-...tar.bz2"


# ==============================================================================
# Partition Set
# ==============================================================================


@dataclass
class PartitionSet:
    """Partitions made addressable by expanding a disk's partition table.

    Valid only between expansion and collapse; reading it afterwards is a
    programming error.
    """

    device_path: str
    partition_ids: tuple[int, ...] = ()
    collapsed: bool = False

    def __post_init__(self) -> None:
        self.partition_ids = tuple(sorted(self.partition_ids))

    def __iter__(self):
        self._check_active()
        return iter(self.partition_ids)

    def __len__(self) -> int:
        return len(self.partition_ids)

    def device_for(self, partition_id: int) -> str:
        """Device node of one partition, e.g. /dev/mapper/vg0-vm--1--disk--0p2."""
        self._check_active()
        return f"{self.device_path}p{partition_id}"

    def mark_collapsed(self) -> None:
        self.collapsed = True

    def _check_active(self) -> None:
        if self.collapsed:
            raise RuntimeError(
                f"Partition set for {self.device_path} was already collapsed"
            )


# ==============================================================================
# Outcomes
# ==============================================================================


@dataclass(frozen=True)
class PipelineOutcome:
    """Terminal result of one streaming pipeline execution.

    exit_code is what pipeline.reported_status() makes of the stage statuses
    (0 when every stage succeeded); stage_codes keeps all of them for
    diagnostics.
    """

    exit_code: int
    unit: BackupUnit
    stage_codes: tuple[int, ...] = ()
    output: Optional[OutputDescriptor] = None

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


@dataclass
class JobResult:
    """Aggregated outcome of every unit a job ran.

    For an all-partitions job the verdict is success as soon as one partition
    made it; failures are counted for the operator but do not fail the job.
    A single-unit job simply reflects its one outcome.
    """

    all_partitions: bool = False
    outcomes: list[PipelineOutcome] = field(default_factory=list)

    def add(self, outcome: PipelineOutcome) -> None:
        self.outcomes.append(outcome)

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.succeeded)

    @property
    def failed(self) -> int:
        return self.total - self.succeeded

    @property
    def ok(self) -> bool:
        return self.succeeded > 0

    @property
    def exit_code(self) -> int:
        if self.all_partitions or not self.outcomes:
            return 0 if self.ok else 1
        return self.outcomes[-1].exit_code
