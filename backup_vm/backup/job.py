"""Run a backup job and aggregate its unit outcomes.

Verdict policy:
    - image, or tar with an explicit partition: the single unit's outcome
    - tar of all partitions: success if at least one partition succeeded;
      failed partitions are counted and reported, not fatal
"""

from __future__ import annotations

from contextlib import closing
from typing import Optional

from backup_vm.config.settings import BackupConfig
from backup_vm.domain import BackupMode, JobResult
from backup_vm.logging import operation_context

from . import image, tar


def _log_tally(log, result: JobResult, vm_id: str, disk_index: int) -> None:
    log.info(
        f"Finished backing up {result.total} partitions for VMID {vm_id} disk {disk_index}"
    )
    log.info(f"    #Num. Successfully backed up: {result.succeeded}")
    if result.failed:
        log.warning(f"         #Num. Failed to back up: {result.failed}")
    else:
        log.info(f"         #Num. Failed to back up: {result.failed}")
    log.info(f"                     #Num. Total: {result.total}")


def run_job(
    config: BackupConfig,
    mode: BackupMode,
    vm_id: str,
    timestamp: str,
    partition_id: Optional[int] = None,
    disk_index: Optional[int] = None,
    out_name: Optional[str] = None,
) -> JobResult:
    """Back up one VM disk and return the aggregated result.

    Raises:
        ConfigurationError: If the device to image does not exist
        ExpansionError: If the partition table cannot be expanded
    """
    if disk_index is None:
        disk_index = config.default_disk
    all_partitions = mode is BackupMode.TAR and partition_id is None
    result = JobResult(all_partitions=all_partitions)

    with operation_context(
        "backup", vm_id=vm_id, mode=mode.value, disk=disk_index, partition=partition_id
    ) as log:
        if mode is BackupMode.IMAGE:
            result.add(
                image.backup_image(
                    config, vm_id, timestamp, partition_id, disk_index, out_name
                )
            )
            return result

        if all_partitions and out_name:
            log.warning(
                f"Ignoring output name '{out_name}': each partition gets its own artifact"
            )

        outcomes = tar.backup_tar(
            config, vm_id, timestamp, partition_id, disk_index, out_name
        )
        with closing(outcomes):
            for outcome in outcomes:
                result.add(outcome)
                if not all_partitions:
                    continue
                if outcome.succeeded:
                    log.success(f"Backed up {outcome.unit.describe()}")
                else:
                    log.error(
                        f"Failed to back up {outcome.unit.describe()} "
                        f"- return code: {outcome.exit_code}"
                    )

        if all_partitions:
            _log_tally(log, result, vm_id, disk_index)

    return result
