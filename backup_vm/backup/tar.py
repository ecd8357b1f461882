"""File-level backups: mount each partition and tar its contents.

    kpartx -a <disk>
    for each partition (ascending):
        mount <disk>p<N> <MOUNT_ROOT>/<vmId>/part_<N>
        (cd mountpoint; tar cf - .) | pv | compress | rclone rcat <remote>
        umount
    kpartx -d <disk>

A partition that cannot be mounted fails on its own; the others are still
attempted. Partitions run strictly one after another.
"""

from __future__ import annotations

from typing import Iterator, Optional

from backup_vm.config.settings import BackupConfig
from backup_vm.domain import BackupMode, BackupUnit, OutputDescriptor, PipelineOutcome
from backup_vm.logging import get_logger
from backup_vm.storage import devices, mount, naming, partitions, pipeline
from backup_vm.storage.compression import compressor_command
from backup_vm.storage.exceptions import MountError


log = get_logger(source="tar", tags=["backup", "tar"])


def backup_partition(
    config: BackupConfig,
    unit: BackupUnit,
    device_path: str,
    output: OutputDescriptor,
) -> PipelineOutcome:
    """Mount one partition, stream a tar of it, unmount.

    A mount failure is reported as an outcome with MountError's exit code
    rather than raised, so a caller iterating partitions can carry on.
    """
    mountpoint = mount.mountpoint_for(config.mount_root, unit.vm_id, unit.partition_id)
    try:
        with mount.mounted_partition(device_path, mountpoint):
            log.info(
                f"Tarring '{mountpoint}' + compressing with {config.compressor} "
                f"+ outputting onto rclone at {output.remote_path}"
            )
            outcome = pipeline.run_stream(
                unit,
                reader=pipeline.meter_command(),
                compressor=compressor_command(config.compressor, config.compress_level),
                uploader=pipeline.upload_command(output.remote_path),
                archiver=pipeline.archive_command(),
                cwd=str(mountpoint),
                output=output,
            )
    except MountError as error:
        log.error(str(error))
        return PipelineOutcome(exit_code=MountError.exit_code, unit=unit, output=output)

    if outcome.succeeded:
        log.success(
            f"Finished tarring '{device_path}' (vmid: {unit.vm_id}) compressed with "
            f"'{config.compressor}' to rclone dest '{output.remote_path}'"
        )
    else:
        log.error(
            f"Non-zero return code returned by tar, the compressor, or rclone while "
            f"dumping '{device_path}' to '{output.remote_path}' - "
            f"return code: {outcome.exit_code}"
        )
    return outcome


def backup_tar(
    config: BackupConfig,
    vm_id: str,
    timestamp: str,
    partition_id: Optional[int] = None,
    disk_index: Optional[int] = None,
    out_name: Optional[str] = None,
) -> Iterator[PipelineOutcome]:
    """Yield one outcome per partition backed up.

    With partition_id only that partition runs; otherwise every partition
    found after expansion runs in ascending order. The partition table is
    collapsed once, after the last partition, when the generator finishes
    or is closed.

    out_name only applies when a single partition is requested.

    Raises:
        ExpansionError: If kpartx cannot expand the disk (nothing is yielded)
    """
    if disk_index is None:
        disk_index = config.default_disk
    disk_path = devices.resolve_disk_path(
        vm_id, disk_index, config.vg_prefix, config.mapper_root
    )

    with partitions.expanded_partitions(disk_path) as parts:
        if partition_id is not None:
            targets = [partition_id]
        else:
            targets = list(parts)
            out_name = None
            log.info(f"Backing up ALL partitions for VMID {vm_id}: {targets}")

        for pid in targets:
            unit = BackupUnit(BackupMode.TAR, vm_id, disk_index, pid)
            output = naming.describe_output(
                config.rclone_dst,
                vm_id,
                timestamp,
                config.arch_type,
                config.compressor,
                suffix=unit.suffix,
                name_override=out_name,
            )
            yield backup_partition(config, unit, parts.device_for(pid), output)
