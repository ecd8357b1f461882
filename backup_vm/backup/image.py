"""Block-level image backups of a whole VM disk or one of its partitions.

Whole disk:       pv <disk> | compress | rclone rcat <remote>
Single partition: kpartx -a, pv <disk>p<N> | compress | rclone rcat, kpartx -d
"""

from __future__ import annotations

from typing import Optional

from backup_vm.config.settings import BackupConfig
from backup_vm.domain import BackupMode, BackupUnit, OutputDescriptor, PipelineOutcome
from backup_vm.logging import get_logger
from backup_vm.storage import devices, naming, partitions, pipeline, validation
from backup_vm.storage.compression import compressor_command


log = get_logger(source="image", tags=["backup", "image"])

# Image artifacts are always named .img regardless of ARCH_TYPE
IMAGE_ARCH_TYPE = "img"


def _stream_device(
    config: BackupConfig,
    unit: BackupUnit,
    device_path: str,
    output: OutputDescriptor,
) -> PipelineOutcome:
    validation.validate_block_device(device_path)

    log.info(
        f">> Dumping disk '{device_path}' (vmid: {unit.vm_id}) compressed with "
        f"'{config.compressor}' to rclone dest '{output.remote_path}'"
    )
    outcome = pipeline.run_stream(
        unit,
        reader=pipeline.meter_command(device_path),
        compressor=compressor_command(config.compressor, config.compress_level),
        uploader=pipeline.upload_command(output.remote_path),
        output=output,
    )
    if outcome.succeeded:
        log.success(
            f"Finished dumping disk '{device_path}' (vmid: {unit.vm_id}) compressed with "
            f"'{config.compressor}' to rclone dest '{output.remote_path}'"
        )
    else:
        log.error(
            f"Non-zero return code returned by pv, the compressor, or rclone while "
            f"dumping '{device_path}' to '{output.remote_path}' - "
            f"return code: {outcome.exit_code}"
        )
    return outcome


def backup_image(
    config: BackupConfig,
    vm_id: str,
    timestamp: str,
    partition_id: Optional[int] = None,
    disk_index: Optional[int] = None,
    out_name: Optional[str] = None,
) -> PipelineOutcome:
    """Image a VM disk, or a single partition of it, straight to the remote.

    The partition table is only expanded when a partition is requested, and
    is collapsed again whatever the stream's outcome.

    Raises:
        DeviceNotFoundError: If the disk or partition node does not exist
        ExpansionError: If a partition was requested and kpartx failed
    """
    if disk_index is None:
        disk_index = config.default_disk
    unit = BackupUnit(BackupMode.IMAGE, vm_id, disk_index, partition_id)
    disk_path = devices.resolve_disk_path(
        vm_id, disk_index, config.vg_prefix, config.mapper_root
    )
    output = naming.describe_output(
        config.rclone_dst,
        vm_id,
        timestamp,
        IMAGE_ARCH_TYPE,
        config.compressor,
        suffix=unit.suffix,
        name_override=out_name,
    )

    if unit.is_whole_disk:
        return _stream_device(config, unit, disk_path, output)

    with partitions.expanded_partitions(disk_path) as parts:
        return _stream_device(config, unit, parts.device_for(partition_id), output)
