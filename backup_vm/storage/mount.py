"""Mounting partitions for file-level (tar) backups.

Mount points live under MOUNT_ROOT as <vmId>/part_<partitionId>, so two
partitions never share one. Use `mounted_partition()` so the partition is
unmounted again on every exit path.
"""

from __future__ import annotations

import subprocess
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from backup_vm.logging import get_logger

from .exceptions import MountError, UnmountError


log = get_logger(source="mount", tags=["mount"])


def mountpoint_for(mount_root: Path, vm_id: str, partition_id: int) -> Path:
    return Path(mount_root) / str(vm_id) / f"part_{partition_id}"


def _remove_mountpoint(mountpoint: Path) -> None:
    try:
        mountpoint.rmdir()
    except OSError as error:
        log.debug(f"Leaving mount point {mountpoint} in place: {error}")


def mount_partition(device_path: str, mountpoint: Path) -> None:
    """Create mountpoint (with parents) and mount device_path onto it.

    The directory is removed again if the mount fails.

    Raises:
        MountError: If the directory cannot be created or mount fails
    """
    try:
        mountpoint.mkdir(parents=True, exist_ok=True)
    except OSError as error:
        raise MountError(
            device_path, str(mountpoint), f"cannot create directory: {error}"
        ) from error

    log.info(f"Mounting {device_path} onto {mountpoint} ...")
    try:
        result = subprocess.run(
            ["mount", "-v", device_path, str(mountpoint)],
            capture_output=True,
            text=True,
        )
    except OSError as error:
        _remove_mountpoint(mountpoint)
        raise MountError(device_path, str(mountpoint), str(error)) from error
    if result.returncode != 0:
        _remove_mountpoint(mountpoint)
        raise MountError(device_path, str(mountpoint), result.stderr.strip())
    log.info(f"Mounted {device_path} onto {mountpoint}")


def unmount_partition(mountpoint: Path) -> None:
    """Unmount mountpoint and remove the now-empty directory.

    Raises:
        UnmountError: If umount fails
    """
    try:
        result = subprocess.run(
            ["umount", "-v", str(mountpoint)], capture_output=True, text=True
        )
    except OSError as error:
        raise UnmountError(str(mountpoint), str(error)) from error
    if result.returncode != 0:
        raise UnmountError(str(mountpoint), result.stderr.strip())
    log.debug(f"Unmounted {mountpoint}")
    _remove_mountpoint(mountpoint)


@contextmanager
def mounted_partition(device_path: str, mountpoint: Path) -> Generator[Path, None, None]:
    """Mount for the duration of the block; unmount even if the block fails.

    A failure to mount raises MountError before the block runs, and nothing
    is unmounted. A failure to unmount is logged, not raised, so it cannot
    mask the block's own outcome.
    """
    mount_partition(device_path, mountpoint)
    try:
        yield mountpoint
    finally:
        try:
            unmount_partition(mountpoint)
        except UnmountError as error:
            log.warning(f"{error} - it is still mounted and needs unmounting by hand")
