"""Expanding and collapsing a VM disk's partition table with kpartx.

`kpartx -a` creates one device-mapper node per partition
(<device>p1, <device>p2, ...); `kpartx -d` removes them again. A mapping
left behind keeps the LV open, so collapse must run on every exit path:
use `expanded_partitions()` rather than calling the two halves directly.
"""

from __future__ import annotations

import re
import subprocess
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from backup_vm.domain import PartitionSet
from backup_vm.logging import LoggerFactory

from .exceptions import CollapseError, ExpansionError


log = LoggerFactory.for_lvm()

_PARTITION_SUFFIX = re.compile(r"p(\d+)")


def _run_kpartx(flag: str, device_path: str) -> subprocess.CompletedProcess:
    command = ["kpartx", flag, device_path]
    log.debug(f"Running command: {' '.join(command)}")
    return subprocess.run(command, capture_output=True, text=True)


def list_partition_ids(device_path: str) -> list[int]:
    """Partition numbers currently mapped for device_path, ascending.

    Only entries named exactly <device>p<N> count.
    """
    device = Path(device_path)
    ids = []
    for entry in device.parent.glob(f"{device.name}p*"):
        match = _PARTITION_SUFFIX.fullmatch(entry.name[len(device.name):])
        if match:
            ids.append(int(match.group(1)))
    return sorted(ids)


def expand(device_path: str) -> PartitionSet:
    """Map the partitions of device_path and return them in ascending order.

    Raises:
        ExpansionError: If kpartx fails or cannot be run
    """
    log.info(f"Expanding partitions from disk (kpartx -av '{device_path}')")
    try:
        result = _run_kpartx("-av", device_path)
    except OSError as error:
        raise ExpansionError(device_path, str(error)) from error
    if result.stdout:
        log.debug(result.stdout.strip())
    if result.returncode != 0:
        raise ExpansionError(device_path, (result.stderr or result.stdout).strip())

    partitions = PartitionSet(device_path, tuple(list_partition_ids(device_path)))
    log.success(
        f"Successfully expanded partitions from disk: "
        f"{', '.join(str(pid) for pid in partitions.partition_ids) or 'none found'}"
    )
    return partitions


def collapse(device_path: str) -> None:
    """Remove the partition mappings of device_path.

    Safe to call on a device that is not expanded; kpartx simply has
    nothing to delete.

    Raises:
        CollapseError: If kpartx reports a failure
    """
    log.info(f"Un-expanding partitions from disk (kpartx -dv '{device_path}')")
    try:
        result = _run_kpartx("-dv", device_path)
    except OSError as error:
        raise CollapseError(device_path, str(error)) from error
    if result.stdout:
        log.debug(result.stdout.strip())
    if result.returncode != 0:
        raise CollapseError(device_path, (result.stderr or result.stdout).strip())


def collapse_quietly(device_path: str) -> bool:
    """collapse() that downgrades failure to a warning. Returns True on success."""
    try:
        collapse(device_path)
    except CollapseError as error:
        log.warning(f"{error} - mappings may need removing by hand (kpartx -d)")
        return False
    return True


@contextmanager
def expanded_partitions(device_path: str) -> Generator[PartitionSet, None, None]:
    """Expand device_path for the duration of the block, then collapse it.

    Collapse is attempted exactly once, whether the block succeeds, raises,
    or the expansion itself fails (kpartx may have mapped some partitions
    before erroring out).

    Example:
        with expanded_partitions("/dev/mapper/pve-vm--100--disk--0") as parts:
            for pid in parts:
                ...
    """
    partitions = None
    try:
        partitions = expand(device_path)
        yield partitions
    finally:
        if partitions is not None:
            partitions.mark_collapsed()
        collapse_quietly(device_path)
