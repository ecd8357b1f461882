"""Mapping VM disks to their LVM device-mapper nodes.

LVM exposes a logical volume as /dev/mapper/<vg>-<lv>, doubling every hyphen
inside the VG and LV names so that the single hyphen between them stays
unambiguous. Proxmox names VM disks vm-<vmid>-disk-<n>, which therefore
appears as <vg>-vm--<vmid>--disk--<n>.
"""

from __future__ import annotations

import os
import stat
from pathlib import Path
from typing import Iterable, Optional

from backup_vm.logging import LoggerFactory


log = LoggerFactory.for_lvm()

DEFAULT_MAPPER_ROOT = "/dev/mapper"

# VG names commonly used for VM storage on Proxmox hosts, tried in order
KNOWN_PREFIXES = (
    "pve",
    "pve-vm",
    "vms",
    "pvevms",
    "pvevg",
    "pvevg0",
    "proxmoxvg",
    "proxmox",
    "vg0",
)


def lvm_escape(name: str) -> str:
    """Escape a VG or LV name the way device-mapper does (hyphens doubled)."""
    return name.replace("-", "--")


def resolve_disk_path(
    vm_id: str,
    disk_index: int,
    vg_prefix: str,
    mapper_root: str = DEFAULT_MAPPER_ROOT,
) -> str:
    """Return the device-mapper path of a VM disk.

    Pure string construction; whether the device exists is only discovered
    when something first opens it.

    >>> resolve_disk_path("1234", 0, "pve")
    '/dev/mapper/pve-vm--1234--disk--0'
    """
    lv_name = lvm_escape(f"vm-{vm_id}-disk-{disk_index}")
    return f"{mapper_root.rstrip('/')}/{lvm_escape(vg_prefix)}-{lv_name}"


def is_block_device(path: str) -> bool:
    """True if path (following symlinks) is an existing block device."""
    try:
        return stat.S_ISBLK(os.stat(path).st_mode)
    except OSError:
        return False


def find_vg_prefix(
    candidates: Iterable[str] = KNOWN_PREFIXES,
    mapper_root: str = DEFAULT_MAPPER_ROOT,
) -> Optional[str]:
    """Guess the VG holding VM disks by scanning device-mapper entries.

    Returns the first candidate whose VM-disk naming pattern appears in
    mapper_root, or None if nothing matches.
    """
    root = Path(mapper_root)
    try:
        entries = sorted(entry.name for entry in root.iterdir())
    except OSError as error:
        log.debug(f"Cannot scan {mapper_root} for VG prefix: {error}")
        return None

    candidates = list(candidates)
    for entry in entries:
        for prefix in candidates:
            if f"{lvm_escape(prefix)}-vm--" in entry:
                log.debug(f"Detected VG prefix '{prefix}' from {entry}")
                return prefix
    return None
