"""Artifact names and remote destinations.

Name format: vm-<vmId>[-<suffix>]-<timestamp>.<archiveType><compressionExtension>
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from backup_vm.domain import OutputDescriptor

from .compression import compression_extension


def generate_timestamp(fmt: str, now: Optional[datetime] = None) -> str:
    return (now or datetime.now()).strftime(fmt)


def build_name(
    vm_id: str,
    timestamp: str,
    arch_type: str,
    compressor: str,
    suffix: Optional[str] = None,
) -> str:
    """
    >>> build_name("1234", "2023-05-01_1200", "img", "lbzip2")
    'vm-1234-2023-05-01_1200.img.bz2'
    >>> build_name("1234", "2023-05-01_1200", "tar", "none", suffix="p2")
    'vm-1234-p2-2023-05-01_1200.tar'
    """
    name = f"vm-{vm_id}"
    if suffix:
        name += f"-{suffix}"
    return f"{name}-{timestamp}.{arch_type}{compression_extension(compressor)}"


def build_remote_path(remote_root: str, name: str) -> str:
    return f"{remote_root.rstrip('/')}/{name}"


def describe_output(
    remote_root: str,
    vm_id: str,
    timestamp: str,
    arch_type: str,
    compressor: str,
    suffix: Optional[str] = None,
    name_override: Optional[str] = None,
) -> OutputDescriptor:
    """Name and remote path for one unit; an explicit name replaces the generated one."""
    name = name_override or build_name(vm_id, timestamp, arch_type, compressor, suffix)
    return OutputDescriptor(name=name, remote_path=build_remote_path(remote_root, name))
