"""Preflight checks run before any device is touched.

All validation functions raise specific exceptions from the exceptions module
rather than returning boolean values, making error handling more explicit.

Example:
    from backup_vm.storage.validation import validate_required_commands

    validate_required_commands(config.compressor)  # MissingCommandError if not
"""

from __future__ import annotations

import shutil

from backup_vm.domain import BackupMode

from .compression import required_executable
from .devices import is_block_device
from .exceptions import DeviceNotFoundError, MissingCommandError


# (command, apt package providing it)
BASE_COMMANDS = (
    ("rclone", "rclone"),
    ("kpartx", "kpartx"),
    ("pv", "pv"),
)

TAR_COMMANDS = (
    ("tar", "tar"),
    ("mount", "mount"),
)


def has_command(command: str) -> bool:
    return shutil.which(command) is not None


def validate_required_commands(compressor: str, mode: BackupMode | None = None) -> None:
    """Ensure every external tool the backup will pipe through is installed.

    Raises:
        MissingCommandError: For the first command not found on PATH
    """
    required = list(BASE_COMMANDS)
    if mode is BackupMode.TAR:
        required.extend(TAR_COMMANDS)
    required.append(required_executable(compressor))

    for command, package in required:
        if not has_command(command):
            raise MissingCommandError(command, package)


def validate_block_device(device_path: str) -> None:
    """
    Raises:
        DeviceNotFoundError: If device_path is not an existing block device
    """
    if not is_block_device(device_path):
        raise DeviceNotFoundError(device_path)
