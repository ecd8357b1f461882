"""Exceptions raised while backing up a VM disk.

Every exception knows the process exit code it maps to, so the CLI can turn
an uncaught error into the documented status without a lookup table.

Exception Hierarchy:
    BackupError (base, exit 1)
        ├── ConfigurationError (exit 2)
        │   ├── MissingCommandError
        │   └── DeviceNotFoundError
        ├── ExpansionError (exit 3)
        ├── CollapseError (never escalated)
        ├── MountError (exit 4)
        └── UnmountError (never escalated)

Usage:
    from backup_vm.storage.exceptions import ExpansionError

    if result.returncode != 0:
        raise ExpansionError(device_path, result.stderr.strip())
"""

from __future__ import annotations


class BackupError(Exception):
    """Base exception for all backup operations."""

    exit_code = 1


class ConfigurationError(BackupError):
    """Invalid configuration or an environment that cannot run a backup."""

    exit_code = 2


class MissingCommandError(ConfigurationError):
    """A required external command is not installed."""

    def __init__(self, command: str, package: str | None = None):
        self.command = command
        self.package = package or command
        super().__init__(
            f"{command} is not installed. "
            f"Please install it using 'apt install {self.package}'"
        )


class DeviceNotFoundError(ConfigurationError):
    """The resolved path is not an existing block device."""

    def __init__(self, device_path: str):
        self.device_path = device_path
        super().__init__(f"Block device not found: {device_path}")


class ExpansionError(BackupError):
    """kpartx could not expand the partition table of a device."""

    exit_code = 3

    def __init__(self, device_path: str, reason: str = ""):
        self.device_path = device_path
        self.reason = reason
        msg = f"Failed to expand partitions from {device_path}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class CollapseError(BackupError):
    """kpartx could not remove the partition mappings of a device."""

    def __init__(self, device_path: str, reason: str = ""):
        self.device_path = device_path
        self.reason = reason
        msg = f"Failed to un-expand partitions from {device_path}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class MountError(BackupError):
    """Creating the mount point or mounting a partition failed."""

    exit_code = 4

    def __init__(self, device_path: str, mountpoint: str, reason: str = ""):
        self.device_path = device_path
        self.mountpoint = mountpoint
        self.reason = reason
        msg = f"Failed to mount {device_path} onto {mountpoint}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class UnmountError(BackupError):
    """umount reported an error; the partition may still be mounted."""

    def __init__(self, mountpoint: str, reason: str = ""):
        self.mountpoint = mountpoint
        self.reason = reason
        msg = f"Failed to unmount {mountpoint}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)

