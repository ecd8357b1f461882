"""Configuration for backup jobs.

Values are read once at startup and frozen into a BackupConfig that is passed
to every component. Precedence, lowest first:

    built-in defaults < process environment < .env file

Settings in the .env file override whatever the calling shell exports.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

from dotenv import dotenv_values

from backup_vm.logging import LoggerFactory
from backup_vm.storage.devices import DEFAULT_MAPPER_ROOT, KNOWN_PREFIXES, find_vg_prefix
from backup_vm.storage.exceptions import ConfigurationError


log = LoggerFactory.for_system()

ENV_FILE_PATH = Path(os.environ.get("BACKUP_VM_ENV_FILE", ".env"))

# Default values - use these constants instead of hardcoding values elsewhere
DEFAULT_SETTINGS: dict[str, str] = {
    "FALLBACK_PREFIX": "vg0",
    "TIMESTAMP_FORMAT": "%Y-%m-%d_%H%M",
    "DEFAULT_DISK": "0",
    "RCLONE_DST": "pvxpublic:pvxpublic-eu/vmbackups",
    "COMPRESSOR": "lbzip2",
    "COMPRESS_LEVEL": "7",
    "ARCH_TYPE": "tar",
    "IGNORE_MISSING_CMD": "0",
    "MAPPER_ROOT": DEFAULT_MAPPER_ROOT,
    "MOUNT_ROOT": "/mnt/backupvm",
}

SETTING_KEYS = ("VG_PREFIX", *DEFAULT_SETTINGS)

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class BackupConfig:
    vg_prefix: str
    timestamp_format: str = "%Y-%m-%d_%H%M"
    default_disk: int = 0
    rclone_dst: str = "pvxpublic:pvxpublic-eu/vmbackups"
    compressor: str = "lbzip2"
    compress_level: int = 7
    arch_type: str = "tar"
    ignore_missing_cmd: bool = False
    mapper_root: str = DEFAULT_MAPPER_ROOT
    mount_root: Path = Path("/mnt/backupvm")


def _parse_int(key: str, value: str, minimum: int = 0) -> int:
    try:
        number = int(str(value).strip())
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer, got {value!r}") from None
    if number < minimum:
        raise ConfigurationError(f"{key} must be >= {minimum}, got {number}")
    return number


def _parse_bool(value: Any) -> bool:
    return str(value).strip().lower() in _TRUTHY


def read_env_file(path: Optional[Path] = None) -> dict[str, str]:
    """Recognised settings from a .env file; missing file means no overrides."""
    path = path or ENV_FILE_PATH
    if not path.is_file():
        return {}
    values = dotenv_values(path)
    log.debug(f"Loaded settings from {path}")
    return {
        key: value
        for key, value in values.items()
        if key in SETTING_KEYS and value is not None
    }


def load_config(
    environ: Optional[Mapping[str, str]] = None,
    env_file: Optional[Path] = None,
) -> BackupConfig:
    """Build the frozen configuration for this invocation.

    Args:
        environ: Environment to read (defaults to os.environ)
        env_file: .env path (defaults to $BACKUP_VM_ENV_FILE or ./.env)

    Raises:
        ConfigurationError: If a numeric setting is not a valid number
    """
    environ = os.environ if environ is None else environ

    values: dict[str, str] = dict(DEFAULT_SETTINGS)
    values.update({key: environ[key] for key in SETTING_KEYS if key in environ})
    values.update(read_env_file(env_file))

    mapper_root = values["MAPPER_ROOT"]
    vg_prefix = values.get("VG_PREFIX")
    if not vg_prefix:
        vg_prefix = find_vg_prefix(KNOWN_PREFIXES, mapper_root)
        if vg_prefix is None:
            vg_prefix = values["FALLBACK_PREFIX"]
            log.debug(f"No VG prefix detected, falling back to '{vg_prefix}'")

    return BackupConfig(
        vg_prefix=vg_prefix,
        timestamp_format=values["TIMESTAMP_FORMAT"],
        default_disk=_parse_int("DEFAULT_DISK", values["DEFAULT_DISK"]),
        rclone_dst=values["RCLONE_DST"],
        compressor=values["COMPRESSOR"],
        compress_level=_parse_int("COMPRESS_LEVEL", values["COMPRESS_LEVEL"]),
        arch_type=values["ARCH_TYPE"],
        ignore_missing_cmd=_parse_bool(values["IGNORE_MISSING_CMD"]),
        mapper_root=mapper_root,
        mount_root=Path(values["MOUNT_ROOT"]),
    )
