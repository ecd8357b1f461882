"""
Pytest configuration and shared fixtures for backup-vm tests.

This module provides common fixtures and utilities used across all test modules.
"""

from pathlib import Path
from typing import List
from unittest.mock import Mock

import pytest
from loguru import logger

from backup_vm.config.settings import BackupConfig
from backup_vm.domain import BackupMode, BackupUnit


# ==============================================================================
# Configuration Fixtures
# ==============================================================================


@pytest.fixture
def backup_config(tmp_path) -> BackupConfig:
    """
    Fixture providing a configuration with predictable values.

    Args:
        tmp_path: pytest's built-in temporary directory fixture.

    Returns:
        BackupConfig with VG "pve", lbzip2 at level 7 and a temporary mount root.
    """
    return BackupConfig(
        vg_prefix="pve",
        rclone_dst="remote:bucket/vmbackups",
        compressor="lbzip2",
        compress_level=7,
        mapper_root="/dev/mapper",
        mount_root=tmp_path / "mnt",
    )


@pytest.fixture
def mapper_dir(tmp_path) -> Path:
    """
    Fixture providing an empty directory standing in for /dev/mapper.

    Args:
        tmp_path: pytest's built-in temporary directory fixture.
    """
    path = tmp_path / "mapper"
    path.mkdir()
    return path


@pytest.fixture
def image_unit() -> BackupUnit:
    """Whole-disk image unit for VM 1234, disk 0."""
    return BackupUnit(BackupMode.IMAGE, "1234", 0)


@pytest.fixture
def tar_unit() -> BackupUnit:
    """Tar unit for VM 1234, disk 0, partition 2."""
    return BackupUnit(BackupMode.TAR, "1234", 0, 2)


# ==============================================================================
# Subprocess Mock Fixtures
# ==============================================================================


@pytest.fixture
def mock_subprocess_run(mocker) -> Mock:
    """
    Fixture that patches subprocess.run to succeed.

    Returns:
        Mock for subprocess.run returning returncode 0 with empty output.
    """
    return mocker.patch(
        "subprocess.run", return_value=Mock(returncode=0, stdout="", stderr="")
    )


@pytest.fixture
def mock_subprocess_failure(mocker) -> Mock:
    """
    Fixture that patches subprocess.run to fail.

    Returns:
        Mock for subprocess.run returning returncode 1 and an error message.
    """
    return mocker.patch(
        "subprocess.run",
        return_value=Mock(returncode=1, stdout="", stderr="Command failed"),
    )


def make_process(returncode: int = 0) -> Mock:
    """A stand-in for subprocess.Popen that has already exited."""
    proc = Mock()
    proc.stdout = Mock()
    proc.wait.return_value = returncode
    proc.poll.return_value = returncode
    return proc


@pytest.fixture
def mock_popen(mocker):
    """
    Fixture that patches subprocess.Popen with processes exiting with given codes.

    Usage:
        popen = mock_popen(0, 0, 2)   # three stages, the last one fails
    """

    def _factory(*returncodes: int) -> Mock:
        processes = [make_process(code) for code in returncodes]
        patched = mocker.patch("subprocess.Popen", side_effect=processes)
        patched.processes = processes
        return patched

    return _factory


# ==============================================================================
# Logging Fixtures
# ==============================================================================


@pytest.fixture
def log_records():
    """
    Fixture capturing loguru records emitted during the test.

    Returns:
        List that receives every record dict (level, message, extra, ...).
    """
    records: List[dict] = []
    handler_id = logger.add(lambda message: records.append(message.record), level="TRACE")
    yield records
    logger.remove(handler_id)


def messages(records: List[dict], level: str = None) -> List[str]:
    """Messages from captured records, optionally filtered by level name."""
    return [
        record["message"]
        for record in records
        if level is None or record["level"].name == level
    ]
