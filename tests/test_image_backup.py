"""Tests for backup/image.py - whole-disk and single-partition images."""

from dataclasses import replace
from unittest.mock import Mock

import pytest

from backup_vm.backup import image
from backup_vm.domain import BackupMode, PipelineOutcome
from backup_vm.storage.exceptions import DeviceNotFoundError, ExpansionError


TIMESTAMP = "2023-05-01_1200"


@pytest.fixture
def config(backup_config, mapper_dir):
    return replace(backup_config, mapper_root=str(mapper_dir))


@pytest.fixture
def run_stream(mocker):
    """Patch the streaming pipeline, echoing back a successful outcome."""

    def _stream(unit, reader, compressor, uploader, archiver=None, cwd=None, output=None):
        return PipelineOutcome(exit_code=0, unit=unit, stage_codes=(0, 0, 0), output=output)

    return mocker.patch("backup_vm.storage.pipeline.run_stream", side_effect=_stream)


@pytest.fixture(autouse=True)
def block_devices(mocker):
    """Treat every path as an existing block device unless a test says otherwise."""
    return mocker.patch("backup_vm.storage.validation.is_block_device", return_value=True)


@pytest.fixture(autouse=True)
def cpu_count(mocker):
    return mocker.patch("os.cpu_count", return_value=4)


class TestWholeDisk:
    """Imaging a whole disk streams the LV directly, without kpartx."""

    def test_streams_disk_to_remote(self, config, mapper_dir, run_stream, mock_subprocess_run):
        outcome = image.backup_image(config, "1234", TIMESTAMP)

        assert outcome.succeeded
        assert outcome.unit.mode is BackupMode.IMAGE
        assert outcome.unit.is_whole_disk

        kwargs = run_stream.call_args.kwargs
        assert kwargs["reader"] == ["pv", f"{mapper_dir}/pve-vm--1234--disk--0"]
        assert kwargs["compressor"] == ["lbzip2", "-n", "4", "-cvz7", "-"]
        assert kwargs["uploader"] == [
            "rclone",
            "rcat",
            "remote:bucket/vmbackups/vm-1234-2023-05-01_1200.img.bz2",
        ]
        mock_subprocess_run.assert_not_called()

    def test_always_named_img(self, config, run_stream):
        """Test image artifacts ignore ARCH_TYPE."""
        outcome = image.backup_image(replace(config, arch_type="tar"), "1234", TIMESTAMP)

        assert outcome.output.name == "vm-1234-2023-05-01_1200.img.bz2"

    def test_uses_default_disk(self, config, mapper_dir, run_stream):
        image.backup_image(replace(config, default_disk=3), "1234", TIMESTAMP)

        assert run_stream.call_args.kwargs["reader"][1].endswith("vm--1234--disk--3")

    def test_missing_device(self, config, run_stream, block_devices):
        block_devices.return_value = False

        with pytest.raises(DeviceNotFoundError):
            image.backup_image(config, "1234", TIMESTAMP)

        run_stream.assert_not_called()

    def test_pipeline_failure_is_returned(self, config, mocker):
        mocker.patch(
            "backup_vm.storage.pipeline.run_stream",
            side_effect=lambda unit, **kwargs: PipelineOutcome(
                exit_code=141, unit=unit, stage_codes=(0, 0, 141)
            ),
        )

        outcome = image.backup_image(config, "1234", TIMESTAMP)

        assert outcome.exit_code == 141


class TestSinglePartition:
    """Imaging one partition expands the table around the stream."""

    def test_streams_partition_with_custom_name(
        self, config, mapper_dir, run_stream, mock_subprocess_run
    ):
        disk = f"{mapper_dir}/pve-vm--1234--disk--2"
        (mapper_dir / "pve-vm--1234--disk--2p5").touch()

        outcome = image.backup_image(
            config, "1234", TIMESTAMP, partition_id=5, disk_index=2, out_name="vm1234.img.bz2"
        )

        assert outcome.succeeded
        assert outcome.unit.partition_id == 5
        kwargs = run_stream.call_args.kwargs
        assert kwargs["reader"] == ["pv", f"{disk}p5"]
        assert kwargs["uploader"][2] == "remote:bucket/vmbackups/vm1234.img.bz2"

        kpartx = [c.args[0] for c in mock_subprocess_run.call_args_list]
        assert kpartx == [["kpartx", "-av", disk], ["kpartx", "-dv", disk]]

    def test_generated_name_has_partition_suffix(self, config, run_stream, mock_subprocess_run):
        outcome = image.backup_image(config, "1234", TIMESTAMP, partition_id=5)

        assert outcome.output.name == "vm-1234-p5-2023-05-01_1200.img.bz2"

    def test_collapses_when_stream_fails(self, config, mocker, mock_subprocess_run):
        mocker.patch(
            "backup_vm.storage.pipeline.run_stream",
            side_effect=lambda unit, **kwargs: PipelineOutcome(exit_code=2, unit=unit),
        )

        outcome = image.backup_image(config, "1234", TIMESTAMP, partition_id=1)

        assert outcome.exit_code == 2
        assert mock_subprocess_run.call_args_list[-1].args[0][1] == "-dv"

    def test_collapses_when_partition_missing(
        self, config, run_stream, block_devices, mock_subprocess_run
    ):
        block_devices.return_value = False

        with pytest.raises(DeviceNotFoundError):
            image.backup_image(config, "1234", TIMESTAMP, partition_id=9)

        assert mock_subprocess_run.call_args_list[-1].args[0][1] == "-dv"
        run_stream.assert_not_called()

    def test_expansion_failure(self, config, mocker, run_stream):
        run = mocker.patch(
            "subprocess.run",
            side_effect=[
                Mock(returncode=1, stdout="", stderr="no partition table"),
                Mock(returncode=0, stdout="", stderr=""),
            ],
        )

        with pytest.raises(ExpansionError) as excinfo:
            image.backup_image(config, "1234", TIMESTAMP, partition_id=1)

        assert excinfo.value.exit_code == 3
        assert run.call_count == 2
        run_stream.assert_not_called()
