"""Streaming pipelines: read -> (archive) -> compress -> upload.

Each stage is its own process, connected to the next by an OS pipe, so a
backup never needs local disk space for the compressed artifact. The
orchestrator blocks until the whole chain has exited.

Every stage's status is collected, so a reader that dies halfway through
fails the stream even if rclone uploaded what it was given. See
reported_status() for which status the pipeline as a whole reports.
"""

from __future__ import annotations

import signal
import subprocess
from dataclasses import dataclass
from typing import Optional, Sequence

from backup_vm.domain import BackupUnit, OutputDescriptor, PipelineOutcome
from backup_vm.logging import LoggerFactory


log = LoggerFactory.for_pipeline()

# Status reported for a stage whose executable could not be started
LAUNCH_FAILED = 127

# Status of a writer killed by SIGPIPE after its reader exited
BROKEN_PIPE = 128 + signal.SIGPIPE


@dataclass(frozen=True)
class Stage:
    name: str
    argv: tuple[str, ...]

    @classmethod
    def of(cls, name: str, argv: Sequence[str]) -> Stage:
        return cls(name, tuple(argv))


def meter_command(source: Optional[str] = None) -> list[str]:
    """pv reading either a device/file or stdin, drawing progress on stderr."""
    return ["pv", source] if source else ["pv"]


def archive_command() -> list[str]:
    """tar of the current working directory to stdout."""
    return ["tar", "cf", "-", "."]


def upload_command(remote_path: str) -> list[str]:
    """rclone reading stdin and writing it to a single remote object."""
    return ["rclone", "rcat", remote_path]


def build_stages(
    reader: Sequence[str],
    compressor: Sequence[str],
    uploader: Sequence[str],
    archiver: Optional[Sequence[str]] = None,
) -> list[Stage]:
    """Order the stages of one backup stream.

    With an archiver the reader is only a meter on the archive stream
    (tar | pv | compress | upload); without one it reads the device
    itself (pv <dev> | compress | upload).
    """
    stages = []
    if archiver:
        stages.append(Stage.of("archive", archiver))
    stages.append(Stage.of("read", reader))
    stages.append(Stage.of("compress", compressor))
    stages.append(Stage.of("upload", uploader))
    return stages


def _normalize_status(returncode: int) -> int:
    # Killed by a signal: report it the way a shell would (128 + signal)
    if returncode < 0:
        return 128 - returncode
    return returncode


def run_pipeline(stages: Sequence[Stage], cwd: Optional[str] = None) -> tuple[int, ...]:
    """Run stages connected by pipes and return each stage's exit status.

    If a stage cannot be started, it is reported as LAUNCH_FAILED, the stages
    already running are terminated and the remaining ones are never started.
    """
    if not stages:
        raise ValueError("A pipeline needs at least one stage")

    processes: list[subprocess.Popen] = []
    upstream = None
    launch_failed = False

    try:
        for index, stage in enumerate(stages):
            last = index == len(stages) - 1
            log.debug(f"Starting {stage.name} stage: {' '.join(stage.argv)}")
            try:
                proc = subprocess.Popen(
                    list(stage.argv),
                    stdin=upstream if upstream is not None else subprocess.DEVNULL,
                    stdout=None if last else subprocess.PIPE,
                    cwd=cwd,
                )
            except OSError as error:
                log.error(f"Could not start {stage.name} stage ({stage.argv[0]}): {error}")
                launch_failed = True
                break
            finally:
                # The next stage owns the read end now; closing ours lets
                # the writer see SIGPIPE if the reader goes away.
                if upstream is not None:
                    upstream.close()
                    upstream = None
            upstream = proc.stdout
            processes.append(proc)

        if launch_failed:
            for proc in processes:
                proc.terminate()

        codes = [_normalize_status(proc.wait()) for proc in processes]
        if launch_failed:
            codes.append(LAUNCH_FAILED)
        return tuple(codes)

    finally:
        for proc in processes:
            if proc.poll() is None:
                proc.terminate()
                try:
                    proc.wait(timeout=5)
                except subprocess.TimeoutExpired:
                    proc.kill()


def reported_status(stage_codes: Sequence[int]) -> int:
    """Exit status of the pipeline as a whole, 0 if every stage succeeded.

    - A stage that could not be launched: LAUNCH_FAILED. The stages the
      runner terminated because of it do not count as failures.
    - Otherwise the first non-zero status in chain order, skipping
      BROKEN_PIPE while some other stage has a real failure. A writer dies
      of SIGPIPE whenever the stage it feeds exits early.
    """
    if LAUNCH_FAILED in stage_codes:
        return LAUNCH_FAILED
    failures = [code for code in stage_codes if code != 0]
    decisive = [code for code in failures if code != BROKEN_PIPE]
    if decisive:
        return decisive[0]
    return failures[0] if failures else 0


def run_stream(
    unit: BackupUnit,
    reader: Sequence[str],
    compressor: Sequence[str],
    uploader: Sequence[str],
    archiver: Optional[Sequence[str]] = None,
    cwd: Optional[str] = None,
    output: Optional[OutputDescriptor] = None,
) -> PipelineOutcome:
    """Stream one backup unit and report how it went."""
    stages = build_stages(reader, compressor, uploader, archiver=archiver)
    codes = run_pipeline(stages, cwd=cwd)
    exit_code = reported_status(codes)

    for stage, code in zip(stages, codes):
        if code != 0:
            log.debug(f"{stage.name} stage ({stage.argv[0]}) exited with {code}")

    return PipelineOutcome(
        exit_code=exit_code, unit=unit, stage_codes=codes, output=output
    )
