import argparse
import sys
from dataclasses import dataclass
from typing import Optional

from backup_vm.backup.job import run_job
from backup_vm.config.settings import load_config
from backup_vm.domain import BackupMode
from backup_vm.logging import LoggerFactory, setup_logging
from backup_vm.storage.exceptions import BackupError
from backup_vm.storage.naming import generate_timestamp
from backup_vm.storage.validation import validate_required_commands

EXIT_USAGE = 1
EXIT_INTERRUPTED = 130

IMAGE_ALIASES = ("image", "dumpimage", "dump-image")
TAR_ALIASES = ("tar", "dumptar", "dump-tar")
TAR_PREFIXES = ("arch", "part")

EXAMPLES = """\
Backup Commands/Types:

    image|dumpimage|dump-image:
        Dumps the whole VM disk by default, optionally you can specify the partition ID
        if you just want to dump a single partition e.g. to image just partition 5:
            backup-vm image 1234 5

    tar|dumptar|dump-tar|archive|partition:
        Expands the partitions, then if no partition ID is specified, will mount and tar
        up ALL partitions individually and upload them with rclone. If you specify a
        partition ID, only that partition will be mounted and tarred.

Examples:

    Backup the whole disk (0) of VM 1234 as a BZ2 compressed image via rclone:
        backup-vm image 1234

    Backup just partition 5 of VM 1234's disk 2 as a BZ2 compressed image with the
    output name 'vm1234.img.bz2':
        backup-vm image 1234 5 2 vm1234.img.bz2

    Backup all partitions for VM 1234's disk (0) as individually compressed tar files:
        backup-vm tar 1234

    Backup all partitions for VM 1234's disk 3:
        backup-vm tar 1234 '' 3

    Backup just partition 2 for VM 1234's disk 1 with the output name 'pvx1234.tar.bz2':
        backup-vm tar 1234 2 1 pvx1234.tar.bz2

Settings (environment or .env): VG_PREFIX, FALLBACK_PREFIX, TIMESTAMP_FORMAT,
DEFAULT_DISK, RCLONE_DST, COMPRESSOR, COMPRESS_LEVEL, ARCH_TYPE, IGNORE_MISSING_CMD,
MAPPER_ROOT, MOUNT_ROOT
"""


@dataclass(frozen=True)
class BackupRequest:
    mode: BackupMode
    vm_id: str
    partition_id: Optional[int] = None
    disk_index: Optional[int] = None
    out_name: Optional[str] = None


def resolve_mode(name: str) -> Optional[BackupMode]:
    """Map a backup type (or one of its aliases) onto a BackupMode."""
    if name in IMAGE_ALIASES:
        return BackupMode.IMAGE
    if name in TAR_ALIASES or name.startswith(TAR_PREFIXES):
        return BackupMode.TAR
    return None


def _optional_int(value: Optional[str], label: str) -> Optional[int]:
    # An empty argument means "not given", e.g. `tar 1234 '' 3`
    if value is None or value.strip() == "":
        return None
    try:
        number = int(value)
    except ValueError:
        raise ValueError(f"{label} must be a number, got '{value}'") from None
    if number < 0:
        raise ValueError(f"{label} must not be negative, got {number}")
    return number


def parse_request(arguments: list[str]) -> BackupRequest:
    """Turn `(image|tar) vmid [partition_id] [disk_id] [out_name]` into a request.

    Raises:
        ValueError: If the arguments do not form a valid request
    """
    if len(arguments) < 2:
        raise ValueError("requires at least two arguments (backup-type, vmid)")
    if len(arguments) > 5:
        raise ValueError(f"too many arguments: {' '.join(arguments[5:])}")

    backup_type, vm_id, *rest = arguments
    mode = resolve_mode(backup_type)
    if mode is None:
        raise ValueError(
            f"Invalid backup type '{backup_type}'. Valid backup types: tar, dumptar, "
            f"dump-tar, archive, partition, image, dumpimage, dump-image"
        )
    vm_id = vm_id.strip()
    if not vm_id:
        raise ValueError("vmid must not be empty")
    if "/" in vm_id or vm_id in (".", ".."):
        raise ValueError(f"vmid must be a plain name without '/', got '{vm_id}'")

    rest += [None] * (3 - len(rest))
    partition_arg, disk_arg, out_name = rest
    return BackupRequest(
        mode=mode,
        vm_id=vm_id,
        partition_id=_optional_int(partition_arg, "partition_id"),
        disk_index=_optional_int(disk_arg, "disk_id"),
        out_name=out_name or None,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="backup-vm",
        usage="%(prog)s [-d] [--trace] (image|tar) vmid [partition_id] [disk_id=0] [out_name]",
        description=(
            "Backs up and compresses a VM's disk to a remote (or local) storage using rclone. "
            "Can either image the whole disk, image a single partition, tar all partitions, "
            "or tar a single partition."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=EXAMPLES,
    )
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debug output")
    parser.add_argument("--trace", action="store_true", help="Enable trace output (very verbose)")
    parser.add_argument(
        "arguments",
        nargs="*",
        metavar="ARG",
        help="backup type, vmid, then optional partition_id, disk_id and out_name",
    )
    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(debug=args.debug, trace=args.trace)
    log = LoggerFactory.for_system()

    try:
        request = parse_request(args.arguments)
    except ValueError as error:
        log.error(f"ERROR: {error}")
        parser.print_help(sys.stderr)
        return EXIT_USAGE

    try:
        config = load_config()
        if not config.ignore_missing_cmd:
            validate_required_commands(config.compressor, request.mode)
        timestamp = generate_timestamp(config.timestamp_format)
        log.debug(f"Using VG prefix '{config.vg_prefix}', timestamp {timestamp}")

        result = run_job(
            config,
            request.mode,
            request.vm_id,
            timestamp,
            partition_id=request.partition_id,
            disk_index=request.disk_index,
            out_name=request.out_name,
        )
    except BackupError as error:
        log.error(f"ERROR: {error}")
        return error.exit_code
    except KeyboardInterrupt:
        log.warning(
            "Interrupted - check for leftover mounts and kpartx mappings before the next run"
        )
        return EXIT_INTERRUPTED

    if result.ok:
        log.success(f"Backup of VM {request.vm_id} finished")
    else:
        log.error(f"Backup of VM {request.vm_id} failed")
    return result.exit_code


if __name__ == "__main__":
    sys.exit(main())
