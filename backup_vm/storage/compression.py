"""Compressor selection for backup streams.

COMPRESSOR is a free-form string (e.g. "lbzip2", "gzip", "lz4"). It is
resolved once into a Compressor and everything else (command line, file
extension, required executable) is looked up from COMPRESSOR_TABLE.

An unrecognised name is not an error: the stream is copied through dd
uncompressed and the artifact gets no compression extension.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional


class Compressor(Enum):
    LBZIP2 = "lbzip2"
    BZIP2 = "bzip2"
    GZIP = "gzip"
    LZ4 = "lz4"
    LZO = "lzo"
    NONE = "none"


@dataclass(frozen=True)
class CompressorSpec:
    executable: str
    extension: str
    build_args: Callable[[int, int], list[str]]  # (level, threads) -> argv[1:]
    package: Optional[str] = None


COMPRESSOR_TABLE: dict[Compressor, CompressorSpec] = {
    Compressor.LBZIP2: CompressorSpec(
        "lbzip2", ".bz2", lambda level, threads: ["-n", str(threads), f"-cvz{level}", "-"]
    ),
    Compressor.BZIP2: CompressorSpec(
        "bzip2", ".bz2", lambda level, threads: [f"-cvz{level}", "-"]
    ),
    Compressor.GZIP: CompressorSpec(
        "gzip", ".gz", lambda level, threads: [f"-cv{level}", "-"]
    ),
    Compressor.LZ4: CompressorSpec(
        "lz4", ".lz4", lambda level, threads: [f"-cvz{level}", "-"]
    ),
    Compressor.LZO: CompressorSpec(
        "lzop", ".lzo", lambda level, threads: [f"-cv{level}", "-"]
    ),
    # Raw byte copy, no compression
    Compressor.NONE: CompressorSpec(
        "dd", "", lambda level, threads: ["bs=4M", "status=none"], package="coreutils"
    ),
}


def resolve_compressor(name: str) -> Compressor:
    """Map a configured compressor name onto a Compressor.

    lbz* and bz* both produce bzip2 streams; gz* is gzip; lz4 and lzo must
    match exactly. Anything else falls back to an uncompressed copy.
    """
    name = (name or "").strip().lower()
    if name.startswith("lbz"):
        return Compressor.LBZIP2
    if name.startswith("bz"):
        return Compressor.BZIP2
    if name.startswith("gz"):
        return Compressor.GZIP
    if name == "lz4":
        return Compressor.LZ4
    if name == "lzo":
        return Compressor.LZO
    return Compressor.NONE


def compression_extension(name: str) -> str:
    """File extension the compressed artifact gets (".bz2", ".gz", ... or "")."""
    return COMPRESSOR_TABLE[resolve_compressor(name)].extension


def compressor_command(name: str, level: int, threads: Optional[int] = None) -> list[str]:
    """Command line that compresses stdin to stdout."""
    spec = COMPRESSOR_TABLE[resolve_compressor(name)]
    if threads is None:
        threads = os.cpu_count() or 1
    return [spec.executable, *spec.build_args(level, threads)]


def required_executable(name: str) -> tuple[str, str]:
    """(executable, apt package) needed for the configured compressor."""
    spec = COMPRESSOR_TABLE[resolve_compressor(name)]
    return spec.executable, spec.package or spec.executable
