"""Compressed image handling.

Images are often distributed as ``.wic.xz``, ``.wic.bz2`` or ``.wic.gz``.
image_action() unpacks such an image next to the original, runs an action
on the raw image and optionally packs the result back onto the original
path. Compression is detected from magic bytes, not file names.
"""
from __future__ import annotations

import os
import shutil
import subprocess
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, TypeVar, Union

from wic_patch.config.settings import DEFAULT_TOOLS, PatchSettings
from wic_patch.logging import get_logger

from .exceptions import CompressionError

log = get_logger(source="compression")

T = TypeVar("T")
PathLike = Union[str, Path]


class Compression(Enum):
    XZ = "xz"
    BZIP2 = "bzip2"
    GZIP = "gzip"

    @property
    def magic(self) -> bytes:
        return _MAGIC[self]

    @property
    def temp_extension(self) -> str:
        return f"un{self.value}.tmp"


_MAGIC = {
    Compression.XZ: b"\xfd7zXZ\x00",
    Compression.BZIP2: b"BZh",
    Compression.GZIP: b"\x1f\x8b",
}


# Parallel drop-in replacements, used unless the binary is overridden.
_PARALLEL_TOOLS = {
    Compression.GZIP: "pigz",
    Compression.BZIP2: "pbzip2",
}


def detect_compression(path: PathLike) -> Optional[Compression]:
    """Return the compression of a file, or None for uncompressed data."""
    with open(path, "rb") as handle:
        header = handle.read(8)
    for compression in Compression:
        if header.startswith(compression.magic):
            return compression
    return None


def resolve_tool(compression: Compression, settings: PatchSettings) -> str:
    configured = settings.tool(compression.value)
    parallel = _PARALLEL_TOOLS.get(compression)
    if parallel and configured == DEFAULT_TOOLS[compression.value]:
        return shutil.which(parallel) or configured
    return configured


def build_decompress_command(
    compression: Compression, settings: PatchSettings
) -> list[str]:
    return [resolve_tool(compression, settings), "-d", "-c"]


def build_compress_command(compression: Compression, settings: PatchSettings) -> list[str]:
    tool = resolve_tool(compression, settings)
    if compression is Compression.XZ:
        return [tool, f"-{settings.xz_compression_level}", "-T0", "-c"]
    return [tool, "-9", "-c"]


def _stream(
    command: list[str],
    source: Path,
    destination: Path,
    timeout: Optional[float],
) -> None:
    log.debug(f"Running command: {' '.join(command)} < {source} > {destination}")
    try:
        with open(source, "rb") as src, open(destination, "wb") as dst:
            result = subprocess.run(
                command,
                stdin=src,
                stdout=dst,
                stderr=subprocess.PIPE,
                timeout=timeout,
            )
    except FileNotFoundError as error:
        raise CompressionError(f"{command[0]} not found", source) from error
    except subprocess.TimeoutExpired as error:
        raise CompressionError(
            f"{command[0]} timed out after {timeout} seconds", source
        ) from error
    if result.returncode != 0:
        stderr = (result.stderr or b"").decode("utf-8", errors="replace").strip()
        raise CompressionError(
            f"Command failed ({' '.join(command)}): {stderr or 'Command failed'}",
            source,
        )


def decompress(
    image: PathLike,
    destination: PathLike,
    compression: Compression,
    settings: PatchSettings,
) -> Path:
    destination = Path(destination)
    _stream(
        build_decompress_command(compression, settings),
        Path(image),
        destination,
        settings.tool_timeout_seconds,
    )
    log.debug(f"Decompressed {image} to {destination}")
    return destination


def compress(
    source: PathLike,
    destination: PathLike,
    compression: Compression,
    settings: PatchSettings,
) -> Path:
    """Compress ``source`` onto ``destination``, replacing it only on success."""
    destination = Path(destination)
    partial = destination.with_name(f"{destination.name}.partial")
    try:
        _stream(
            build_compress_command(compression, settings),
            Path(source),
            partial,
            settings.tool_timeout_seconds,
        )
        os.replace(partial, destination)
    finally:
        if partial.exists():
            partial.unlink()
    log.debug(f"Compressed {source} to {destination}")
    return destination


def image_action(
    image: PathLike,
    action: Callable[[Path], T],
    *,
    recompress: bool = False,
    settings: Optional[PatchSettings] = None,
) -> T:
    """Run ``action`` on the raw form of a possibly compressed image.

    Uncompressed images are passed through unchanged. For compressed images
    the raw image is written to ``<stem>.un<tool>.tmp`` beside the original
    and removed afterwards.
    """
    settings = settings or PatchSettings()
    image = Path(image)
    if not image.is_file():
        raise CompressionError(f"image doesn't exist: {image}", image)

    compression = detect_compression(image)
    if compression is None:
        return action(image)

    log.info(f"Compressed image file found ({compression.value}), decompressing...")
    raw_image = image.with_name(f"{image.stem}.{compression.temp_extension}")
    try:
        decompress(image, raw_image, compression, settings)
        result = action(raw_image)
        if recompress:
            log.info(f"Recompressing image from {raw_image} to {image}")
            compress(raw_image, image, compression, settings)
    finally:
        if raw_image.exists():
            raw_image.unlink()
    return result
