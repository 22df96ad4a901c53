"""External tool bindings used by the patch engine.

Each class wraps one capability the engine depends on and builds its
command line as an argument list:

    - FdiskInspector: partition table rows and disklabel (fdisk)
    - DdSectorCopier: sector-exact copies, sparse on extraction (dd, sync)
    - FallocateDeallocator: punch holes into zero regions (fallocate -d)
    - MtoolsFilesystem: FAT directory creation and file copies (mmd, mcopy)
    - E2toolsFilesystem: extN directory creation and file copies (e2mkdir, e2cp)
    - BmaptoolGenerator: block map generation (bmaptool create)

Tests substitute fakes with the same methods through PatchTools.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from wic_patch.config.settings import PatchSettings
from wic_patch.domain import PartitionInfo

from .command_runners import run_checked_command, run_command
from .exceptions import ToolCommandError
from .partition_table import PartitionTable, parse_fdisk_output


PathLike = Union[str, Path]


class FdiskInspector:
    """Table inspector backed by ``fdisk -l``."""

    def __init__(self, settings: PatchSettings):
        self.settings = settings

    def build_command(self, image: PathLike) -> list[str]:
        return [
            self.settings.tool("fdisk"),
            "-l",
            "-o",
            "Device,Start,End",
            str(image),
        ]

    def inspect(self, image: PathLike) -> PartitionTable:
        # fdisk translates its labels; the parser expects the C locale.
        env = dict(os.environ, LC_ALL="C")
        output = run_checked_command(
            self.build_command(image),
            env=env,
            timeout=self.settings.tool_timeout_seconds,
        )
        return parse_fdisk_output(output)


class DdSectorCopier:
    """Sector copier backed by ``dd``."""

    def __init__(self, settings: PatchSettings):
        self.settings = settings

    def build_extract_command(
        self, image: PathLike, scratch: PathLike, info: PartitionInfo
    ) -> list[str]:
        return [
            self.settings.tool("dd"),
            f"if={image}",
            f"of={scratch}",
            f"bs={self.settings.sector_size}",
            f"skip={info.start_sector}",
            f"count={info.sector_count}",
            "conv=sparse",
            "status=none",
        ]

    def build_writeback_command(
        self, scratch: PathLike, image: PathLike, info: PartitionInfo
    ) -> list[str]:
        return [
            self.settings.tool("dd"),
            f"if={scratch}",
            f"of={image}",
            f"bs={self.settings.sector_size}",
            f"seek={info.start_sector}",
            f"count={info.sector_count}",
            "conv=notrunc",
            "status=none",
        ]

    def copy_out(self, image: PathLike, scratch: PathLike, info: PartitionInfo) -> None:
        run_checked_command(
            self.build_extract_command(image, scratch, info),
            timeout=self.settings.tool_timeout_seconds,
        )

    def copy_in(self, scratch: PathLike, image: PathLike, info: PartitionInfo) -> None:
        run_checked_command(
            self.build_writeback_command(scratch, image, info),
            timeout=self.settings.tool_timeout_seconds,
        )

    def sync(self) -> None:
        run_checked_command(
            [self.settings.tool("sync")],
            timeout=self.settings.tool_timeout_seconds,
        )


class FallocateDeallocator:
    """Hole deallocator backed by ``fallocate --dig-holes``."""

    def __init__(self, settings: PatchSettings):
        self.settings = settings

    def build_command(self, path: PathLike) -> list[str]:
        return [self.settings.tool("fallocate"), "-d", str(path)]

    def dig_holes(self, path: PathLike) -> None:
        run_checked_command(
            self.build_command(path), timeout=self.settings.tool_timeout_seconds
        )


class MtoolsFilesystem:
    """FAT filesystem tool pair backed by mtools."""

    def __init__(self, settings: PatchSettings):
        self.settings = settings

    @property
    def env(self) -> dict[str, str]:
        # Partition images rarely have a geometry mtools considers valid.
        return dict(os.environ, MTOOLS_SKIP_CHECK="1")

    def build_mkdir_command(self, scratch: PathLike, directory: str) -> list[str]:
        return [
            self.settings.tool("mmd"),
            "-D",
            "sS",
            "-i",
            str(scratch),
            f"::{directory}",
        ]

    def build_exists_command(self, scratch: PathLike, directory: str) -> list[str]:
        return [self.settings.tool("mdir"), "-b", "-i", str(scratch), f"::{directory}"]

    def build_copy_in_command(
        self, scratch: PathLike, local: PathLike, destination: str
    ) -> list[str]:
        return [
            self.settings.tool("mcopy"),
            "-o",
            "-i",
            str(scratch),
            str(local),
            f"::{destination}",
        ]

    def build_copy_out_command(
        self, scratch: PathLike, source: str, local: PathLike
    ) -> list[str]:
        return [
            self.settings.tool("mcopy"),
            "-o",
            "-i",
            str(scratch),
            f"::{source}",
            str(local),
        ]

    def make_directory(self, scratch: PathLike, directory: str) -> None:
        run_checked_command(
            self.build_mkdir_command(scratch, directory),
            env=self.env,
            timeout=self.settings.tool_timeout_seconds,
        )

    def directory_exists(self, scratch: PathLike, directory: str) -> bool:
        try:
            result = run_command(
                self.build_exists_command(scratch, directory),
                env=self.env,
                timeout=self.settings.tool_timeout_seconds,
            )
        except ToolCommandError:
            return False
        return result.returncode == 0

    def copy_in(self, scratch: PathLike, local: PathLike, destination: str) -> None:
        run_checked_command(
            self.build_copy_in_command(scratch, local, destination),
            env=self.env,
            timeout=self.settings.tool_timeout_seconds,
        )

    def copy_out(self, scratch: PathLike, source: str, local: PathLike) -> None:
        run_checked_command(
            self.build_copy_out_command(scratch, source, local),
            env=self.env,
            timeout=self.settings.tool_timeout_seconds,
        )


class E2toolsFilesystem:
    """extN filesystem tool pair backed by e2tools."""

    def __init__(self, settings: PatchSettings):
        self.settings = settings

    def build_mkdir_command(self, scratch: PathLike, directory: str) -> list[str]:
        return [self.settings.tool("e2mkdir"), f"{scratch}:{directory}"]

    def build_copy_in_command(
        self, scratch: PathLike, local: PathLike, destination: str
    ) -> list[str]:
        return [self.settings.tool("e2cp"), str(local), f"{scratch}:{destination}"]

    def build_copy_out_command(
        self, scratch: PathLike, source: str, local: PathLike
    ) -> list[str]:
        return [self.settings.tool("e2cp"), f"{scratch}:{source}", str(local)]

    def make_directory(self, scratch: PathLike, directory: str) -> None:
        run_checked_command(
            self.build_mkdir_command(scratch, directory),
            timeout=self.settings.tool_timeout_seconds,
        )

    def directory_exists(self, scratch: PathLike, directory: str) -> bool:
        # e2mkdir succeeds on existing directories; callers never need this.
        return False

    def copy_in(self, scratch: PathLike, local: PathLike, destination: str) -> None:
        run_checked_command(
            self.build_copy_in_command(scratch, local, destination),
            timeout=self.settings.tool_timeout_seconds,
        )

    def copy_out(self, scratch: PathLike, source: str, local: PathLike) -> None:
        run_checked_command(
            self.build_copy_out_command(scratch, source, local),
            timeout=self.settings.tool_timeout_seconds,
        )


class BmaptoolGenerator:
    """Block map generator backed by ``bmaptool create``."""

    def __init__(self, settings: PatchSettings):
        self.settings = settings

    def build_command(self, image: PathLike, bmap: PathLike) -> list[str]:
        return [self.settings.tool("bmaptool"), "create", "-o", str(bmap), str(image)]

    def create(self, image: PathLike, bmap: PathLike) -> None:
        run_checked_command(
            self.build_command(image, bmap),
            timeout=self.settings.tool_timeout_seconds,
        )


@dataclass
class PatchTools:
    """The set of external capabilities one patch run uses."""

    inspector: object
    copier: object
    deallocator: object
    fat: object
    ext: object
    bmap: Optional[object] = None

    @classmethod
    def from_settings(cls, settings: PatchSettings) -> PatchTools:
        return cls(
            inspector=FdiskInspector(settings),
            copier=DdSectorCopier(settings),
            deallocator=FallocateDeallocator(settings),
            fat=MtoolsFilesystem(settings),
            ext=E2toolsFilesystem(settings),
            bmap=BmaptoolGenerator(settings),
        )
