"""Domain model for partition patch operations.

Type-safe objects for partitions, transfers and staged partitions, used by
every layer of the patch engine in place of loose tuples.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Union


# ==============================================================================
# Partition Domain
# ==============================================================================


class PartitionKind(Enum):
    """Logical partitions of a flashable image."""

    BOOT = "boot"
    ROOT_A = "rootA"
    CERT = "cert"
    FACTORY = "factory"

    @property
    def is_boot(self) -> bool:
        return self is PartitionKind.BOOT

    @classmethod
    def parse(cls, value: Union[str, PartitionKind]) -> PartitionKind:
        """Accept an enum member, its value or its name (case-insensitive)."""
        if isinstance(value, cls):
            return value
        text = str(value).strip()
        for kind in cls:
            if text == kind.value or text.lower() == kind.value.lower():
                return kind
            if text.upper() == kind.name:
                return kind
        raise ValueError(f"Unknown partition: {value}")


class DisklabelType(Enum):
    """Partition table format reported by the table inspector."""

    GPT = "gpt"
    DOS = "dos"


# Boot and rootA are fixed; factory and cert depend on the disklabel.
_FIXED_PARTITION_NUMBERS = {
    PartitionKind.BOOT: 1,
    PartitionKind.ROOT_A: 2,
}

_LABEL_PARTITION_NUMBERS = {
    DisklabelType.GPT: {PartitionKind.FACTORY: 4, PartitionKind.CERT: 5},
    DisklabelType.DOS: {PartitionKind.FACTORY: 5, PartitionKind.CERT: 6},
}


def partition_number(kind: PartitionKind, disklabel: DisklabelType) -> int:
    """Return the partition table number of a partition kind."""
    if kind in _FIXED_PARTITION_NUMBERS:
        return _FIXED_PARTITION_NUMBERS[kind]
    return _LABEL_PARTITION_NUMBERS[disklabel][kind]


def partition_map(disklabel: DisklabelType) -> dict[PartitionKind, int]:
    return {kind: partition_number(kind, disklabel) for kind in PartitionKind}


@dataclass(frozen=True)
class PartitionInfo:
    """Location of one partition inside an image, in sectors."""

    index: int
    start_sector: int
    sector_count: int

    @property
    def end_sector(self) -> int:
        """Last sector of the partition (inclusive)."""
        return self.start_sector + self.sector_count - 1

    def byte_offset(self, sector_size: int = 512) -> int:
        return self.start_sector * sector_size

    def byte_length(self, sector_size: int = 512) -> int:
        return self.sector_count * sector_size


# ==============================================================================
# Transfer Domain
# ==============================================================================


@dataclass(frozen=True)
class FileTransfer:
    """A file copy between the host and a partition of an image.

    ``local_path`` lives on the host; ``image_path`` is the absolute path
    inside the partition's filesystem.
    """

    local_path: Path
    partition: PartitionKind
    image_path: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "local_path", Path(self.local_path))
        object.__setattr__(self, "partition", PartitionKind.parse(self.partition))
        image_path = str(PurePosixPath("/") / str(self.image_path).lstrip("/"))
        object.__setattr__(self, "image_path", image_path)

    @property
    def direction(self) -> str:
        raise NotImplementedError

    @property
    def image_parent(self) -> str:
        """Directory containing ``image_path`` inside the partition."""
        return str(PurePosixPath(self.image_path).parent)

    def describe(self) -> str:
        return f"{self.local_path} <-> {self.partition.value}:{self.image_path}"


@dataclass(frozen=True)
class ToImage(FileTransfer):
    """Copy a host file into a partition."""

    @property
    def direction(self) -> str:
        return "to-image"

    def describe(self) -> str:
        return f"{self.local_path} -> {self.partition.value}:{self.image_path}"


@dataclass(frozen=True)
class FromImage(FileTransfer):
    """Copy a file out of a partition onto the host."""

    @property
    def direction(self) -> str:
        return "from-image"

    def describe(self) -> str:
        return f"{self.partition.value}:{self.image_path} -> {self.local_path}"


# ==============================================================================
# Staging Domain
# ==============================================================================


class StageState(Enum):
    """Lifecycle of a staged partition within one batch."""

    LOCATED = "located"
    STAGED = "staged"
    APPLYING = "applying"
    WRITTEN_BACK = "written_back"
    RELEASED = "released"
    FAILED = "failed"


@dataclass
class StagedPartition:
    """Scratch copy of one partition, owned by a single batch."""

    image: Path
    kind: PartitionKind
    info: PartitionInfo
    scratch_path: Path
    state: StageState = StageState.LOCATED

    @property
    def is_stale(self) -> bool:
        return self.state in (
            StageState.WRITTEN_BACK,
            StageState.RELEASED,
            StageState.FAILED,
        )


# ==============================================================================
# Image Domain
# ==============================================================================


class Architecture(Enum):
    """Target CPU architecture of an image."""

    ARM32 = "linux/arm/v7"
    ARM64 = "linux/arm64"
    X86_64 = "linux/amd64"

    @classmethod
    def from_target(cls, value: str) -> Architecture:
        text = value.strip().lower()
        if text in ("aarch64", "arm64"):
            return cls.ARM64
        if text == "arm" or text.startswith("armv7"):
            return cls.ARM32
        if text in ("x86_64", "x86-64", "amd64"):
            return cls.X86_64
        raise ValueError(f"unknown architecture: {value}")
