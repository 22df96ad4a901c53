"""Partition table lookups for flashable images.

This module turns the tabular output of ``fdisk -l -o Device,Start,End`` into
a small table model and resolves a logical partition kind to its sector
range:
- Reading the ``Disklabel type:`` marker (gpt or dos)
- Mapping partition kinds to table numbers for that disklabel
- Matching the table row whose device column is exactly ``<image><number>``
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from wic_patch.domain import DisklabelType, PartitionInfo, PartitionKind, partition_number
from wic_patch.logging import get_logger

from .exceptions import (
    InspectionFailed,
    PartitionNotFound,
    ToolCommandError,
    UnsupportedDisklabel,
)

log = get_logger(source="partition")

DISKLABEL_PATTERN = re.compile(r"^Disklabel type:\s*(\S+)\s*$", re.MULTILINE)


@dataclass(frozen=True)
class PartitionRow:
    device: str
    start: int
    end: int

    @property
    def sectors(self) -> int:
        return self.end - self.start + 1


@dataclass(frozen=True)
class PartitionTable:
    """Partition rows and disklabel marker reported for one image."""

    label: Optional[str]
    rows: list[PartitionRow] = field(default_factory=list)


def parse_disklabel(output: str) -> Optional[str]:
    match = DISKLABEL_PATTERN.search(output)
    if not match:
        return None
    return match.group(1).strip().lower()


def parse_partition_rows(output: str) -> list[PartitionRow]:
    """Parse ``Device Start End`` rows, skipping headers and boot flags."""
    rows: list[PartitionRow] = []
    for line in output.splitlines():
        fields = line.split()
        if len(fields) < 3:
            continue
        # DOS tables may carry a boot flag column after the device name.
        numbers = [value for value in fields[1:] if value != "*"]
        if len(numbers) < 2:
            continue
        if not (numbers[0].isdigit() and numbers[1].isdigit()):
            continue
        rows.append(
            PartitionRow(device=fields[0], start=int(numbers[0]), end=int(numbers[1]))
        )
    return rows


def parse_fdisk_output(output: str) -> PartitionTable:
    return PartitionTable(
        label=parse_disklabel(output),
        rows=parse_partition_rows(output),
    )


def resolve_disklabel(image: Path, label: Optional[str]) -> DisklabelType:
    normalized = (label or "").strip().lower()
    for disklabel in DisklabelType:
        if normalized == disklabel.value:
            return disklabel
    raise UnsupportedDisklabel(image, label)


def find_partition_row(
    table: PartitionTable, image: Union[str, Path], number: int
) -> Optional[PartitionRow]:
    """Return the row whose device is exactly ``<image><number>``.

    fdisk inserts a ``p`` separator when the image path ends in a digit,
    so ``disk0`` names its partitions ``disk0p1``, ``disk0p2`` and so on.
    """
    name = str(image)
    separator = "p" if name[-1:].isdigit() else ""
    device = f"{name}{separator}{number}"
    for row in table.rows:
        if row.device == device:
            return row
    return None


def locate_partition(
    image: Union[str, Path], kind: PartitionKind, inspector
) -> PartitionInfo:
    """Resolve a partition kind of an image to its table number and sectors."""
    image_path = Path(image)
    try:
        table = inspector.inspect(image_path)
    except ToolCommandError as error:
        raise InspectionFailed(image_path, error.output or str(error)) from error
    except OSError as error:
        raise InspectionFailed(image_path, str(error)) from error

    disklabel = resolve_disklabel(image_path, table.label)
    number = partition_number(kind, disklabel)
    log.debug(f"Disklabel type {disklabel.value}: {kind.value} is partition {number}")

    row = find_partition_row(table, image, number)
    if row is None:
        raise PartitionNotFound(image_path, kind, number)

    info = PartitionInfo(index=number, start_sector=row.start, sector_count=row.sectors)
    log.debug(
        f"Partition {kind.value}: start={info.start_sector} "
        f"count={info.sector_count}"
    )
    return info


class PartitionLocator:
    """Resolves partitions, inspecting each image at most once per lookup key."""

    def __init__(self, inspector):
        self.inspector = inspector
        self._cache: dict[tuple[str, PartitionKind], PartitionInfo] = {}

    def locate(self, image: Union[str, Path], kind: PartitionKind) -> PartitionInfo:
        key = (str(image), kind)
        if key not in self._cache:
            self._cache[key] = locate_partition(image, kind, self.inspector)
        return self._cache[key]
