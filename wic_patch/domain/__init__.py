"""Domain models for partition patch operations."""

from __future__ import annotations

from .models import (
    Architecture,
    DisklabelType,
    FileTransfer,
    FromImage,
    PartitionInfo,
    PartitionKind,
    StagedPartition,
    StageState,
    ToImage,
    partition_map,
    partition_number,
)


__all__ = [
    "Architecture",
    "DisklabelType",
    "FileTransfer",
    "FromImage",
    "PartitionInfo",
    "PartitionKind",
    "StagedPartition",
    "StageState",
    "ToImage",
    "partition_map",
    "partition_number",
]
