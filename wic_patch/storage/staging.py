"""Sector staging between an image and per-partition scratch files.

A partition is extracted at most once per batch. Later file operations on
the same partition reuse the scratch file until it is written back, after
which it is stale and never handed out again.
"""
from __future__ import annotations

from pathlib import Path
from typing import Union

from wic_patch.config.settings import PatchSettings
from wic_patch.domain import PartitionInfo, PartitionKind, StagedPartition, StageState
from wic_patch.logging import get_logger

from .exceptions import StageExtractFailed, StageWritebackFailed, ToolCommandError
from .image_lock import image_write_lock

log = get_logger(source="staging")


def _remove_quietly(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass


class SectorStager:
    """Extracts and writes back partition byte ranges for one batch."""

    def __init__(self, copier, deallocator, scratch_dir: Path, settings: PatchSettings):
        self.copier = copier
        self.deallocator = deallocator
        self.scratch_dir = Path(scratch_dir)
        self.settings = settings
        self._staged: dict[tuple[str, int], StagedPartition] = {}

    def scratch_path_for(self, image: Union[str, Path], info: PartitionInfo) -> Path:
        return self.scratch_dir / f"{Path(image).name}.p{info.index}.img"

    def expected_size(self, info: PartitionInfo) -> int:
        return info.byte_length(self.settings.sector_size)

    def extract(
        self, image: Union[str, Path], kind: PartitionKind, info: PartitionInfo
    ) -> StagedPartition:
        """Stage a partition, reusing a live scratch file from this batch."""
        image = Path(image)
        key = (str(image), info.index)
        staged = self._staged.get(key)
        if staged is not None and not staged.is_stale and staged.scratch_path.exists():
            log.debug(f"Partition {kind.value} already staged at {staged.scratch_path}")
            return staged

        scratch = self.scratch_path_for(image, info)
        if scratch.exists():
            log.debug(f"Discarding stale scratch file {scratch}")
            _remove_quietly(scratch)
        self.scratch_dir.mkdir(parents=True, exist_ok=True)

        log.info(
            f"Staging partition {kind.value} (#{info.index}, "
            f"{info.sector_count} sectors at {info.start_sector})"
        )
        try:
            self.copier.copy_out(image, scratch, info)
            self.copier.sync()
        except (ToolCommandError, OSError) as error:
            _remove_quietly(scratch)
            raise StageExtractFailed(image, kind, scratch, str(error)) from error

        expected = self.expected_size(info)
        actual = scratch.stat().st_size if scratch.exists() else 0
        if actual != expected:
            _remove_quietly(scratch)
            raise StageExtractFailed(
                image,
                kind,
                scratch,
                f"short copy: expected {expected} bytes, got {actual}",
            )

        staged = StagedPartition(
            image=image,
            kind=kind,
            info=info,
            scratch_path=scratch,
            state=StageState.STAGED,
        )
        self._staged[key] = staged
        return staged

    def writeback(self, staged: StagedPartition) -> None:
        """Copy a staged partition back into its image at its original offset."""
        if staged.is_stale:
            raise StageWritebackFailed(
                staged.image,
                staged.kind,
                staged.scratch_path,
                f"scratch file is {staged.state.value}",
            )

        image = staged.image
        log.info(f"Writing partition {staged.kind.value} back into {image}")
        with image_write_lock(image):
            try:
                size_before = image.stat().st_size
                self.copier.copy_in(staged.scratch_path, image, staged.info)
                self.deallocator.dig_holes(image)
                self.copier.sync()
                size_after = image.stat().st_size
            except (ToolCommandError, OSError) as error:
                staged.state = StageState.FAILED
                raise StageWritebackFailed(
                    image, staged.kind, staged.scratch_path, str(error)
                ) from error

        if size_after != size_before:
            staged.state = StageState.FAILED
            raise StageWritebackFailed(
                image,
                staged.kind,
                staged.scratch_path,
                f"image size changed from {size_before} to {size_after} bytes",
            )
        staged.state = StageState.WRITTEN_BACK

    def discard(self, staged: StagedPartition) -> None:
        """Mark a staged partition as failed so it is never written back."""
        staged.state = StageState.FAILED

    def close(self, staged: StagedPartition) -> None:
        """Retire an unmodified staged partition without writing it back."""
        if not staged.is_stale:
            staged.state = StageState.RELEASED

    def release(self, staged: StagedPartition) -> None:
        """Delete the scratch file of a stale staged partition."""
        if not staged.is_stale:
            return
        _remove_quietly(staged.scratch_path)
        log.debug(f"Removed scratch file {staged.scratch_path}")

    @property
    def staged(self) -> list[StagedPartition]:
        return list(self._staged.values())
