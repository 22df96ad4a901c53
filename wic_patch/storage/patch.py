"""Batch file patching of flashable disk images.

This module is the entry point used by higher layers (CLI, configuration
commands). It validates a batch of file transfers, groups them by target
partition and, for each partition, drives:

    locate -> stage -> apply transfers in order -> write back

Main Functions:
    - copy_to_image(): inject host files into image partitions
    - copy_from_image(): extract files from image partitions
    - generate_bmap(): write a block map next to an image
    - read_file_from_image(): return the text of one file in a partition

Failure Semantics:
    The batch stops at the first error. Partitions that were already written
    back stay applied; there is no whole-image rollback. The partition being
    processed when the error happened is not written back unless
    ``flush_partial_on_error`` is set.

Scratch Files:
    With an explicit ``scratch_dir`` the scratch files are left in place for
    the caller. Otherwise a per-batch directory is created under the
    configured scratch root and removed when the batch ends, unless
    ``keep_scratch_files`` is set.
"""
from __future__ import annotations

import shutil
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Iterable, Optional, Sequence, Union

from wic_patch.config.settings import PatchSettings
from wic_patch.domain import FileTransfer, FromImage, PartitionKind, StageState, ToImage
from wic_patch.logging import get_logger, operation_context

from .bmap import BlockMapEmitter
from .exceptions import (
    ImagePatchError,
    InvalidDestinationPath,
    InvalidInputPath,
    PatchCancelled,
)
from .filesystem import FilesystemInjector
from .partition_table import PartitionLocator
from .staging import SectorStager
from .tools import PatchTools

log = get_logger(source="patch")

PathLike = Union[str, Path]


def group_transfers(
    transfers: Iterable[FileTransfer],
) -> list[tuple[PartitionKind, list[FileTransfer]]]:
    """Group transfers by partition, keeping first-seen partition order."""
    groups: dict[PartitionKind, list[FileTransfer]] = {}
    for transfer in transfers:
        groups.setdefault(transfer.partition, []).append(transfer)
    return list(groups.items())


def validate_transfers(transfers: Sequence[FileTransfer], image: PathLike) -> None:
    """Check host-side paths of every transfer before anything is modified."""
    image = Path(image)
    if not image.is_file():
        raise InvalidInputPath(image)
    for transfer in transfers:
        if isinstance(transfer, ToImage):
            if not transfer.local_path.is_file():
                raise InvalidInputPath(transfer.local_path, transfer.partition, image)
        elif isinstance(transfer, FromImage):
            if not transfer.local_path.parent.is_dir():
                raise InvalidDestinationPath(transfer.local_path, transfer.partition, image)
        else:
            raise TypeError(f"Unsupported transfer type: {type(transfer).__name__}")


class PatchEngine:
    """Applies batches of file transfers to images.

    Args:
        settings: Settings for this run (defaults to PatchSettings())
        tools: External capabilities (defaults to the real tool bindings)
    """

    def __init__(
        self,
        settings: Optional[PatchSettings] = None,
        tools: Optional[PatchTools] = None,
    ):
        self.settings = settings or PatchSettings()
        self.tools = tools or PatchTools.from_settings(self.settings)
        self.injector = FilesystemInjector(self.tools)

    @contextmanager
    def _scratch_directory(
        self, scratch_dir: Optional[PathLike]
    ) -> Generator[tuple[Path, bool], None, None]:
        """Yield the scratch directory and whether the engine owns it."""
        if scratch_dir is not None:
            path = Path(scratch_dir)
            path.mkdir(parents=True, exist_ok=True)
            yield path, False
            return

        root = self.settings.resolve_scratch_root()
        root.mkdir(parents=True, exist_ok=True)
        path = Path(tempfile.mkdtemp(prefix="wic-patch-", dir=root))
        try:
            yield path, True
        finally:
            if self.settings.keep_scratch_files:
                log.info(f"Keeping scratch files in {path}")
            else:
                shutil.rmtree(path, ignore_errors=True)

    def patch(
        self,
        transfers: Iterable[FileTransfer],
        image: PathLike,
        *,
        scratch_dir: Optional[PathLike] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> list[PartitionKind]:
        """Apply a batch of transfers and return the partitions processed.

        Raises:
            InvalidInputPath / InvalidDestinationPath: before any modification
            PartitionError, StagingError, TransferError: first failure
            PatchCancelled: cancel_event was set between partition groups
        """
        image = Path(image)
        transfers = list(transfers)
        validate_transfers(transfers, image)
        groups = group_transfers(transfers)

        with operation_context(
            "patch", image=str(image), transfers=len(transfers)
        ) as op_log:
            with self._scratch_directory(scratch_dir) as (directory, owned):
                locator = PartitionLocator(self.tools.inspector)
                stager = SectorStager(
                    self.tools.copier, self.tools.deallocator, directory, self.settings
                )
                completed: list[PartitionKind] = []
                for kind, group in groups:
                    if cancel_event is not None and cancel_event.is_set():
                        raise PatchCancelled(image, completed)
                    op_log.debug(f"Processing {len(group)} transfer(s) for {kind.value}")
                    self._patch_group(locator, stager, image, kind, group, owned)
                    completed.append(kind)
                return completed

    def _patch_group(
        self,
        locator: PartitionLocator,
        stager: SectorStager,
        image: Path,
        kind: PartitionKind,
        transfers: list[FileTransfer],
        owned_scratch: bool,
    ) -> None:
        info = locator.locate(image, kind)
        staged = stager.extract(image, kind, info)
        modifies = any(isinstance(transfer, ToImage) for transfer in transfers)

        staged.state = StageState.APPLYING
        try:
            for transfer in transfers:
                self.injector.apply(staged.scratch_path, transfer, kind, image)
        except Exception:
            if modifies and self.settings.flush_partial_on_error:
                log.warning(f"Writing back partial changes to {kind.value}")
                try:
                    stager.writeback(staged)
                except ImagePatchError as writeback_error:
                    log.error(f"Partial writeback of {kind.value} failed: {writeback_error}")
            else:
                stager.discard(staged)
            raise

        if modifies:
            stager.writeback(staged)
        else:
            # Read-only groups leave the image untouched.
            stager.close(staged)
        if owned_scratch and not self.settings.keep_scratch_files:
            stager.release(staged)

    def generate_bmap(self, image: PathLike) -> Path:
        return BlockMapEmitter(self.tools.bmap).emit(image)


def copy_to_image(
    transfers: Iterable[ToImage],
    image: PathLike,
    *,
    generate_bmap: bool = False,
    settings: Optional[PatchSettings] = None,
    tools: Optional[PatchTools] = None,
    scratch_dir: Optional[PathLike] = None,
    cancel_event: Optional[threading.Event] = None,
) -> Optional[Path]:
    """Copy host files into image partitions.

    Returns the block map path when ``generate_bmap`` is set, otherwise None.
    A block map failure is raised after the image has been patched.
    """
    transfers = list(transfers)
    for transfer in transfers:
        if not isinstance(transfer, ToImage):
            raise TypeError(f"copy_to_image expects ToImage, got {type(transfer).__name__}")
    engine = PatchEngine(settings, tools)
    engine.patch(transfers, image, scratch_dir=scratch_dir, cancel_event=cancel_event)
    if generate_bmap:
        return engine.generate_bmap(image)
    return None


def copy_from_image(
    transfers: Iterable[FromImage],
    image: PathLike,
    *,
    settings: Optional[PatchSettings] = None,
    tools: Optional[PatchTools] = None,
    scratch_dir: Optional[PathLike] = None,
    cancel_event: Optional[threading.Event] = None,
) -> None:
    """Copy files out of image partitions onto the host."""
    transfers = list(transfers)
    for transfer in transfers:
        if not isinstance(transfer, FromImage):
            raise TypeError(
                f"copy_from_image expects FromImage, got {type(transfer).__name__}"
            )
    PatchEngine(settings, tools).patch(
        transfers, image, scratch_dir=scratch_dir, cancel_event=cancel_event
    )


def generate_bmap(
    image: PathLike,
    *,
    settings: Optional[PatchSettings] = None,
    tools: Optional[PatchTools] = None,
) -> Path:
    """Generate ``<image>.bmap`` for an image."""
    return PatchEngine(settings, tools).generate_bmap(image)


def read_file_from_image(
    path: str,
    partition: Union[str, PartitionKind],
    image: PathLike,
    *,
    settings: Optional[PatchSettings] = None,
    tools: Optional[PatchTools] = None,
) -> str:
    """Return the text content of a file inside an image partition."""
    settings = settings or PatchSettings()
    root = settings.resolve_scratch_root()
    root.mkdir(parents=True, exist_ok=True)
    with tempfile.TemporaryDirectory(prefix="wic-read-", dir=root) as temp_dir:
        destination = Path(temp_dir) / (Path(path).name or "file")
        copy_from_image(
            [FromImage(destination, PartitionKind.parse(partition), path)],
            image,
            settings=settings,
            tools=tools,
        )
        return destination.read_text(encoding="utf-8", errors="replace")
