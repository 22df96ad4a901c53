"""Custom exceptions for image patch operations.

Every error names the image, the partition kind and the file path involved
so a single failed transfer can be identified within a multi-file batch.

Exception Hierarchy:
    ImagePatchError (base)
        ├── ToolCommandError
        ├── PartitionError
        │   ├── InspectionFailed
        │   ├── UnsupportedDisklabel
        │   └── PartitionNotFound
        ├── StagingError
        │   ├── StageExtractFailed
        │   └── StageWritebackFailed
        ├── TransferError
        │   ├── InvalidInputPath
        │   ├── InvalidDestinationPath
        │   ├── InjectFailed
        │   └── ExtractVerificationFailed
        ├── PatchCancelled
        ├── BmapGenerationFailed
        ├── CompressionError
        └── UnsupportedArchitecture

Usage:
    from wic_patch.storage.exceptions import PartitionNotFound

    if row is None:
        raise PartitionNotFound(image, kind, number)
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence, Union


PathLike = Union[str, Path]


def _kind_label(kind) -> str:
    return getattr(kind, "value", None) or str(kind)


class ImagePatchError(Exception):
    """Base exception for all image patch operations."""


class ToolCommandError(ImagePatchError):
    """An external tool exited with a non-zero status or could not start."""

    def __init__(
        self,
        command: Sequence[str],
        returncode: Optional[int],
        message: str = "",
    ):
        self.command = list(command)
        self.returncode = returncode
        self.output = message
        detail = message or "Command failed"
        super().__init__(f"Command failed ({' '.join(self.command)}): {detail}")


class PartitionError(ImagePatchError):
    """Base exception for partition table lookups."""


class InspectionFailed(PartitionError):
    """The partition table of an image could not be read."""

    def __init__(self, image: PathLike, reason: str = ""):
        self.image = Path(image)
        self.reason = reason
        msg = f"Failed to inspect partition table of {image}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class UnsupportedDisklabel(PartitionError):
    """The partition table is neither GPT nor DOS."""

    def __init__(self, image: PathLike, label: Optional[str]):
        self.image = Path(image)
        self.label = label
        shown = label if label else "<missing>"
        super().__init__(f"Unsupported disklabel type {shown} in {image}")


class PartitionNotFound(PartitionError):
    """No partition table row matches the requested partition."""

    def __init__(self, image: PathLike, kind, number: int):
        self.image = Path(image)
        self.partition = kind
        self.number = number
        super().__init__(
            f"Partition {_kind_label(kind)} (number {number}) not found in {image}"
        )


class StagingError(ImagePatchError):
    """Base exception for sector staging."""


class StageExtractFailed(StagingError):
    """Copying partition sectors into a scratch file failed."""

    def __init__(self, image: PathLike, kind, scratch: PathLike, reason: str = ""):
        self.image = Path(image)
        self.partition = kind
        self.scratch = Path(scratch)
        self.reason = reason
        msg = (
            f"Failed to stage partition {_kind_label(kind)} of {image} "
            f"into {scratch}"
        )
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class StageWritebackFailed(StagingError):
    """Copying a scratch file back into the image failed."""

    def __init__(self, image: PathLike, kind, scratch: PathLike, reason: str = ""):
        self.image = Path(image)
        self.partition = kind
        self.scratch = Path(scratch)
        self.reason = reason
        msg = (
            f"Failed to write partition {_kind_label(kind)} from {scratch} "
            f"back into {image}"
        )
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class TransferError(ImagePatchError):
    """Base exception for single file transfers."""

    def __init__(
        self,
        message: str,
        image: Optional[PathLike] = None,
        kind=None,
        path: Optional[PathLike] = None,
    ):
        self.image = Path(image) if image is not None else None
        self.partition = kind
        self.path = path
        super().__init__(message)


class InvalidInputPath(TransferError):
    """A host file to copy into an image is missing or not a regular file."""

    def __init__(self, path: PathLike, kind=None, image: Optional[PathLike] = None):
        target = f" for partition {_kind_label(kind)}" if kind is not None else ""
        super().__init__(
            f"{path} is not a file path{target}", image=image, kind=kind, path=path
        )


class InvalidDestinationPath(TransferError):
    """The host directory for an extracted file does not exist."""

    def __init__(self, path: PathLike, kind=None, image: Optional[PathLike] = None):
        super().__init__(
            f"Destination directory of {path} does not exist",
            image=image,
            kind=kind,
            path=path,
        )


class InjectFailed(TransferError):
    """A filesystem tool failed while copying a file into or out of an image."""

    def __init__(
        self,
        image: PathLike,
        kind,
        path: PathLike,
        direction: str,
        reason: str = "",
    ):
        self.direction = direction
        msg = (
            f"Failed {direction} transfer of {path} in partition "
            f"{_kind_label(kind)} of {image}"
        )
        if reason:
            msg += f": {reason}"
        super().__init__(msg, image=image, kind=kind, path=path)


class ExtractVerificationFailed(TransferError):
    """An extracted file is missing or incomplete although the tool succeeded."""

    def __init__(self, image: PathLike, kind, path: PathLike, reason: str = ""):
        msg = (
            f"Extraction of {path} from partition {_kind_label(kind)} "
            f"of {image} could not be verified"
        )
        if reason:
            msg += f": {reason}"
        super().__init__(msg, image=image, kind=kind, path=path)


class PatchCancelled(ImagePatchError):
    """A batch was cancelled between partition groups."""

    def __init__(self, image: PathLike, completed: Sequence = ()):
        self.image = Path(image)
        self.completed = list(completed)
        done = ", ".join(_kind_label(kind) for kind in self.completed) or "none"
        super().__init__(f"Patch of {image} cancelled (written back: {done})")


class BmapGenerationFailed(ImagePatchError):
    """The block map of a patched image could not be generated."""

    def __init__(self, image: PathLike, reason: str = ""):
        self.image = Path(image)
        self.reason = reason
        msg = f"Failed to generate block map for {image}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class CompressionError(ImagePatchError):
    """Decompressing or recompressing an image failed."""

    def __init__(self, message: str, image: Optional[PathLike] = None):
        self.image = Path(image) if image is not None else None
        super().__init__(message)


class UnsupportedArchitecture(ImagePatchError):
    """The image reports an architecture that is not supported."""

    def __init__(self, image: PathLike, arch: Optional[str]):
        self.image = Path(image)
        self.arch = arch
        if arch is None:
            msg = f"os-release of {image} does not contain architecture information"
        else:
            msg = f"Unsupported architecture type {arch} in {image}"
        super().__init__(msg)
