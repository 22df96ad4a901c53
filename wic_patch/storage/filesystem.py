"""File transfers between the host and staged partition images.

The boot partition is FAT and handled with mtools; all other partitions are
extN and handled with e2tools. Both tool families work on the scratch file
directly, without mounting it.
"""
from __future__ import annotations

import os
import shutil
import uuid
from pathlib import Path, PurePosixPath
from typing import Union

from wic_patch.domain import FileTransfer, FromImage, PartitionKind, ToImage
from wic_patch.logging import get_logger

from .exceptions import ExtractVerificationFailed, InjectFailed, ToolCommandError

log = get_logger(source="filesystem")

PathLike = Union[str, Path]


def parent_directories(image_path: str) -> list[str]:
    """List every directory above a file inside an image, outermost first.

    Example: "/dir/sub/a.txt" -> ["/dir", "/dir/sub"]
    """
    parents = list(PurePosixPath(image_path).parents)
    parents.reverse()
    return [str(parent) for parent in parents if str(parent) != "/"]


def _tool_reason(error: ToolCommandError) -> str:
    return error.output or str(error)


def _is_exists_error(error: ToolCommandError) -> bool:
    output = (error.output or "").lower()
    return "exist" in output or "clash" in output


def _remove_quietly(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass


def _temp_sibling(destination: Path) -> Path:
    # Next to the destination so the final move never crosses devices.
    return destination.parent / f".{destination.name}.{uuid.uuid4().hex[:8]}.tmp"


class FatTransfer:
    """Boot partition transfers using mtools."""

    def __init__(self, tool):
        self.tool = tool

    def ensure_directories(
        self, scratch: PathLike, transfer: ToImage, image: PathLike
    ) -> None:
        for directory in parent_directories(transfer.image_path):
            try:
                self.tool.make_directory(scratch, directory)
                log.debug(f"Created {directory} in {transfer.partition.value}")
            except ToolCommandError as error:
                if _is_exists_error(error) or self.tool.directory_exists(
                    scratch, directory
                ):
                    log.trace(f"{directory} already exists in {transfer.partition.value}")
                    continue
                raise InjectFailed(
                    image,
                    transfer.partition,
                    transfer.image_path,
                    transfer.direction,
                    f"cannot create {directory}: {_tool_reason(error)}",
                ) from error

    def copy_to_image(self, scratch: PathLike, transfer: ToImage, image: PathLike) -> None:
        self.ensure_directories(scratch, transfer, image)
        try:
            self.tool.copy_in(scratch, transfer.local_path, transfer.image_path)
        except ToolCommandError as error:
            raise InjectFailed(
                image,
                transfer.partition,
                transfer.image_path,
                transfer.direction,
                _tool_reason(error),
            ) from error

    def copy_from_image(
        self, scratch: PathLike, transfer: FromImage, image: PathLike
    ) -> None:
        destination = transfer.local_path
        temp = _temp_sibling(destination)
        try:
            try:
                self.tool.copy_out(scratch, transfer.image_path, temp)
            except ToolCommandError as error:
                raise InjectFailed(
                    image,
                    transfer.partition,
                    transfer.image_path,
                    transfer.direction,
                    _tool_reason(error),
                ) from error

            if not temp.is_file():
                raise ExtractVerificationFailed(
                    image, transfer.partition, transfer.image_path, "no file was written"
                )
            try:
                shutil.copyfile(temp, destination)
                temp_size = temp.stat().st_size
                destination_size = destination.stat().st_size
            except OSError as error:
                raise InjectFailed(
                    image,
                    transfer.partition,
                    transfer.image_path,
                    transfer.direction,
                    f"cannot write {destination}: {error}",
                ) from error
            if temp_size != destination_size:
                raise ExtractVerificationFailed(
                    image,
                    transfer.partition,
                    transfer.image_path,
                    f"{destination} has {destination_size} bytes, expected {temp_size}",
                )
        finally:
            _remove_quietly(temp)


class ExtTransfer:
    """Data partition transfers using e2tools."""

    def __init__(self, tool):
        self.tool = tool

    def copy_to_image(self, scratch: PathLike, transfer: ToImage, image: PathLike) -> None:
        directory = transfer.image_parent
        try:
            if directory != "/":
                self.tool.make_directory(scratch, directory)
            self.tool.copy_in(scratch, transfer.local_path, transfer.image_path)
        except ToolCommandError as error:
            raise InjectFailed(
                image,
                transfer.partition,
                transfer.image_path,
                transfer.direction,
                _tool_reason(error),
            ) from error

    def copy_from_image(
        self, scratch: PathLike, transfer: FromImage, image: PathLike
    ) -> None:
        destination = transfer.local_path
        temp = _temp_sibling(destination)
        try:
            try:
                self.tool.copy_out(scratch, transfer.image_path, temp)
            except ToolCommandError as error:
                raise InjectFailed(
                    image,
                    transfer.partition,
                    transfer.image_path,
                    transfer.direction,
                    _tool_reason(error),
                ) from error

            # e2cp may exit 0 without writing anything.
            if not temp.is_file():
                raise ExtractVerificationFailed(
                    image,
                    transfer.partition,
                    transfer.image_path,
                    f"{destination} was not created",
                )
            try:
                os.replace(temp, destination)
            except OSError as error:
                raise InjectFailed(
                    image,
                    transfer.partition,
                    transfer.image_path,
                    transfer.direction,
                    f"cannot write {destination}: {error}",
                ) from error
        finally:
            _remove_quietly(temp)


class FilesystemInjector:
    """Applies file transfers to staged partitions."""

    def __init__(self, tools):
        self.fat = FatTransfer(tools.fat)
        self.ext = ExtTransfer(tools.ext)

    def strategy_for(self, kind: PartitionKind):
        return self.fat if kind.is_boot else self.ext

    def apply(
        self,
        scratch: PathLike,
        transfer: FileTransfer,
        kind: PartitionKind,
        image: PathLike,
    ) -> None:
        strategy = self.strategy_for(kind)
        log.debug(f"Applying {transfer.describe()}")
        if isinstance(transfer, ToImage):
            strategy.copy_to_image(scratch, transfer, image)
        elif isinstance(transfer, FromImage):
            strategy.copy_from_image(scratch, transfer, image)
        else:
            raise TypeError(f"Unsupported transfer type: {type(transfer).__name__}")
