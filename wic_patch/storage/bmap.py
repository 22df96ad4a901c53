"""Block map generation for patched images."""

from __future__ import annotations

from pathlib import Path
from typing import Union

from wic_patch.logging import get_logger

from .exceptions import BmapGenerationFailed, ToolCommandError

log = get_logger(source="bmap")


def bmap_path_for(image: Union[str, Path]) -> Path:
    """Return the sidecar path for an image, e.g. image.wic -> image.wic.bmap."""
    image = Path(image)
    return image.with_name(f"{image.name}.bmap")


class BlockMapEmitter:
    """Writes a block map next to an image. Never touches the image itself."""

    def __init__(self, generator):
        self.generator = generator

    def emit(self, image: Union[str, Path]) -> Path:
        image = Path(image)
        bmap = bmap_path_for(image)
        if self.generator is None:
            raise BmapGenerationFailed(image, "no block map generator configured")
        if not image.is_file():
            raise BmapGenerationFailed(image, "image does not exist")

        log.info(f"Generating block map {bmap}")
        try:
            self.generator.create(image, bmap)
        except ToolCommandError as error:
            raise BmapGenerationFailed(image, error.output or str(error)) from error
        if not bmap.is_file():
            raise BmapGenerationFailed(image, f"{bmap} was not created")
        return bmap
