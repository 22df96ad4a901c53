"""Image metadata read from the root filesystem."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Optional, Union

from wic_patch.config.settings import PatchSettings
from wic_patch.domain import Architecture, PartitionKind

from .exceptions import UnsupportedArchitecture
from .patch import read_file_from_image
from .tools import PatchTools


def parse_target_arch(os_release: str, key: str) -> Optional[str]:
    """Extract ``<key>="<arch>"`` from os-release content."""
    match = re.search(rf'^{re.escape(key)}="(?P<arch>[^"]*)"', os_release, re.MULTILINE)
    if not match:
        return None
    return match.group("arch")


def image_arch(
    image: Union[str, Path],
    *,
    settings: Optional[PatchSettings] = None,
    tools: Optional[PatchTools] = None,
) -> Architecture:
    """Return the target architecture recorded in an image's os-release.

    The os-release file is read from rootA; e2tools cannot follow the
    /etc/os-release symlink, so the configured path points at its target.
    """
    settings = settings or PatchSettings()
    content = read_file_from_image(
        settings.os_release_path,
        PartitionKind.ROOT_A,
        image,
        settings=settings,
        tools=tools,
    )
    arch = parse_target_arch(content, settings.arch_key)
    if arch is None:
        raise UnsupportedArchitecture(image, None)
    try:
        return Architecture.from_target(arch)
    except ValueError as error:
        raise UnsupportedArchitecture(image, arch) from error
