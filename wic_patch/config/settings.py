"""Settings for image patch operations.

Settings are loaded once by the caller and passed into the patch engine.
Nothing in the engine reads module-level state.
"""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional


SETTINGS_PATH = Path(
    os.environ.get(
        "WIC_PATCH_SETTINGS_PATH",
        Path.home() / ".config" / "wic-patch" / "settings.json",
    )
)

# Default values - use these constants instead of hardcoding values elsewhere
DEFAULT_SECTOR_SIZE = 512
DEFAULT_XZ_COMPRESSION_LEVEL = 9
DEFAULT_OS_RELEASE_PATH = "/usr/lib/os-release"
DEFAULT_ARCH_KEY = "OMNECT_TARGET_ARCH"

DEFAULT_TOOLS: dict[str, str] = {
    "fdisk": "fdisk",
    "dd": "dd",
    "fallocate": "fallocate",
    "sync": "sync",
    "mmd": "mmd",
    "mcopy": "mcopy",
    "mdir": "mdir",
    "e2mkdir": "e2mkdir",
    "e2cp": "e2cp",
    "bmaptool": "bmaptool",
    "xz": "xz",
    "bzip2": "bzip2",
    "gzip": "gzip",
}

DEFAULT_SETTINGS: dict[str, Any] = {
    "sector_size": DEFAULT_SECTOR_SIZE,
    "scratch_root": None,
    "keep_scratch_files": False,
    "flush_partial_on_error": False,
    "tool_timeout_seconds": None,
    "xz_compression_level": DEFAULT_XZ_COMPRESSION_LEVEL,
    "os_release_path": DEFAULT_OS_RELEASE_PATH,
    "arch_key": DEFAULT_ARCH_KEY,
    "tools": dict(DEFAULT_TOOLS),
}


@dataclass(frozen=True)
class PatchSettings:
    """Configuration shared by every component of one patch run."""

    sector_size: int = DEFAULT_SECTOR_SIZE
    # None means the system temp directory.
    scratch_root: Optional[Path] = None
    keep_scratch_files: bool = False
    flush_partial_on_error: bool = False
    tool_timeout_seconds: Optional[float] = None
    xz_compression_level: int = DEFAULT_XZ_COMPRESSION_LEVEL
    os_release_path: str = DEFAULT_OS_RELEASE_PATH
    arch_key: str = DEFAULT_ARCH_KEY
    tools: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_TOOLS))

    def tool(self, name: str) -> str:
        """Return the configured binary for a tool name."""
        return self.tools.get(name) or DEFAULT_TOOLS[name]

    def resolve_scratch_root(self) -> Path:
        if self.scratch_root is not None:
            return Path(self.scratch_root)
        return Path(tempfile.gettempdir())

    @classmethod
    def from_dict(cls, values: dict[str, Any]) -> PatchSettings:
        known = {item.name for item in fields(cls)}
        data = {key: value for key, value in values.items() if key in known}

        tools = dict(DEFAULT_TOOLS)
        if isinstance(data.get("tools"), dict):
            tools.update(
                {str(key): str(value) for key, value in data["tools"].items()}
            )
        data["tools"] = tools

        if data.get("scratch_root") is not None:
            data["scratch_root"] = Path(data["scratch_root"])
        data["xz_compression_level"] = normalize_xz_level(
            data.get("xz_compression_level")
        )
        timeout = data.get("tool_timeout_seconds")
        data["tool_timeout_seconds"] = normalize_timeout(timeout)
        return cls(**data)


def normalize_xz_level(value: Any) -> int:
    """Return an xz preset in 0..9, falling back to the default."""
    try:
        level = int(value)
    except (TypeError, ValueError):
        return DEFAULT_XZ_COMPRESSION_LEVEL
    if 0 <= level <= 9:
        return level
    return DEFAULT_XZ_COMPRESSION_LEVEL


def normalize_timeout(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        timeout = float(value)
    except (TypeError, ValueError):
        return None
    if timeout <= 0:
        return None
    return timeout


def load_settings(path: Optional[Path] = None) -> PatchSettings:
    """Build settings from defaults, an optional JSON file and the environment.

    Unreadable or malformed settings files are ignored, matching a missing
    file. ``XZ_COMPRESSION_LEVEL`` overrides the file value.
    """
    values = dict(DEFAULT_SETTINGS)
    settings_path = Path(path) if path is not None else SETTINGS_PATH
    if settings_path.exists():
        try:
            data = json.loads(settings_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            data = None
        if isinstance(data, dict):
            values.update(data)

    env_level = os.environ.get("XZ_COMPRESSION_LEVEL")
    if env_level is not None:
        values["xz_compression_level"] = env_level

    return PatchSettings.from_dict(values)


def save_settings(settings: PatchSettings, path: Optional[Path] = None) -> None:
    settings_path = Path(path) if path is not None else SETTINGS_PATH
    settings_path.parent.mkdir(parents=True, exist_ok=True)
    values = {
        "sector_size": settings.sector_size,
        "scratch_root": str(settings.scratch_root) if settings.scratch_root else None,
        "keep_scratch_files": settings.keep_scratch_files,
        "flush_partial_on_error": settings.flush_partial_on_error,
        "tool_timeout_seconds": settings.tool_timeout_seconds,
        "xz_compression_level": settings.xz_compression_level,
        "os_release_path": settings.os_release_path,
        "arch_key": settings.arch_key,
        "tools": dict(settings.tools),
    }
    settings_path.write_text(
        json.dumps(values, indent=2, sort_keys=True),
        encoding="utf-8",
    )
