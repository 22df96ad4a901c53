"""
Pytest configuration and shared fixtures for wic-patch tests.

External tools (fdisk, dd, fallocate, mtools, e2tools, bmaptool) are replaced
by in-process fakes that work on real files:

- FakeInspector returns a scripted partition table
- FakeSectorCopier copies sector ranges with plain file IO
- ToyFilesystem stores a small JSON "filesystem" inside the scratch bytes,
  so files written into a staged partition survive the round trip through
  the image
"""

import json
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Callable, Dict, List, Optional, Tuple
from unittest.mock import Mock

import pytest

from wic_patch.config.settings import PatchSettings
from wic_patch.domain import PartitionInfo
from wic_patch.storage.exceptions import ToolCommandError
from wic_patch.storage.partition_table import PartitionRow, PartitionTable
from wic_patch.storage.tools import PatchTools


SECTOR_SIZE = 512
IMAGE_SECTORS = 96

# Partition number -> (start sector, end sector), inclusive
LAYOUTS: Dict[str, Dict[int, Tuple[int, int]]] = {
    "gpt": {1: (8, 23), 2: (24, 55), 4: (56, 71), 5: (72, 87)},
    "dos": {1: (8, 23), 2: (24, 55), 5: (56, 71), 6: (72, 87)},
}

TOY_MAGIC = b"TOYFS\x00"


# ==============================================================================
# Toy Filesystem
# ==============================================================================


def encode_toy_fs(state: dict) -> bytes:
    payload = json.dumps(state, sort_keys=True).encode("utf-8")
    return TOY_MAGIC + len(payload).to_bytes(4, "big") + payload


def decode_toy_fs(data: bytes) -> Optional[dict]:
    if not data.startswith(TOY_MAGIC):
        return None
    length = int.from_bytes(data[6:10], "big")
    return json.loads(data[10 : 10 + length].decode("utf-8"))


def empty_toy_fs() -> dict:
    return {"dirs": ["/"], "files": {}}


def write_toy_fs_file(path: Path, size: int, state: Optional[dict] = None) -> Path:
    """Create a standalone scratch file holding a toy filesystem."""
    blob = encode_toy_fs(state or empty_toy_fs())
    path.write_bytes(blob + b"\x00" * (size - len(blob)))
    return path


class ToyFilesystem:
    """
    Filesystem tool fake with the method set of MtoolsFilesystem.

    Args:
        exists_error: make_directory fails on existing directories (mmd)
        creates_parents: make_directory creates missing parents (e2mkdir)
    """

    def __init__(self, *, exists_error: bool, creates_parents: bool):
        self.exists_error = exists_error
        self.creates_parents = creates_parents
        self.calls: List[Tuple[str, str]] = []
        self.fail_on: set = set()
        self.fail_mkdir: set = set()
        self.silent_copy_out = False

    def _load(self, scratch) -> dict:
        state = decode_toy_fs(Path(scratch).read_bytes())
        if state is None:
            raise ToolCommandError(["toyfs", str(scratch)], 1, "not a filesystem")
        return state

    def _store(self, scratch, state: dict) -> None:
        blob = encode_toy_fs(state)
        if len(blob) > Path(scratch).stat().st_size:
            raise ToolCommandError(["toyfs", str(scratch)], 1, "disk full")
        with open(scratch, "r+b") as handle:
            handle.write(blob)

    def make_directory(self, scratch, directory: str) -> None:
        self.calls.append(("mkdir", directory))
        if directory in self.fail_mkdir:
            raise ToolCommandError(["mkdir", directory], 1, "I/O error")
        state = self._load(scratch)
        if directory in state["dirs"]:
            if self.exists_error:
                raise ToolCommandError(
                    ["mkdir", directory], 1, f"Directory {directory} already exists"
                )
            return
        parents = [str(parent) for parent in reversed(PurePosixPath(directory).parents)]
        for parent in parents:
            if parent not in state["dirs"]:
                if not self.creates_parents:
                    raise ToolCommandError(
                        ["mkdir", directory], 1, f"{parent}: No such directory"
                    )
                state["dirs"].append(parent)
        state["dirs"].append(directory)
        self._store(scratch, state)

    def directory_exists(self, scratch, directory: str) -> bool:
        return directory in self._load(scratch)["dirs"]

    def copy_in(self, scratch, local, destination: str) -> None:
        self.calls.append(("copy_in", destination))
        if destination in self.fail_on:
            raise ToolCommandError(["copy_in", destination], 1, "write error")
        state = self._load(scratch)
        parent = str(PurePosixPath(destination).parent)
        if parent not in state["dirs"]:
            raise ToolCommandError(["copy_in", destination], 1, f"{parent}: No such directory")
        state["files"][destination] = Path(local).read_bytes().hex()
        self._store(scratch, state)

    def copy_out(self, scratch, source: str, local) -> None:
        self.calls.append(("copy_out", source))
        if source in self.fail_on:
            raise ToolCommandError(["copy_out", source], 1, "read error")
        state = self._load(scratch)
        if source not in state["files"]:
            raise ToolCommandError(["copy_out", source], 1, f"{source}: File not found")
        if self.silent_copy_out:
            return
        Path(local).write_bytes(bytes.fromhex(state["files"][source]))


# ==============================================================================
# Tool Fakes
# ==============================================================================


class FakeInspector:
    """Table inspector returning a scripted table or raising an error."""

    def __init__(self, table: Optional[PartitionTable] = None, error: Optional[Exception] = None):
        self.table = table
        self.error = error
        self.calls: List[Path] = []

    def inspect(self, image) -> PartitionTable:
        self.calls.append(Path(image))
        if self.error is not None:
            raise self.error
        return self.table


class FakeSectorCopier:
    """Sector copier doing plain file IO at sector offsets."""

    def __init__(self, sector_size: int = SECTOR_SIZE):
        self.sector_size = sector_size
        self.calls: List[Tuple[str, int]] = []
        self.syncs = 0
        self.fail_copy_out = False
        self.fail_copy_in = False
        self.short_copy = False
        self.grow_image = False

    def copy_out(self, image, scratch, info: PartitionInfo) -> None:
        self.calls.append(("copy_out", info.index))
        if self.fail_copy_out:
            Path(scratch).write_bytes(b"partial")
            raise ToolCommandError(["dd"], 1, "dd: error reading")
        with open(image, "rb") as src:
            src.seek(info.start_sector * self.sector_size)
            data = src.read(info.sector_count * self.sector_size)
        if self.short_copy:
            data = data[: -self.sector_size]
        Path(scratch).write_bytes(data)

    def copy_in(self, scratch, image, info: PartitionInfo) -> None:
        self.calls.append(("copy_in", info.index))
        if self.fail_copy_in:
            raise ToolCommandError(["dd"], 1, "dd: error writing")
        data = Path(scratch).read_bytes()[: info.sector_count * self.sector_size]
        with open(image, "r+b") as dst:
            dst.seek(info.start_sector * self.sector_size)
            dst.write(data)
        if self.grow_image:
            with open(image, "ab") as dst:
                dst.write(b"\x00" * self.sector_size)

    def sync(self) -> None:
        self.syncs += 1


class FakeDeallocator:
    def __init__(self):
        self.calls: List[Path] = []
        self.on_dig: Optional[Callable[[], None]] = None

    def dig_holes(self, path) -> None:
        self.calls.append(Path(path))
        if self.on_dig is not None:
            self.on_dig()


class FakeBmapGenerator:
    def __init__(self):
        self.calls: List[Tuple[Path, Path]] = []
        self.fail = False
        self.skip_write = False

    def create(self, image, bmap) -> None:
        self.calls.append((Path(image), Path(bmap)))
        if self.fail:
            raise ToolCommandError(["bmaptool", "create"], 1, "bmaptool: cannot map image")
        if not self.skip_write:
            Path(bmap).write_text('<?xml version="1.0" ?>\n<bmap version="2.0"/>\n')


# ==============================================================================
# Image Fixtures
# ==============================================================================


@dataclass
class WicImage:
    """A small partitioned image file with a toy filesystem per partition."""

    path: Path
    label: str
    layout: Dict[int, Tuple[int, int]]

    def info(self, number: int) -> PartitionInfo:
        start, end = self.layout[number]
        return PartitionInfo(index=number, start_sector=start, sector_count=end - start + 1)

    def table(self) -> PartitionTable:
        rows = [
            PartitionRow(device=f"{self.path}{number}", start=start, end=end)
            for number, (start, end) in sorted(self.layout.items())
        ]
        return PartitionTable(label=self.label, rows=rows)

    def partition_bytes(self, number: int) -> bytes:
        info = self.info(number)
        data = self.path.read_bytes()
        offset = info.byte_offset(SECTOR_SIZE)
        return data[offset : offset + info.byte_length(SECTOR_SIZE)]

    def read_fs(self, number: int) -> dict:
        return decode_toy_fs(self.partition_bytes(number))

    def file_in(self, number: int, image_path: str) -> Optional[bytes]:
        content = self.read_fs(number)["files"].get(image_path)
        return bytes.fromhex(content) if content is not None else None

    def bytes_outside(self, number: int) -> bytes:
        info = self.info(number)
        data = self.path.read_bytes()
        offset = info.byte_offset(SECTOR_SIZE)
        return data[:offset] + data[offset + info.byte_length(SECTOR_SIZE) :]


def build_wic_image(path: Path, label: str = "gpt") -> WicImage:
    layout = LAYOUTS[label]
    data = bytearray()
    for sector in range(IMAGE_SECTORS):
        data += bytes([sector % 251 + 1]) * SECTOR_SIZE
    # Leave a zeroed gap so the image has something to punch holes into
    data[88 * SECTOR_SIZE :] = b"\x00" * (len(data) - 88 * SECTOR_SIZE)
    for start, _end in layout.values():
        blob = encode_toy_fs(empty_toy_fs())
        offset = start * SECTOR_SIZE
        data[offset : offset + len(blob)] = blob
    path.write_bytes(bytes(data))
    return WicImage(path=path, label=label, layout=dict(layout))


@pytest.fixture
def make_wic_image(tmp_path) -> Callable[..., WicImage]:
    """
    Fixture providing a factory for partitioned test images.

    Returns:
        Callable taking ``label`` ("gpt" or "dos") and ``name``.
    """

    def factory(label: str = "gpt", name: str = "image.wic") -> WicImage:
        return build_wic_image(tmp_path / name, label)

    return factory


@pytest.fixture
def wic_image(make_wic_image) -> WicImage:
    """Fixture providing a GPT test image."""
    return make_wic_image("gpt")


@pytest.fixture
def dos_image(make_wic_image) -> WicImage:
    """Fixture providing a DOS test image."""
    return make_wic_image("dos", name="dos.wic")


@pytest.fixture
def toy_fs_file(tmp_path) -> Callable[..., Path]:
    """Fixture providing a factory for standalone toy filesystem scratch files."""

    def factory(name: str = "scratch.img", size: int = 16 * SECTOR_SIZE, state=None) -> Path:
        return write_toy_fs_file(tmp_path / name, size, state)

    return factory


# ==============================================================================
# Tool Fixtures
# ==============================================================================


def build_patch_tools(image: Optional[WicImage] = None) -> PatchTools:
    return PatchTools(
        inspector=FakeInspector(image.table() if image is not None else None),
        copier=FakeSectorCopier(),
        deallocator=FakeDeallocator(),
        fat=ToyFilesystem(exists_error=True, creates_parents=False),
        ext=ToyFilesystem(exists_error=False, creates_parents=True),
        bmap=FakeBmapGenerator(),
    )


@pytest.fixture
def patch_tools(wic_image) -> PatchTools:
    """Fixture providing fake tools bound to the GPT test image."""
    return build_patch_tools(wic_image)


@pytest.fixture
def tools_for() -> Callable[[WicImage], PatchTools]:
    """Fixture providing a factory for fake tools bound to any test image."""
    return build_patch_tools


@pytest.fixture
def fat_tool() -> ToyFilesystem:
    return ToyFilesystem(exists_error=True, creates_parents=False)


@pytest.fixture
def ext_tool() -> ToyFilesystem:
    return ToyFilesystem(exists_error=False, creates_parents=True)


@pytest.fixture
def fake_copier() -> FakeSectorCopier:
    return FakeSectorCopier()


@pytest.fixture
def fake_deallocator() -> FakeDeallocator:
    return FakeDeallocator()


# ==============================================================================
# Settings Fixtures
# ==============================================================================


@pytest.fixture
def patch_settings(tmp_path) -> PatchSettings:
    """
    Fixture providing settings with an isolated scratch root.

    Args:
        tmp_path: pytest's built-in temporary directory fixture.
    """
    return PatchSettings(scratch_root=tmp_path / "scratch")


@pytest.fixture
def temp_settings_file(tmp_path) -> Path:
    settings_dir = tmp_path / ".config" / "wic-patch"
    settings_dir.mkdir(parents=True, exist_ok=True)
    return settings_dir / "settings.json"


@pytest.fixture
def local_file(tmp_path) -> Callable[..., Path]:
    """Fixture providing a factory for host files to copy into images."""

    def factory(name: str, content: bytes) -> Path:
        path = tmp_path / "host" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        return path

    return factory


# ==============================================================================
# Subprocess Fixtures
# ==============================================================================


@pytest.fixture
def mock_subprocess_run(mocker):
    """
    Fixture providing a mock for subprocess.run.

    Returns:
        Mock object for subprocess.run
    """
    return mocker.patch("subprocess.run")


@pytest.fixture
def mock_subprocess_success(mocker) -> Mock:
    """
    Fixture providing a mock subprocess.run that always succeeds.

    Returns:
        Mock object for subprocess.run.
    """
    mock_result = Mock()
    mock_result.returncode = 0
    mock_result.stdout = ""
    mock_result.stderr = ""
    return mocker.patch("subprocess.run", return_value=mock_result)
