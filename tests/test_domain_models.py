"""Tests for domain models."""

from pathlib import Path

import pytest

from wic_patch.domain import (
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


class TestPartitionNumbers:
    """Tests for partition kind to table number mapping."""

    @pytest.mark.parametrize(
        "kind,disklabel,number",
        [
            (PartitionKind.BOOT, DisklabelType.GPT, 1),
            (PartitionKind.BOOT, DisklabelType.DOS, 1),
            (PartitionKind.ROOT_A, DisklabelType.GPT, 2),
            (PartitionKind.ROOT_A, DisklabelType.DOS, 2),
            (PartitionKind.FACTORY, DisklabelType.GPT, 4),
            (PartitionKind.FACTORY, DisklabelType.DOS, 5),
            (PartitionKind.CERT, DisklabelType.GPT, 5),
            (PartitionKind.CERT, DisklabelType.DOS, 6),
        ],
    )
    def test_partition_number(self, kind, disklabel, number):
        assert partition_number(kind, disklabel) == number

    def test_partition_map_covers_every_kind(self):
        """Test partition_map lists all partition kinds."""
        mapping = partition_map(DisklabelType.DOS)
        assert set(mapping) == set(PartitionKind)
        assert mapping[PartitionKind.FACTORY] == 5


class TestPartitionKind:
    """Tests for PartitionKind parsing."""

    @pytest.mark.parametrize(
        "text,kind",
        [
            ("boot", PartitionKind.BOOT),
            ("rootA", PartitionKind.ROOT_A),
            ("roota", PartitionKind.ROOT_A),
            ("ROOT_A", PartitionKind.ROOT_A),
            ("Factory", PartitionKind.FACTORY),
            (" cert ", PartitionKind.CERT),
        ],
    )
    def test_parse(self, text, kind):
        assert PartitionKind.parse(text) is kind

    def test_parse_member(self):
        assert PartitionKind.parse(PartitionKind.CERT) is PartitionKind.CERT

    def test_parse_unknown(self):
        """Test unknown partitions are rejected."""
        with pytest.raises(ValueError, match="Unknown partition"):
            PartitionKind.parse("rootB")

    def test_only_boot_is_boot(self):
        assert [kind for kind in PartitionKind if kind.is_boot] == [PartitionKind.BOOT]


class TestPartitionInfo:
    """Tests for PartitionInfo."""

    def test_byte_range(self):
        info = PartitionInfo(index=1, start_sector=8192, sector_count=81920)

        assert info.byte_offset() == 8192 * 512
        assert info.byte_length() == 81920 * 512
        assert info.end_sector == 8192 + 81920 - 1

    def test_custom_sector_size(self):
        info = PartitionInfo(index=2, start_sector=10, sector_count=4)
        assert info.byte_offset(4096) == 40960
        assert info.byte_length(4096) == 16384

    def test_is_frozen(self):
        info = PartitionInfo(index=1, start_sector=1, sector_count=1)
        with pytest.raises(AttributeError):
            info.index = 2


class TestFileTransfer:
    """Tests for ToImage and FromImage."""

    def test_normalizes_fields(self):
        """Test local path, partition and image path are normalized."""
        transfer = ToImage("config.txt", "boot", "overlays/config.txt")

        assert transfer.local_path == Path("config.txt")
        assert transfer.partition is PartitionKind.BOOT
        assert transfer.image_path == "/overlays/config.txt"
        assert transfer.image_parent == "/overlays"

    def test_root_level_parent(self):
        assert FromImage("out", PartitionKind.CERT, "/ca.crt").image_parent == "/"

    def test_directions(self):
        assert ToImage("a", "boot", "/a").direction == "to-image"
        assert FromImage("a", "boot", "/a").direction == "from-image"

    def test_base_has_no_direction(self):
        with pytest.raises(NotImplementedError):
            FileTransfer("a", "boot", "/a").direction

    def test_describe(self):
        assert ToImage("a.txt", "boot", "/a.txt").describe() == "a.txt -> boot:/a.txt"
        assert FromImage("a.txt", "rootA", "/a.txt").describe() == "rootA:/a.txt -> a.txt"

    def test_equality(self):
        """Test transfers are value objects."""
        assert ToImage("a", "boot", "/a") == ToImage(Path("a"), PartitionKind.BOOT, "a")


class TestStagedPartition:
    """Tests for StagedPartition lifecycle flags."""

    @pytest.mark.parametrize(
        "state,stale",
        [
            (StageState.LOCATED, False),
            (StageState.STAGED, False),
            (StageState.APPLYING, False),
            (StageState.WRITTEN_BACK, True),
            (StageState.RELEASED, True),
            (StageState.FAILED, True),
        ],
    )
    def test_is_stale(self, state, stale):
        staged = StagedPartition(
            image=Path("image.wic"),
            kind=PartitionKind.BOOT,
            info=PartitionInfo(1, 8, 16),
            scratch_path=Path("scratch.img"),
            state=state,
        )
        assert staged.is_stale is stale

    def test_default_state(self):
        staged = StagedPartition(
            Path("image.wic"), PartitionKind.BOOT, PartitionInfo(1, 8, 16), Path("s")
        )
        assert staged.state is StageState.LOCATED


class TestArchitecture:
    """Tests for Architecture.from_target."""

    @pytest.mark.parametrize(
        "target,arch",
        [
            ("aarch64", Architecture.ARM64),
            ("arm64", Architecture.ARM64),
            ("armv7l", Architecture.ARM32),
            ("arm", Architecture.ARM32),
            ("x86_64", Architecture.X86_64),
            ("x86-64", Architecture.X86_64),
        ],
    )
    def test_from_target(self, target, arch):
        assert Architecture.from_target(target) is arch

    def test_unknown_target(self):
        with pytest.raises(ValueError, match="unknown architecture"):
            Architecture.from_target("mips")

    def test_platform_values(self):
        assert Architecture.ARM64.value == "linux/arm64"
        assert Architecture.ARM32.value == "linux/arm/v7"
        assert Architecture.X86_64.value == "linux/amd64"
