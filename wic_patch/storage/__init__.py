"""Partition patching of flashable disk images.

Main Functions:
    - copy_to_image(): copy host files into image partitions
    - copy_from_image(): copy files out of image partitions
    - generate_bmap(): write a block map for an image
    - read_file_from_image(): read one file from a partition
    - image_action(): run an action on a possibly compressed image
    - image_arch(): detect the target architecture of an image

Building Blocks:
    - PartitionLocator: partition kind -> table number and sector range
    - SectorStager: scratch file extraction and writeback
    - FilesystemInjector: mtools / e2tools transfers
    - PatchEngine: batch orchestration
    - PatchTools: external tool bindings (replaceable in tests)
"""

from .bmap import BlockMapEmitter, bmap_path_for
from .compression import Compression, detect_compression, image_action
from .exceptions import (
    BmapGenerationFailed,
    CompressionError,
    ExtractVerificationFailed,
    ImagePatchError,
    InjectFailed,
    InspectionFailed,
    InvalidDestinationPath,
    InvalidInputPath,
    PartitionNotFound,
    PatchCancelled,
    StageExtractFailed,
    StageWritebackFailed,
    ToolCommandError,
    UnsupportedArchitecture,
    UnsupportedDisklabel,
)
from .filesystem import FilesystemInjector
from .image_info import image_arch
from .partition_table import PartitionLocator, locate_partition
from .patch import (
    PatchEngine,
    copy_from_image,
    copy_to_image,
    generate_bmap,
    read_file_from_image,
)
from .staging import SectorStager
from .tools import PatchTools


__all__ = [
    # Main operations
    "copy_to_image",
    "copy_from_image",
    "generate_bmap",
    "read_file_from_image",
    "image_action",
    "image_arch",
    # Building blocks
    "BlockMapEmitter",
    "Compression",
    "FilesystemInjector",
    "PartitionLocator",
    "PatchEngine",
    "PatchTools",
    "SectorStager",
    "bmap_path_for",
    "detect_compression",
    "locate_partition",
    # Errors
    "BmapGenerationFailed",
    "CompressionError",
    "ExtractVerificationFailed",
    "ImagePatchError",
    "InjectFailed",
    "InspectionFailed",
    "InvalidDestinationPath",
    "InvalidInputPath",
    "PartitionNotFound",
    "PatchCancelled",
    "StageExtractFailed",
    "StageWritebackFailed",
    "ToolCommandError",
    "UnsupportedArchitecture",
    "UnsupportedDisklabel",
]
