from .errors import ArmError, ReadBinaryInfoFail, StubSectionNotFound, SymbolNotFound
from .segments import Segment, read_elf_bin_data, segments_from_elf
from .flash_device import FlashDevice, SectorInfo, read_sectors
from .stub import ArmFlashStub, StubSettings, build_stub

__all__ = [
    "ArmError",
    "ReadBinaryInfoFail",
    "StubSectionNotFound",
    "SymbolNotFound",
    "Segment",
    "read_elf_bin_data",
    "segments_from_elf",
    "FlashDevice",
    "SectorInfo",
    "read_sectors",
    "ArmFlashStub",
    "StubSettings",
    "build_stub",
]
