from __future__ import annotations

import struct
import logging
import pydantic

from typing import Optional, Sequence
from elftools.elf.elffile import ELFFile  # pyright: ignore[reportUnknownVariableType]

from .errors import ReadBinaryInfoFail
from .segments import Segment, read_elf_bin_data, segments_from_elf

LOG = logging.getLogger(__name__)

# The descriptor is 160 bytes followed by the sector table, as laid out by the C struct.
INFO_SIZE: int = 160
SECTOR_INFO_SIZE: int = 8
MAX_ID_STRING_LENGTH: int = 128
NAME_OFFSET: int = 2
SECTOR_END: int = 0xFFFF_FFFF

# Upper bound on sector entries read before giving up on finding the terminator
MAX_SECTORS: int = 4096

HEADER_FIELDS: list[tuple[str, int, str]] = [
    ("driver_version", 0, "<H"),
    ("typ", 130, "<H"),
    ("start_address", 132, "<I"),
    ("device_size", 136, "<I"),
    ("page_size", 140, "<I"),
    ("reserved", 144, "<I"),
    ("erased_default_value", 148, "<B"),
    ("program_page_timeout", 152, "<I"),
    ("erase_sector_timeout", 156, "<I"),
]


class SectorInfo(pydantic.BaseModel):
    """
    One flash region with a uniform sector size, starting at `address`.
    """

    model_config = pydantic.ConfigDict(frozen=True)

    address: int
    size: int


class FlashDevice(pydantic.BaseModel):
    """
    The flash algorithm descriptor (`struct FlashDevice`) found in the ELF.
    """

    model_config = pydantic.ConfigDict(frozen=True)

    driver_version: int
    name: str
    typ: int
    start_address: int
    device_size: int
    page_size: int
    reserved: int = 0
    erased_default_value: int
    program_page_timeout: int  # ms
    erase_sector_timeout: int  # ms
    sectors: tuple[SectorInfo, ...] = ()

    @property
    def end_address(self) -> int:
        return self.start_address + self.device_size

    def sector_size_at(self, address: int) -> Optional[int]:
        """
        Sector size of the region covering `address`, None if it lies before the first region.
        """
        size: Optional[int] = None
        for sector in self.sectors:
            if sector.address > address:
                break
            size = sector.size
        return size

    @classmethod
    def parse(cls, segments: Sequence[Segment], buffer: bytes, address: int) -> FlashDevice:
        """
        Decode the descriptor located at `address`.
        """
        data: bytes | None = read_elf_bin_data(segments, buffer, address, INFO_SIZE)
        if data is None:
            raise ReadBinaryInfoFail(address, INFO_SIZE)

        fields: dict[str, int] = {name: struct.unpack_from(fmt, data, off)[0] for name, off, fmt in HEADER_FIELDS}

        return cls(
            name=decode_name(data),
            sectors=read_sectors(segments, buffer, address),
            **fields,
        )

    @classmethod
    def from_elf(cls, elf: ELFFile, buffer: bytes, address: int) -> FlashDevice:
        return cls.parse(segments_from_elf(elf), buffer, address)


def decode_name(data: bytes) -> str:
    raw: bytes = data[NAME_OFFSET : NAME_OFFSET + MAX_ID_STRING_LENGTH]
    length: int = raw.find(b"\x00")
    if length < 0:
        length = MAX_ID_STRING_LENGTH
    return raw[:length].decode("utf-8", errors="replace")


def read_sectors(segments: Sequence[Segment], buffer: bytes, address: int) -> tuple[SectorInfo, ...]:
    """
    Read sector entries after the descriptor until the terminator or the end of segment data.
    """
    sectors: list[SectorInfo] = []
    offset: int = INFO_SIZE

    while (data := read_elf_bin_data(segments, buffer, address + offset, SECTOR_INFO_SIZE)) is not None:
        size, sector_address = struct.unpack_from("<II", data, 0)
        if size == SECTOR_END and sector_address == SECTOR_END:
            break

        if len(sectors) >= MAX_SECTORS:
            LOG.warning("No sector table terminator within %d entries at 0x%08x, stopping", MAX_SECTORS, address)
            break

        sectors.append(SectorInfo(address=sector_address, size=size))
        offset += SECTOR_INFO_SIZE

    LOG.debug("Found %d sectors for descriptor at 0x%08x", len(sectors), address)
    return tuple(sectors)
