from __future__ import annotations

import logging
import pydantic

from typing import Any, Iterator, Optional, Sequence, cast
from elftools.elf.elffile import ELFFile  # pyright: ignore[reportUnknownVariableType]
from elftools.elf.segments import Segment as ElfSegment  # pyright: ignore[reportUnknownVariableType]

LOG = logging.getLogger(__name__)


class Segment(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(frozen=True)

    address: int
    offset: int
    size: int

    @property
    def end(self) -> int:
        return self.address + self.size

    @classmethod
    def from_header(cls, header: Any) -> Segment:
        """
        Build a segment from a program header, keeping only the file-backed part.
        """
        return cls(
            address=int(header["p_paddr"]),
            offset=int(header["p_offset"]),
            size=min(int(header["p_memsz"]), int(header["p_filesz"])),
        )


def segments_from_elf(elf: ELFFile) -> list[Segment]:
    """
    List all program header segments in the order they appear in the ELF.
    """
    return [
        Segment.from_header(cast(Any, seg).header)
        for seg in cast(Iterator[ElfSegment], elf.iter_segments())  # pyright: ignore[reportUnknownMemberType]
    ]


def read_elf_bin_data(segments: Sequence[Segment], buffer: bytes, address: int, size: int) -> Optional[bytes]:
    """
    Return the `size` bytes loaded at `address`, or None when no single segment holds all of them.
    """
    end: int = address + size

    for segment in segments:
        LOG.debug("Segment address: 0x%08x", segment.address)
        LOG.debug("Segment size:    %d bytes", segment.size)

        # Requested data starts above this segment
        if address > segment.end:
            continue

        # Requested data ends below this segment
        if end <= segment.address:
            continue

        if address >= segment.address and end <= segment.end:
            start: int = segment.offset + (address - segment.address)
            data: bytes = bytes(buffer[start : start + size])
            if len(data) != size:
                LOG.debug("Segment at 0x%08x points past the end of the file", segment.address)
                return None
            return data

    return None
