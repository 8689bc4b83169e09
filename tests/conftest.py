from __future__ import annotations

import struct
import pytest

from typing import Callable, Optional, Sequence

ELF32_HEADER: str = "<16sHHIIIIIHHHHHH"
ELF32_PHDR: str = "<IIIIIIII"
ELF32_SHDR: str = "<IIIIIIIIII"
ELF32_SYM: str = "<IIIBBH"

PT_LOAD: int = 1
SHT_PROGBITS: int = 1
SHT_SYMTAB: int = 2
SHT_STRTAB: int = 3
SHN_ABS: int = 0xFFF1
EM_ARM: int = 40

# (address, data) or (address, data, memsz)
SegmentSpec = tuple[int, bytes] | tuple[int, bytes, int]
# (name, index of the segment holding the section data)
SectionSpec = tuple[str, int]


def _align(buf: bytearray, alignment: int = 4) -> None:
    while len(buf) % alignment:
        buf.append(0)


def _strtab(names: Sequence[str]) -> tuple[bytes, dict[str, int]]:
    table = bytearray(b"\x00")
    offsets: dict[str, int] = {}
    for name in names:
        offsets[name] = len(table)
        table += name.encode() + b"\x00"
    return bytes(table), offsets


def build_elf32(
    segments: Sequence[SegmentSpec],
    sections: Sequence[SectionSpec] = (),
    symbols: Optional[dict[str, int]] = None,
) -> bytes:
    """
    Build a little-endian ARM ELF32 image with one PT_LOAD segment per entry.
    """
    symbols = symbols or {}
    phoff: int = struct.calcsize(ELF32_HEADER)
    out = bytearray(phoff + struct.calcsize(ELF32_PHDR) * len(segments))

    placed: list[tuple[int, int, int, int]] = []  # address, offset, filesz, memsz
    for entry in segments:
        address, data = entry[0], entry[1]
        memsz = entry[2] if len(entry) > 2 else len(data)
        _align(out)
        placed.append((address, len(out), len(data), memsz))
        out += data

    for index, (address, offset, filesz, memsz) in enumerate(placed):
        struct.pack_into(
            ELF32_PHDR,
            out,
            phoff + index * struct.calcsize(ELF32_PHDR),
            PT_LOAD, offset, address, address, filesz, memsz, 5, 4,
        )

    # (name, type, flags, addr, offset, size, link, info, entsize)
    headers: list[tuple[str, int, int, int, int, int, int, int, int]] = []
    for name, seg_index in sections:
        address, offset, filesz, _ = placed[seg_index]
        headers.append((name, SHT_PROGBITS, 6, address, offset, filesz, 0, 0, 0))

    if symbols:
        strtab, name_offsets = _strtab(list(symbols))
        symtab = bytearray(struct.calcsize(ELF32_SYM))
        for name, value in symbols.items():
            symtab += struct.pack(ELF32_SYM, name_offsets[name], value, 0, 0x12, 0, SHN_ABS)

        symtab_index = len(headers) + 1
        _align(out)
        headers.append((".symtab", SHT_SYMTAB, 0, 0, len(out), len(symtab), symtab_index + 1, 1, 16))
        out += symtab
        headers.append((".strtab", SHT_STRTAB, 0, 0, len(out), len(strtab), 0, 0, 0))
        out += strtab

    shstrtab, shname_offsets = _strtab([h[0] for h in headers] + [".shstrtab"])
    headers.append((".shstrtab", SHT_STRTAB, 0, 0, len(out), len(shstrtab), 0, 0, 0))
    out += shstrtab

    _align(out)
    shoff: int = len(out)
    out += bytes(struct.calcsize(ELF32_SHDR))
    for name, typ, flags, addr, offset, size, link, info, entsize in headers:
        out += struct.pack(ELF32_SHDR, shname_offsets[name], typ, flags, addr, offset, size, link, info, 4, entsize)

    ident: bytes = b"\x7fELF" + bytes([1, 1, 1, 0]) + bytes(8)
    struct.pack_into(
        ELF32_HEADER,
        out,
        0,
        ident,
        2,  # ET_EXEC
        EM_ARM,
        1,
        0,
        phoff,
        shoff,
        0x05000000,
        struct.calcsize(ELF32_HEADER),
        struct.calcsize(ELF32_PHDR),
        len(segments),
        struct.calcsize(ELF32_SHDR),
        len(headers) + 1,
        len(headers),
    )

    return bytes(out)


def pack_descriptor(
    name: bytes = b"ACME_FLASH",
    driver_version: int = 1,
    typ: int = 1,
    start_address: int = 0x0800_0000,
    device_size: int = 0x0002_0000,
    page_size: int = 0x400,
    reserved: int = 0,
    erased_default_value: int = 0xFF,
    program_page_timeout: int = 100,
    erase_sector_timeout: int = 3000,
    sectors: Sequence[tuple[int, int]] = ((0x400, 0x0800_0000),),
    terminate: bool = True,
) -> bytes:
    """
    Pack a FlashDevice descriptor; `sectors` holds (size, address) pairs.
    """
    data = struct.pack(
        "<H128sHIIIIB3xII",
        driver_version,
        name,
        typ,
        start_address,
        device_size,
        page_size,
        reserved,
        erased_default_value,
        program_page_timeout,
        erase_sector_timeout,
    )
    for size, address in sectors:
        data += struct.pack("<II", size, address)
    if terminate:
        data += struct.pack("<II", 0xFFFF_FFFF, 0xFFFF_FFFF)
    return data


@pytest.fixture
def make_elf() -> Callable[..., bytes]:
    return build_elf32


@pytest.fixture
def make_descriptor() -> Callable[..., bytes]:
    return pack_descriptor


CODE_BASE: int = 0x2000_0000
DESCRIPTOR_BASE: int = 0x2000_0100

ALGORITHM_SYMBOLS: dict[str, int] = {
    "Init": CODE_BASE + 0x01,
    "UnInit": CODE_BASE + 0x11,
    "ProgramPage": CODE_BASE + 0x21,
    "EraseSector": CODE_BASE + 0x31,
    "FlashDevice": DESCRIPTOR_BASE,
}


def build_algorithm(
    symbols: Optional[dict[str, int]] = None,
    sections: Sequence[str] = ("PrgCode", "PrgData", "DevDscr"),
    data_gap: int = 0,
    descriptor: Optional[bytes] = None,
) -> bytes:
    """
    Build a CMSIS-style flash algorithm: PrgCode, PrgData and the DevDscr descriptor, one segment each.
    """
    code: bytes = bytes(range(0x40))
    data: bytes = b"\x11" * 0x10
    segments: list[SegmentSpec] = [
        (CODE_BASE, code),
        (CODE_BASE + len(code) + data_gap, data),
        (DESCRIPTOR_BASE, descriptor if descriptor is not None else pack_descriptor()),
    ]
    names = ("PrgCode", "PrgData", "DevDscr")
    return build_elf32(
        segments,
        [(name, names.index(name)) for name in sections],
        ALGORITHM_SYMBOLS if symbols is None else symbols,
    )


@pytest.fixture
def make_algorithm() -> Callable[..., bytes]:
    return build_algorithm
