from __future__ import annotations

import toml
import base64
import logging
import pydantic

from pathlib import Path
from typing import Optional, Any, Iterator, cast
from pydantic.alias_generators import to_camel
from elftools.elf.elffile import ELFFile  # pyright: ignore[reportUnknownVariableType]
from elftools.elf.sections import Section, SymbolTableSection  # pyright: ignore[reportUnknownVariableType]

from .errors import SectionLayoutError, StubSectionNotFound, SymbolNotFound
from .flash_device import FlashDevice
from .segments import segments_from_elf

LOG = logging.getLogger(__name__)

CODE_SECTION: str = "PrgCode"
DATA_SECTION: str = "PrgData"
DEVICE_SECTION: str = "DevDscr"
FLASH_DEVICE_SYMBOL: str = "FlashDevice"

SYMBOL_INIT: str = "Init"
SYMBOL_UNINIT: str = "UnInit"
SYMBOL_PROGRAM_PAGE: str = "ProgramPage"
SYMBOL_ERASE_SECTOR: str = "EraseSector"
SYMBOL_ERASE_ALL: str = "EraseChip"


class ArmFlashStub(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str = ""
    description: str = ""
    default: bool = False
    instructions: str = ""
    pc_init: int = 0
    pc_uninit: int = 0
    pc_program_page: int = 0
    pc_erase_sector: int = 0
    pc_erase_all: Optional[int] = None
    data_section_offset: int = 0
    flash_start_addr: int = 0
    flash_end_addr: int = 0
    flash_page_size: int = 0
    erased_byte_value: int = 0
    flash_sector_size: int = 0
    program_timeout: int = 0
    erase_timeout: int = 0
    ram_size: int = 0
    flash_size: int = 0

    @classmethod
    def load_from_file(cls, path: Path) -> ArmFlashStub:
        data = toml.load(path)
        return cls.model_validate(data)  # type: ignore

    def save_to_file(self, path: Path) -> None:
        with path.open("w") as out:
            toml.dump(self.model_dump(by_alias=True, exclude_none=True), out)


class StubSettings(pydantic.BaseModel):
    name: str
    description: str = ""
    default: bool = False
    ram_size: int = 0
    flash_device_symbol: str = FLASH_DEVICE_SYMBOL
    code_section: str = CODE_SECTION
    data_section: str = DATA_SECTION
    device_section: str = DEVICE_SECTION

    @classmethod
    def load_from_file(cls, path: Path) -> StubSettings:
        """
        Load settings.toml and validate.
        """
        data = toml.load(path)
        return cls.model_validate(data)  # type: ignore


def require_section(elf: ELFFile, name: str) -> Section:
    section: Section | None = cast(Section | None, elf.get_section_by_name(name))  # pyright: ignore[reportUnknownMemberType]
    if section is None:
        raise StubSectionNotFound(name)
    return section


def collect_symbols(elf: ELFFile) -> dict[str, int]:
    """
    Collect the values of all defined, named symbols.
    """
    symbols: dict[str, int] = {}

    for section in cast(Iterator[Section], elf.iter_sections()):  # pyright: ignore[reportUnknownMemberType]
        if not isinstance(section, SymbolTableSection):
            continue

        for sym in section.iter_symbols():
            if cast(dict[str, Any], sym.entry)["st_shndx"] != "SHN_UNDEF" and sym.name:  # pyright: ignore[reportUnknownMemberType]
                symbols[cast(str, sym.name)] = cast(int, sym["st_value"])  # pyright: ignore[reportUnknownMemberType]

    return symbols


def section_bytes(section: Section) -> bytes:
    # NOBITS sections (.bss-like) occupy no file space
    if section["sh_type"] == "SHT_NOBITS":
        return bytes(cast(int, section["sh_size"]))
    return cast(bytes, section.data())  # pyright: ignore[reportUnknownMemberType]


def find_descriptor_address(
    elf: ELFFile,
    symbols: dict[str, int],
    symbol: str = FLASH_DEVICE_SYMBOL,
    section: str = DEVICE_SECTION,
) -> int:
    """
    Locate the FlashDevice descriptor by symbol, or by its section when the symbol is missing.
    """
    address: int | None = symbols.get(symbol)
    if address is not None:
        return address

    LOG.debug("No %s symbol, falling back to section %s", symbol, section)
    return cast(int, require_section(elf, section)["sh_addr"])


def build_stub(elf: ELFFile, buffer: bytes, settings: StubSettings) -> ArmFlashStub:
    """
    Build a flash stub description from a compiled flash algorithm ELF.
    """
    code: Section = require_section(elf, settings.code_section)
    data: Section = require_section(elf, settings.data_section)
    symbols: dict[str, int] = collect_symbols(elf)

    code_start: int = cast(int, code["sh_addr"])

    def entry_point(symbol: str) -> int:
        if symbol not in symbols:
            raise SymbolNotFound(symbol)
        return symbols[symbol] - code_start

    descriptor_address: int = find_descriptor_address(
        elf, symbols, settings.flash_device_symbol, settings.device_section
    )
    device: FlashDevice = FlashDevice.parse(segments_from_elf(elf), buffer, descriptor_address)

    data_section_offset: int = cast(int, data["sh_addr"]) - code_start
    code_bytes: bytes = section_bytes(code)
    if data_section_offset < 0 or data_section_offset < len(code_bytes):
        raise SectionLayoutError(settings.code_section, settings.data_section, data_section_offset)

    blob: bytes = code_bytes.ljust(data_section_offset, b"\x00") + section_bytes(data)

    return ArmFlashStub(
        name=settings.name,
        description=settings.description,
        default=settings.default,
        instructions=base64.b64encode(blob).decode("ascii"),
        pc_init=entry_point(SYMBOL_INIT),
        pc_uninit=entry_point(SYMBOL_UNINIT),
        pc_program_page=entry_point(SYMBOL_PROGRAM_PAGE),
        pc_erase_sector=entry_point(SYMBOL_ERASE_SECTOR),
        pc_erase_all=entry_point(SYMBOL_ERASE_ALL) if SYMBOL_ERASE_ALL in symbols else None,
        data_section_offset=data_section_offset,
        flash_start_addr=device.start_address,
        flash_end_addr=device.end_address,
        flash_page_size=device.page_size,
        erased_byte_value=device.erased_default_value,
        flash_sector_size=device.sectors[0].size if device.sectors else 0,
        program_timeout=device.program_page_timeout,
        erase_timeout=device.erase_sector_timeout,
        ram_size=settings.ram_size,
        flash_size=device.device_size,
    )
