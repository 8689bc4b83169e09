from __future__ import annotations


class ArmError(Exception):
    """
    Base class for every error raised while reading a flash algorithm.
    """


class ReadBinaryInfoFail(ArmError):
    def __init__(self, address: int, size: int) -> None:
        self.address: int = address
        self.size: int = size
        super().__init__(f"Failed to read binary info. Read address: 0x{address:08x}, size: {size} bytes")


class StubSectionNotFound(ArmError):
    def __init__(self, section: str) -> None:
        self.section: str = section
        super().__init__(f"Section {section} not found, which is required to be present.")


class SymbolNotFound(ArmError):
    def __init__(self, symbol: str) -> None:
        self.symbol: str = symbol
        super().__init__(f"Symbol {symbol} not found in the symbol table.")


class SectionLayoutError(ArmError):
    def __init__(self, code_section: str, data_section: str, data_section_offset: int) -> None:
        self.data_section_offset: int = data_section_offset
        super().__init__(
            f"Section {data_section} must be placed after the end of {code_section}, "
            f"found at offset {data_section_offset}."
        )
