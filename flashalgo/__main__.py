#!/usr/bin/env python3
from __future__ import annotations

import sys
import struct
import logging
import argparse

from pathlib import Path
from typing import cast
from elftools.elf.elffile import ELFFile  # pyright: ignore[reportUnknownVariableType]
from elftools.common.exceptions import ELFError  # pyright: ignore[reportUnknownVariableType]

from .errors import ArmError
from .flash_device import INFO_SIZE, SECTOR_END, SECTOR_INFO_SIZE, FlashDevice
from .segments import Segment, read_elf_bin_data, segments_from_elf
from .stub import ArmFlashStub, StubSettings, build_stub, collect_symbols, find_descriptor_address

ELF_NAME: str = "algorithm.elf"
SETTINGS_NAME: str = "settings.toml"
STUB_NAME: str = "stub.toml"


def parse_address(value: str) -> int:
    return int(value, 0)


def load_device(elf_path: Path, address: int | None) -> tuple[FlashDevice, list[Segment], bytes, int]:
    """
    Read the ELF and decode the descriptor at `address`, or at the default location.
    """
    if not elf_path.is_file():
        raise FileNotFoundError(f"ELF file '{elf_path}' does not exist")

    buffer: bytes = elf_path.read_bytes()

    with elf_path.open("rb") as f:
        elf: ELFFile = ELFFile(f)  # pyright: ignore[reportUnknownMemberType]
        segments: list[Segment] = segments_from_elf(elf)
        if address is None:
            address = find_descriptor_address(elf, collect_symbols(elf))

    return FlashDevice.parse(segments, buffer, address), segments, buffer, address


def cmd_info(args: argparse.Namespace) -> None:
    """
    Print the flash descriptor and its sector table.
    """
    device, _, _, address = load_device(cast(Path, args.elf), cast("int | None", args.address))

    print(f"[flashalgo] FlashDevice at 0x{address:08x}")
    print(f"  Name:           {device.name}")
    print(f"  Driver version: 0x{device.driver_version:04x}")
    print(f"  Type:           {device.typ}")
    print(f"  Flash:          0x{device.start_address:08x} - 0x{device.end_address:08x} ({device.device_size} bytes)")
    print(f"  Page size:      {device.page_size} bytes")
    print(f"  Erased value:   0x{device.erased_default_value:02x}")
    print(f"  Program page:   {device.program_page_timeout} ms")
    print(f"  Erase sector:   {device.erase_sector_timeout} ms")
    print(f"  Sectors:        {len(device.sectors)}")
    for sector in device.sectors:
        print(f"    0x{sector.address:08x}: {sector.size} bytes")


def cmd_dump(args: argparse.Namespace) -> None:
    """
    Write the raw descriptor bytes, including the sector table terminator when present, to a file.
    """
    device, segments, buffer, address = load_device(cast(Path, args.elf), cast("int | None", args.address))
    out_bin: Path = cast(Path, args.output)

    # Entries may live in different segments, so read them one window at a time
    windows: list[bytes | None] = [read_elf_bin_data(segments, buffer, address, INFO_SIZE)]
    for index in range(len(device.sectors)):
        entry_address: int = address + INFO_SIZE + index * SECTOR_INFO_SIZE
        windows.append(read_elf_bin_data(segments, buffer, entry_address, SECTOR_INFO_SIZE))

    # The entry after the last sector is only kept when it is the terminator
    trailer_address: int = address + INFO_SIZE + len(device.sectors) * SECTOR_INFO_SIZE
    trailer: bytes | None = read_elf_bin_data(segments, buffer, trailer_address, SECTOR_INFO_SIZE)
    if trailer is not None and struct.unpack("<II", trailer) == (SECTOR_END, SECTOR_END):
        windows.append(trailer)
    data: bytes = b"".join(w for w in windows if w is not None)

    out_bin.parent.mkdir(parents=True, exist_ok=True)
    out_bin.write_bytes(data)

    print(f"[flashalgo] Descriptor '{device.name}' written to '{out_bin}' ({len(data)} bytes)")


def cmd_stub(args: argparse.Namespace) -> None:
    """
    Build stub.toml from algorithm.elf and settings.toml in the specified folder.
    """
    env_dir: Path = cast(Path, args.folder).resolve()
    elf_file: Path = env_dir / ELF_NAME
    settings_file: Path = env_dir / SETTINGS_NAME

    if not elf_file.exists():
        raise FileNotFoundError(f"{ELF_NAME} not found in {env_dir}")

    if not settings_file.exists():
        raise FileNotFoundError(f"{SETTINGS_NAME} not found in {env_dir}")

    settings: StubSettings = StubSettings.load_from_file(settings_file)
    buffer: bytes = elf_file.read_bytes()

    with elf_file.open("rb") as f:
        elf: ELFFile = ELFFile(f)  # pyright: ignore[reportUnknownMemberType]
        stub: ArmFlashStub = build_stub(elf, buffer, settings)

    stub_file: Path = env_dir / STUB_NAME
    stub.save_to_file(stub_file)

    print(f"[flashalgo] Flash: 0x{stub.flash_start_addr:08x} - 0x{stub.flash_end_addr:08x}")
    print(f"[flashalgo] Erase all: {'yes' if stub.pc_erase_all is not None else 'no'}")
    print(f"[flashalgo] Stub written to: {stub_file}")


def main(argv: list[str] | None = None) -> int:
    """
    Main entry point: parse arguments and dispatch commands.
    """
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        prog="flashalgo", description="flashalgo: flash algorithm descriptor reader"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_info = subparsers.add_parser("info", help="Show the FlashDevice descriptor of a flash algorithm ELF")
    p_info.add_argument("elf", type=Path, help="Path to the ELF file")
    p_info.add_argument("--address", type=parse_address, default=None, help="Descriptor address (default: FlashDevice symbol)")
    p_info.set_defaults(func=cmd_info)

    p_dump = subparsers.add_parser("dump", help="Write the raw FlashDevice descriptor to a binary file")
    p_dump.add_argument("elf", type=Path, help="Path to the ELF file")
    p_dump.add_argument("output", type=Path, help="Output binary file")
    p_dump.add_argument("--address", type=parse_address, default=None, help="Descriptor address (default: FlashDevice symbol)")
    p_dump.set_defaults(func=cmd_dump)

    p_stub = subparsers.add_parser("stub", help="Build stub.toml from a folder containing algorithm.elf and settings.toml")
    p_stub.add_argument("folder", type=Path, help="Path to folder containing algorithm.elf and settings.toml")
    p_stub.set_defaults(func=cmd_stub)

    args: argparse.Namespace = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        args.func(args)
    except (ArmError, ELFError, FileNotFoundError) as e:
        print(f"[flashalgo] ERROR: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
