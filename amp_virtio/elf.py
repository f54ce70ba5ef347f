"""ELF file structures: headers, program and section headers, symbols, relocations."""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

EI_NIDENT = 16
EI_MAG0, EI_MAG1, EI_MAG2, EI_MAG3 = 0, 1, 2, 3
EI_CLASS = 4
EI_DATA = 5
EI_VERSION = 6
EI_OSABI = 7
EI_ABIVERSION = 8
EI_PAD = 9

ELFMAG = b"\x7fELF"
SELFMAG = 4
ELFOSABI_NONE = 0

ET_NONE = 0
ET_REL = 1
ET_EXEC = 2
ET_DYN = 3
ET_CORE = 4
ET_LOOS = 0xFE00
ET_HIOS = 0xFEFF
ET_LOPROC = 0xFF00
ET_HIPROC = 0xFFFF

EM_ARM = 40
EV_CURRENT = 1

PT_NULL = 0
PT_LOAD = 1
PT_DYNAMIC = 2
PT_INTERP = 3
PT_NOTE = 4
PT_SHLIB = 5
PT_PHDR = 6
PT_TLS = 7
PT_LOOS = 0x60000000
PT_HIOS = 0x6FFFFFFF
PT_LOPROC = 0x70000000
PT_HIPROC = 0x7FFFFFFF

SHT_NULL = 0
SHT_PROGBITS = 1
SHT_SYMTAB = 2
SHT_STRTAB = 3
SHT_RELA = 4
SHT_HASH = 5
SHT_DYNAMIC = 6
SHT_NOTE = 7
SHT_NOBITS = 8
SHT_REL = 9
SHT_SHLIB = 10
SHT_DYNSYM = 11
SHT_INIT_ARRAY = 14
SHT_FINI_ARRAY = 15
SHT_PREINIT_ARRAY = 16
SHT_GROUP = 17
SHT_SYMTAB_SHNDX = 18
SHT_LOOS = 0x60000000
SHT_HIOS = 0x6FFFFFFF
SHT_LOPROC = 0x70000000
SHT_HIPROC = 0x7FFFFFFF
SHT_LOUSER = 0x80000000
SHT_HIUSER = 0xFFFFFFFF

SHF_WRITE = 0x1
SHF_ALLOC = 0x2
SHF_EXECINSTR = 0x4
SHF_MASKPROC = 0xF0000000

R_ARM_ABS32 = 2
R_ARM_GLOB_DAT = 21
R_ARM_JUMP_SLOT = 22
R_ARM_RELATIVE = 23

ELF_STATE_INIT = 0x0
ELF_STATE_WAIT_FOR_PHDRS = 0x100
ELF_STATE_WAIT_FOR_SHDRS = 0x200
ELF_STATE_WAIT_FOR_SHSTRTAB = 0x400
ELF_STATE_HDRS_COMPLETE = 0x800
ELF_STATE_MASK = 0xFF00
ELF_NEXT_SEGMENT_MASK = 0x00FF


class ElfClass(enum.IntEnum):
    """File class: the width of addresses and offsets."""

    NONE = 0
    CLASS32 = 1
    CLASS64 = 2


class ElfData(enum.IntEnum):
    """Data encoding of the file."""

    NONE = 0
    LSB = 1
    MSB = 2


class ElfError(ValueError):
    """Raised for data that is not a valid ELF structure."""


_LAYOUTS = {
    "ehdr": {ElfClass.CLASS32: "16sHHIIIIIHHHHHH", ElfClass.CLASS64: "16sHHIQQQIHHHHHH"},
    "phdr": {ElfClass.CLASS32: "IIIIIIII", ElfClass.CLASS64: "IIQQQQQQ"},
    "shdr": {ElfClass.CLASS32: "IIIIIIIIII", ElfClass.CLASS64: "IIQQQQIIQQ"},
    "sym": {ElfClass.CLASS32: "IIIBBH", ElfClass.CLASS64: "IBBHQQ"},
    "rel": {ElfClass.CLASS32: "II", ElfClass.CLASS64: "QQ"},
    "rela": {ElfClass.CLASS32: "IIi", ElfClass.CLASS64: "QQq"},
}


def _check_class(elf_class: int) -> ElfClass:
    if elf_class not in (ElfClass.CLASS32, ElfClass.CLASS64):
        raise ElfError(f"invalid ELF class {elf_class}")
    return ElfClass(elf_class)


@lru_cache(maxsize=None)
def _layout(kind: str, elf_class: ElfClass, little_endian: bool) -> struct.Struct:
    return struct.Struct(("<" if little_endian else ">") + _LAYOUTS[kind][elf_class])


def _get_layout(kind: str, elf_class: int, little_endian: bool) -> struct.Struct:
    return _layout(kind, _check_class(elf_class), bool(little_endian))


def _unpack(kind: str, data: bytes, elf_class: int, little_endian: bool) -> tuple:
    layout = _get_layout(kind, elf_class, little_endian)
    if len(data) < layout.size:
        raise ElfError(f"{kind} needs {layout.size} bytes, got {len(data)}")
    return layout.unpack_from(data)


def _pack(kind: str, elf_class: int, little_endian: bool, *values: int) -> bytes:
    layout = _get_layout(kind, elf_class, little_endian)
    try:
        return layout.pack(*values)
    except struct.error as exc:
        raise ElfError(f"cannot pack {kind}: {exc}") from exc


@dataclass
class ElfHeader:
    """The ELF file header."""

    e_ident: bytes
    e_type: int = ET_NONE
    e_machine: int = 0
    e_version: int = EV_CURRENT
    e_entry: int = 0
    e_phoff: int = 0
    e_shoff: int = 0
    e_flags: int = 0
    e_ehsize: int = 0
    e_phentsize: int = 0
    e_phnum: int = 0
    e_shentsize: int = 0
    e_shnum: int = 0
    e_shstrndx: int = 0

    @property
    def elf_class(self) -> ElfClass:
        return _check_class(self.e_ident[EI_CLASS])

    @property
    def little_endian(self) -> bool:
        encoding = self.e_ident[EI_DATA]
        if encoding not in (ElfData.LSB, ElfData.MSB):
            raise ElfError(f"invalid data encoding {encoding}")
        return encoding == ElfData.LSB

    def pack(self) -> bytes:
        if len(self.e_ident) != EI_NIDENT:
            raise ElfError(f"identification must be {EI_NIDENT} bytes")
        return _pack(
            "ehdr",
            self.elf_class,
            self.little_endian,
            bytes(self.e_ident),
            self.e_type,
            self.e_machine,
            self.e_version,
            self.e_entry,
            self.e_phoff,
            self.e_shoff,
            self.e_flags,
            self.e_ehsize,
            self.e_phentsize,
            self.e_phnum,
            self.e_shentsize,
            self.e_shnum,
            self.e_shstrndx,
        )


@dataclass
class ProgramHeader:
    """A program (segment) header."""

    p_type: int = PT_NULL
    p_offset: int = 0
    p_vaddr: int = 0
    p_paddr: int = 0
    p_filesz: int = 0
    p_memsz: int = 0
    p_flags: int = 0
    p_align: int = 0

    def pack(self, elf_class: int, little_endian: bool) -> bytes:
        if _check_class(elf_class) == ElfClass.CLASS32:
            values = (
                self.p_type, self.p_offset, self.p_vaddr, self.p_paddr,
                self.p_filesz, self.p_memsz, self.p_flags, self.p_align,
            )
        else:
            values = (
                self.p_type, self.p_flags, self.p_offset, self.p_vaddr,
                self.p_paddr, self.p_filesz, self.p_memsz, self.p_align,
            )
        return _pack("phdr", elf_class, little_endian, *values)


@dataclass
class SectionHeader:
    """A section header."""

    sh_name: int = 0
    sh_type: int = SHT_NULL
    sh_flags: int = 0
    sh_addr: int = 0
    sh_offset: int = 0
    sh_size: int = 0
    sh_link: int = 0
    sh_info: int = 0
    sh_addralign: int = 0
    sh_entsize: int = 0

    def pack(self, elf_class: int, little_endian: bool) -> bytes:
        return _pack(
            "shdr",
            elf_class,
            little_endian,
            self.sh_name, self.sh_type, self.sh_flags, self.sh_addr, self.sh_offset,
            self.sh_size, self.sh_link, self.sh_info, self.sh_addralign, self.sh_entsize,
        )


@dataclass
class Symbol:
    """A symbol table entry."""

    st_name: int = 0
    st_value: int = 0
    st_size: int = 0
    st_info: int = 0
    st_other: int = 0
    st_shndx: int = 0

    def pack(self, elf_class: int, little_endian: bool) -> bytes:
        if _check_class(elf_class) == ElfClass.CLASS32:
            values = (
                self.st_name, self.st_value, self.st_size,
                self.st_info, self.st_other, self.st_shndx,
            )
        else:
            values = (
                self.st_name, self.st_info, self.st_other,
                self.st_shndx, self.st_value, self.st_size,
            )
        return _pack("sym", elf_class, little_endian, *values)


@dataclass
class Relocation:
    """A relocation entry; ``r_addend`` is None for entries without addend."""

    r_offset: int = 0
    r_info: int = 0
    r_addend: Optional[int] = None

    def pack(self, elf_class: int, little_endian: bool) -> bytes:
        if self.r_addend is None:
            return _pack("rel", elf_class, little_endian, self.r_offset, self.r_info)
        return _pack(
            "rela", elf_class, little_endian, self.r_offset, self.r_info, self.r_addend
        )


def parse_elf_header(data: bytes) -> ElfHeader:
    """Parse the file header at the start of ``data``."""
    if len(data) < EI_NIDENT:
        raise ElfError(f"ELF identification needs {EI_NIDENT} bytes, got {len(data)}")
    if bytes(data[:SELFMAG]) != ELFMAG:
        raise ElfError("not an ELF image")
    elf_class = _check_class(data[EI_CLASS])
    encoding = data[EI_DATA]
    if encoding not in (ElfData.LSB, ElfData.MSB):
        raise ElfError(f"invalid data encoding {encoding}")
    fields = _unpack("ehdr", data, elf_class, encoding == ElfData.LSB)
    return ElfHeader(bytes(fields[0]), *fields[1:])


def parse_program_header(data: bytes, elf_class: int, little_endian: bool) -> ProgramHeader:
    fields = _unpack("phdr", data, elf_class, little_endian)
    if _check_class(elf_class) == ElfClass.CLASS32:
        return ProgramHeader(*fields)
    p_type, p_flags, p_offset, p_vaddr, p_paddr, p_filesz, p_memsz, p_align = fields
    return ProgramHeader(
        p_type, p_offset, p_vaddr, p_paddr, p_filesz, p_memsz, p_flags, p_align
    )


def parse_section_header(data: bytes, elf_class: int, little_endian: bool) -> SectionHeader:
    return SectionHeader(*_unpack("shdr", data, elf_class, little_endian))


def parse_symbol(data: bytes, elf_class: int, little_endian: bool) -> Symbol:
    fields = _unpack("sym", data, elf_class, little_endian)
    if _check_class(elf_class) == ElfClass.CLASS32:
        return Symbol(*fields)
    name, info, other, shndx, value, size = fields
    return Symbol(name, value, size, info, other, shndx)


def parse_relocation(
    data: bytes, elf_class: int, little_endian: bool, with_addend: bool
) -> Relocation:
    if with_addend:
        return Relocation(*_unpack("rela", data, elf_class, little_endian))
    return Relocation(*_unpack("rel", data, elf_class, little_endian))


def r_sym(info: int, elf_class: int) -> int:
    """Return the symbol index held in a relocation's ``r_info``."""
    if _check_class(elf_class) == ElfClass.CLASS32:
        return info >> 8
    return info >> 32


def r_type(info: int, elf_class: int) -> int:
    """Return the relocation type held in a relocation's ``r_info``."""
    if _check_class(elf_class) == ElfClass.CLASS32:
        return info & 0xFF
    return info & 0xFFFFFFFF