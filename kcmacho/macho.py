"""Decoding of 64-bit Mach-O headers and their load commands."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Iterator

from kcmacho.datareader import DataBackend, DataReader
from kcmacho.errors import DecodeError, verify
from kcmacho.imageuuid import ImageUUID

MH_MAGIC_64 = 0xFEEDFACF
MH_CIGAM_64 = 0xCFFAEDFE

LC_REQ_DYLD = 0x80000000
LC_SYMTAB = 0x2
LC_UNIXTHREAD = 0x5
LC_SEGMENT_64 = 0x19
LC_UUID = 0x1B
LC_FUNCTION_STARTS = 0x26
LC_DYLD_CHAINED_FIXUPS = 0x34 | LC_REQ_DYLD
LC_FILESET_ENTRY = 0x35 | LC_REQ_DYLD

ARM_THREAD_STATE64 = 6

N_TYPE = 0x0E
N_UNDF = 0x0

VM_PROT_READ = 0x1
VM_PROT_WRITE = 0x2
VM_PROT_EXECUTE = 0x4

# struct layouts, little-endian and unpadded
MACH_HEADER_64 = "<IiiIIIII"
LOAD_COMMAND = "<II"
SEGMENT_COMMAND_64 = "<II16sQQQQiiII"
SECTION_64 = "<16s16sQQIIIIIIII"
FILESET_ENTRY_COMMAND = "<IIQQII"
THREAD_COMMAND_SIZE = 8
# arm_state_hdr_t followed by arm_thread_state64_t: x0-x28, fp, lr, sp precede pc
ARM_UNIFIED_THREAD_STATE = "<II256xQII"
UUID_COMMAND = "<II16s"
SYMTAB_COMMAND = "<IIIIII"
NLIST_64 = "<IBBHQ"
LINKEDIT_DATA_COMMAND = "<IIII"

_CONST_DATA_SEGMENT = "__&data_CONST"


class MachHeaderDecodeError(DecodeError):
    """A Mach-O header or load command could not be decoded."""


class SectionSemantics(enum.IntEnum):
    """How the contents of a section are meant to be used."""

    DEFAULT = 0
    READ_ONLY_CODE = 1
    READ_ONLY_DATA = 2
    READ_WRITE_DATA = 3
    EXTERNAL = 4


class SegmentFlag(enum.IntFlag):
    """Access and content flags of a mapped segment."""

    EXECUTABLE = 0x1
    WRITABLE = 0x2
    READABLE = 0x4
    CONTAINS_DATA = 0x8
    CONTAINS_CODE = 0x10
    DENY_WRITE = 0x20
    DENY_EXECUTE = 0x40


@dataclass(frozen=True)
class Fileset:
    """An LC_FILESET_ENTRY: a Mach-O image embedded in a fileset."""

    name: str
    vm_addr: int
    file_offset: int


@dataclass(frozen=True)
class Section:
    name: str
    va_start: int
    va_length: int
    semantics: SectionSemantics


@dataclass(frozen=True)
class Segment:
    name: str
    va_start: int
    va_length: int
    data_start: int
    data_length: int
    flags: SegmentFlag
    sections: list[Section] = field(default_factory=list)


@dataclass(frozen=True)
class Symbol:
    name: str
    addr: int


def _cstr(raw: bytes) -> str:
    return raw.split(b"\0", 1)[0].decode("utf-8", "surrogateescape")


def _effective_max_prot(segname: str, maxprot: int) -> int:
    if segname != _CONST_DATA_SEGMENT:
        return maxprot
    return maxprot & ~VM_PROT_WRITE


def _section_semantics(max_prot: int) -> SectionSemantics:
    if max_prot & VM_PROT_EXECUTE:
        return SectionSemantics.READ_ONLY_CODE
    if not max_prot & VM_PROT_WRITE:
        return SectionSemantics.READ_ONLY_DATA
    verify(max_prot & VM_PROT_READ, "maxProt & VM_PROT_READ")
    return SectionSemantics.READ_WRITE_DATA


def _segment_flags(max_prot: int) -> SegmentFlag:
    flags = SegmentFlag(0)
    if max_prot & VM_PROT_EXECUTE:
        flags |= SegmentFlag.CONTAINS_CODE | SegmentFlag.EXECUTABLE | SegmentFlag.DENY_WRITE
    if max_prot & VM_PROT_READ:
        flags |= SegmentFlag.READABLE
    if max_prot & VM_PROT_WRITE:
        flags |= SegmentFlag.WRITABLE | SegmentFlag.DENY_EXECUTE
    return flags


def _decode_uleb128(reader: DataReader) -> int:
    result = 0
    shift = 0
    while True:
        byte = reader.read("B")
        result |= (byte & 0x7F) << shift
        shift += 7
        if not byte & 0x80:
            return result & 0xFFFFFFFFFFFFFFFF


class MachHeaderParser:
    """Decodes the load commands of the 64-bit Mach-O header at an address."""

    def __init__(self, backend: DataBackend, header_offset: int) -> None:
        self._backend = backend
        self._header_offset = header_offset
        magic = DataReader(backend, header_offset).read(MACH_HEADER_64)[0]
        if magic not in (MH_MAGIC_64, MH_CIGAM_64):
            raise MachHeaderDecodeError(
                f"unsupported mach header magic {magic} at offset {header_offset}"
            )

    @property
    def backend(self) -> DataBackend:
        return self._backend

    @property
    def header_offset(self) -> int:
        return self._header_offset

    def _load_commands(self) -> Iterator[tuple[int, DataReader]]:
        """Yield each load command's type and a reader positioned at it."""
        reader = DataReader(self._backend, self._header_offset)
        ncmds = reader.read(MACH_HEADER_64)[4]
        for _ in range(ncmds):
            cmd, cmdsize = reader.peek(LOAD_COMMAND)
            yield cmd, reader.copy()
            reader.seek(cmdsize)

    def find_command(self, cmd: int) -> DataReader | None:
        """A reader positioned at the first load command of type *cmd*, or None."""
        for kind, reader in self._load_commands():
            if kind == cmd:
                return reader
        return None

    def find_vm_base(self) -> int | None:
        """The address of the first segment mapped above zero, if any."""
        for kind, reader in self._load_commands():
            if kind != LC_SEGMENT_64:
                continue
            vmaddr = reader.peek(SEGMENT_COMMAND_64)[3]
            if vmaddr > 0:
                return vmaddr
        return None

    def decode_filesets(self) -> list[Fileset]:
        result = []
        for kind, reader in self._load_commands():
            if kind != LC_FILESET_ENTRY:
                continue
            _, _, vmaddr, fileoff, entry_id, _ = reader.peek(FILESET_ENTRY_COMMAND)
            reader.seek(entry_id)
            result.append(Fileset(name=reader.read_string(), vm_addr=vmaddr, file_offset=fileoff))
        return result

    @staticmethod
    def _decode_segment(reader: DataReader) -> Segment:
        (_, _, raw_name, vmaddr, vmsize, fileoff, filesize,
         maxprot, _, nsects, _) = reader.read(SEGMENT_COMMAND_64)
        name = _cstr(raw_name)
        max_prot = _effective_max_prot(name, maxprot)
        semantics = _section_semantics(max_prot) if nsects else None
        sections = []
        for _ in range(nsects):
            fields = reader.read(SECTION_64)
            sections.append(Section(
                name=_cstr(fields[0]),
                va_start=fields[2],
                va_length=fields[3],
                semantics=semantics,
            ))
        return Segment(
            name=name,
            va_start=vmaddr,
            va_length=vmsize,
            data_start=fileoff,
            data_length=filesize,
            flags=_segment_flags(max_prot),
            sections=sections,
        )

    def decode_segments(self) -> list[Segment]:
        return [
            self._decode_segment(reader)
            for kind, reader in self._load_commands()
            if kind == LC_SEGMENT_64
        ]

    def decode_entry_point(self) -> int | None:
        """The pc of the first LC_UNIXTHREAD command, or None without one."""
        for kind, reader in self._load_commands():
            if kind != LC_UNIXTHREAD:
                continue
            reader.seek(THREAD_COMMAND_SIZE)
            flavor = reader.peek("I")
            if flavor != ARM_THREAD_STATE64:
                raise MachHeaderDecodeError(f"unsupported LC_UNIXTHREAD flavor {flavor}")
            return reader.read(ARM_UNIFIED_THREAD_STATE)[2]
        return None

    def decode_uuid(self) -> ImageUUID | None:
        reader = self.find_command(LC_UUID)
        if reader is None:
            return None
        return ImageUUID(reader.peek(UUID_COMMAND)[2])

    def decode_symbols(self) -> list[Symbol]:
        """Defined symbols of LC_SYMTAB, with one leading underscore removed."""
        reader = self.find_command(LC_SYMTAB)
        if reader is None:
            return []
        _, _, symoff, nsyms, stroff, _ = reader.peek(SYMTAB_COMMAND)
        sym_reader = DataReader(self._backend, symoff)
        result = []
        for _ in range(nsyms):
            n_strx, n_type, _, _, n_value = sym_reader.read(NLIST_64)
            if (n_type & N_TYPE) == N_UNDF:
                continue
            name = DataReader(self._backend, stroff + n_strx).read_string()
            if name.startswith("_"):
                name = name[1:]
            result.append(Symbol(name=name, addr=n_value))
        return result

    def decode_function_starts(self) -> list[int]:
        """Absolute function addresses listed by LC_FUNCTION_STARTS."""
        reader = self.find_command(LC_FUNCTION_STARTS)
        if reader is None:
            return []
        _, _, dataoff, datasize = reader.peek(LINKEDIT_DATA_COMMAND)
        cursor = self.find_vm_base()
        if cursor is None:
            raise MachHeaderDecodeError("cannot decode function starts without a mapped segment")
        data_reader = DataReader(self._backend, dataoff)
        end = data_reader.offset + datasize
        result = []
        while data_reader.offset < end:
            cursor = (cursor + _decode_uleb128(data_reader)) & 0xFFFFFFFFFFFFFFFF
            result.append(cursor)
        return result