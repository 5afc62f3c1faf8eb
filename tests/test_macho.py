import itertools
import struct

import pytest

from kcmacho.datareader import BytesDataBackend, DataReaderError
from kcmacho.imageuuid import ImageUUID
from kcmacho.macho import (
    ARM_THREAD_STATE64,
    LC_FILESET_ENTRY,
    LC_FUNCTION_STARTS,
    LC_SEGMENT_64,
    LC_SYMTAB,
    LC_UNIXTHREAD,
    LC_UUID,
    MH_CIGAM_64,
    MH_MAGIC_64,
    Fileset,
    MachHeaderDecodeError,
    MachHeaderParser,
    SectionSemantics,
    SegmentFlag,
    Symbol,
)

HEADER_SIZE = 32


def header(ncmds, sizeofcmds=0, magic=MH_MAGIC_64):
    return struct.pack("<IiiIIIII", magic, 0x0100000C, 0, 2, ncmds, sizeofcmds, 0, 0)


def segment_cmd(name, vmaddr, vmsize, fileoff, filesize, maxprot, sections=()):
    body = b"".join(
        struct.pack("<16s16sQQIIIIIIII", sname, name, addr, size, 0, 0, 0, 0, 0, 0, 0, 0)
        for sname, addr, size in sections
    )
    return struct.pack(
        "<II16sQQQQiiII", LC_SEGMENT_64, 72 + len(body), name, vmaddr, vmsize,
        fileoff, filesize, maxprot, maxprot, len(sections), 0,
    ) + body


def fileset_cmd(name, vmaddr, fileoff):
    raw = name.encode() + b"\0"
    raw += b"\0" * (-(32 + len(raw)) % 8)
    return struct.pack("<IIQQII", LC_FILESET_ENTRY, 32 + len(raw), vmaddr, fileoff, 32, 0) + raw


def thread_cmd(pc, flavor=ARM_THREAD_STATE64):
    state = struct.pack("<II", flavor, 68) + b"\0" * (29 * 8 + 3 * 8) + struct.pack("<QII", pc, 0, 0)
    return struct.pack("<II", LC_UNIXTHREAD, 8 + len(state)) + state


def uuid_cmd(raw):
    return struct.pack("<II16s", LC_UUID, 24, raw)


def image(*commands, magic=MH_MAGIC_64, trailer=b""):
    cmds = b"".join(commands)
    return header(len(commands), len(cmds), magic) + cmds + trailer


def parser_for(data, offset=0):
    return MachHeaderParser(BytesDataBackend(data), offset)


def uleb(value):
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def test_rejects_unknown_magic():
    with pytest.raises(MachHeaderDecodeError):
        parser_for(image(magic=0xFEEDFACE))


def test_accepts_swapped_magic():
    parser = parser_for(image(uuid_cmd(bytes(range(16))), magic=MH_CIGAM_64))
    assert parser.decode_uuid() == ImageUUID(bytes(range(16)))


def test_truncated_header_raises():
    with pytest.raises(DataReaderError):
        parser_for(b"\xcf\xfa\xed\xfe")


def test_decode_filesets():
    data = image(
        fileset_cmd("com.apple.kernel", 0xFFFFFE0007004000, 0x4000),
        uuid_cmd(b"\x01" * 16),
        fileset_cmd("com.example.driver", 0xFFFFFE0008000000, 0x80000),
    )
    assert parser_for(data).decode_filesets() == [
        Fileset("com.apple.kernel", 0xFFFFFE0007004000, 0x4000),
        Fileset("com.example.driver", 0xFFFFFE0008000000, 0x80000),
    ]


def test_decode_segments_flags_and_sections():
    data = image(
        segment_cmd(b"__TEXT", 0x1000, 0x2000, 0, 0x2000, 5,
                    [(b"__text", 0x1100, 0x40), (b"__stubs", 0x1200, 0x10)]),
        segment_cmd(b"__DATA", 0x3000, 0x1000, 0x2000, 0x800, 3, [(b"__data", 0x3000, 0x20)]),
        segment_cmd(b"__LINKEDIT", 0x4000, 0x1000, 0x3000, 0x100, 1),
    )
    text, data_seg, linkedit = parser_for(data).decode_segments()

    assert (text.name, text.va_start, text.va_length, text.data_start, text.data_length) == (
        "__TEXT", 0x1000, 0x2000, 0, 0x2000)
    assert text.flags == (SegmentFlag.CONTAINS_CODE | SegmentFlag.EXECUTABLE
                          | SegmentFlag.DENY_WRITE | SegmentFlag.READABLE)
    assert [(s.name, s.va_start, s.va_length) for s in text.sections] == [
        ("__text", 0x1100, 0x40), ("__stubs", 0x1200, 0x10)]
    assert all(s.semantics == SectionSemantics.READ_ONLY_CODE for s in text.sections)

    assert data_seg.flags == (SegmentFlag.READABLE | SegmentFlag.WRITABLE | SegmentFlag.DENY_EXECUTE)
    assert data_seg.sections[0].semantics == SectionSemantics.READ_WRITE_DATA

    assert linkedit.flags == SegmentFlag.READABLE
    assert linkedit.sections == []


def test_const_data_segment_is_not_writable():
    data = image(segment_cmd(b"__&data_CONST", 0x5000, 0x1000, 0, 0, 3, [(b"__const", 0x5000, 8)]))
    (segment,) = parser_for(data).decode_segments()
    assert segment.flags == SegmentFlag.READABLE
    assert segment.sections[0].semantics == SectionSemantics.READ_ONLY_DATA


def test_decode_entry_point():
    pc = 0xFFFFFE0007B08000
    data = image(uuid_cmd(b"\x02" * 16), thread_cmd(pc))
    assert parser_for(data).decode_entry_point() == pc


def test_entry_point_missing():
    assert parser_for(image(uuid_cmd(b"\x02" * 16))).decode_entry_point() is None


def test_entry_point_unsupported_flavor():
    with pytest.raises(MachHeaderDecodeError):
        parser_for(image(thread_cmd(0x1000, flavor=1))).decode_entry_point()


def test_uuid_missing():
    assert parser_for(image(segment_cmd(b"__TEXT", 0x1000, 0x1000, 0, 0, 5))).decode_uuid() is None


def test_find_command():
    raw = bytes(range(16, 32))
    parser = parser_for(image(segment_cmd(b"__TEXT", 0x1000, 0x1000, 0, 0, 5), uuid_cmd(raw)))
    reader = parser.find_command(LC_UUID)
    assert reader.peek("<II16s") == (LC_UUID, 24, raw)
    assert parser.find_command(LC_SYMTAB) is None


def test_find_vm_base_skips_zero_segment():
    data = image(
        segment_cmd(b"__PAGEZERO", 0, 0x1000, 0, 0, 0),
        segment_cmd(b"__TEXT", 0x7000, 0x1000, 0, 0, 5),
        segment_cmd(b"__DATA", 0x9000, 0x1000, 0, 0, 3),
    )
    assert parser_for(data).find_vm_base() == 0x7000


def test_find_vm_base_none():
    assert parser_for(image(uuid_cmd(b"\0" * 16))).find_vm_base() is None


def test_decode_symbols():
    strtab = b"\0_kernel_func\0undef\0plain\0"
    symoff = HEADER_SIZE + 24
    nlists = [
        (1, 0x0F, 1, 0, 0xFFFFFE0007004000),
        (14, 0x01, 0, 0, 0),
        (20, 0x0E, 2, 0, 0xFFFFFE0007008000),
    ]
    table = b"".join(struct.pack("<IBBHQ", *entry) for entry in nlists)
    stroff = symoff + len(table)
    cmd = struct.pack("<IIIIII", LC_SYMTAB, 24, symoff, len(nlists), stroff, len(strtab))
    parser = parser_for(image(cmd, trailer=table + strtab))
    assert parser.decode_symbols() == [
        Symbol("kernel_func", 0xFFFFFE0007004000),
        Symbol("plain", 0xFFFFFE0007008000),
    ]


def test_decode_symbols_without_symtab():
    assert parser_for(image(uuid_cmd(b"\0" * 16))).decode_symbols() == []


def test_decode_function_starts():
    deltas = [0x10, 0x200, 0x4, 0x12345]
    encoded = b"".join(uleb(d) for d in deltas)
    seg = segment_cmd(b"__TEXT", 0x100000, 0x200000, 0, 0, 5)
    dataoff = HEADER_SIZE + len(seg) + 16
    cmd = struct.pack("<IIII", LC_FUNCTION_STARTS, 16, dataoff, len(encoded))
    parser = parser_for(image(seg, cmd, trailer=encoded))
    starts = parser.decode_function_starts()
    assert starts == list(itertools.accumulate(deltas, initial=0x100000))[1:]


def test_function_starts_without_command():
    assert parser_for(image(segment_cmd(b"__TEXT", 0x1000, 0x1000, 0, 0, 5))).decode_function_starts() == []


def test_function_starts_without_vm_base():
    cmd = struct.pack("<IIII", LC_FUNCTION_STARTS, 16, HEADER_SIZE + 16, 1)
    with pytest.raises(MachHeaderDecodeError):
        parser_for(image(cmd, trailer=b"\x10")).decode_function_starts()


def test_header_at_nonzero_offset():
    prefix = b"\xaa" * 64
    data = prefix + image(fileset_cmd("inner", 0x8000, 0x40))
    parser = parser_for(data, len(prefix))
    assert parser.header_offset == len(prefix)
    assert parser.decode_filesets() == [Fileset("inner", 0x8000, 0x40)]


def test_too_many_commands_raises():
    cmds = uuid_cmd(b"\0" * 16)
    data = header(3, len(cmds)) + cmds
    with pytest.raises(DataReaderError):
        parser_for(data).decode_segments()