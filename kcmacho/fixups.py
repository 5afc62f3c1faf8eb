"""Decoding of dyld chained fixups in kernel cache images."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator

from kcmacho.datareader import DataBackend, DataReader
from kcmacho.macho import (
    LC_DYLD_CHAINED_FIXUPS,
    LINKEDIT_DATA_COMMAND,
    MachHeaderDecodeError,
    MachHeaderParser,
)

logger = logging.getLogger(__name__)

_UINT64_MASK = 0xFFFFFFFFFFFFFFFF

# dyld_chained_fixups_header: version, starts_offset, imports_offset,
# symbols_offset, imports_count, imports_format, symbols_format
CHAINED_FIXUPS_HEADER = "<IIIIIII"
# dyld_chained_starts_in_image: seg_count, then seg_info_offset[seg_count]
STARTS_IN_IMAGE_SEG_INFO_OFFSET = 4
# dyld_chained_starts_in_segment, including its first page_start entry
STARTS_IN_SEGMENT = "<IHHQIHH"
STARTS_IN_SEGMENT_PAGE_START_OFFSET = 22

DYLD_CHAINED_PTR_START_NONE = 0xFFFF
DYLD_CHAINED_PTR_START_MULTI = 0x8000

DYLD_CHAINED_PTR_64_KERNEL_CACHE = 8


@dataclass(frozen=True)
class DyldChainedPtr:
    """A pointer location and the address it resolves to."""

    file_offset: int
    value: int


def _walk_chain(backend: DataBackend, address: int, vm_base: int) -> Iterator[DyldChainedPtr]:
    reader = DataReader(backend, address)
    while True:
        raw = reader.peek("Q")
        auth = (raw >> 63) & 1
        bind = (raw >> 62) & 1
        next_stride = (raw >> 51) & 0x7FF

        if auth and bind:
            logger.warning(
                "Cannot fixup chained pointer with both auth and bind set at offset %s",
                f"{reader.offset:#016x}",
            )
        elif auth:
            target = raw & 0xFFFFFFFF
            yield DyldChainedPtr(reader.offset, (vm_base + target) & _UINT64_MASK)
        elif bind:
            logger.warning(
                "Cannot chained pointer with bind set at offset %s", f"{reader.offset:#016x}"
            )
        else:
            top8 = (raw >> 43) & 0xFF
            bottom43 = raw & 0x000007FFFFFFFFFF
            if top8 == 0x80:
                top8 = 0
            value = (vm_base + ((top8 << 56) | bottom43)) & _UINT64_MASK
            yield DyldChainedPtr(reader.offset, value)

        if next_stride == 0:
            return
        reader.seek(next_stride * 4)


def _decode_segment_starts(
    backend: DataBackend, address: int, vm_base: int
) -> Iterator[DyldChainedPtr]:
    reader = DataReader(backend, address)
    _, page_size, pointer_format, segment_offset, _, page_count, _ = reader.peek(
        STARTS_IN_SEGMENT
    )
    reader.seek(STARTS_IN_SEGMENT_PAGE_START_OFFSET)
    for page_index in range(page_count):
        offset_in_page = reader.read("H")
        if offset_in_page == DYLD_CHAINED_PTR_START_NONE:
            continue
        if offset_in_page & DYLD_CHAINED_PTR_START_MULTI:
            logger.warning("Skipping DYLD_CHAINED_PTR_START_MULTI")
            continue
        if pointer_format != DYLD_CHAINED_PTR_64_KERNEL_CACHE:
            logger.warning("Encountered unknown pointer format %d, skipping", pointer_format)
            continue
        start = segment_offset + page_index * page_size + offset_in_page
        yield from _walk_chain(backend, start, vm_base)


def decode_dyld_chained_ptrs(parser: MachHeaderParser) -> list[DyldChainedPtr]:
    """Resolve every rebase in the image's LC_DYLD_CHAINED_FIXUPS chains.

    Binds, pages with multiple starts and unknown pointer formats are skipped
    with a warning. Without the load command the result is empty.
    """
    command = parser.find_command(LC_DYLD_CHAINED_FIXUPS)
    if command is None:
        logger.warning(
            "Skipping DYLD_CHAINED_FIXUPS since no LC_DYLD_CHAINED_FIXUPS command found"
        )
        return []

    vm_base = parser.find_vm_base()
    if vm_base is None:
        raise MachHeaderDecodeError("cannot apply chained fixups without a mapped segment")

    backend = parser.backend
    _, _, dataoff, _ = command.peek(LINKEDIT_DATA_COMMAND)

    image_reader = DataReader(backend, dataoff)
    starts_offset = image_reader.peek(CHAINED_FIXUPS_HEADER)[1]
    image_reader.seek(starts_offset)
    seg_count = image_reader.peek("I")
    image_reader.seek(STARTS_IN_IMAGE_SEG_INFO_OFFSET)

    result: list[DyldChainedPtr] = []
    for _ in range(seg_count):
        seg_info_offset = image_reader.read("I")
        if seg_info_offset == 0:
            continue
        result.extend(
            _decode_segment_starts(backend, dataoff + starts_offset + seg_info_offset, vm_base)
        )
    return result