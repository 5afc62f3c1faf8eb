"""Enumeration of the Mach-O headers contained in a kernel cache."""

from __future__ import annotations

import logging

from kcmacho.datareader import DataBackend
from kcmacho.imageuuid import ImageUUID
from kcmacho.macho import MachHeaderParser, Segment

logger = logging.getLogger(__name__)


class MachImage:
    """A loaded image whose first header may list embedded fileset images.

    With *is_raw* the backend is addressed by file offset, so fileset entries
    are located by their file offsets; otherwise by their VM addresses.
    """

    def __init__(self, backend: DataBackend, is_raw: bool = False) -> None:
        self._backend = backend
        self._is_raw = is_raw

    def _is_valid_offset(self, offset: int) -> bool:
        start = self._backend.start
        return start <= offset < start + self._backend.length

    def read_macho_header_offsets(self) -> list[int]:
        """Addresses of the main header followed by each fileset entry's header."""
        start = self._backend.start
        result = [start]
        parser = MachHeaderParser(self._backend, start)
        for fileset in parser.decode_filesets():
            if self._is_raw:
                result.append(fileset.file_offset + start)
            else:
                result.append(fileset.vm_addr)
        return result

    def read_macho_headers(self) -> dict[ImageUUID, list[Segment]]:
        """Segments of every reachable header that has an LC_UUID, keyed by it.

        Keys are in ascending UUID order.
        """
        result: dict[ImageUUID, list[Segment]] = {}
        for offset in self.read_macho_header_offsets():
            if not self._is_valid_offset(offset):
                continue
            parser = MachHeaderParser(self._backend, offset)
            uuid = parser.decode_uuid()
            if uuid is None:
                logger.warning(
                    "mach header at %s does not have LC_UUID command, "
                    "symbols won't be loaded for this segments in this header",
                    f"{offset:#016x}",
                )
                continue
            result[uuid] = parser.decode_segments()
        return dict(sorted(result.items()))