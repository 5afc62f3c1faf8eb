# kcmacho

A small, dependency-free library for reading 64-bit Mach-O images, with
support for the fileset layout used by kernel caches.

## What it provides

- `kcmacho.macho.MachHeaderParser` walks the load commands of a 64-bit
  Mach-O header (magic `0xfeedfacf` or its byte-swapped form) and decodes:
  - fileset entries (`decode_filesets`, giving `Fileset` records)
  - segments and their sections (`decode_segments`, giving `Segment` and
    `Section` records with `SegmentFlag` flags and `SectionSemantics`)
  - the `pc` of an ARM64 `LC_UNIXTHREAD` command (`decode_entry_point`)
  - the image UUID (`decode_uuid`, an `ImageUUID`)
  - defined symbols from `LC_SYMTAB`, with one leading underscore removed
    (`decode_symbols`)
  - absolute addresses from `LC_FUNCTION_STARTS` (`decode_function_starts`)
  - `find_command` and `find_vm_base` for direct lookups
- `kcmacho.fixups.decode_dyld_chained_ptrs` resolves rebase pointers in
  `LC_DYLD_CHAINED_FIXUPS` chains of the kernel-cache pointer format
  (`DYLD_CHAINED_PTR_64_KERNEL_CACHE`), returning `DyldChainedPtr` records.
  Binds, pages with multiple starts and other pointer formats are skipped,
  with a warning sent to the `logging` module.
- `kcmacho.image.MachImage` lists the header addresses of a kernel cache
  (the main header followed by each fileset entry) and collects the segments
  of every header that has an `LC_UUID`, keyed by UUID in ascending order.
- `kcmacho.datareader` holds the `DataBackend` interface, the in-memory
  `BytesDataBackend` and the positioned `DataReader`.
- `kcmacho.span_reader.SpanReader` is a bounds-checked reader over a byte
  buffer; `kcmacho.interval_map` has `Interval` and an `IntervalMap` of
  non-overlapping half-open ranges; `kcmacho.strconv.strtoull` converts text
  to an unsigned 64-bit integer with C `strtoull` rules.
- `kcmacho.settings` has a `SettingsRegistry`, `register_settings` to fill
  it with the loader options and their defaults, and `KCSettings` for typed
  access to them.

## Installation

```
pip install .
```

## Example

```python
from kcmacho.datareader import BytesDataBackend
from kcmacho.fixups import decode_dyld_chained_ptrs
from kcmacho.image import MachImage
from kcmacho.macho import MachHeaderParser

with open("kernelcache.macho", "rb") as fh:
    backend = BytesDataBackend(fh.read(), 0)

parser = MachHeaderParser(backend, 0)
for fileset in parser.decode_filesets():
    print(fileset.name, hex(fileset.vm_addr))

for segment in parser.decode_segments():
    print(segment.name, hex(segment.va_start), [s.name for s in segment.sections])

print(parser.decode_uuid())
for ptr in decode_dyld_chained_ptrs(parser):
    print(hex(ptr.file_offset), hex(ptr.value))

headers = MachImage(backend, is_raw=True).read_macho_headers()
```

Settings:

```python
from kcmacho.settings import KCSettings, SettingsRegistry, register_settings

registry = SettingsRegistry()
register_settings(registry)
settings = KCSettings(registry)
print(settings.kc_excluded_filesets())  # ['com.apple.driver.FairPlayIOKit']
```

Malformed input raises `DecodeError` subclasses such as `DataReaderError`,
`ReadError` and `MachHeaderDecodeError`; a broken internal check raises
`FatalError`. All derive from `kcmacho.errors.KCError`.

## What it does not do

- It has no command-line tool; it is a library only.
- It reads only 64-bit Mach-O headers, and only ARM64 thread state for the
  entry point.
- It does not read DWARF or dSYM debug information, demangle names, or
  apply the fixups it decodes; it only reports them.
- The settings registry keeps values in memory; it does not store them.

## Tests

```
pip install .[test]
pytest
```