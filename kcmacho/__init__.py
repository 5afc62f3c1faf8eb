"""Decoding of 64-bit Mach-O images, kernel cache filesets and chained fixups."""

__version__ = "0.1.0"