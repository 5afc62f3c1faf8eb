"""The 16-byte identifier of a Mach-O image."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, order=True)
class ImageUUID:
    """A Mach-O LC_UUID value; ordered and hashed by its bytes."""

    data: bytes

    def __post_init__(self) -> None:
        if len(self.data) != 16:
            raise ValueError(f"UUID must be 16 bytes, got {len(self.data)}")
        object.__setattr__(self, "data", bytes(self.data))

    def __str__(self) -> str:
        # Each byte is printed as hex in a field two characters wide.
        return "".join(f"{byte:2x}" for byte in self.data)