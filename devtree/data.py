"""Property value buffers carrying typed position markers."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from typing import BinaryIO, Iterator

_READ_CHUNK = 4096
_INTEGER_WIDTHS = {8: 1, 16: 2, 32: 4, 64: 8}


class MarkerType(enum.Enum):
    """What a marker inside a property value stands for."""

    TYPE_NONE = enum.auto()
    TYPE_UINT8 = enum.auto()
    TYPE_UINT16 = enum.auto()
    TYPE_UINT32 = enum.auto()
    TYPE_UINT64 = enum.auto()
    TYPE_STRING = enum.auto()
    REF_PHANDLE = enum.auto()
    REF_PATH = enum.auto()
    LABEL = enum.auto()


@dataclass(eq=False)
class Marker:
    """A typed annotation at a byte offset inside a value."""

    offset: int
    type: MarkerType
    ref: str | None = None


@dataclass
class Data:
    """A growable byte value with an ordered list of markers.

    Mutating methods change the value in place and return it, so calls chain.
    """

    val: bytearray = field(default_factory=bytearray)
    markers: list[Marker] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.val = bytearray(self.val)

    def __len__(self) -> int:
        return len(self.val)

    def __bytes__(self) -> bytes:
        return bytes(self.val)

    @classmethod
    def from_file(cls, stream: BinaryIO, maxlen: int | None = None) -> Data:
        """Read a binary stream, up to ``maxlen`` bytes if given."""
        data = cls().add_marker(MarkerType.TYPE_NONE)
        if maxlen is not None and maxlen < 0:
            maxlen = None
        while maxlen is None or len(data.val) < maxlen:
            size = _READ_CHUNK if maxlen is None else maxlen - len(data.val)
            chunk = stream.read(size)
            if not chunk:
                break
            data.val += chunk
        return data

    def append(self, payload: bytes) -> Data:
        self.val += payload
        return self

    def insert_at_marker(self, marker: Marker, payload: bytes) -> Data:
        """Insert bytes at a marker's offset, shifting the markers after it."""
        index = next(
            (i for i, m in enumerate(self.markers) if m is marker), None
        )
        if index is None:
            raise ValueError("marker does not belong to this value")
        if not 0 <= marker.offset <= len(self.val):
            raise ValueError(f"marker offset {marker.offset} out of range")
        self.val[marker.offset:marker.offset] = payload
        for later in self.markers[index + 1:]:
            later.offset += len(payload)
        return self

    def merge(self, other: Data) -> Data:
        """Append another value together with its markers."""
        shift = len(self.val)
        self.val += other.val
        self.markers.extend(
            replace(m, offset=m.offset + shift) for m in other.markers
        )
        return self

    def append_integer(self, value: int, bits: int) -> Data:
        """Append a big-endian integer of 8, 16, 32 or 64 bits."""
        width = _INTEGER_WIDTHS.get(bits)
        if width is None:
            raise ValueError(f"Invalid literal size ({bits})")
        masked = value & ((1 << bits) - 1)
        return self.append(masked.to_bytes(width, "big"))

    def append_re(self, address: int, size: int) -> Data:
        """Append a memory reservation entry (address and size)."""
        return self.append_addr(address).append_addr(size)

    def append_cell(self, word: int) -> Data:
        return self.append_integer(word, 32)

    def append_addr(self, addr: int) -> Data:
        return self.append_integer(addr, 64)

    def append_byte(self, byte: int) -> Data:
        return self.append(bytes([byte & 0xFF]))

    def append_zeroes(self, length: int) -> Data:
        if length < 0:
            raise ValueError("cannot append a negative number of bytes")
        return self.append(bytes(length))

    def append_align(self, align: int) -> Data:
        """Pad with zeroes up to a multiple of ``align`` (a power of two)."""
        current = len(self.val)
        new_length = (current + align - 1) & ~(align - 1)
        return self.append_zeroes(new_length - current)

    def add_marker(self, marker_type: MarkerType, ref: str | None = None) -> Data:
        """Add a marker at the current end of the value."""
        self.markers.append(Marker(len(self.val), marker_type, ref))
        return self

    def markers_of_type(self, marker_type: MarkerType) -> Iterator[Marker]:
        return (m for m in self.markers if m.type is marker_type)

    def is_one_string(self) -> bool:
        """True when the value is exactly one NUL-terminated string."""
        if not self.val:
            return False
        return self.val[-1] == 0 and 0 not in self.val[:-1]