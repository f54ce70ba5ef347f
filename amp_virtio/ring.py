"""Split virtqueue ring layout laid over a shared memory buffer."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Union

VRING_DESC_F_NEXT = 1
"""The descriptor continues through its ``next`` field."""
VRING_DESC_F_WRITE = 2
"""The buffer is write-only for the device (otherwise read-only)."""
VRING_DESC_F_INDIRECT = 4
"""The buffer holds a list of buffer descriptors."""

VRING_USED_F_NO_NOTIFY = 1
"""Set in ``used.flags``: the consumer does not want to be kicked."""
VRING_AVAIL_F_NO_INTERRUPT = 1
"""Set in ``avail.flags``: the producer does not want interrupts."""

_DESC = struct.Struct("<QIHH")
_USED_ELEM = struct.Struct("<II")
_U16 = struct.Struct("<H")
_RING_HEADER_SIZE = 4  # flags + idx, both 16 bit
_EVENT_SIZE = _U16.size

Buffer = Union[bytearray, memoryview]


def _align_up(value: int, align: int) -> int:
    return (value + align - 1) & ~(align - 1)


def _check_align(align: int) -> None:
    if align <= 0 or align & (align - 1):
        raise ValueError(f"alignment must be a positive power of two, got {align}")


@dataclass
class VringDesc:
    """One 16-byte ring descriptor."""

    addr: int = 0
    length: int = 0
    flags: int = 0
    next: int = 0

    SIZE = _DESC.size

    def pack(self) -> bytes:
        return _DESC.pack(self.addr, self.length, self.flags, self.next)

    @classmethod
    def unpack(cls, data: bytes) -> "VringDesc":
        addr, length, flags, nxt = _DESC.unpack(bytes(data[: _DESC.size]))
        return cls(addr, length, flags, nxt)


@dataclass
class UsedElem:
    """One element of the used ring."""

    id: int = 0
    length: int = 0

    SIZE = _USED_ELEM.size

    @property
    def event(self) -> int:
        """The low 16 bits of ``id``, which share storage with the event index."""
        return self.id & 0xFFFF

    def pack(self) -> bytes:
        return _USED_ELEM.pack(self.id, self.length)

    @classmethod
    def unpack(cls, data: bytes) -> "UsedElem":
        elem_id, length = _USED_ELEM.unpack(bytes(data[: _USED_ELEM.size]))
        return cls(elem_id, length)


def vring_size(num: int, align: int) -> int:
    """Return the number of bytes a ring of ``num`` entries needs."""
    _check_align(align)
    size = num * _DESC.size
    size += _RING_HEADER_SIZE + num * _U16.size + _EVENT_SIZE
    size = _align_up(size, align)
    size += _RING_HEADER_SIZE + num * _USED_ELEM.size + _EVENT_SIZE
    return size


def vring_need_event(event_idx: int, new_idx: int, old: int) -> bool:
    """Tell whether moving an index from ``old`` to ``new_idx`` passes ``event_idx``."""
    return ((new_idx - event_idx - 1) & 0xFFFF) < ((new_idx - old) & 0xFFFF)


class Vring:
    """Descriptor table, available ring and used ring inside one buffer.

    The available ring begins right after the descriptor table; the used
    ring begins at the next ``align`` boundary, counted from the start of
    ``memory``.
    """

    def __init__(self, memory: Buffer, num: int, align: int, offset: int = 0) -> None:
        if num <= 0:
            raise ValueError(f"ring size must be positive, got {num}")
        _check_align(align)
        view = memoryview(memory)
        if view.readonly:
            raise TypeError("ring memory must be writable")
        if offset < 0:
            raise ValueError(f"negative ring offset {offset}")
        self.memory = view.cast("B")
        self.num = num
        self.align = align
        self.desc_offset = offset
        self.avail_offset = offset + num * _DESC.size
        avail_end = self.avail_offset + _RING_HEADER_SIZE + num * _U16.size + _EVENT_SIZE
        self.used_offset = _align_up(avail_end, align)
        self.end_offset = (
            self.used_offset + _RING_HEADER_SIZE + num * _USED_ELEM.size + _EVENT_SIZE
        )
        if self.end_offset > len(self.memory):
            raise ValueError(
                f"ring needs {self.end_offset} bytes, buffer holds {len(self.memory)}"
            )

    # -- raw access -------------------------------------------------------

    def _get16(self, pos: int) -> int:
        return _U16.unpack_from(self.memory, pos)[0]

    def _set16(self, pos: int, value: int) -> None:
        _U16.pack_into(self.memory, pos, value & 0xFFFF)

    def _check_index(self, index: int, what: str) -> None:
        if not 0 <= index < self.num:
            raise IndexError(f"{what} index {index} out of range 0..{self.num - 1}")

    # -- header fields ----------------------------------------------------

    @property
    def avail_flags(self) -> int:
        return self._get16(self.avail_offset)

    @avail_flags.setter
    def avail_flags(self, value: int) -> None:
        self._set16(self.avail_offset, value)

    @property
    def avail_idx(self) -> int:
        return self._get16(self.avail_offset + 2)

    @avail_idx.setter
    def avail_idx(self, value: int) -> None:
        self._set16(self.avail_offset + 2, value)

    @property
    def used_flags(self) -> int:
        return self._get16(self.used_offset)

    @used_flags.setter
    def used_flags(self, value: int) -> None:
        self._set16(self.used_offset, value)

    @property
    def used_idx(self) -> int:
        return self._get16(self.used_offset + 2)

    @used_idx.setter
    def used_idx(self, value: int) -> None:
        self._set16(self.used_offset + 2, value)

    @property
    def used_event(self) -> int:
        """Event index published after the last available ring slot."""
        return self._get16(self.avail_offset + _RING_HEADER_SIZE + self.num * _U16.size)

    @used_event.setter
    def used_event(self, value: int) -> None:
        self._set16(self.avail_offset + _RING_HEADER_SIZE + self.num * _U16.size, value)

    @property
    def avail_event(self) -> int:
        """Event index published after the last used ring element."""
        return self._get16(
            self.used_offset + _RING_HEADER_SIZE + self.num * _USED_ELEM.size
        )

    @avail_event.setter
    def avail_event(self, value: int) -> None:
        self._set16(
            self.used_offset + _RING_HEADER_SIZE + self.num * _USED_ELEM.size, value
        )

    # -- entries ----------------------------------------------------------

    def read_desc(self, index: int) -> VringDesc:
        self._check_index(index, "descriptor")
        pos = self.desc_offset + index * _DESC.size
        return VringDesc(*_DESC.unpack_from(self.memory, pos))

    def write_desc(self, index: int, desc: VringDesc) -> None:
        self._check_index(index, "descriptor")
        pos = self.desc_offset + index * _DESC.size
        _DESC.pack_into(
            self.memory,
            pos,
            desc.addr & 0xFFFFFFFFFFFFFFFF,
            desc.length & 0xFFFFFFFF,
            desc.flags & 0xFFFF,
            desc.next & 0xFFFF,
        )

    def get_avail_ring(self, slot: int) -> int:
        self._check_index(slot, "available ring")
        return self._get16(self.avail_offset + _RING_HEADER_SIZE + slot * _U16.size)

    def set_avail_ring(self, slot: int, value: int) -> None:
        self._check_index(slot, "available ring")
        self._set16(self.avail_offset + _RING_HEADER_SIZE + slot * _U16.size, value)

    def get_used_elem(self, slot: int) -> UsedElem:
        self._check_index(slot, "used ring")
        pos = self.used_offset + _RING_HEADER_SIZE + slot * _USED_ELEM.size
        return UsedElem(*_USED_ELEM.unpack_from(self.memory, pos))

    def set_used_elem(self, slot: int, elem_id: int, length: int) -> None:
        self._check_index(slot, "used ring")
        pos = self.used_offset + _RING_HEADER_SIZE + slot * _USED_ELEM.size
        _USED_ELEM.pack_into(self.memory, pos, elem_id & 0xFFFFFFFF, length & 0xFFFFFFFF)

    def clear(self) -> None:
        """Zero every byte the ring occupies."""
        self.memory[self.desc_offset : self.end_offset] = bytes(
            self.end_offset - self.desc_offset
        )