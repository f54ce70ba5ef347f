"""Shared types for virtqueues: error codes, roles, buffers and memory regions."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Optional

VQ_RING_DESC_CHAIN_END = 32768
"""Terminator of the free descriptor chain; never a valid index."""

VIRTIO_RING_F_INDIRECT_DESC = 1 << 28
"""Feature bit: indirect buffer descriptors are supported."""

VIRTIO_RING_F_EVENT_IDX = 1 << 29
"""Feature bit: interrupts are suppressed until a given index is reached."""

VQUEUE_SUCCESS = 0


class ErrorCode(enum.IntEnum):
    """Virtqueue error codes."""

    VRING_FULL = -3001
    INVLD_DESC_IDX = -3002
    EMPTY_RING = -3003
    NO_MEM = -3004
    VRING_MAX_DESC = -3005
    VRING_ALIGN = -3006
    VRING_NO_BUFF = -3007
    VQUEUE_INVLD_PARAM = -3008


class VirtqueueError(Exception):
    """Raised where a virtqueue operation fails; ``code`` says why."""

    def __init__(self, code: ErrorCode, message: Optional[str] = None) -> None:
        self.code = ErrorCode(code)
        super().__init__(message or self.code.name.lower().replace("_", " "))

    def __str__(self) -> str:
        return f"{self.code.name} ({int(self.code)}): {self.args[0]}"


class Role(enum.IntEnum):
    """Which side of the ring a device plays."""

    MASTER = 0
    SLAVE = 1


@dataclass
class IoRegion:
    """A block of shared memory mapped at a physical base address."""

    memory: bytearray
    phys_base: int = 0

    @classmethod
    def allocate(cls, size: int, phys_base: int = 0) -> "IoRegion":
        if size < 0:
            raise ValueError(f"negative region size {size}")
        return cls(bytearray(size), phys_base)

    @property
    def size(self) -> int:
        return len(self.memory)

    def _check_span(self, offset: int, length: int) -> None:
        if length < 0:
            raise ValueError(f"negative length {length}")
        if offset < 0 or offset + length > self.size:
            raise ValueError(
                f"span {offset}..{offset + length} outside region of {self.size} bytes"
            )

    def phys_to_offset(self, phys: int) -> int:
        offset = phys - self.phys_base
        if not 0 <= offset < self.size:
            raise ValueError(f"physical address {phys:#x} outside region")
        return offset

    def offset_to_phys(self, offset: int) -> int:
        if not 0 <= offset < self.size:
            raise ValueError(f"offset {offset} outside region")
        return self.phys_base + offset

    def read(self, offset: int, length: int) -> bytes:
        self._check_span(offset, length)
        return bytes(self.memory[offset : offset + length])

    def write(self, offset: int, data: bytes) -> None:
        self._check_span(offset, len(data))
        self.memory[offset : offset + len(data)] = data

    def fill(self, offset: int, value: int, length: int) -> None:
        """Set ``length`` bytes starting at ``offset`` to ``value``."""
        if not 0 <= value <= 0xFF:
            raise ValueError(f"fill value {value} is not a byte")
        self._check_span(offset, length)
        self.memory[offset : offset + length] = bytes([value]) * length


@dataclass
class VirtqueueBuffer:
    """A buffer handed to a virtqueue: an offset in shared memory and a length."""

    offset: int
    length: int


@dataclass
class VringAllocInfo:
    """Where a vring lives and how it is shaped."""

    offset: int
    align: int
    num_descs: int
    pad: int = field(default=0, repr=False)