"""Firmware resource tables: the entries a remote processor asks the host for."""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass, field
from typing import ClassVar, Optional, Union

from .remoteproc import RPROC_MAX_NAME_LEN, RprocError, RprocErrorCode

RSC_TAB_SUPPORTED_VERSION = 1
"""The only resource table version understood."""

_HEADER = struct.Struct("<II2I")
_OFFSET = struct.Struct("<I")
_TYPE = struct.Struct("<I")
_CARVEOUT = struct.Struct(f"<IIIIII{RPROC_MAX_NAME_LEN}s")
_TRACE = struct.Struct(f"<IIII{RPROC_MAX_NAME_LEN}s")
_VRING = struct.Struct("<IIIII")
_VDEV = struct.Struct("<IIIIIIBB2s")
_VENDOR = struct.Struct("<II")


class ResourceType(enum.IntEnum):
    """Types of resource table entries."""

    CARVEOUT = 0
    DEVMEM = 1
    TRACE = 2
    VDEV = 3
    LAST = 4
    VENDOR_START = 128
    VENDOR_END = 512


class ResourceTableError(RprocError):
    """Raised for a resource table that cannot be parsed or built."""


def _truncated(what: str) -> ResourceTableError:
    return ResourceTableError(RprocErrorCode.ERR_RSC_TAB_TRUNC, f"truncated {what}")


def _need(data: bytes, offset: int, size: int, what: str) -> None:
    if offset < 0 or offset + size > len(data):
        raise _truncated(what)


def _encode_name(name: str) -> bytes:
    return name.encode("utf-8")[:RPROC_MAX_NAME_LEN]


def _decode_name(raw: bytes) -> str:
    return raw.split(b"\0", 1)[0].decode("utf-8", "replace")


def _pack_memory_entry(entry: "Carveout") -> bytes:
    return _CARVEOUT.pack(
        entry.TYPE, entry.da, entry.pa, entry.length, entry.flags, entry.reserved,
        _encode_name(entry.name),
    )


@dataclass
class Carveout:
    """Request for a physically contiguous memory region."""

    da: int = 0
    pa: int = 0
    length: int = 0
    flags: int = 0
    reserved: int = 0
    name: str = ""

    TYPE: ClassVar[ResourceType] = ResourceType.CARVEOUT

    @property
    def rsc_type(self) -> int:
        return self.TYPE

    def pack(self) -> bytes:
        return _pack_memory_entry(self)

    @classmethod
    def unpack(cls, data: bytes, offset: int = 0):
        _need(data, offset, _CARVEOUT.size, cls.__name__.lower())
        _, da, pa, length, flags, reserved, name = _CARVEOUT.unpack_from(data, offset)
        return cls(da, pa, length, flags, reserved, _decode_name(name))

    def size(self) -> int:
        return _CARVEOUT.size


@dataclass
class Devmem(Carveout):
    """Request to map a memory-based peripheral."""

    TYPE: ClassVar[ResourceType] = ResourceType.DEVMEM

    def pack(self) -> bytes:
        return _pack_memory_entry(self)


@dataclass
class Trace:
    """Announcement of a trace buffer the remote writes logs into."""

    da: int = 0
    length: int = 0
    reserved: int = 0
    name: str = ""

    TYPE: ClassVar[ResourceType] = ResourceType.TRACE

    @property
    def rsc_type(self) -> int:
        return self.TYPE

    def pack(self) -> bytes:
        return _TRACE.pack(
            self.TYPE, self.da, self.length, self.reserved, _encode_name(self.name)
        )

    @classmethod
    def unpack(cls, data: bytes, offset: int = 0) -> "Trace":
        _need(data, offset, _TRACE.size, "trace")
        _, da, length, reserved, name = _TRACE.unpack_from(data, offset)
        return cls(da, length, reserved, _decode_name(name))


@dataclass
class VdevVring:
    """A vring described inside a virtio device entry."""

    da: int = 0
    align: int = 0
    num: int = 0
    notifyid: int = 0
    reserved: int = 0

    SIZE: ClassVar[int] = _VRING.size

    def pack(self) -> bytes:
        return _VRING.pack(self.da, self.align, self.num, self.notifyid, self.reserved)

    @classmethod
    def unpack(cls, data: bytes, offset: int = 0) -> "VdevVring":
        _need(data, offset, _VRING.size, "vring")
        return cls(*_VRING.unpack_from(data, offset))


@dataclass
class Vdev:
    """A virtio device header, its vrings and its config space."""

    id: int = 0
    notifyid: int = 0
    dfeatures: int = 0
    gfeatures: int = 0
    status: int = 0
    vrings: list[VdevVring] = field(default_factory=list)
    config: bytes = b""
    reserved: bytes = b"\0\0"

    TYPE: ClassVar[ResourceType] = ResourceType.VDEV

    @property
    def rsc_type(self) -> int:
        return self.TYPE

    def pack(self) -> bytes:
        if len(self.vrings) > 0xFF:
            raise ResourceTableError(
                RprocErrorCode.ERR_RSC_TAB_VDEV_NRINGS,
                f"{len(self.vrings)} vrings do not fit in one vdev",
            )
        if len(self.reserved) != 2:
            raise ResourceTableError(RprocErrorCode.EINVAL, "vdev reserved must be 2 bytes")
        header = _VDEV.pack(
            self.TYPE, self.id, self.notifyid, self.dfeatures, self.gfeatures,
            len(self.config), self.status, len(self.vrings), bytes(self.reserved),
        )
        return header + b"".join(v.pack() for v in self.vrings) + bytes(self.config)

    @classmethod
    def unpack(cls, data: bytes, offset: int = 0) -> "Vdev":
        _need(data, offset, _VDEV.size, "vdev")
        (_, vid, notifyid, dfeatures, gfeatures, config_len, status, nrings,
         reserved) = _VDEV.unpack_from(data, offset)
        pos = offset + _VDEV.size
        _need(data, pos, nrings * _VRING.size, "vdev vrings")
        vrings = [VdevVring.unpack(data, pos + i * _VRING.size) for i in range(nrings)]
        pos += nrings * _VRING.size
        _need(data, pos, config_len, "vdev config space")
        config = bytes(data[pos : pos + config_len])
        return cls(vid, notifyid, dfeatures, gfeatures, status, vrings, config, reserved)


@dataclass
class Vendor:
    """A vendor-specific resource; its length field covers header and data."""

    rsc_type: int = ResourceType.VENDOR_START
    data: bytes = b""

    def __post_init__(self) -> None:
        if not ResourceType.VENDOR_START <= self.rsc_type < ResourceType.VENDOR_END:
            raise ResourceTableError(
                RprocErrorCode.EINVAL, f"type {self.rsc_type} is not a vendor type"
            )

    def pack(self) -> bytes:
        return _VENDOR.pack(self.rsc_type, _VENDOR.size + len(self.data)) + bytes(self.data)

    @classmethod
    def unpack(cls, data: bytes, offset: int = 0) -> "Vendor":
        _need(data, offset, _VENDOR.size, "vendor resource")
        rsc_type, length = _VENDOR.unpack_from(data, offset)
        if length < _VENDOR.size:
            raise ResourceTableError(
                RprocErrorCode.EINVAL, f"vendor resource length {length} too short"
            )
        _need(data, offset, length, "vendor resource")
        return cls(rsc_type, bytes(data[offset + _VENDOR.size : offset + length]))


Resource = Union[Carveout, Devmem, Trace, Vdev, Vendor]

_PARSERS = {
    ResourceType.CARVEOUT: Carveout.unpack,
    ResourceType.DEVMEM: Devmem.unpack,
    ResourceType.TRACE: Trace.unpack,
    ResourceType.VDEV: Vdev.unpack,
}


@dataclass
class ResourceTable:
    """A resource table: a version and a list of entries."""

    entries: list[Resource] = field(default_factory=list)
    version: int = RSC_TAB_SUPPORTED_VERSION

    def _packed(self) -> tuple[list[int], list[bytes]]:
        offset = _HEADER.size + _OFFSET.size * len(self.entries)
        offsets, chunks = [], []
        for entry in self.entries:
            chunk = entry.pack()
            offsets.append(offset)
            chunks.append(chunk)
            offset += len(chunk)
        return offsets, chunks

    def pack(self) -> bytes:
        offsets, chunks = self._packed()
        header = _HEADER.pack(self.version, len(self.entries), 0, 0)
        return header + b"".join(_OFFSET.pack(o) for o in offsets) + b"".join(chunks)

    def find(self, rsc_type: int, index: int) -> Optional[int]:
        """Return the packed offset of the ``index``-th entry of a type, or None."""
        offsets, _ = self._packed()
        matches = [o for o, e in zip(offsets, self.entries) if e.rsc_type == rsc_type]
        if 0 <= index < len(matches):
            return matches[index]
        return None


def _read_offsets(data: bytes) -> tuple[int, list[int]]:
    if len(data) < _HEADER.size:
        raise _truncated("resource table header")
    ver, num, _, _ = _HEADER.unpack_from(data)
    _need(data, _HEADER.size, num * _OFFSET.size, "resource offset array")
    offsets = list(struct.unpack_from(f"<{num}I", data, _HEADER.size))
    return ver, offsets


def _parse_entry(data: bytes, offset: int) -> Resource:
    _need(data, offset, _TYPE.size, "resource entry")
    rsc_type = _TYPE.unpack_from(data, offset)[0]
    if rsc_type in _PARSERS:
        return _PARSERS[rsc_type](data, offset)
    if ResourceType.VENDOR_START <= rsc_type < ResourceType.VENDOR_END:
        return Vendor.unpack(data, offset)
    raise ResourceTableError(
        RprocErrorCode.EINVAL, f"unsupported resource type {rsc_type} at {offset}"
    )


def parse_resource_table(data: bytes) -> ResourceTable:
    """Parse and check a packed resource table."""
    raw = bytes(data)
    if len(raw) < _HEADER.size:
        raise _truncated("resource table header")
    ver, _, res0, res1 = _HEADER.unpack_from(raw)
    if ver != RSC_TAB_SUPPORTED_VERSION:
        raise ResourceTableError(
            RprocErrorCode.ERR_RSC_TAB_VER, f"unsupported table version {ver}"
        )
    if res0 or res1:
        raise ResourceTableError(
            RprocErrorCode.ERR_RSC_TAB_RSVD, "reserved header fields must be zero"
        )
    _, offsets = _read_offsets(raw)
    return ResourceTable([_parse_entry(raw, o) for o in offsets], ver)


def find_rsc(data: bytes, rsc_type: int, index: int) -> Optional[int]:
    """Return the offset of the ``index``-th resource of a type, or None."""
    raw = bytes(data)
    _, offsets = _read_offsets(raw)
    count = 0
    for offset in offsets:
        _need(raw, offset, _TYPE.size, "resource entry")
        if _TYPE.unpack_from(raw, offset)[0] == rsc_type:
            if count == index:
                return offset
            count += 1
    return None