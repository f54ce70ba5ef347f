"""Virtio devices: identities, feature names and virtqueue creation."""

from __future__ import annotations

import enum
import itertools
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional, Sequence

from .ring import vring_size
from .virtqueue import Virtqueue, VqCallback
from .vq_types import (
    VIRTIO_RING_F_EVENT_IDX,
    VIRTIO_RING_F_INDIRECT_DESC,
    ErrorCode,
    IoRegion,
    Role,
    VirtqueueError,
    VringAllocInfo,
)

VIRTIO_F_NOTIFY_ON_EMPTY = 1 << 24
"""Interrupt when the ring is completely used, even if interrupts are suppressed."""

VIRTIO_F_BAD_FEATURE = 1 << 30
"""Never negotiated; used to detect faulty drivers."""

VIRTIO_TRANSPORT_F_START = 28
VIRTIO_TRANSPORT_F_END = 32


class DeviceId(enum.IntEnum):
    """Virtio device type identifiers."""

    NETWORK = 0x01
    BLOCK = 0x02
    CONSOLE = 0x03
    ENTROPY = 0x04
    BALLOON = 0x05
    IOMEMORY = 0x06
    RPMSG = 0x07
    SCSI = 0x08
    NINE_P = 0x09


class ConfigStatus(enum.IntFlag):
    """Status bits a driver reports its progress with."""

    ACK = 0x01
    DRIVER = 0x02
    DRIVER_OK = 0x04
    NEEDS_RESET = 0x40
    FAILED = 0x80


@dataclass(frozen=True)
class FeatureDesc:
    """A feature bit and its human-readable name."""

    value: int
    name: str


_DEVICE_NAMES = {
    DeviceId.NETWORK: "Network",
    DeviceId.BLOCK: "Block",
    DeviceId.CONSOLE: "Console",
    DeviceId.ENTROPY: "Entropy",
    DeviceId.BALLOON: "Balloon",
    DeviceId.IOMEMORY: "IOMemory",
    DeviceId.SCSI: "SCSI",
    DeviceId.NINE_P: "9P Transport",
}

COMMON_FEATURES: tuple[FeatureDesc, ...] = (
    FeatureDesc(VIRTIO_F_NOTIFY_ON_EMPTY, "NotifyOnEmpty"),
    FeatureDesc(VIRTIO_RING_F_INDIRECT_DESC, "RingIndirect"),
    FeatureDesc(VIRTIO_RING_F_EVENT_IDX, "EventIdx"),
    FeatureDesc(VIRTIO_F_BAD_FEATURE, "BadFeature"),
)
"""Device-independent feature names."""


def dev_name(devid: int) -> Optional[str]:
    """Return the name of a device type, or None for an unnamed one."""
    return _DEVICE_NAMES.get(devid)


def feature_name(
    value: int, descriptions: Optional[Iterable[FeatureDesc]] = None
) -> Optional[str]:
    """Name a feature bit, looking in ``descriptions`` before the common table.

    A description with value 0 ends its table.
    """
    for table in (descriptions, COMMON_FEATURES):
        if table is None:
            continue
        for desc in itertools.takewhile(lambda d: d.value != 0, table):
            if desc.value == value:
                return desc.name
    return None


@dataclass
class VringInfo:
    """A vring belonging to a device: its layout, memory and queue."""

    info: VringAllocInfo
    io: IoRegion
    notifyid: int = 0
    vq: Optional[Virtqueue] = None


@dataclass
class VirtioDevice:
    """A virtio device and the vrings it owns."""

    role: Role = Role.MASTER
    notifyid: int = 0
    device_id: int = 0
    vendor_id: int = 0
    features: int = 0
    vrings: list[VringInfo] = field(default_factory=list)
    notify: Optional[VqCallback] = None
    reset_cb: Optional[Callable[["VirtioDevice"], Any]] = None

    def create_virtqueues(
        self,
        nvqs: int,
        names: Sequence[str],
        callbacks: Sequence[Optional[VqCallback]],
    ) -> list[Virtqueue]:
        """Create a virtqueue on each of the first ``nvqs`` vrings.

        On the master side each ring's memory is cleared first.
        """
        if nvqs < 0 or nvqs > len(self.vrings):
            raise VirtqueueError(
                ErrorCode.VQUEUE_INVLD_PARAM,
                f"{nvqs} queues requested, device has {len(self.vrings)} vrings",
            )
        if len(names) < nvqs or len(callbacks) < nvqs:
            raise VirtqueueError(
                ErrorCode.VQUEUE_INVLD_PARAM, "a name and a callback are needed per queue"
            )
        queues = []
        for index, (vring, name, callback) in enumerate(
            zip(self.vrings[:nvqs], names, callbacks)
        ):
            alloc = vring.info
            if self.role == Role.MASTER and alloc.num_descs:
                vring.io.fill(alloc.offset, 0, vring_size(alloc.num_descs, alloc.align))
            vring.vq = Virtqueue(
                self, index, name, alloc, vring.io, callback, self.notify
            )
            queues.append(vring.vq)
        return queues