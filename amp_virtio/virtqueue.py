"""Virtqueues: producer and consumer operations on a shared split ring."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, NamedTuple, Optional, Sequence

from .ring import (
    VRING_AVAIL_F_NO_INTERRUPT,
    VRING_DESC_F_INDIRECT,
    VRING_DESC_F_NEXT,
    VRING_DESC_F_WRITE,
    VRING_USED_F_NO_NOTIFY,
    Vring,
    VringDesc,
    vring_need_event,
)
from .vq_types import (
    VIRTIO_RING_F_EVENT_IDX,
    VQ_RING_DESC_CHAIN_END,
    ErrorCode,
    IoRegion,
    Role,
    VirtqueueBuffer,
    VirtqueueError,
    VringAllocInfo,
)

logger = logging.getLogger(__name__)

VqCallback = Callable[["Virtqueue"], Any]

_U16_MASK = 0xFFFF


class UsedBuffer(NamedTuple):
    """A buffer the other side has finished with."""

    cookie: Any
    length: int
    index: int


class AvailableBuffer(NamedTuple):
    """A buffer the other side has made available for consumption."""

    offset: int
    index: int
    length: int


@dataclass
class _DescExtra:
    cookie: Any = None
    ndescs: int = 0


class Virtqueue:
    """One virtqueue over a vring held in ``ring_io``.

    ``device`` is any object with ``role`` and ``features`` attributes.
    Buffer addresses are offsets into ``shm_io``, which defaults to
    ``ring_io``.
    """

    def __init__(
        self,
        device: Any,
        queue_index: int,
        name: str,
        ring_info: Optional[VringAllocInfo],
        ring_io: IoRegion,
        callback: Optional[VqCallback] = None,
        notify: Optional[VqCallback] = None,
        shm_io: Optional[IoRegion] = None,
    ) -> None:
        if ring_info is None or ring_info.num_descs == 0:
            raise VirtqueueError(ErrorCode.VQUEUE_INVLD_PARAM, "ring needs descriptors")
        num = ring_info.num_descs
        if num & (num - 1):
            raise VirtqueueError(
                ErrorCode.VRING_ALIGN, f"ring size {num} is not a power of two"
            )
        self.device = device
        self.queue_index = queue_index
        self.name = name
        self.nentries = num
        self.free_cnt = num
        self.queued_cnt = 0
        self.desc_head_idx = 0
        self.used_cons_idx = 0
        self.available_idx = 0
        self.callback = callback
        self.notify = notify
        self.shm_io = shm_io if shm_io is not None else ring_io
        self.ring = Vring(ring_io.memory, num, ring_info.align, ring_info.offset)
        self._descx = [_DescExtra() for _ in range(num)]

        if self._is_master:
            for i in range(num):
                desc = self.ring.read_desc(i)
                desc.next = i + 1 if i < num - 1 else VQ_RING_DESC_CHAIN_END
                self.ring.write_desc(i, desc)

    # -- role helpers -----------------------------------------------------

    @property
    def _is_master(self) -> bool:
        return self.device.role == Role.MASTER

    @property
    def _is_slave(self) -> bool:
        return self.device.role == Role.SLAVE

    @property
    def _event_idx(self) -> bool:
        return bool(self.device.features & VIRTIO_RING_F_EVENT_IDX)

    # -- producer side ----------------------------------------------------

    def add_buffer(
        self,
        buffers: Sequence[VirtqueueBuffer],
        readable: int,
        writable: int,
        cookie: Any,
    ) -> None:
        """Enqueue a chain of buffers, readable ones before writable ones."""
        needed = readable + writable
        if readable < 0 or writable < 0 or needed < 1:
            raise VirtqueueError(ErrorCode.VQUEUE_INVLD_PARAM, "no buffers to add")
        if len(buffers) < needed:
            raise VirtqueueError(
                ErrorCode.VQUEUE_INVLD_PARAM,
                f"{needed} buffers requested, {len(buffers)} given",
            )
        if cookie is None:
            raise VirtqueueError(ErrorCode.VQUEUE_INVLD_PARAM, "enqueuing with no cookie")
        if self.free_cnt == 0 or needed > self.free_cnt:
            raise VirtqueueError(ErrorCode.VRING_FULL)

        addrs = [self.shm_io.offset_to_phys(buf.offset) for buf in buffers[:needed]]

        head_idx = self.desc_head_idx
        extra = self._descx[head_idx]
        extra.cookie = cookie
        extra.ndescs = needed

        idx = head_idx
        for i, (buf, addr) in enumerate(zip(buffers[:needed], addrs)):
            if idx == VQ_RING_DESC_CHAIN_END:
                raise VirtqueueError(
                    ErrorCode.VRING_FULL, "premature end of free descriptor chain"
                )
            desc = self.ring.read_desc(idx)
            flags = 0
            if i < needed - 1:
                flags |= VRING_DESC_F_NEXT
            if i >= readable:
                flags |= VRING_DESC_F_WRITE
            self.ring.write_desc(idx, VringDesc(addr, buf.length, flags, desc.next))
            idx = desc.next

        self.desc_head_idx = idx
        self.free_cnt -= needed
        self._update_avail(head_idx)

    def _update_avail(self, desc_idx: int) -> None:
        slot = self.ring.avail_idx & (self.nentries - 1)
        self.ring.set_avail_ring(slot, desc_idx)
        self.ring.avail_idx = self.ring.avail_idx + 1
        self.queued_cnt += 1

    def get_buffer(self) -> Optional[UsedBuffer]:
        """Return the next buffer the other side has used, or None."""
        if self.used_cons_idx == self.ring.used_idx:
            return None
        used_slot = self.used_cons_idx & (self.nentries - 1)
        self.used_cons_idx = (self.used_cons_idx + 1) & _U16_MASK
        elem = self.ring.get_used_elem(used_slot)
        desc_idx = elem.id & _U16_MASK
        self._free_chain(desc_idx)
        extra = self._descx[desc_idx]
        cookie, extra.cookie = extra.cookie, None
        return UsedBuffer(cookie, elem.length, used_slot)

    def _free_chain(self, desc_idx: int) -> None:
        if not 0 <= desc_idx < self.nentries:
            raise VirtqueueError(
                ErrorCode.INVLD_DESC_IDX, f"invalid ring index {desc_idx}"
            )
        extra = self._descx[desc_idx]
        self.free_cnt += extra.ndescs
        extra.ndescs -= 1

        last_idx = desc_idx
        desc = self.ring.read_desc(desc_idx)
        if not desc.flags & VRING_DESC_F_INDIRECT:
            while desc.flags & VRING_DESC_F_NEXT:
                last_idx = desc.next
                desc = self.ring.read_desc(last_idx)
                extra.ndescs -= 1
        if extra.ndescs != 0:
            logger.error("%s: failed to free entire descriptor chain", self.name)

        desc.next = self.desc_head_idx
        self.ring.write_desc(last_idx, desc)
        self.desc_head_idx = desc_idx

    def get_buffer_length(self, idx: int) -> int:
        """Return the length recorded in descriptor ``idx``."""
        return self.ring.read_desc(idx).length

    # -- consumer side ----------------------------------------------------

    def get_available_buffer(self) -> Optional[AvailableBuffer]:
        """Take the next available buffer, or return None if there is none."""
        if self.available_idx == self.ring.avail_idx:
            return None
        slot = self.available_idx & (self.nentries - 1)
        self.available_idx = (self.available_idx + 1) & _U16_MASK
        head_idx = self.ring.get_avail_ring(slot)
        desc = self.ring.read_desc(head_idx)
        offset = self.shm_io.phys_to_offset(desc.addr)
        return AvailableBuffer(offset, head_idx, desc.length)

    def add_consumed_buffer(self, head_idx: int, length: int) -> None:
        """Hand a consumed buffer back to the other side."""
        if head_idx > self.nentries:
            raise VirtqueueError(ErrorCode.VRING_NO_BUFF, f"no buffer at {head_idx}")
        slot = self.ring.used_idx & (self.nentries - 1)
        self.ring.set_used_elem(slot, head_idx, length)
        self.ring.used_idx = self.ring.used_idx + 1
        self.queued_cnt += 1

    def get_desc_size(self) -> int:
        """Return the length of the next available buffer without taking it."""
        if self.available_idx == self.ring.avail_idx:
            return 0
        slot = self.available_idx & (self.nentries - 1)
        head_idx = self.ring.get_avail_ring(slot)
        return self.ring.read_desc(head_idx).length

    # -- notifications ----------------------------------------------------

    def enable_cb(self) -> bool:
        """Enable callbacks; return True if work is already pending."""
        return self._enable_interrupt(0)

    def _enable_interrupt(self, ndesc: int) -> bool:
        if self._event_idx:
            if self._is_master:
                self.ring.used_event = self.used_cons_idx + ndesc
            if self._is_slave:
                self.ring.avail_event = self.available_idx + ndesc
        else:
            if self._is_master:
                self.ring.avail_flags = self.ring.avail_flags & ~VRING_AVAIL_F_NO_INTERRUPT
            if self._is_slave:
                self.ring.used_flags = self.ring.used_flags & ~VRING_USED_F_NO_NOTIFY

        if self._is_master and self._nused() > ndesc:
            return True
        if self._is_slave and self._navail() > ndesc:
            return True
        return False

    def disable_cb(self) -> None:
        """Ask the other side not to signal this queue."""
        if self._event_idx:
            if self._is_master:
                self.ring.used_event = self.used_cons_idx - self.nentries - 1
            if self._is_slave:
                self.ring.avail_event = self.available_idx - self.nentries - 1
        else:
            if self._is_master:
                self.ring.avail_flags = self.ring.avail_flags | VRING_AVAIL_F_NO_INTERRUPT
            if self._is_slave:
                self.ring.used_flags = self.ring.used_flags | VRING_USED_F_NO_NOTIFY

    def kick(self) -> None:
        """Notify the other side if it wants to hear about queued buffers."""
        if self._must_notify() and self.notify is not None:
            self.notify(self)
        self.queued_cnt = 0

    def _must_notify(self) -> bool:
        if self._event_idx:
            if self._is_master:
                new_idx = self.ring.avail_idx
                prev_idx = (new_idx - self.queued_cnt) & _U16_MASK
                return vring_need_event(self.ring.avail_event, new_idx, prev_idx)
            if self._is_slave:
                new_idx = self.ring.used_idx
                prev_idx = (new_idx - self.queued_cnt) & _U16_MASK
                return vring_need_event(self.ring.used_event, new_idx, prev_idx)
        else:
            if self._is_master:
                return not self.ring.used_flags & VRING_USED_F_NO_NOTIFY
            if self._is_slave:
                return not self.ring.avail_flags & VRING_AVAIL_F_NO_INTERRUPT
        return False

    def notification(self) -> None:
        """Run the queue's callback, if it has one."""
        if self.callback is not None:
            self.callback(self)

    def _nused(self) -> int:
        nused = (self.ring.used_idx - self.used_cons_idx) & _U16_MASK
        if nused > self.nentries:
            logger.error("%s: used more than available", self.name)
        return nused

    def _navail(self) -> int:
        navail = (self.ring.avail_idx - self.available_idx) & _U16_MASK
        if navail > self.nentries:
            logger.error("%s: avail more than available", self.name)
        return navail

    # -- diagnostics ------------------------------------------------------

    def dump(self) -> str:
        """Log and return a one-line summary of the queue state."""
        text = (
            f"VQ: {self.name} - size={self.nentries}; free={self.free_cnt}; "
            f"queued={self.queued_cnt}; desc_head_idx={self.desc_head_idx}; "
            f"avail.idx={self.ring.avail_idx}; used_cons_idx={self.used_cons_idx}; "
            f"used.idx={self.ring.used_idx}; avail.flags={self.ring.avail_flags:#x}; "
            f"used.flags={self.ring.used_flags:#x}"
        )
        logger.debug("%s", text)
        return text

    def free(self) -> None:
        """Release the queue, warning if buffers are still outstanding."""
        if self.free_cnt != self.nentries:
            logger.warning("%s: freeing non-empty virtqueue", self.name)
        self.callback = None
        self.notify = None