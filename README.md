# amp_virtio

Pure-Python building blocks for shared-memory communication between processors.
It provides virtio split rings laid over a `bytearray`, virtqueues for both sides
of a ring, and virtio devices that create their queues. It also parses and packs
ELF structures and remote processor resource tables.

The package has no dependencies outside the standard library.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Modules

### `amp_virtio.ring`

This module describes the memory layout of a split ring.

- `vring_size(num, align)` returns the number of bytes a ring of `num` entries needs.
- `vring_need_event(event_idx, new_idx, old)` tells whether moving an index from `old`
  to `new_idx` passes `event_idx`, all in 16-bit arithmetic.
- `Vring(memory, num, align, offset=0)` lays a descriptor table, an available ring and
  a used ring over writable memory. The used ring starts at the next `align` boundary.
  - `read_desc` and `write_desc` access descriptors, which are `VringDesc` objects.
  - `get_avail_ring`, `set_avail_ring`, `get_used_elem` and `set_used_elem` access ring
    slots. `get_used_elem` returns a `UsedElem`.
  - `clear` zeroes the whole ring.
  - The properties `avail_flags`, `avail_idx`, `used_flags`, `used_idx`, `used_event`
    and `avail_event` read and write the header fields.
  - An index out of range raises `IndexError`.
- The flag constants are `VRING_DESC_F_NEXT`, `VRING_DESC_F_WRITE`,
  `VRING_DESC_F_INDIRECT`, `VRING_USED_F_NO_NOTIFY` and `VRING_AVAIL_F_NO_INTERRUPT`.

### `amp_virtio.vq_types`

This module holds the types the other modules share.

- `ErrorCode` and `VirtqueueError`. The error's `code` attribute holds an `ErrorCode`.
- `Role`, which is either `MASTER` or `SLAVE`.
- `IoRegion(memory, phys_base=0)`, a block of shared memory.
  - `IoRegion.allocate(size, phys_base=0)` creates one.
  - `phys_to_offset` and `offset_to_phys` translate between physical addresses and offsets.
  - `read`, `write` and `fill` access the memory. A span outside the region raises
    `ValueError`.
- `VirtqueueBuffer(offset, length)` describes a buffer in shared memory.
- `VringAllocInfo(offset, align, num_descs)` describes where a ring is and how big it is.
- The feature bits `VIRTIO_RING_F_INDIRECT_DESC` and `VIRTIO_RING_F_EVENT_IDX`.

### `amp_virtio.virtqueue`

`Virtqueue(device, queue_index, name, ring_info, ring_io, callback=None, notify=None, shm_io=None)`
is one queue over a ring. `device` is any object with `role` and `features` attributes.
The ring size must be a non-zero power of two. On the master side the queue links all
descriptors into a free chain when it is created.

- The master (driver) side:
  - `add_buffer(buffers, readable, writable, cookie)` enqueues a chain of buffers, with
    the readable ones first. It raises `VirtqueueError` with `VRING_FULL` when there are
    not enough free descriptors.
  - `get_buffer()` returns a `UsedBuffer(cookie, length, index)` once the other side has
    used the buffer, or `None`.
  - `kick()` calls `notify` if the other side asked to hear about new buffers.
- The slave (device) side:
  - `get_available_buffer()` returns an `AvailableBuffer(offset, index, length)`, or `None`.
  - `add_consumed_buffer(head_idx, length)` returns a buffer to the master.
  - `get_desc_size()` returns the length of the next available buffer without taking it.
- Both sides:
  - `enable_cb()` enables callbacks. It returns `True` if work is already pending.
  - `disable_cb()` disables callbacks.
  - `notification()` runs the queue's callback.
  - `get_buffer_length(idx)` returns the length in a descriptor.
  - `dump()` logs a one-line summary of the queue and returns it.
  - `free()` releases the queue, and logs a warning if buffers are outstanding.

Notification suppression follows the `VIRTIO_RING_F_EVENT_IDX` bit in `device.features`.
When the bit is set, the queue uses event indexes. When it is clear, it uses ring flags.

### `amp_virtio.virtio`

- `VirtioDevice` holds a `role`, `features`, a list of `VringInfo` entries and an
  optional `notify` callback.
- `VirtioDevice.create_virtqueues(nvqs, names, callbacks)` creates a `Virtqueue` on each
  of the first `nvqs` vrings and returns the queues. On the master side it zeroes each
  ring first.
- `dev_name(devid)` returns the name of a device type, or `None`. For example, it returns
  `"Network"` for `DeviceId.NETWORK`.
- `feature_name(value, descriptions=None)` names a feature bit. It looks in
  `descriptions` first and then in `COMMON_FEATURES`, and returns `None` if neither
  names the bit.
- `DeviceId`, `ConfigStatus` and `FeatureDesc`.

### `amp_virtio.elf`

This module parses and packs ELF32 and ELF64 structures in either byte order.

- The parsers are `parse_elf_header`, `parse_program_header`, `parse_section_header`,
  `parse_symbol` and `parse_relocation`.
- The results are `ElfHeader`, `ProgramHeader`, `SectionHeader`, `Symbol` and `Relocation`.
  Each of them has a `pack` method.
- `r_sym(info, elf_class)` and `r_type(info, elf_class)` split a relocation's `r_info`.
- Bad magic, a bad class or encoding, or short data raise `ElfError`, which is a
  subclass of `ValueError`.

### `amp_virtio.remoteproc`

- `RemoteprocState` and `RprocErrorCode` are enumerations.
- `RprocError` is the exception. Its `code` attribute holds an `RprocErrorCode`.
- `RemoteprocMemory(name, pa, da, size, io)` describes one memory area. It cuts names
  longer than 32 characters short.

### `amp_virtio.resource_table`

- The entry types are `Carveout`, `Devmem`, `Trace`, `Vdev` (with `VdevVring` entries and
  a config space) and `Vendor`. Each of them has a `pack` method.
- `ResourceTable(entries)` packs a whole table with `pack()`. Its `find(rsc_type, index)`
  method gives the offset of the `index`-th entry of a type, or `None`.
- `parse_resource_table(data)` parses a packed table. It checks the version, the reserved
  fields and the bounds of each entry.
- `find_rsc(data, rsc_type, index)` returns the offset of an entry in packed data, or `None`.
- `ResourceTableError` is raised for a bad table. It is a subclass of `RprocError`.

## Example

The example passes one buffer from the master side of a ring to the slave side and
back again:

```python
from amp_virtio.virtio import VirtioDevice, VringInfo
from amp_virtio.virtqueue import Virtqueue
from amp_virtio.vq_types import IoRegion, Role, VirtqueueBuffer, VringAllocInfo

shared = IoRegion.allocate(8192)
info = VringAllocInfo(offset=0, align=4096, num_descs=4)

master = VirtioDevice(role=Role.MASTER, vrings=[VringInfo(info, shared)])
(tx,) = master.create_virtqueues(1, ["tx"], [None])

slave = VirtioDevice(role=Role.SLAVE)
rx = Virtqueue(slave, 0, "rx", info, shared)

shared.write(5000, b"hello")
tx.add_buffer([VirtqueueBuffer(5000, 5)], readable=1, writable=0, cookie="msg")
tx.kick()

avail = rx.get_available_buffer()          # AvailableBuffer(offset=5000, index=0, length=5)
print(shared.read(avail.offset, avail.length))
rx.add_consumed_buffer(avail.index, avail.length)

used = tx.get_buffer()                     # UsedBuffer(cookie='msg', length=5, index=0)
```

The next example builds a resource table, packs it, and parses it again:

```python
from amp_virtio.resource_table import (
    Carveout, ResourceTable, ResourceType, Vdev, VdevVring, find_rsc, parse_resource_table,
)

table = ResourceTable([
    Carveout(da=0x1000, length=0x1000, name="text"),
    Vdev(id=7, vrings=[VdevVring(align=4096, num=256)]),
])
data = table.pack()
assert parse_resource_table(data) == table
assert find_rsc(data, ResourceType.VDEV, 0) == 80
```

## What the package does not do

The package works only on in-memory buffers. It does not include the following:

- A command-line tool.
- A firmware loader. The `elf` module parses and packs structures, and it defines the
  loader state constants, but it does not load segments into memory.
- Remote processor life-cycle control, such as configuring, starting, stopping or
  notifying a processor.
- A messaging layer on top of the virtqueues.

Locking between the two sides of a ring, memory barriers and cache maintenance are left
to the caller.