import pytest

from amp_virtio.ring import vring_size
from amp_virtio.virtio import (
    VIRTIO_F_BAD_FEATURE,
    DeviceId,
    FeatureDesc,
    VirtioDevice,
    VringInfo,
    dev_name,
    feature_name,
)
from amp_virtio.vq_types import (
    VIRTIO_RING_F_EVENT_IDX,
    ErrorCode,
    IoRegion,
    Role,
    VirtqueueBuffer,
    VirtqueueError,
    VringAllocInfo,
)

NUM = 4
ALIGN = 16


def _vring(io, num=NUM):
    return VringInfo(info=VringAllocInfo(offset=0, align=ALIGN, num_descs=num), io=io)


def test_dev_name_known():
    assert dev_name(DeviceId.NETWORK) == "Network"
    assert dev_name(DeviceId.NINE_P) == "9P Transport"
    assert dev_name(DeviceId.IOMEMORY) == "IOMemory"


def test_dev_name_unnamed():
    assert dev_name(DeviceId.RPMSG) is None
    assert dev_name(0) is None


def test_feature_name_common():
    assert feature_name(VIRTIO_RING_F_EVENT_IDX) == "EventIdx"
    assert feature_name(VIRTIO_F_BAD_FEATURE, None) == "BadFeature"


def test_feature_name_device_table_first():
    table = [FeatureDesc(VIRTIO_F_BAD_FEATURE, "Override"), FeatureDesc(1, "Mine")]
    assert feature_name(VIRTIO_F_BAD_FEATURE, table) == "Override"
    assert feature_name(1, table) == "Mine"


def test_feature_name_terminator_and_unknown():
    table = [FeatureDesc(0, "end"), FeatureDesc(2, "hidden")]
    assert feature_name(2, table) is None
    assert feature_name(0) is None


def test_too_many_queues():
    io = IoRegion.allocate(512)
    dev = VirtioDevice(vrings=[_vring(io)])
    with pytest.raises(VirtqueueError) as err:
        dev.create_virtqueues(2, ["a", "b"], [None, None])
    assert err.value.code == ErrorCode.VQUEUE_INVLD_PARAM


def test_master_clears_ring_memory():
    io = IoRegion.allocate(512)
    io.fill(0, 0xFF, 512)
    dev = VirtioDevice(role=Role.MASTER, vrings=[_vring(io)])
    (vq,) = dev.create_virtqueues(1, ["tx"], [None])
    assert dev.vrings[0].vq is vq
    assert vq.ring.avail_idx == 0
    assert vq.ring.used_idx == 0
    assert vq.free_cnt == NUM
    size = vring_size(NUM, ALIGN)
    assert all(b == 0xFF for b in io.memory[size:])


def test_slave_leaves_ring_memory():
    io = IoRegion.allocate(512)
    io.fill(0, 0xFF, 512)
    dev = VirtioDevice(role=Role.SLAVE, vrings=[_vring(io)])
    (vq,) = dev.create_virtqueues(1, ["rx"], [None])
    assert vq.ring.avail_idx == 0xFFFF


def test_bad_ring_size_rejected():
    io = IoRegion.allocate(512)
    dev = VirtioDevice(vrings=[_vring(io, num=3)])
    with pytest.raises(VirtqueueError) as err:
        dev.create_virtqueues(1, ["q"], [None])
    assert err.value.code == ErrorCode.VRING_ALIGN


def test_master_and_slave_exchange_buffer():
    io = IoRegion.allocate(512)
    master = VirtioDevice(role=Role.MASTER, vrings=[_vring(io)])
    slave = VirtioDevice(role=Role.SLAVE, vrings=[_vring(io)])
    (mvq,) = master.create_virtqueues(1, ["m"], [None])
    (svq,) = slave.create_virtqueues(1, ["s"], [None])

    mvq.add_buffer([VirtqueueBuffer(offset=256, length=16)], 1, 0, "cookie")
    avail = svq.get_available_buffer()
    assert avail.offset == 256
    assert avail.length == 16

    svq.add_consumed_buffer(avail.index, 8)
    used = mvq.get_buffer()
    assert used.cookie == "cookie"
    assert used.length == 8
    assert mvq.free_cnt == NUM


def test_device_notify_and_callbacks_reach_queue():
    io = IoRegion.allocate(512)
    kicked = []
    called = []
    dev = VirtioDevice(role=Role.MASTER, vrings=[_vring(io)], notify=kicked.append)
    (vq,) = dev.create_virtqueues(1, ["q"], [called.append])
    vq.add_buffer([VirtqueueBuffer(offset=300, length=4)], 1, 0, object())
    vq.kick()
    vq.notification()
    assert kicked == [vq]
    assert called == [vq]