import pytest

from amp_virtio.remoteproc import (
    FW_RSC_U32_ADDR_ANY,
    FW_RSC_U64_ADDR_ANY,
    RPROC_MAX_NAME_LEN,
    RSC_NOTIFY_ID_ANY,
    RemoteprocMemory,
    RemoteprocState,
    RprocError,
    RprocErrorCode,
)
from amp_virtio.vq_types import IoRegion


def test_state_values_follow_source_order():
    assert [s.value for s in RemoteprocState] == list(range(8))
    assert RemoteprocState.RUNNING == 3
    assert RemoteprocState(6) is RemoteprocState.STOPPED


@pytest.mark.parametrize(
    "value, code",
    [
        (1, RprocErrorCode.ENOMEM),
        (9, RprocErrorCode.ERR_RSC_TAB_VDEV_NRINGS),
        (12, RprocErrorCode.ERR_LOADER_STATE),
        (16, RprocErrorCode.EMAX),
    ],
)
def test_error_codes_match_source(value, code):
    err = RprocError(value)
    assert err.code is code
    assert err.code == value


def test_any_addresses_are_all_ones():
    mem = RemoteprocMemory("any", pa=FW_RSC_U64_ADDR_ANY, da=FW_RSC_U32_ADDR_ANY)
    assert mem.pa == 0xFFFFFFFFFFFFFFFF
    assert mem.da == RSC_NOTIFY_ID_ANY == 0xFFFFFFFF


def test_error_carries_code_and_default_message():
    err = RprocError(RprocErrorCode.EINVAL)
    assert err.code is RprocErrorCode.EINVAL
    assert err.args[0] == "einval"
    assert "EINVAL" in str(err)


def test_error_accepts_plain_int_code():
    err = RprocError(4, "try again")
    assert err.code is RprocErrorCode.EAGAIN
    assert "try again" in str(err)


def test_error_rejects_unknown_code():
    with pytest.raises(ValueError):
        RprocError(8)


def test_error_can_be_raised_and_caught():
    err = RprocError(RprocErrorCode.ENODEV, "no device")
    assert err.code == RprocErrorCode.ENODEV
    assert "no device" in str(err)
    with pytest.raises(RprocError) as info:
        raise err
    assert info.value is err


def test_memory_keeps_fields():
    io = IoRegion.allocate(64, phys_base=0x1000)
    mem = RemoteprocMemory("shm", pa=0x1000, da=0x2000, size=64, io=io)
    assert mem.name == "shm"
    assert mem.pa == 0x1000
    assert mem.da == 0x2000
    assert mem.size == 64
    assert mem.io is io


def test_memory_none_name_becomes_empty():
    assert RemoteprocMemory(None).name == ""


def test_memory_long_name_is_truncated():
    long_name = "m" * (RPROC_MAX_NAME_LEN + 10)
    mem = RemoteprocMemory(long_name)
    assert len(mem.name) == RPROC_MAX_NAME_LEN
    assert long_name.startswith(mem.name)


def test_memory_name_at_limit_is_kept():
    name = "x" * RPROC_MAX_NAME_LEN
    assert RemoteprocMemory(name).name == name


def test_memory_negative_size_rejected():
    with pytest.raises(RprocError) as info:
        RemoteprocMemory("bad", size=-1)
    assert info.value.code is RprocErrorCode.EINVAL