import struct

import pytest

from amp_virtio.remoteproc import RprocErrorCode
from amp_virtio.resource_table import (
    RSC_TAB_SUPPORTED_VERSION,
    Carveout,
    Devmem,
    ResourceTable,
    ResourceTableError,
    ResourceType,
    Trace,
    Vdev,
    VdevVring,
    Vendor,
    find_rsc,
    parse_resource_table,
)


@pytest.fixture
def table():
    return ResourceTable(
        [
            Carveout(da=0x3ED00000, pa=0x3ED00000, length=0x40000, name="elfload"),
            Vdev(
                id=7,
                notifyid=1,
                dfeatures=1,
                vrings=[
                    VdevVring(da=0x3ED40000, align=0x1000, num=256, notifyid=1),
                    VdevVring(da=0x3ED44000, align=0x1000, num=256, notifyid=2),
                ],
                config=b"\x01\x02\x03",
            ),
            Trace(da=0x1000, length=0x200, name="trace0"),
            Devmem(da=0x10, pa=0x20, length=0x30, name="dev"),
            Vendor(ResourceType.VENDOR_START, b"vendor"),
            Carveout(name="second"),
        ]
    )


def test_round_trip(table):
    assert parse_resource_table(table.pack()) == table


def test_header_bytes(table):
    packed = table.pack()
    ver, num, r0, r1 = struct.unpack_from("<IIII", packed)
    assert ver == RSC_TAB_SUPPORTED_VERSION
    assert num == len(table.entries)
    assert (r0, r1) == (0, 0)


def test_entry_types_in_packed_table(table):
    packed = table.pack()
    for entry in table.entries:
        for index in range(2):
            offset = table.find(entry.rsc_type, index)
            if offset is not None:
                assert struct.unpack_from("<I", packed, offset)[0] == entry.rsc_type


def test_find_matches_find_rsc(table):
    packed = table.pack()
    for rsc_type in (0, 1, 2, 3, 128, 200):
        for index in range(3):
            assert find_rsc(packed, rsc_type, index) == table.find(rsc_type, index)


def test_find_second_carveout(table):
    packed = table.pack()
    offset = find_rsc(packed, ResourceType.CARVEOUT, 1)
    assert Carveout.unpack(packed, offset).name == "second"
    assert find_rsc(packed, ResourceType.CARVEOUT, 2) is None


def test_carveout_layout():
    packed = Carveout(da=1, pa=2, length=3, flags=4, name="mem").pack()
    assert len(packed) == 56
    assert packed[:24] == struct.pack("<IIIIII", 0, 1, 2, 3, 4, 0)
    assert packed[24:27] == b"mem"


def test_devmem_type_field():
    packed = Devmem(name="x").pack()
    assert struct.unpack_from("<I", packed)[0] == ResourceType.DEVMEM


def test_long_name_is_cut():
    name = "n" * 40
    entry = Trace(name=name)
    assert Trace.unpack(entry.pack()).name == name[:32]


def test_vdev_layout():
    vdev = Vdev(id=7, vrings=[VdevVring(num=4)], config=b"ab")
    packed = vdev.pack()
    assert len(packed) == 28 + VdevVring.SIZE + 2
    assert packed[-2:] == b"ab"
    assert packed[25] == 1
    assert Vdev.unpack(packed) == vdev


def test_vendor_length_covers_header():
    packed = Vendor(300, b"abcd").pack()
    assert struct.unpack_from("<II", packed) == (300, len(packed))
    assert Vendor.unpack(packed).data == b"abcd"


def test_vendor_type_out_of_range():
    with pytest.raises(ResourceTableError) as info:
        Vendor(ResourceType.VENDOR_END)
    assert info.value.code == RprocErrorCode.EINVAL


def test_truncated_header():
    with pytest.raises(ResourceTableError) as info:
        parse_resource_table(b"\x01\x00\x00")
    assert info.value.code == RprocErrorCode.ERR_RSC_TAB_TRUNC


def test_bad_version(table):
    packed = bytearray(table.pack())
    packed[0] = 2
    with pytest.raises(ResourceTableError) as info:
        parse_resource_table(packed)
    assert info.value.code == RprocErrorCode.ERR_RSC_TAB_VER


def test_reserved_nonzero(table):
    packed = bytearray(table.pack())
    packed[8] = 1
    with pytest.raises(ResourceTableError) as info:
        parse_resource_table(packed)
    assert info.value.code == RprocErrorCode.ERR_RSC_TAB_RSVD


def test_truncated_entry(table):
    packed = table.pack()
    with pytest.raises(ResourceTableError) as info:
        parse_resource_table(packed[:-1])
    assert info.value.code == RprocErrorCode.ERR_RSC_TAB_TRUNC


def test_offsets_past_end():
    packed = struct.pack("<IIII", 1, 3, 0, 0)
    with pytest.raises(ResourceTableError) as info:
        parse_resource_table(packed)
    assert info.value.code == RprocErrorCode.ERR_RSC_TAB_TRUNC


def test_unsupported_type():
    table = ResourceTable([Trace(name="t")])
    packed = bytearray(table.pack())
    offset = table.find(ResourceType.TRACE, 0)
    struct.pack_into("<I", packed, offset, ResourceType.LAST)
    with pytest.raises(ResourceTableError) as info:
        parse_resource_table(packed)
    assert info.value.code == RprocErrorCode.EINVAL


def test_empty_table_round_trip():
    empty = ResourceTable()
    assert parse_resource_table(empty.pack()) == empty
    assert empty.find(ResourceType.VDEV, 0) is None


def test_too_many_vrings():
    vdev = Vdev(vrings=[VdevVring() for _ in range(256)])
    with pytest.raises(ResourceTableError) as info:
        vdev.pack()
    assert info.value.code == RprocErrorCode.ERR_RSC_TAB_VDEV_NRINGS