import xml.etree.ElementTree as ET

import pytest

from virtstore.volume_def import (
    StorageVolume,
    StorageVolumeBackingStore,
    StorageVolumeSize,
    StorageVolumeTarget,
    StorageVolumeTargetFormat,
    StorageVolumeTimestamps,
    new_def_volume,
    new_def_volume_from_xml,
)

DISK_PATH = "/srv/vm-images/guest_disk.qcow2"
BASE_PATH = "/srv/vm-images/base_disk.qcow2"


def _stat_block(tag, path, mode, owner, group, atime, mtime, ctime):
    return (
        f"<{tag}><path>{path}</path><format type='qcow2'/>"
        f"<permissions><mode>{mode}</mode><owner>{owner}</owner>"
        f"<group>{group}</group></permissions>"
        f"<timestamps><atime>{atime}</atime><mtime>{mtime}</mtime>"
        f"<ctime>{ctime}</ctime></timestamps></{tag}>"
    )


SAMPLE = (
    "<volume type='file'>\n"
    "  <name>guest_disk.qcow2</name>\n"
    f"  <key>{DISK_PATH}</key>\n"
    "  <source>\n  </source>\n"
    "  <capacity unit='bytes'>21474836480</capacity>\n"
    "  <allocation unit='bytes'>524288000</allocation>\n  "
    + _stat_block(
        "target", DISK_PATH, "0600", "107", "108",
        "1600000000.100000001", "1600000100.200000002", "1600000100.200000002",
    )
    + "\n  "
    + _stat_block(
        "backingStore", BASE_PATH, "0644", "107", "108",
        "1500000000.300000003", "1500000050.400000004", "1500000060.500000005",
    )
    + "\n</volume>\n"
)


def test_volume_unmarshal():
    vol = new_def_volume_from_xml(SAMPLE)
    assert vol.name == "guest_disk.qcow2"
    assert vol.type == "file"
    assert vol.key == DISK_PATH
    assert vol.capacity == StorageVolumeSize(value=21474836480, unit="bytes")
    assert vol.allocation == StorageVolumeSize(value=524288000, unit="bytes")
    assert vol.target.format.type == "qcow2"
    assert vol.target.permissions.mode == "0600"
    assert vol.target.permissions.owner == "107"
    assert vol.target.timestamps.mtime == "1600000100.200000002"
    assert vol.backing_store.path == BASE_PATH
    assert vol.backing_store.timestamps.atime == "1500000000.300000003"


def test_default_volume_values():
    vol = new_def_volume()
    assert vol.target.format.type == "qcow2"
    assert vol.target.permissions.mode == "644"
    assert vol.capacity == StorageVolumeSize(value=1, unit="bytes")
    assert vol.backing_store is None


def test_default_volume_marshal():
    root = ET.fromstring(new_def_volume().to_xml())
    assert root.tag == "volume"
    assert root.find("target/format").get("type") == "qcow2"
    assert root.findtext("target/permissions/mode") == "644"
    capacity = root.find("capacity")
    assert capacity.get("unit") == "bytes"
    assert capacity.text == "1"


def test_round_trip_default():
    vol = new_def_volume()
    assert new_def_volume_from_xml(vol.to_xml()) == vol


def test_round_trip_sample():
    vol = new_def_volume_from_xml(SAMPLE)
    assert new_def_volume_from_xml(vol.to_xml()) == vol


def test_round_trip_with_backing_store():
    vol = StorageVolume(
        name="disk",
        capacity=StorageVolumeSize(value=1073741824, unit="B"),
        target=StorageVolumeTarget(
            format=StorageVolumeTargetFormat(type="raw"),
            timestamps=StorageVolumeTimestamps(mtime="123.456"),
        ),
        backing_store=StorageVolumeBackingStore(
            path="/var/lib/images/base.qcow2",
            format=StorageVolumeTargetFormat(type="qcow2"),
        ),
    )
    assert new_def_volume_from_xml(vol.to_xml()) == vol


def test_wrong_root_raises():
    with pytest.raises(ValueError, match="volume"):
        new_def_volume_from_xml("<pool><name>x</name></pool>")


def test_malformed_xml_raises():
    with pytest.raises(ValueError):
        new_def_volume_from_xml("<volume><name>x</volume>")


def test_bad_capacity_raises():
    with pytest.raises(ValueError):
        new_def_volume_from_xml("<volume><capacity>lots</capacity></volume>")