"""Storage volume definitions and their XML form."""

from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Optional, Union


@dataclass
class StorageVolumeTargetFormat:
    type: str = ""


@dataclass
class StorageVolumeTargetPermissions:
    owner: str = ""
    group: str = ""
    mode: str = ""
    label: str = ""


@dataclass
class StorageVolumeTimestamps:
    atime: str = ""
    mtime: str = ""
    ctime: str = ""


@dataclass
class StorageVolumeTarget:
    path: str = ""
    format: Optional[StorageVolumeTargetFormat] = None
    permissions: Optional[StorageVolumeTargetPermissions] = None
    timestamps: Optional[StorageVolumeTimestamps] = None


@dataclass
class StorageVolumeSize:
    value: int = 0
    unit: str = ""


@dataclass
class StorageVolumeBackingStore:
    path: str = ""
    format: Optional[StorageVolumeTargetFormat] = None
    permissions: Optional[StorageVolumeTargetPermissions] = None
    timestamps: Optional[StorageVolumeTimestamps] = None


_Store = Union[StorageVolumeTarget, StorageVolumeBackingStore]


@dataclass
class StorageVolume:
    name: str = ""
    type: str = ""
    key: str = ""
    allocation: Optional[StorageVolumeSize] = None
    capacity: Optional[StorageVolumeSize] = None
    target: Optional[StorageVolumeTarget] = None
    backing_store: Optional[StorageVolumeBackingStore] = None

    def to_xml(self) -> str:
        """Serialise the definition as an indented ``<volume>`` document."""
        root = ET.Element("volume")
        if self.type:
            root.set("type", self.type)
        ET.SubElement(root, "name").text = self.name
        if self.key:
            ET.SubElement(root, "key").text = self.key
        if self.allocation is not None:
            _size_element(root, "allocation", self.allocation)
        if self.capacity is not None:
            _size_element(root, "capacity", self.capacity)
        if self.target is not None:
            _store_element(root, "target", self.target)
        if self.backing_store is not None:
            _store_element(root, "backingStore", self.backing_store)
        ET.indent(root, space="    ")
        return ET.tostring(root, encoding="unicode")


def _optional_text(parent: ET.Element, tag: str, text: str) -> None:
    if text:
        ET.SubElement(parent, tag).text = text


def _size_element(parent: ET.Element, tag: str, size: StorageVolumeSize) -> None:
    element = ET.SubElement(parent, tag)
    if size.unit:
        element.set("unit", size.unit)
    element.text = str(size.value)


def _store_element(parent: ET.Element, tag: str, store: _Store) -> None:
    element = ET.SubElement(parent, tag)
    _optional_text(element, "path", store.path)
    if store.format is not None:
        fmt = ET.SubElement(element, "format")
        if store.format.type:
            fmt.set("type", store.format.type)
    if store.permissions is not None:
        perms = ET.SubElement(element, "permissions")
        _optional_text(perms, "owner", store.permissions.owner)
        _optional_text(perms, "group", store.permissions.group)
        _optional_text(perms, "mode", store.permissions.mode)
        _optional_text(perms, "label", store.permissions.label)
    if store.timestamps is not None:
        stamps = ET.SubElement(element, "timestamps")
        _optional_text(stamps, "atime", store.timestamps.atime)
        _optional_text(stamps, "mtime", store.timestamps.mtime)
        _optional_text(stamps, "ctime", store.timestamps.ctime)


def new_def_volume() -> StorageVolume:
    """Return the default volume definition: qcow2, mode 644, one byte."""
    return StorageVolume(
        target=StorageVolumeTarget(
            format=StorageVolumeTargetFormat(type="qcow2"),
            permissions=StorageVolumeTargetPermissions(mode="644"),
        ),
        capacity=StorageVolumeSize(unit="bytes", value=1),
    )


def _text(parent: ET.Element, tag: str) -> str:
    return (parent.findtext(tag) or "").strip()


def _parse_size(element: Optional[ET.Element]) -> Optional[StorageVolumeSize]:
    if element is None:
        return None
    raw = (element.text or "").strip()
    if not raw:
        value = 0
    else:
        try:
            value = int(raw)
        except ValueError as exc:
            raise ValueError(f"invalid size value {raw!r}") from exc
        if value < 0:
            raise ValueError(f"invalid size value {raw!r}")
    return StorageVolumeSize(value=value, unit=element.get("unit", ""))


def _parse_store(element: Optional[ET.Element], cls: type) -> Optional[_Store]:
    if element is None:
        return None
    fmt = element.find("format")
    perms = element.find("permissions")
    stamps = element.find("timestamps")
    return cls(
        path=_text(element, "path"),
        format=None if fmt is None else StorageVolumeTargetFormat(type=fmt.get("type", "")),
        permissions=None
        if perms is None
        else StorageVolumeTargetPermissions(
            owner=_text(perms, "owner"),
            group=_text(perms, "group"),
            mode=_text(perms, "mode"),
            label=_text(perms, "label"),
        ),
        timestamps=None
        if stamps is None
        else StorageVolumeTimestamps(
            atime=_text(stamps, "atime"),
            mtime=_text(stamps, "mtime"),
            ctime=_text(stamps, "ctime"),
        ),
    )


def new_def_volume_from_xml(text: str) -> StorageVolume:
    """Parse a ``<volume>`` document; raise ValueError if it is not one."""
    try:
        root = ET.fromstring(text.strip())
    except ET.ParseError as exc:
        raise ValueError(f"could not parse volume definition: {exc}") from exc
    if root.tag != "volume":
        raise ValueError(f"expected element type <volume> but have <{root.tag}>")
    return StorageVolume(
        name=_text(root, "name"),
        type=root.get("type", ""),
        key=_text(root, "key"),
        allocation=_parse_size(root.find("allocation")),
        capacity=_parse_size(root.find("capacity")),
        target=_parse_store(root.find("target"), StorageVolumeTarget),
        backing_store=_parse_store(root.find("backingStore"), StorageVolumeBackingStore),
    )