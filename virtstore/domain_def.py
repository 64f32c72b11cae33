"""Host capability lookups and kernel command line handling."""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field

log = logging.getLogger(__name__)


@dataclass
class CapsMachine:
    name: str
    canonical: str = ""


@dataclass
class CapsDomain:
    type: str
    machines: list[CapsMachine] = field(default_factory=list)


@dataclass
class CapsGuest:
    os_type: str
    arch_name: str
    machines: list[CapsMachine] = field(default_factory=list)
    domains: list[CapsDomain] = field(default_factory=list)


@dataclass
class Caps:
    guests: list[CapsGuest] = field(default_factory=list)
    host_arch: str = ""
    host_uuid: str = ""


def _parse_root(xml_text: str) -> ET.Element:
    root = ET.fromstring(xml_text)
    if root.tag != "capabilities":
        raise ValueError(
            f"expected element type <capabilities> but have <{root.tag}>"
        )
    return root


def _machines(parent: ET.Element) -> list[CapsMachine]:
    return [
        CapsMachine(name=(m.text or "").strip(), canonical=m.get("canonical", ""))
        for m in parent.findall("machine")
    ]


def parse_capabilities(xml_text: str) -> Caps:
    """Parse a libvirt capabilities document."""
    root = _parse_root(xml_text)
    guests = []
    for guest in root.findall("guest"):
        arch = guest.find("arch")
        if arch is None:
            arch = ET.Element("arch")
        guests.append(
            CapsGuest(
                os_type=(guest.findtext("os_type") or "").strip(),
                arch_name=arch.get("name", ""),
                machines=_machines(arch),
                domains=[
                    CapsDomain(type=d.get("type", ""), machines=_machines(d))
                    for d in arch.findall("domain")
                ],
            )
        )
    return Caps(
        guests=guests,
        host_arch=(root.findtext("host/cpu/arch") or "").strip(),
        host_uuid=(root.findtext("host/uuid") or "").strip(),
    )


def get_guest_for_arch_type(caps: Caps, arch: str, virttype: str) -> CapsGuest:
    """Return the guest entry for an architecture and OS type."""
    for guest in caps.guests:
        log.debug(
            "Checking for %s/%s against %s/%s",
            arch, virttype, guest.arch_name, guest.os_type,
        )
        if guest.arch_name == arch and guest.os_type == virttype:
            log.debug(
                "Found %d machines in guest for %s/%s",
                len(guest.machines), arch, virttype,
            )
            return guest
    raise LookupError(
        f"Could not find any guests for architecture type {virttype}/{arch}"
    )


def lookup_machine(machines: list[CapsMachine], target_machine: str) -> str | None:
    """Return the canonical name of ``target_machine``, or None if absent."""
    for machine in machines:
        if machine.name == target_machine:
            return machine.canonical or machine.name
    return None


def get_canonical_machine_name(
    caps: Caps, arch: str, virttype: str, target_machine: str
) -> str:
    """Resolve a machine alias to its canonical name."""
    guest = get_guest_for_arch_type(caps, arch, virttype)
    name = lookup_machine(guest.machines, target_machine)
    if name:
        return name
    for domain in guest.domains:
        name = lookup_machine(domain.machines, target_machine)
        if name:
            return name
    raise LookupError(
        f"Cannot find machine type {target_machine} for {virttype}/{arch}"
    )


def get_original_machine_name(
    caps: Caps, arch: str, virttype: str, target_machine: str
) -> str:
    """Map a canonical machine name back to its alias, if there is one."""
    guest = get_guest_for_arch_type(caps, arch, virttype)
    for machine in guest.machines:
        if machine.canonical and machine.canonical == target_machine:
            return machine.name
    return target_machine


def split_kernel_cmdline(cmdline: str) -> list[dict[str, str]]:
    """Split a kernel command line into maps, starting a new one on duplicate keys.

    Arguments without a value are gathered, space separated, under ``"_"``
    in a final map.
    """
    result: list[dict[str, str]] = []
    if not cmdline:
        return result

    current: dict[str, str] = {}
    keyless: list[str] = []
    for arg in cmdline.split(" "):
        if "=" not in arg:
            keyless.append(arg)
            continue
        key, value = arg.split("=", 1)
        if key in current:
            result.append(current)
            current = {}
        current[key] = value
    if current:
        result.append(current)
    if keyless:
        result.append({"_": " ".join(keyless)})
    return result


def get_host_architecture(caps_xml: str) -> str:
    """Return the host CPU architecture named in a capabilities document."""
    root = _parse_root(caps_xml)
    return (root.findtext("host/cpu/arch") or "").strip()