"""Network helpers: MAC addresses and usable address ranges."""

from __future__ import annotations

import ipaddress
import random
from typing import Union

Network = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]
Address = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

_MAX_HOST_BITS = 16


def random_mac_address() -> str:
    """Return a random locally administered unicast MAC with the libvirt prefix."""
    buf = bytearray(random.randbytes(3))
    buf[0] = (buf[0] | 2) & 0xFE
    buf[0] |= 2
    # avoid libvirt-reserved addresses
    if buf[0] == 0xFE:
        buf[0] = 0xEE
    return "52:54:00:{:02x}:{:02x}:{:02x}".format(*buf)


def _as_network(network: Network | str) -> Network:
    if isinstance(network, str):
        return ipaddress.ip_network(network, strict=False)
    return network


def net_mask_with_max_16_bits(network: Network | str) -> Address:
    """Return the network's mask, widened so at most 16 host bits remain."""
    net = _as_network(network)
    bits = net.max_prefixlen
    if bits - net.prefixlen > _MAX_HOST_BITS:
        all_ones = (1 << bits) - 1
        mask = all_ones ^ ((1 << _MAX_HOST_BITS) - 1)
        return type(net.netmask)(mask)
    return net.netmask


def last_ip(network: Network | str) -> Address:
    """Return the last address of the network, limited to 65536 hosts."""
    net = _as_network(network)
    all_ones = (1 << net.max_prefixlen) - 1
    mask = int(net_mask_with_max_16_bits(net))
    base = net.network_address
    return type(base)(int(base) | (all_ones ^ mask))


def network_range(network: Network | str) -> tuple[Address, Address]:
    """Return the first and last addresses of a network."""
    net = _as_network(network)
    return net.network_address, last_ip(net)