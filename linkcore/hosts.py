"""
Host address helpers for ProcLink.

Parses host:port endpoint strings and decides whether an address belongs
to this host, so that unmatched TCP/UDP peers can be classified as
external hosts.
"""

from __future__ import annotations

import ipaddress
import logging
import socket
from typing import Dict, Iterable, Optional, Set, Tuple, Union

import psutil

logger = logging.getLogger(__name__)

LOCAL_NAMES = {"localhost"}

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


def split_host_port(endpoint: str) -> Optional[Tuple[str, str]]:
    """
    Split an endpoint string into host and port.

    Accepts "host:port" and "[v6addr]:port". IPv6 zone suffixes are
    stripped from the host.

    Args:
        endpoint: Endpoint string such as "203.0.113.5:443"

    Returns:
        (host, port) tuple, or None if the string is malformed
    """
    if not endpoint:
        return None

    if endpoint.startswith("["):
        close = endpoint.find("]")
        if close < 0 or endpoint[close + 1:close + 2] != ":":
            return None
        host = endpoint[1:close]
        port = endpoint[close + 2:]
    else:
        host, sep, port = endpoint.rpartition(":")
        if not sep or ":" in host:
            return None

    host = host.split("%", 1)[0]
    if not host or not port or host == "*" or " " in port:
        return None

    return host, port


def parse_ip(text: str) -> IPAddress:
    """
    Parse an address, dropping any IPv6 zone.

    IPv4-mapped IPv6 addresses (::ffff:a.b.c.d, as dual-stack sockets
    report them) are unwrapped to IPv4.

    Raises:
        ValueError: If the text is not an IP address
    """
    ip = ipaddress.ip_address(text.split("%", 1)[0])
    if ip.version == 6 and ip.ipv4_mapped:
        return ip.ipv4_mapped
    return ip


def normalize_ip(ip: Optional[str]) -> str:
    """
    Normalize an IP address string.

    Args:
        ip: IP address or None

    Returns:
        Compressed address string, the input unchanged if it is not an
        address, or empty string if None
    """
    if ip is None:
        return ""
    try:
        return str(parse_ip(ip))
    except ValueError:
        return ip


def format_endpoint(ip: str, port: int) -> str:
    """Format an address and port the way lsof prints them."""
    if ":" in ip:
        return f"[{ip}]:{port}"
    return f"{ip}:{port}"


class LocalAddresses:
    """
    The set of addresses that identify this host.

    Also maps each local address to the name of its network interface.
    """

    def __init__(
        self,
        addresses: Iterable[str] = (),
        interfaces: Optional[Dict[str, str]] = None,
        names: Iterable[str] = (),
    ) -> None:
        """
        Initialize the address set.

        Args:
            addresses: Local addresses
            interfaces: Mapping of local address to interface name
            names: Host names that refer to this host
        """
        self._interfaces: Dict[str, str] = {
            normalize_ip(addr): name for addr, name in (interfaces or {}).items()
        }
        self._addresses: Set[str] = {normalize_ip(addr) for addr in addresses}
        self._addresses.update(self._interfaces)
        self._names: Set[str] = {name.lower() for name in names} | LOCAL_NAMES

    @classmethod
    def discover(cls) -> "LocalAddresses":
        """
        Discover the addresses of all local network interfaces.

        Returns:
            LocalAddresses for this host
        """
        interfaces: Dict[str, str] = {}
        try:
            for name, addrs in psutil.net_if_addrs().items():
                for addr in addrs:
                    if addr.family in (socket.AF_INET, socket.AF_INET6):
                        interfaces[addr.address] = name
        except OSError as e:
            logger.warning("Reading network interfaces failed: %s", e)

        hostname = socket.gethostname()
        addresses: Set[str] = set()
        try:
            _, _, resolved = socket.gethostbyname_ex(hostname)
            addresses.update(resolved)
        except OSError as e:
            logger.debug("Resolving hostname %s failed: %s", hostname, e)

        logger.debug("Local host %s with %d interface addresses", hostname, len(interfaces))
        return cls(addresses, interfaces, names=[hostname])

    def is_local(self, host: str) -> bool:
        """
        Check if a host names this machine.

        Loopback, link-local, multicast and unspecified addresses count as
        local since they never identify a remote peer.

        Args:
            host: Address or host name

        Returns:
            True if the host is local
        """
        try:
            ip = parse_ip(host)
        except ValueError:
            return host.lower() in self._names

        if str(ip) in self._addresses:
            return True

        return ip.is_loopback or ip.is_link_local or ip.is_multicast or ip.is_unspecified

    def interface(self, address: str) -> str:
        """
        Get the interface name owning a local address.

        Args:
            address: Local address (or host:port endpoint)

        Returns:
            Interface name, or empty string if unknown
        """
        parts = split_host_port(address)
        host = parts[0] if parts else address
        return self._interfaces.get(normalize_ip(host), "")

    def __contains__(self, address: str) -> bool:
        return normalize_ip(address) in self._addresses


_discovered: Optional[LocalAddresses] = None


def local_addresses() -> LocalAddresses:
    """Get the local addresses of this host, discovered once per process."""
    global _discovered
    if _discovered is None:
        _discovered = LocalAddresses.discover()
    return _discovered
