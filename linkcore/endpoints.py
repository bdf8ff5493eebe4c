"""
Endpoint index for ProcLink.

Maps every socket-like local endpoint on the host to the processes and
descriptor positions that own it, so that a descriptor's peer string can
be resolved to the process at the other end.
"""

from __future__ import annotations

import re
from typing import Dict, List, Optional, Tuple

from linkcore.model import DescriptorRecord, ProcessTable, TransportType

# Kernel socket addresses as lsof reports them: 0x-prefixed hex on darwin,
# decimal inodes on linux.
_DEVICE_TOKEN = re.compile(r"^(?:0x[0-9a-fA-F]+|\d+)$")

FullKey = Tuple[TransportType, str]
PartialKey = Tuple[TransportType, str, str]


def is_device_token(value: str) -> bool:
    """Check if an endpoint string is a kernel socket address rather than a name."""
    return bool(_DEVICE_TOKEN.match(value))


def is_named_socket(record: DescriptorRecord) -> bool:
    """
    Check if a descriptor is a named unix-domain socket.

    A named socket has a local address and a peer that is either unknown or
    a filesystem/abstract path rather than the kernel address of a partner.

    Args:
        record: Descriptor to check

    Returns:
        True if the record can be found through the partial key
    """
    if record.type != TransportType.UNIX or not record.local:
        return False
    return not is_device_token(record.peer)


class EndpointIndex:
    """
    Reverse index of all socket-like endpoints across a process table.

    Two separate lookups are kept: the full index keyed by
    (type, local endpoint), and the partial index keyed by
    (type, local endpoint, "") holding only named unix-domain sockets.
    """

    def __init__(self) -> None:
        self._full: Dict[FullKey, Dict[int, List[int]]] = {}
        self._partial: Dict[PartialKey, Tuple[int, int]] = {}

    @classmethod
    def build(cls, table: ProcessTable) -> "EndpointIndex":
        """
        Build the index for every descriptor of every process.

        Args:
            table: Process table to index

        Returns:
            Populated EndpointIndex (empty for an empty table)
        """
        index = cls()
        for pid in sorted(table):
            for position, record in enumerate(table[pid].descriptors):
                index.add(pid, position, record)
        return index

    def add(self, pid: int, position: int, record: DescriptorRecord) -> None:
        """Index one descriptor, ignoring non-socket types and empty endpoints."""
        if not record.type.is_socket_like or not record.local:
            return

        owners = self._full.setdefault((record.type, record.local), {})
        owners.setdefault(pid, []).append(position)

        if is_named_socket(record):
            self._partial.setdefault((record.type, record.local, ""), (pid, position))

    def lookup(self, type: TransportType, endpoint: str) -> List[Tuple[int, List[int]]]:
        """
        Find the owners of an endpoint.

        Args:
            type: Transport type of the endpoint
            endpoint: Local endpoint string to look up

        Returns:
            (pid, descriptor positions) pairs in ascending pid order
        """
        owners = self._full.get((type, endpoint))
        if not owners:
            return []
        return [(pid, list(owners[pid])) for pid in sorted(owners)]

    def lookup_named(self, type: TransportType, endpoint: str) -> Optional[Tuple[int, int]]:
        """
        Find a named socket by its local endpoint alone.

        Args:
            type: Transport type of the endpoint
            endpoint: Local endpoint string to look up

        Returns:
            (pid, descriptor position) of the named socket, or None
        """
        return self._partial.get((type, endpoint, ""))

    def __contains__(self, key: FullKey) -> bool:
        return key in self._full

    def __len__(self) -> int:
        return len(self._full)

    @property
    def named_count(self) -> int:
        """Number of named sockets in the partial index."""
        return len(self._partial)
