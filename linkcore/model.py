"""
Data model for ProcLink.

Describes the per-process descriptor table consumed by the correlation
engine and the connection records it produces.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union


class TransportType(Enum):
    """Kind of an open descriptor."""
    PIPE = "PIPE"
    FIFO = "FIFO"
    UNIX = "unix"
    TCP = "TCP"
    UDP = "UDP"
    REGULAR = "REG"
    SHARED_MEMORY = "PSXSHM"
    KERNEL = "systm"
    SEMAPHORE = "PSXSEM"
    NULL = "NUL"
    OTHER = "other"
    PARENT = "parent"  # synthetic, parent to child

    @classmethod
    def from_lsof(cls, value: str) -> "TransportType":
        """
        Map an lsof TYPE (or NODE for sockets) column value to a transport.

        Args:
            value: Column value such as "REG", "unix" or "TCP"

        Returns:
            Matching TransportType, OTHER when unknown
        """
        if value in ("DIR", "BLK"):
            return cls.REGULAR
        try:
            return cls(value)
        except ValueError:
            return cls.OTHER

    @property
    def is_socket_like(self) -> bool:
        """True for transports resolved through the endpoint index."""
        return self in SOCKET_TYPES

    @property
    def is_data(self) -> bool:
        """True for transports that associate a process with a data resource."""
        return self in (TransportType.REGULAR, TransportType.SHARED_MEMORY)


SOCKET_TYPES = frozenset({
    TransportType.PIPE,
    TransportType.FIFO,
    TransportType.UNIX,
    TransportType.TCP,
    TransportType.UDP,
})


class NodeKind(Enum):
    """Category of a graph node, used for styling."""
    PROCESS = "process"
    HOST = "host"
    DATA = "data"
    KERNEL = "kernel"


# Hosts sort before the kernel, processes, then data resources.
_KIND_RANK = {
    NodeKind.HOST: 0,
    NodeKind.KERNEL: 1,
    NodeKind.PROCESS: 2,
    NodeKind.DATA: 3,
}

KERNEL_PID = 0
ROOT_PID = 1


@dataclass(frozen=True)
class NodeId:
    """Tagged identity of a connection endpoint or graph node."""
    kind: NodeKind
    key: Union[int, str]

    @classmethod
    def process(cls, pid: int) -> "NodeId":
        if pid == KERNEL_PID:
            return cls.kernel()
        return cls(NodeKind.PROCESS, pid)

    @classmethod
    def kernel(cls) -> "NodeId":
        return cls(NodeKind.KERNEL, KERNEL_PID)

    @classmethod
    def host(cls, identity: str) -> "NodeId":
        return cls(NodeKind.HOST, identity)

    @classmethod
    def data(cls, name: str) -> "NodeId":
        return cls(NodeKind.DATA, name)

    @property
    def pid(self) -> Optional[int]:
        """Process id for process and kernel ids, None otherwise."""
        if self.kind in (NodeKind.PROCESS, NodeKind.KERNEL):
            return int(self.key)
        return None

    @property
    def is_process(self) -> bool:
        return self.kind == NodeKind.PROCESS

    def sort_key(self) -> Tuple[int, int, str]:
        if isinstance(self.key, int):
            return (_KIND_RANK[self.kind], self.key, "")
        return (_KIND_RANK[self.kind], 0, self.key)

    def __str__(self) -> str:
        if self.kind == NodeKind.PROCESS:
            return str(self.key)
        return f"{self.kind.value}:{self.key}"


@dataclass
class DescriptorRecord:
    """One open descriptor of a process."""
    descriptor: int
    type: TransportType
    local: str = ""
    peer: str = ""
    name: str = ""
    peer_id: Optional[NodeId] = None

    def __post_init__(self) -> None:
        if not self.name:
            self.name = self.local


@dataclass
class ProcessEntry:
    """A process and its open descriptors."""
    pid: int
    ppid: int = 0
    executable: str = ""
    command: str = ""
    descriptors: List[DescriptorRecord] = field(default_factory=list)

    @property
    def display_name(self) -> str:
        """Short name of the process: executable basename or command."""
        if self.executable:
            return os.path.basename(self.executable)
        return self.command

    def __str__(self) -> str:
        return f"{self.display_name}[{self.pid}]"


ProcessTable = Dict[int, ProcessEntry]


@dataclass(frozen=True)
class Endpoint:
    """One side of a connection."""
    id: NodeId
    descriptor: int = -1
    executable: str = ""
    name: str = ""

    @property
    def pid(self) -> Optional[int]:
        return self.id.pid


ConnectionKey = Tuple[NodeId, int, NodeId, int]


@dataclass(frozen=True)
class Connection:
    """A directed association between two endpoints."""
    type: TransportType
    name: str
    local: Endpoint
    peer: Endpoint

    @property
    def key(self) -> ConnectionKey:
        return (self.local.id, self.local.descriptor, self.peer.id, self.peer.descriptor)

    @property
    def reverse_key(self) -> ConnectionKey:
        return (self.peer.id, self.peer.descriptor, self.local.id, self.local.descriptor)

    def sort_key(self) -> tuple:
        return (
            self.local.id.sort_key(),
            self.peer.id.sort_key(),
            self.local.descriptor,
            self.peer.descriptor,
        )

    @property
    def label(self) -> str:
        """Transport description, e.g. "TCP:127.0.0.1:5000 -> 127.0.0.1:6000"."""
        return f"{self.type.value}:{self.local.name} -> {self.peer.name}"
