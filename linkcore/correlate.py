"""
Connection correlation for ProcLink.

Resolves every open descriptor of every process into a connection with
another process, an external host, a data resource or the kernel, using
the host-wide endpoint index to find the reciprocal descriptor.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from linkcore.endpoints import EndpointIndex
from linkcore.hosts import LocalAddresses, local_addresses, split_host_port
from linkcore.model import (
    Connection,
    ConnectionKey,
    DescriptorRecord,
    Endpoint,
    NodeId,
    ProcessEntry,
    ProcessTable,
    ROOT_PID,
    TransportType,
)

logger = logging.getLogger(__name__)


@dataclass
class CorrelationResult:
    """
    Outcome of one correlation pass.

    connections is always sorted; when fault is set the pass was cut short
    and connections holds what was resolved before the fault.
    """
    connections: List[Connection] = field(default_factory=list)
    table: ProcessTable = field(default_factory=dict)
    fault: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.fault is None


def correlate(
    table: ProcessTable,
    index: Optional[EndpointIndex] = None,
    addresses: Optional[LocalAddresses] = None,
) -> CorrelationResult:
    """
    Run a correlation pass over a process table snapshot.

    The snapshot is copied first, so backfills of named socket peers never
    leak into the caller's table.

    Args:
        table: Process table snapshot
        index: Prebuilt endpoint index (built from the table if None)
        addresses: Local addresses (discovered from the host if None)

    Returns:
        CorrelationResult with connections ordered by self id, peer id,
        self descriptor, peer descriptor
    """
    correlator = Correlator(copy.deepcopy(table), index, addresses)
    return correlator.run()


class Correlator:
    """Single correlation pass over one owned process table snapshot."""

    def __init__(
        self,
        table: ProcessTable,
        index: Optional[EndpointIndex] = None,
        addresses: Optional[LocalAddresses] = None,
    ) -> None:
        self._table = table
        self._index = index
        self._addresses = addresses
        self._connections: Dict[ConnectionKey, Connection] = {}

    def run(self) -> CorrelationResult:
        """Resolve all descriptors, recovering from any fault at the pass boundary."""
        fault = None
        try:
            if self._index is None:
                self._index = EndpointIndex.build(self._table)
            if self._addresses is None:
                self._addresses = local_addresses()

            for pid in sorted(self._table):
                process = self._table[pid]
                for record in process.descriptors:
                    self._resolve(process, record)

            for pid in sorted(self._table):
                self._add_parent(self._table[pid])

        except Exception as e:
            logger.exception("Correlation pass failed after %d connections", len(self._connections))
            fault = f"{type(e).__name__}: {e}"

        connections = sorted(self._connections.values(), key=Connection.sort_key)
        return CorrelationResult(connections=connections, table=self._table, fault=fault)

    def _endpoint(self, process: ProcessEntry, record: DescriptorRecord, name: str) -> Endpoint:
        return Endpoint(
            id=NodeId.process(process.pid),
            descriptor=record.descriptor,
            executable=process.executable,
            name=name,
        )

    def _emit(self, connection: Connection) -> bool:
        """Record a connection unless either direction was already recorded."""
        if connection.key in self._connections or connection.reverse_key in self._connections:
            return False
        self._connections[connection.key] = connection
        logger.debug("Connection %s %s -> %s", connection.label, connection.local.id, connection.peer.id)
        return True

    def _resolve(self, process: ProcessEntry, record: DescriptorRecord) -> None:
        type = record.type

        if type == TransportType.NULL:
            return

        if type.is_data:
            peer_id = NodeId.data(record.local)
            record.peer_id = peer_id
            self._emit(Connection(
                type=type,
                name=record.name,
                local=self._endpoint(process, record, record.local),
                peer=Endpoint(id=peer_id, name=record.local),
            ))
            return

        if type == TransportType.KERNEL:
            record.peer_id = NodeId.kernel()
            self._emit(Connection(
                type=type,
                name=record.name,
                local=self._endpoint(process, record, record.local),
                peer=Endpoint(id=NodeId.kernel(), executable="kernel", name=record.name),
            ))
            return

        if not type.is_socket_like:
            return

        if not record.peer:
            return  # listener

        if self._match_peer(process, record):
            return

        if type in (TransportType.TCP, TransportType.UDP):
            self._match_host(process, record)

    def _match_peer(self, process: ProcessEntry, record: DescriptorRecord) -> bool:
        """Find the reciprocal descriptor in another process."""
        for rpid, positions in self._index.lookup(record.type, record.peer):
            if rpid == process.pid:
                continue
            rprocess = self._table[rpid]
            for position in positions:
                rrecord = rprocess.descriptors[position]
                if reciprocal(record, rrecord):
                    self._connect(process, record, rprocess, rrecord)
                    return True

        if record.type != TransportType.UNIX:
            return False

        named = self._index.lookup_named(record.type, record.peer)
        if named is None or named[0] == process.pid:
            return False

        rpid, position = named
        rprocess = self._table[rpid]
        rrecord = rprocess.descriptors[position]

        # partner of a named socket: repair its missing peer address
        rrecord.peer = record.local
        rrecord.peer_id = NodeId.process(process.pid)
        logger.debug("Backfilled named socket %s of %s with peer %s", rrecord.local, rprocess, record.local)

        self._connect(process, record, rprocess, rrecord)
        return True

    def _connect(
        self,
        process: ProcessEntry,
        record: DescriptorRecord,
        rprocess: ProcessEntry,
        rrecord: DescriptorRecord,
    ) -> None:
        record.peer_id = NodeId.process(rprocess.pid)
        self._emit(Connection(
            type=record.type,
            name=record.name,
            local=self._endpoint(process, record, record.local),
            peer=self._endpoint(rprocess, rrecord, record.peer),
        ))

    def _match_host(self, process: ProcessEntry, record: DescriptorRecord) -> None:
        """Classify an unmatched TCP/UDP peer as an external host."""
        parts = split_host_port(record.peer)
        if parts is None:
            return
        host, port = parts
        if self._addresses.is_local(host):
            return  # unidentified local peer

        peer_id = NodeId.host(f"{record.type.value}:{record.peer}")
        record.peer_id = peer_id
        self._emit(Connection(
            type=record.type,
            name=record.name,
            local=self._endpoint(process, record, record.local),
            peer=Endpoint(id=peer_id, executable=port, name=record.peer),
        ))

    def _add_parent(self, process: ProcessEntry) -> None:
        parent = self._table.get(process.ppid)
        if process.ppid <= ROOT_PID or parent is None:
            return
        self._emit(Connection(
            type=TransportType.PARENT,
            name=f"child:{process.pid}",
            local=Endpoint(
                id=NodeId.process(parent.pid),
                executable=parent.executable,
                name="parent",
            ),
            peer=Endpoint(
                id=NodeId.process(process.pid),
                executable=process.executable,
                name="child",
            ),
        ))


def reciprocal(record: DescriptorRecord, candidate: DescriptorRecord) -> bool:
    """
    Check if a candidate descriptor is the other end of a record.

    The candidate must have the same type, own the record's peer endpoint
    and point back at the record. Anonymous shared memory and unix socket
    partners may leave their peer empty.

    Args:
        record: Descriptor being resolved
        candidate: Descriptor owning the record's peer endpoint

    Returns:
        True if the two descriptors form a pair
    """
    if record.type != candidate.type or candidate.local != record.peer:
        return False
    if candidate.peer == record.local:
        return True
    return candidate.peer == "" and record.type in (TransportType.SHARED_MEMORY, TransportType.UNIX)
