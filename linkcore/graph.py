"""
Graph assembly for ProcLink.

Turns the ordered connection list of a correlation pass into node and
edge collections for a node graph visualization. Synthetic nodes for
external hosts and data resources are spliced into the process tree so
that the rendered graph stays a single tree.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import networkx as nx

from linkcore.hosts import LocalAddresses, local_addresses, split_host_port
from linkcore.model import (
    Connection,
    NodeId,
    NodeKind,
    ProcessTable,
    ROOT_PID,
)
from linkcore.protocols import identify_service
from linkcore.tree import family, walk

logger = logging.getLogger(__name__)


@dataclass
class GraphOptions:
    """Selects which connections are graphed."""
    include_kernel: bool = False
    include_daemons: bool = False
    include_data: bool = False
    focus_pid: Optional[int] = None


@dataclass
class Node:
    """A graph node."""
    id: str
    title: str
    main_stat: str
    secondary_stat: str
    category: NodeKind
    unresolved: bool = False


@dataclass
class Edge:
    """A graph edge, possibly carrying several transport connections."""
    id: str
    source: str
    target: str
    main_stat: str
    secondary_stat: str
    category: NodeKind = NodeKind.PROCESS

    @property
    def labels(self) -> List[str]:
        """Transport descriptions carried by this edge, one per connection."""
        return self.secondary_stat.split("\n")


@dataclass
class Graph:
    """Node and edge collections in tree traversal order."""
    nodes: List[Node] = field(default_factory=list)
    edges: List[Edge] = field(default_factory=list)
    unresolved: List[str] = field(default_factory=list)

    def node(self, id: str) -> Optional[Node]:
        """Find a node by id."""
        for node in self.nodes:
            if node.id == id:
                return node
        return None


def assemble(
    connections: Sequence[Connection],
    table: ProcessTable,
    options: Optional[GraphOptions] = None,
    addresses: Optional[LocalAddresses] = None,
) -> Graph:
    """
    Assemble the node graph for a list of connections.

    Args:
        connections: Ordered connections from a correlation pass
        table: Process table the connections were resolved from
        options: Inclusion and focus options (defaults if None)
        addresses: Local addresses used to name interfaces

    Returns:
        Graph with nodes and edges
    """
    builder = GraphBuilder(table, options or GraphOptions(), addresses)
    return builder.build(connections)


class GraphBuilder:
    """Accumulates nodes and edges for one assembly."""

    def __init__(
        self,
        table: ProcessTable,
        options: GraphOptions,
        addresses: Optional[LocalAddresses] = None,
    ) -> None:
        self._options = options
        self._addresses = addresses
        self._table = self._focus(table, options.focus_pid)

        # pseudo tree: parent -> child edges by ppid, synthetic nodes spliced in
        self._tree = nx.DiGraph()
        for pid, process in self._table.items():
            if process.ppid != pid:
                self._tree.add_edge(NodeId.process(process.ppid), NodeId.process(pid))

        self._nodes: Dict[NodeId, Node] = {}
        self._edges: Dict[str, Tuple[NodeId, NodeId, Edge]] = {}

    @staticmethod
    def _focus(table: ProcessTable, pid: Optional[int]) -> ProcessTable:
        if pid is None:
            return table
        if pid not in table:
            logger.warning("Focus process %d not found, graphing all processes", pid)
            return table
        members = family(table, pid)
        return {member: table[member] for member in members}

    def build(self, connections: Sequence[Connection]) -> Graph:
        data: List[Connection] = []
        for conn in connections:
            if not self._in_scope(conn):
                continue
            if conn.peer.id.kind == NodeKind.DATA:
                data.append(conn)
            else:
                self._add(conn)

        # data nodes only hang off processes already graphed
        if self._options.include_data:
            for conn in data:
                self._add_data(conn)

        return self._ordered()

    def _in_scope(self, conn: Connection) -> bool:
        for id in (conn.local.id, conn.peer.id):
            if id.is_process and id.pid not in self._table:
                return False
        return True

    def name(self, id: NodeId) -> str:
        """Stable identity string of a node."""
        if id.kind == NodeKind.KERNEL:
            return "kernel[0]"
        if id.kind == NodeKind.PROCESS:
            process = self._table.get(id.pid)
            name = process.display_name if process else ""
            return f"{name}[{id.pid}]"
        return str(id.key)

    def _add(self, conn: Connection) -> None:
        local, peer = conn.local.id, conn.peer.id
        if local == peer:
            return

        if ROOT_PID in (local.pid, peer.pid):
            if self._options.include_daemons:
                other = peer if local.pid == ROOT_PID else local
                if other.is_process and other.pid != ROOT_PID:
                    self._process_node(other)
            return

        if NodeKind.KERNEL in (local.kind, peer.kind) and not self._options.include_kernel:
            return

        if peer.kind == NodeKind.HOST:
            self._add_host(conn)
        else:
            self._add_between(conn)

    def _process_node(self, id: NodeId) -> str:
        name = self.name(id)
        if id not in self._nodes:
            if id.kind == NodeKind.KERNEL:
                self._nodes[id] = Node(name, "kernel", "pid 0", "", NodeKind.KERNEL)
            else:
                process = self._table.get(id.pid)
                self._nodes[id] = Node(
                    id=name,
                    title=process.display_name if process else "",
                    main_stat=f"pid {id.pid}",
                    secondary_stat=(process.executable or process.command) if process else "",
                    category=NodeKind.PROCESS,
                )
        return name

    def _add_edge(
        self,
        source: NodeId,
        target: NodeId,
        kind: str,
        label: str,
        main_stat: Optional[str] = None,
        category: NodeKind = NodeKind.PROCESS,
    ) -> None:
        """Add an edge, merging with an existing edge between the same nodes."""
        src, dst = self.name(source), self.name(target)
        id = f"{src} -> {dst}"
        di = f"{dst} -> {src}"

        if id in self._edges:
            edge = self._edges[id][2]
        elif di in self._edges:
            edge = self._edges[di][2]
            label = reverse_label(label)
        else:
            self._edges[id] = (source, target, Edge(
                id=id,
                source=src,
                target=dst,
                main_stat=main_stat if main_stat is not None else kind,
                secondary_stat=label,
                category=category,
            ))
            return

        edge.secondary_stat += "\n" + label
        if main_stat is None and kind not in edge.main_stat.split(", "):
            edge.main_stat += ", " + kind

    def _add_between(self, conn: Connection) -> None:
        local, peer = conn.local.id, conn.peer.id
        self._process_node(local)
        self._process_node(peer)
        category = NodeKind.KERNEL if NodeKind.KERNEL in (local.kind, peer.kind) else NodeKind.PROCESS
        self._add_edge(local, peer, conn.type.value, conn.label, category=category)

    def _add_host(self, conn: Connection) -> None:
        process, host = conn.local.id, conn.peer.id
        self._process_node(process)

        if host not in self._nodes:
            address, port = split_host_port(conn.peer.name) or (conn.peer.name, "")
            self._nodes[host] = Node(
                id=self.name(host),
                title=address,
                main_stat=f"{conn.type.value}:{port}",
                secondary_stat=identify_service(port),
                category=NodeKind.HOST,
            )
            self._splice(host, process)

        addresses = self._addresses or local_addresses()
        # flipped so the host renders as the traffic source
        self._add_edge(
            host,
            process,
            conn.type.value,
            f"{conn.type.value}:{conn.peer.name} -> {conn.local.name}",
            main_stat=addresses.interface(conn.local.name),
            category=NodeKind.HOST,
        )

    def _add_data(self, conn: Connection) -> None:
        process, data = conn.local.id, conn.peer.id
        if process not in self._nodes:
            return

        if data not in self._nodes:
            name = str(data.key)
            self._nodes[data] = Node(
                id=name,
                title=os.path.dirname(name),
                main_stat=os.path.basename(name),
                secondary_stat=conn.type.value,
                category=NodeKind.DATA,
            )
            self._tree.add_edge(process, data)

        id = f"{self.name(process)} -> {self.name(data)}"
        if id not in self._edges:
            self._edges[id] = (process, data, Edge(
                id=id,
                source=self.name(process),
                target=self.name(data),
                main_stat=conn.type.value,
                secondary_stat=conn.label,
                category=NodeKind.DATA,
            ))

    def _parent(self, id: NodeId) -> Optional[NodeId]:
        if id not in self._tree:
            return None
        return next(iter(self._tree.predecessors(id)), None)

    def _splice(self, synthetic: NodeId, process: NodeId) -> None:
        """Reparent the top-most ancestor of a process under a synthetic node."""
        top = process
        seen = {top}
        while True:
            parent = self._parent(top)
            if (parent is None or not parent.is_process or parent.pid <= ROOT_PID
                    or self._parent(parent) is None or parent in seen):
                break
            seen.add(parent)
            top = parent

        parent = self._parent(top)
        if parent is not None:
            self._tree.remove_edge(parent, top)
            self._tree.add_edge(parent, synthetic)
        self._tree.add_edge(synthetic, top)

    def _ordered(self) -> Graph:
        tree = self._tree.copy()
        tree.add_nodes_from(self._nodes)

        position: Dict[NodeId, int] = {}
        graph = Graph()
        for id in walk(tree, key=NodeId.sort_key):
            node = self._nodes.get(id)
            if node is not None:
                position[id] = len(position)
                logger.debug("Node %s found in tree", node.id)
                graph.nodes.append(node)

        for id in sorted(self._nodes, key=NodeId.sort_key):
            if id in position:
                continue
            node = self._nodes[id]
            logger.warning("Unresolved node %s not reached from the process tree", node.id)
            node.unresolved = True
            position[id] = len(position)
            graph.nodes.append(node)
            graph.unresolved.append(node.id)

        for source, target, edge in sorted(
            self._edges.values(),
            key=lambda e: (position.get(e[0], len(position)), position.get(e[1], len(position)), e[2].id),
        ):
            graph.edges.append(edge)

        return graph


def reverse_label(label: str) -> str:
    """Reverse the direction of a "TYPE:a -> b" transport description."""
    kind, sep, rest = label.partition(":")
    a, arrow, b = rest.partition(" -> ")
    if not sep or not arrow:
        return label
    return f"{kind}:{b} -> {a}"
