"""
Statistics module for ProcLink.

Summarizes a correlation pass and the graph assembled from it:
connection counts per transport, node counts per category and the
busiest processes.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Dict, List, Sequence, Tuple, TYPE_CHECKING

from linkcore.model import NodeKind, TransportType

if TYPE_CHECKING:
    from linkcore.graph import Graph
    from linkcore.model import Connection


class GraphStatistics:
    """
    Statistics for one graph snapshot.

    Tracks:
    - Connection count by transport type
    - Node count by category
    - Edge count and unresolved node count
    - Per-process connection count
    """

    def __init__(self, connections: Sequence["Connection"], graph: "Graph") -> None:
        """
        Compute statistics.

        Args:
            connections: Connections of the correlation pass
            graph: Graph assembled from the connections
        """
        self._transport_counts: Dict[str, int] = defaultdict(int)
        self._category_counts: Dict[str, int] = defaultdict(int)
        self._process_counts: Dict[str, int] = defaultdict(int)

        for conn in connections:
            self._transport_counts[conn.type.value] += 1
            if conn.type == TransportType.PARENT:
                continue
            for endpoint in (conn.local, conn.peer):
                if endpoint.id.kind == NodeKind.PROCESS:
                    self._process_counts[str(endpoint.id)] += 1

        for node in graph.nodes:
            self._category_counts[node.category.value] += 1

        self._total_connections = len(connections)
        self._total_nodes = len(graph.nodes)
        self._total_edges = len(graph.edges)
        self._unresolved = len(graph.unresolved)

    @property
    def total_connections(self) -> int:
        """Get total connection count."""
        return self._total_connections

    @property
    def total_nodes(self) -> int:
        """Get total node count."""
        return self._total_nodes

    @property
    def total_edges(self) -> int:
        """Get total edge count."""
        return self._total_edges

    @property
    def unresolved(self) -> int:
        """Get number of nodes not reached from the process tree."""
        return self._unresolved

    @property
    def transport_counts(self) -> Dict[str, int]:
        """Get connection counts by transport."""
        return dict(self._transport_counts)

    @property
    def category_counts(self) -> Dict[str, int]:
        """Get node counts by category."""
        return dict(self._category_counts)

    def top_processes(self, limit: int = 10) -> List[Tuple[str, int]]:
        """
        Get the processes with the most connections.

        Args:
            limit: Maximum number of processes to return

        Returns:
            List of (pid, connection_count) tuples
        """
        sorted_procs = sorted(
            self._process_counts.items(),
            key=lambda x: (-x[1], int(x[0])),
        )
        return sorted_procs[:limit]

    def summary(self) -> Dict:
        """
        Get complete statistics summary.

        Returns:
            Dictionary with all statistics
        """
        return {
            "total_connections": self.total_connections,
            "total_nodes": self.total_nodes,
            "total_edges": self.total_edges,
            "unresolved": self.unresolved,
            "transport_counts": self.transport_counts,
            "category_counts": self.category_counts,
            "top_processes": self.top_processes(),
        }
