"""
Export module for ProcLink.

Provides functionality to export the connection graph to JSON and the
connection list to CSV for offline analysis and visualization.
"""

from __future__ import annotations

import csv
import json
import os
from datetime import datetime
from enum import Enum
from typing import List, Optional, Sequence, TextIO, TYPE_CHECKING

from linkcore import __version__

if TYPE_CHECKING:
    from linkcore.graph import Edge, Graph, Node
    from linkcore.model import Connection


class ExportFormat(Enum):
    """Supported export formats."""
    JSON = "json"
    CSV = "csv"


def detect_format(filename: str) -> ExportFormat:
    """
    Detect export format from filename extension.

    Args:
        filename: Output filename

    Returns:
        Detected ExportFormat

    Raises:
        ValueError: If format cannot be determined
    """
    ext = os.path.splitext(filename)[1].lower()

    if ext == ".json":
        return ExportFormat.JSON
    elif ext == ".csv":
        return ExportFormat.CSV
    else:
        raise ValueError(
            f"Cannot determine export format from extension '{ext}'. "
            "Use --export-format to specify json or csv."
        )


def node_to_dict(node: "Node") -> dict:
    """Convert a node to a dictionary for export."""
    return {
        "id": node.id,
        "title": node.title,
        "mainStat": node.main_stat,
        "secondaryStat": node.secondary_stat,
        "category": node.category.value,
        "unresolved": node.unresolved,
    }


def edge_to_dict(edge: "Edge") -> dict:
    """Convert an edge to a dictionary for export."""
    return {
        "id": edge.id,
        "source": edge.source,
        "target": edge.target,
        "mainStat": edge.main_stat,
        "secondaryStat": edge.secondary_stat,
        "category": edge.category.value,
    }


def connection_to_dict(conn: "Connection") -> dict:
    """Convert a connection to a flat dictionary for export."""
    return {
        "type": conn.type.value,
        "name": conn.name,
        "self_id": str(conn.local.id),
        "self_kind": conn.local.id.kind.value,
        "self_fd": conn.local.descriptor,
        "self_name": conn.local.name,
        "self_executable": conn.local.executable,
        "peer_id": str(conn.peer.id),
        "peer_kind": conn.peer.id.kind.value,
        "peer_fd": conn.peer.descriptor,
        "peer_name": conn.peer.name,
        "peer_executable": conn.peer.executable,
    }


class Exporter:
    """
    Exports a graph snapshot to file.

    JSON output holds the node and edge collections, CSV output one row per
    connection. The format is detected from the file extension.
    """

    # CSV column headers
    CSV_HEADERS = [
        "type",
        "name",
        "self_id",
        "self_kind",
        "self_fd",
        "self_name",
        "self_executable",
        "peer_id",
        "peer_kind",
        "peer_fd",
        "peer_name",
        "peer_executable",
    ]

    def __init__(self, filename: str, format: Optional[ExportFormat] = None) -> None:
        """
        Initialize the exporter.

        Args:
            filename: Output file path
            format: Export format (auto-detected if None)
        """
        self._filename = filename
        self._format = format or detect_format(filename)
        self._file: Optional[TextIO] = None
        self._connection_count = 0

        self._open_file()

    def _open_file(self) -> None:
        """Open the output file."""
        self._file = open(self._filename, "w", newline="", encoding="utf-8")

    def write(self, graph: "Graph", connections: Sequence["Connection"]) -> None:
        """
        Write a snapshot to the export file.

        Args:
            graph: Assembled graph
            connections: Connections the graph was assembled from
        """
        self._connection_count = len(connections)

        if self._format == ExportFormat.CSV:
            self._write_csv(connections)
        else:
            self._write_json(graph)

    def _write_csv(self, connections: Sequence["Connection"]) -> None:
        writer = csv.DictWriter(self._file, fieldnames=self.CSV_HEADERS, extrasaction="ignore")
        writer.writeheader()
        for conn in connections:
            writer.writerow(connection_to_dict(conn))

    def _write_json(self, graph: "Graph") -> None:
        nodes: List[dict] = [node_to_dict(node) for node in graph.nodes]
        edges: List[dict] = [edge_to_dict(edge) for edge in graph.edges]
        export_data = {
            "export_info": {
                "tool": "ProcLink",
                "version": __version__,
                "export_time": datetime.now().isoformat(),
                "connection_count": self._connection_count,
                "node_count": len(nodes),
                "edge_count": len(edges),
            },
            "nodes": nodes,
            "edges": edges,
            "unresolved": list(graph.unresolved),
        }
        json.dump(export_data, self._file, indent=2)

    def close(self) -> None:
        """Close the export file."""
        if self._file:
            self._file.close()
            self._file = None

    @property
    def connection_count(self) -> int:
        """Get the number of connections exported."""
        return self._connection_count

    @property
    def filename(self) -> str:
        """Get the export filename."""
        return self._filename

    def __enter__(self) -> "Exporter":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        self.close()
