"""
ProcLink - Process connection graph from open descriptors.

Inspects the open sockets, pipes and files of every process on a host and
reconstructs who talks to whom, as a node graph.
"""

__version__ = "1.0.0"
__author__ = "ProcLink Contributors"
__license__ = "MIT"

from linkcore.correlate import CorrelationResult, correlate
from linkcore.endpoints import EndpointIndex
from linkcore.graph import Graph, GraphOptions, assemble
from linkcore.model import Connection, DescriptorRecord, ProcessEntry, TransportType

__all__ = [
    "Connection",
    "CorrelationResult",
    "DescriptorRecord",
    "EndpointIndex",
    "Graph",
    "GraphOptions",
    "ProcessEntry",
    "TransportType",
    "assemble",
    "correlate",
    "__version__",
]
