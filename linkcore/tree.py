"""
Process tree helpers for ProcLink.

Derives parent/child structure from the parent pids in a process table
as a networkx directed graph with edges pointing from parent to child.
"""

from __future__ import annotations

from typing import Callable, Hashable, Iterator, List, Optional, Set

import networkx as nx

from linkcore.model import ProcessTable


def build_tree(table: ProcessTable) -> nx.DiGraph:
    """
    Build the process tree of a process table.

    Parents missing from the table still appear as nodes so that orphans
    hang off the pid they name.

    Args:
        table: Process table

    Returns:
        DiGraph of parent -> child edges, children in ascending pid order
    """
    tree = nx.DiGraph()
    tree.add_nodes_from(sorted(table))
    tree.add_edges_from(sorted(
        (process.ppid, pid) for pid, process in table.items() if process.ppid != pid
    ))
    return tree


def ordered(tree: nx.DiGraph, key: Optional[Callable[[Hashable], object]] = None) -> nx.DiGraph:
    """Copy a tree so that nodes and each node's children iterate in key order."""
    if key is None:
        key = _identity
    result = nx.DiGraph()
    result.add_nodes_from(sorted(tree.nodes, key=key))
    result.add_edges_from(sorted(tree.edges, key=lambda edge: (key(edge[0]), key(edge[1]))))
    return result


def _identity(node):
    return node


def walk(tree: nx.DiGraph, key: Optional[Callable[[Hashable], object]] = None) -> Iterator[Hashable]:
    """
    Walk a forest depth first, parents before children.

    Nodes on a parent cycle have no root above them and are not reached.

    Args:
        tree: DiGraph of parent -> child edges
        key: Optional sort key applied to roots and siblings

    Yields:
        Each node reachable from a root, once
    """
    tree = ordered(tree, key)
    for root in [node for node, degree in tree.in_degree() if degree == 0]:
        yield from nx.dfs_preorder_nodes(tree, root)


def ancestors(table: ProcessTable, pid: int) -> Set[int]:
    """The ancestors of a process that are present in the table."""
    if pid not in table:
        return set()
    return {node for node in nx.ancestors(build_tree(table), pid) if node in table}


def subtree(table: ProcessTable, pid: int) -> List[int]:
    """List a process and all of its descendants, depth first."""
    if pid not in table:
        return []
    return list(nx.dfs_preorder_nodes(build_tree(table), pid))


def family(table: ProcessTable, pid: int) -> Set[int]:
    """The ancestors and descendants of a process, including itself."""
    if pid not in table:
        return set()
    tree = build_tree(table)
    members = nx.ancestors(tree, pid) | nx.descendants(tree, pid) | {pid}
    return {member for member in members if member in table}
