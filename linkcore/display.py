"""
Display module for ProcLink.

Renders the process connection graph in the terminal with rich: a tree
of nodes, a table of edges and the raw connection list.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence, TYPE_CHECKING

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from linkcore.model import NodeKind

if TYPE_CHECKING:
    from linkcore.graph import Edge, Graph, GraphOptions, Node
    from linkcore.model import Connection
    from linkcore.stats import GraphStatistics


# Color scheme for node categories
CATEGORY_COLORS = {
    NodeKind.HOST: "red",
    NodeKind.PROCESS: "green",
    NodeKind.DATA: "blue",
    NodeKind.KERNEL: "cyan",
}

# Color scheme for transports
TRANSPORT_COLORS = {
    "TCP": "cyan",
    "UDP": "green",
    "unix": "magenta",
    "PIPE": "yellow",
    "FIFO": "yellow",
    "REG": "blue",
    "PSXSHM": "blue",
    "systm": "bright_cyan",
    "parent": "dim",
}


class Display:
    """
    Rich terminal display for ProcLink.

    Prints the graph as a tree in traversal order, followed by its edges.
    """

    def __init__(self, use_color: bool = True, console: Optional[Console] = None) -> None:
        """
        Initialize the display.

        Args:
            use_color: Whether to use colored output
            console: Console to print to (a new stdout console if None)
        """
        self._use_color = use_color
        self._console = console or Console(color_system="auto" if use_color else None)

    @property
    def console(self) -> Console:
        """Get the Rich console instance."""
        return self._console

    def print_banner(self, options: "GraphOptions", source: str) -> None:
        """
        Print the startup banner.

        Args:
            options: Graph options in effect
            source: Name of the descriptor source
        """
        banner_text = "[bold cyan]ProcLink[/] - Process Connection Graph"

        included = [
            name for name, flag in (
                ("kernel", options.include_kernel),
                ("daemons", options.include_daemons),
                ("data", options.include_data),
            ) if flag
        ]
        info_lines = [f"[yellow]Source:[/] {source}"]
        if options.focus_pid is not None:
            info_lines.append(f"[yellow]Focus:[/] pid {options.focus_pid}")
        if included:
            info_lines.append(f"[yellow]Including:[/] {', '.join(included)}")

        panel = Panel(
            "\n".join([banner_text, ""] + info_lines),
            title="[bold white]Snapshot[/]",
            border_style="cyan",
        )
        self._console.print(panel)

    def format_node(self, node: "Node") -> Text:
        """Format a node label with its category color."""
        color = CATEGORY_COLORS.get(node.category, "white")
        text = Text(node.id, style=f"bold {color}")
        if node.secondary_stat:
            text.append(f"  {node.secondary_stat}", style="dim")
        if node.unresolved:
            text.append("  unresolved", style="red italic")
        return text

    def format_transport(self, kind: str) -> Text:
        """Format a transport name with color."""
        return Text(kind, style=TRANSPORT_COLORS.get(kind, "white"))

    def print_graph(self, graph: "Graph") -> None:
        """
        Print nodes as a tree, each followed by its outgoing edges.

        Args:
            graph: Assembled graph
        """
        outgoing: Dict[str, List["Edge"]] = {}
        for edge in graph.edges:
            outgoing.setdefault(edge.source, []).append(edge)

        tree = Tree("[bold]Nodes[/]", guide_style="dim")
        for node in graph.nodes:
            branch = tree.add(self.format_node(node))
            for edge in outgoing.get(node.id, []):
                label = Text("-> ", style="dim")
                label.append(edge.target)
                label.append(f"  [{edge.main_stat}]", style=TRANSPORT_COLORS.get(edge.main_stat, "dim"))
                branch.add(label)

        self._console.print(tree)

    def print_edges(self, graph: "Graph") -> None:
        """Print the edge table."""
        table = Table(title="Edges", show_header=True, header_style="bold")
        table.add_column("Source")
        table.add_column("Target")
        table.add_column("Type", width=12)
        table.add_column("Connections", no_wrap=False)

        for edge in graph.edges:
            table.add_row(Text(edge.source), Text(edge.target), Text(edge.main_stat), Text(edge.secondary_stat))

        self._console.print(table)

    def print_connections(self, connections: Sequence["Connection"]) -> None:
        """Print the raw connection list of a correlation pass."""
        table = Table(title="Connections", show_header=True, header_style="bold")
        table.add_column("Type", width=7)
        table.add_column("Self")
        table.add_column("FD", justify="right")
        table.add_column("Peer")
        table.add_column("FD", justify="right")
        table.add_column("Name", no_wrap=False)

        for conn in connections:
            table.add_row(
                self.format_transport(conn.type.value),
                str(conn.local.id),
                str(conn.local.descriptor),
                str(conn.peer.id),
                str(conn.peer.descriptor),
                Text(conn.name),
            )

        self._console.print(table)

    def print_stats_panel(self, stats: "GraphStatistics") -> None:
        """
        Print a statistics panel.

        Args:
            stats: Statistics of the snapshot
        """
        lines = [
            f"[bold]Connections:[/] {stats.total_connections:,}",
            f"[bold]Nodes:[/] {stats.total_nodes:,}",
            f"[bold]Edges:[/] {stats.total_edges:,}",
        ]
        if stats.unresolved:
            lines.append(f"[bold red]Unresolved:[/] {stats.unresolved:,}")

        lines.append("")
        lines.append("[bold]Transports:[/]")
        for kind, count in sorted(stats.transport_counts.items()):
            lines.append(f"  [{TRANSPORT_COLORS.get(kind, 'white')}]{kind}[/]: {count:,}")

        top = stats.top_processes(5)
        if top:
            lines.append("")
            lines.append("[bold]Top Processes:[/]")
            for pid, count in top:
                lines.append(f"  {pid}: {count:,}")

        panel = Panel(
            "\n".join(lines),
            title="[bold]Statistics[/]",
            border_style="blue",
        )
        self._console.print(panel)

    def print_error(self, message: str) -> None:
        """Print an error message."""
        self._console.print(f"[bold red]Error:[/] {message}")

    def print_warning(self, message: str) -> None:
        """Print a warning message."""
        self._console.print(f"[bold yellow]Warning:[/] {message}")

    def print_info(self, message: str) -> None:
        """Print an info message."""
        self._console.print(f"[bold blue]Info:[/] {message}")
