"""
Command-line interface for ProcLink.

Parses command-line arguments and orchestrates collection, correlation,
graph assembly, display and export.
"""

from __future__ import annotations

import argparse
import sys
from typing import Optional, Sequence

import psutil

from linkcore import __version__
from linkcore.collector import CollectorError, collect_lsof, collect_psutil
from linkcore.correlate import correlate
from linkcore.display import Display
from linkcore.export import ExportFormat, Exporter, detect_format
from linkcore.graph import GraphOptions, assemble
from linkcore.log import setup_logging
from linkcore.stats import GraphStatistics


SOURCES = ("lsof", "psutil")


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser."""
    parser = argparse.ArgumentParser(
        prog="proclink",
        description="Process connection graph. Correlates the open sockets, pipes "
                    "and files of all processes into a node graph.",
        epilog="Run as root to see the descriptors of other users' processes.",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    # Collection options
    collect_group = parser.add_argument_group("Collection Options")
    collect_group.add_argument(
        "-s", "--source",
        choices=SOURCES,
        default="lsof",
        help="Descriptor source (default: lsof)"
    )

    # Graph options
    graph_group = parser.add_argument_group("Graph Options")
    graph_group.add_argument(
        "-p", "--pid",
        dest="focus_pid",
        type=int,
        metavar="PID",
        help="Only graph this process, its ancestors and its descendants"
    )
    graph_group.add_argument(
        "--kernel",
        action="store_true",
        help="Include kernel connections"
    )
    graph_group.add_argument(
        "--daemons",
        action="store_true",
        help="Include processes connected to the root process (pid 1)"
    )
    graph_group.add_argument(
        "--files",
        action="store_true",
        help="Include files and shared memory"
    )

    # Display options
    display_group = parser.add_argument_group("Display Options")
    display_group.add_argument(
        "--no-color",
        action="store_true",
        help="Disable colored output"
    )
    display_group.add_argument(
        "--no-edges",
        action="store_true",
        help="Don't print the edge table"
    )
    display_group.add_argument(
        "--connections",
        action="store_true",
        help="Print the raw connection list"
    )
    display_group.add_argument(
        "--stats",
        action="store_true",
        help="Show statistics panel"
    )

    # Export options
    export_group = parser.add_argument_group("Export Options")
    export_group.add_argument(
        "--export",
        dest="export_file",
        metavar="FILE",
        help="Export graph (JSON) or connections (CSV) to file"
    )
    export_group.add_argument(
        "--export-format",
        choices=["json", "csv"],
        metavar="FMT",
        help="Force export format (auto-detected from extension by default)"
    )

    # Other options
    other_group = parser.add_argument_group("Other Options")
    other_group.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose output"
    )
    other_group.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    return parser


def graph_options(args: argparse.Namespace) -> GraphOptions:
    """Build graph options from parsed arguments."""
    return GraphOptions(
        include_kernel=args.kernel,
        include_daemons=args.daemons,
        include_data=args.files,
        focus_pid=args.focus_pid,
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    Main entry point for ProcLink CLI.

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    display = Display(use_color=not args.no_color)
    setup_logging(args.verbose)

    # Resolve export format before collecting
    export_format: Optional[ExportFormat] = None
    if args.export_file:
        try:
            if args.export_format:
                export_format = ExportFormat(args.export_format)
            else:
                export_format = detect_format(args.export_file)
        except ValueError as e:
            display.print_error(str(e))
            return 1

    options = graph_options(args)
    display.print_banner(options, args.source)

    try:
        if args.source == "lsof":
            snapshot = collect_lsof()
        else:
            snapshot = collect_psutil()
        table = snapshot.table()

        result = correlate(table)
        if not result.ok:
            display.print_warning(f"Correlation incomplete: {result.fault}")

        graph = assemble(result.connections, result.table, options)
        if graph.unresolved:
            display.print_warning(f"{len(graph.unresolved)} unresolved node(s): {', '.join(graph.unresolved)}")

        display.print_graph(graph)
        if not args.no_edges:
            display.print_edges(graph)
        if args.connections:
            display.print_connections(result.connections)
        if args.stats:
            display.print_stats_panel(GraphStatistics(result.connections, graph))

        if args.export_file:
            with Exporter(args.export_file, export_format) as exporter:
                exporter.write(graph, result.connections)
            display.print_info(f"Exported to: {args.export_file}")

    except CollectorError as e:
        display.print_error(str(e))
        return 1

    except (PermissionError, psutil.AccessDenied):
        display.print_error(
            "Insufficient privileges to inspect process descriptors.\n"
            "Please run this program as root."
        )
        return 1

    except KeyboardInterrupt:
        return 130

    except Exception as e:
        display.print_error(f"Unexpected error: {e}")
        if args.verbose:
            display.console.print_exception()
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
