"""
Descriptor collection for ProcLink.

Builds the per-process descriptor table that the correlation engine
consumes, either from psutil or from the output of lsof. A background
collector keeps a repeating lsof running and publishes each completed
snapshot for readers.
"""

from __future__ import annotations

import logging
import os
import re
import socket
import subprocess
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

import psutil

from linkcore.hosts import format_endpoint, normalize_ip
from linkcore.model import DescriptorRecord, ProcessEntry, ProcessTable, TransportType

logger = logging.getLogger(__name__)

# lsof columnar output, one descriptor per line. Repeat mode separates
# snapshots with "====HH:MM:SS====" trailer lines.
LSOF_LINE = re.compile(
    r"^(?:(?P<header>COMMAND.*)|====(?P<trailer>\d\d:\d\d:\d\d)====.*|"
    r"(?P<command>[^ ]+)[ ]+"
    r"(?P<pid>\d+)[ ]+"
    r"(?:[^ ]+)[ ]+"  # USER
    r"(?:(?P<fd>\d+)|fp\.|mem|cwd|rtd|txt|DEL)"
    r"(?P<mode> |[rwu-][rwuNRWU]?)[ ]+"
    r"(?P<type>(?:[^ ]+|))[ ]+"
    r"(?P<device>(?:0x[0-9a-f]+|\d+,\d+|\d+|kpipe|upipe|))[ ]+"
    r"(?:[^ ]+|)[ ]+"  # SIZE/OFF
    r"(?P<node>(?:\d+|TCP|UDP|))[ ]+"
    r"(?P<name>.*))$"
)

LSOF_COMMAND = ["lsof", "-n", "-P"]

# first element of a parsed trailer line
TRAILER = "trailer"


class CollectorError(RuntimeError):
    """Raised when descriptor acquisition cannot start."""


@dataclass
class Snapshot:
    """Descriptors of all processes captured at one point in time."""
    descriptors: Dict[int, List[DescriptorRecord]] = field(default_factory=dict)
    commands: Dict[int, str] = field(default_factory=dict)
    taken: datetime = field(default_factory=datetime.now)

    def table(self, processes: Optional[Iterable[dict]] = None) -> ProcessTable:
        """Join the descriptors with process metadata."""
        return build_table(self.descriptors, self.commands, processes)


def parse_lsof_line(line: str) -> Optional[tuple]:
    """
    Parse one lsof output line.

    Args:
        line: Output line

    Returns:
        (TRAILER, "", None) at a snapshot boundary,
        (pid, command, DescriptorRecord) for a descriptor line,
        or None for headers, non-descriptor entries and unparseable lines
    """
    match = LSOF_LINE.match(line.rstrip("\n"))
    if not match:
        return None
    if match.group("header"):
        return None
    if match.group("trailer"):
        return (TRAILER, "", None)
    if match.group("fd") is None:
        return None  # cwd, txt, mem and friends are not descriptors

    pid = int(match.group("pid"))
    command = match.group("command")
    fd = int(match.group("fd"))
    mode = match.group("mode")[0]
    lsof_type = match.group("type")
    device = match.group("device")
    node = match.group("node")
    name = match.group("name")

    local = peer = ""

    if lsof_type in ("BLK", "DIR", "REG", "PSXSHM"):
        local = peer = name
    elif lsof_type == "CHR":
        if name == os.devnull:
            lsof_type = "NUL"
    elif lsof_type == "FIFO":
        if name == "pipe" and node:
            name = f"pipe:[{node}]"
        if mode == "w":
            peer = name
        else:
            local = name
    elif lsof_type in ("PIPE", "unix"):
        local = device
        peer = name.split(" ", 1)[0]
        if peer.startswith("->"):
            peer = peer[2:]
        if peer.startswith("type="):
            peer = ""
        name = f"{local}->{peer}"
    elif lsof_type in ("IPv4", "IPv6"):
        lsof_type = node
        split = name.split(" ")[0].split("->")
        local = split[0]
        if len(split) > 1:
            peer = split[1]
    elif lsof_type == "systm":
        local = device
    elif lsof_type == "key":
        name = local = device
    elif lsof_type == "PSXSEM":
        local = peer = device

    record = DescriptorRecord(
        descriptor=fd,
        type=TransportType.from_lsof(lsof_type),
        local=local,
        peer=peer,
        name=name,
    )
    return (pid, command, record)


class LsofParser:
    """Incremental parser for (repeating) lsof output."""

    def __init__(self) -> None:
        self._snapshot = Snapshot()

    def feed(self, line: str) -> Optional[Snapshot]:
        """
        Parse one line.

        Args:
            line: lsof output line

        Returns:
            The completed Snapshot at a trailer line, otherwise None
        """
        parsed = parse_lsof_line(line)
        if parsed is None:
            return None

        pid, command, record = parsed
        if pid == TRAILER:
            return self.flush()

        logger.debug("Endpoint pid=%d fd=%d type=%s self=%s peer=%s",
                     pid, record.descriptor, record.type.value, record.local, record.peer)
        self._snapshot.descriptors.setdefault(pid, []).append(record)
        self._snapshot.commands.setdefault(pid, command)
        return None

    def flush(self) -> Snapshot:
        """Return the snapshot accumulated so far and start a new one."""
        snapshot, self._snapshot = self._snapshot, Snapshot()
        return snapshot


def parse_lsof(lines: Iterable[str]) -> Snapshot:
    """
    Parse complete lsof output into a single snapshot.

    Trailer lines are ignored; all descriptors are merged.

    Args:
        lines: lsof output lines

    Returns:
        Snapshot of all descriptors
    """
    snapshot = Snapshot()
    for line in lines:
        parsed = parse_lsof_line(line)
        if parsed is None or parsed[0] == TRAILER:
            continue
        pid, command, record = parsed
        snapshot.descriptors.setdefault(pid, []).append(record)
        snapshot.commands.setdefault(pid, command)
    return snapshot


def collect_lsof(command: Optional[Sequence[str]] = None) -> Snapshot:
    """
    Run lsof once and parse its output.

    Args:
        command: lsof command line (defaults to "lsof -n -P")

    Returns:
        Snapshot of all descriptors

    Raises:
        CollectorError: If the command cannot be started
    """
    cmd = list(command or LSOF_COMMAND)
    logger.info("Capture open process descriptors: %s", " ".join(cmd))
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, check=False)
    except OSError as e:
        raise CollectorError(f"{cmd[0]} could not be started: {e}") from e

    # lsof exits 1 whenever some descriptors could not be read
    if result.returncode not in (0, 1):
        logger.error("%s exited with code %d: %s", cmd[0], result.returncode, result.stderr.strip())
    return parse_lsof(result.stdout.splitlines())


def connection_record(conn) -> Optional[DescriptorRecord]:
    """
    Convert a psutil connection into a descriptor record.

    Args:
        conn: psutil sconn tuple

    Returns:
        DescriptorRecord, or None for unsupported socket types
    """
    if conn.family == getattr(socket, "AF_UNIX", None):
        return DescriptorRecord(
            descriptor=conn.fd,
            type=TransportType.UNIX,
            local=conn.laddr or "",
            peer=conn.raddr or "",
        )

    if conn.type == socket.SOCK_STREAM:
        proto = TransportType.TCP
    elif conn.type == socket.SOCK_DGRAM:
        proto = TransportType.UDP
    else:
        return None

    local = format_endpoint(normalize_ip(conn.laddr.ip), conn.laddr.port) if conn.laddr else ""
    peer = format_endpoint(normalize_ip(conn.raddr.ip), conn.raddr.port) if conn.raddr else ""
    return DescriptorRecord(descriptor=conn.fd, type=proto, local=local, peer=peer)


def collect_psutil() -> Snapshot:
    """
    Collect socket and open file descriptors of all processes using psutil.

    Returns:
        Snapshot of all descriptors visible to this user
    """
    snapshot = Snapshot()

    try:
        connections = psutil.net_connections(kind="all")
    except (psutil.AccessDenied, OSError) as e:
        logger.warning("Listing connections failed: %s", e)
        connections = []

    for conn in connections:
        if not conn.pid:
            continue
        record = connection_record(conn)
        if record is not None:
            snapshot.descriptors.setdefault(conn.pid, []).append(record)

    for proc in psutil.process_iter(attrs=["pid", "name"]):
        try:
            files = proc.open_files()
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            continue
        pid = proc.info["pid"]
        snapshot.commands[pid] = proc.info.get("name") or ""
        for f in files:
            snapshot.descriptors.setdefault(pid, []).append(
                DescriptorRecord(descriptor=f.fd, type=TransportType.REGULAR, local=f.path, peer=f.path)
            )

    return snapshot


def build_table(
    descriptors: Dict[int, List[DescriptorRecord]],
    commands: Optional[Dict[int, str]] = None,
    processes: Optional[Iterable[dict]] = None,
) -> ProcessTable:
    """
    Join per-process descriptors with process metadata.

    Every running process gets an entry, with or without descriptors, so
    that the parent chain of each process stays complete.

    Args:
        descriptors: Descriptor records by pid
        commands: Command names by pid, used when metadata is missing
        processes: Process metadata dicts with pid, ppid, name and exe
            (read from psutil if None)

    Returns:
        Process table keyed by pid
    """
    commands = commands or {}
    if processes is None:
        processes = (proc.info for proc in psutil.process_iter(attrs=["pid", "ppid", "name", "exe"]))

    table: ProcessTable = {}
    for info in processes:
        pid = info.get("pid")
        if pid is None:
            continue
        table[pid] = ProcessEntry(
            pid=pid,
            ppid=info.get("ppid") or 0,
            executable=info.get("exe") or "",
            command=info.get("name") or commands.get(pid, ""),
            descriptors=list(descriptors.get(pid, [])),
        )

    # processes that exited between listing descriptors and metadata
    for pid, records in descriptors.items():
        if pid not in table:
            table[pid] = ProcessEntry(pid=pid, command=commands.get(pid, ""), descriptors=list(records))

    return table


class LsofCollector:
    """
    Background collector running lsof in repeat mode.

    Each completed lsof pass replaces the published snapshot under a lock;
    readers always get one complete, immutable snapshot.

    Note: lsof needs root privileges to see descriptors of other users.
    """

    def __init__(self, interval: int = 10, command: Optional[Sequence[str]] = None) -> None:
        """
        Initialize the collector.

        Args:
            interval: Seconds between lsof passes
            command: Full lsof command line (overrides interval)
        """
        self._command = list(command or LSOF_COMMAND + [f"-r{interval}m====%T===="])
        self._lock = threading.Lock()
        self._ready = threading.Event()
        self._snapshot: Optional[Snapshot] = None
        self._process: Optional[subprocess.Popen] = None
        self._thread: Optional[threading.Thread] = None
        self._error: Optional[str] = None
        self._running = False

    @property
    def is_running(self) -> bool:
        """Check if the collector is currently active."""
        return self._running

    @property
    def error(self) -> Optional[str]:
        """Why collection stopped, if it did."""
        return self._error

    def start(self) -> None:
        """
        Start the lsof command and its reader thread.

        Raises:
            CollectorError: If the command cannot be started
            RuntimeError: If the collector is already running
        """
        if self._running:
            raise RuntimeError("Collector is already running")

        try:
            self._process = subprocess.Popen(
                self._command,
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
                text=True,
            )
        except OSError as e:
            raise CollectorError(f"{self._command[0]} could not be started: {e}") from e

        logger.info("Start command to capture open process descriptors: %s (pid %d)",
                    " ".join(self._command), self._process.pid)

        self._running = True
        self._thread = threading.Thread(target=self._run, name="lsof-collector", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        process = self._process
        self.consume(process.stdout)
        code = process.wait()
        if self._running:
            self._error = f"{self._command[0]} output ended (exit code {code})"
            logger.error("Collector stopped: %s", self._error)
        self._running = False

    def consume(self, lines: Iterable[str]) -> None:
        """Parse lsof output, publishing a snapshot at every trailer line."""
        parser = LsofParser()
        for line in lines:
            snapshot = parser.feed(line)
            if snapshot is not None:
                with self._lock:
                    self._snapshot = snapshot
                self._ready.set()
                logger.debug("Published snapshot of %d processes", len(snapshot.descriptors))

    def snapshot(self) -> Optional[Snapshot]:
        """Get the most recently completed snapshot, or None before the first."""
        with self._lock:
            return self._snapshot

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Wait for the first snapshot. Returns False on timeout."""
        return self._ready.wait(timeout)

    def stop(self) -> None:
        """Stop the lsof command."""
        self._running = False

        if self._process:
            if self._process.poll() is None:
                self._process.terminate()
                try:
                    self._process.wait(timeout=5)
                except subprocess.TimeoutExpired:
                    self._process.kill()
            self._process = None

        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=5)
            self._thread = None

    def __enter__(self) -> "LsofCollector":
        """Context manager entry."""
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        self.stop()
