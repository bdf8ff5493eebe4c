"""
Unit tests for the ProcLink correlation engine.
"""

import pytest

from linkcore.correlate import correlate, reciprocal
from linkcore.endpoints import EndpointIndex
from linkcore.hosts import LocalAddresses
from linkcore.model import DescriptorRecord, NodeId, NodeKind, ProcessEntry, TransportType

TCP = TransportType.TCP
UDP = TransportType.UDP
UNIX = TransportType.UNIX


def process(pid, *records, ppid=1):
    return ProcessEntry(pid=pid, ppid=ppid, executable=f"/usr/bin/p{pid}", descriptors=list(records))


def links(result):
    """Connections other than injected parent links."""
    return [c for c in result.connections if c.type != TransportType.PARENT]


@pytest.fixture
def addresses():
    """Local addresses of a host with one LAN interface."""
    return LocalAddresses(["192.168.1.10"], {"192.168.1.10": "eth0"})


class TestSocketPairs:
    """Tests for intra-host process to process connections."""

    def test_tcp_pair_emits_one_connection(self, addresses):
        """Test reciprocal TCP descriptors yield exactly one connection."""
        table = {
            10: process(10, DescriptorRecord(3, TCP, "127.0.0.1:5000", "127.0.0.1:6000")),
            20: process(20, DescriptorRecord(7, TCP, "127.0.0.1:6000", "127.0.0.1:5000")),
        }
        result = correlate(table, addresses=addresses)

        assert result.ok
        conns = links(result)
        assert len(conns) == 1
        conn = conns[0]
        assert conn.type == TCP
        assert (conn.local.pid, conn.local.descriptor) == (10, 3)
        assert (conn.peer.pid, conn.peer.descriptor) == (20, 7)
        assert conn.local.name == "127.0.0.1:5000"
        assert conn.peer.name == "127.0.0.1:6000"
        assert conn.peer.executable == "/usr/bin/p20"

    def test_symmetry_regardless_of_iteration_order(self, addresses):
        """Test the pair is found once whichever process holds which end."""
        table = {
            10: process(10, DescriptorRecord(3, TCP, "127.0.0.1:6000", "127.0.0.1:5000")),
            20: process(20, DescriptorRecord(7, TCP, "127.0.0.1:5000", "127.0.0.1:6000")),
        }
        conns = links(correlate(table, addresses=addresses))
        assert len(conns) == 1
        assert {conns[0].local.pid, conns[0].peer.pid} == {10, 20}

    def test_listener_discarded(self, addresses):
        """Test descriptors without a peer never produce a connection."""
        table = {
            10: process(10, DescriptorRecord(3, TCP, "*:80", "")),
            20: process(20, DescriptorRecord(4, UNIX, "0xaa", "")),
        }
        assert links(correlate(table, addresses=addresses)) == []

    def test_self_match_skipped(self, addresses):
        """Test both ends inside one process are not a connection."""
        table = {
            10: process(
                10,
                DescriptorRecord(3, TCP, "127.0.0.1:5000", "127.0.0.1:6000"),
                DescriptorRecord(4, TCP, "127.0.0.1:6000", "127.0.0.1:5000"),
            ),
        }
        assert links(correlate(table, addresses=addresses)) == []

    def test_first_matching_descriptor_wins(self, addresses):
        """Test a descriptor resolves to the first matching duplicate of its peer."""
        table = {
            10: process(10, DescriptorRecord(3, UNIX, "0x1", "0x2")),
            20: process(
                20,
                DescriptorRecord(5, UNIX, "0x2", "0x1"),
                DescriptorRecord(6, UNIX, "0x2", "0x1"),
            ),
        }
        conns = [c for c in links(correlate(table, addresses=addresses)) if c.local.pid == 10]
        assert len(conns) == 1
        assert conns[0].peer.descriptor == 5

    def test_lowest_candidate_pid_wins(self, addresses):
        """Test candidates are tried in ascending pid order."""
        table = {
            10: process(10, DescriptorRecord(3, UNIX, "0x1", "0x2")),
            40: process(40, DescriptorRecord(5, UNIX, "0x2", "0x1")),
            30: process(30, DescriptorRecord(6, UNIX, "0x2", "0x1")),
        }
        pairs = [(c.local.pid, c.peer.pid) for c in links(correlate(table, addresses=addresses))]
        assert (10, 30) in pairs
        assert (10, 40) not in pairs

    def test_anonymous_unix_peer_may_be_empty(self, addresses):
        """Test unix partners without a peer address still match."""
        table = {
            10: process(10, DescriptorRecord(3, UNIX, "0x1", "0x2")),
            20: process(20, DescriptorRecord(4, UNIX, "0x2", "")),
        }
        conns = links(correlate(table, addresses=addresses))
        assert len(conns) == 1
        assert (conns[0].local.pid, conns[0].peer.pid) == (10, 20)

    def test_tcp_peer_may_not_be_empty(self, addresses):
        """Test the loosened match does not apply to TCP."""
        table = {
            10: process(10, DescriptorRecord(3, TCP, "127.0.0.1:5000", "127.0.0.1:6000")),
            20: process(20, DescriptorRecord(4, TCP, "127.0.0.1:6000", "")),
        }
        assert links(correlate(table, addresses=addresses)) == []

    def test_fifo_writer_to_reader(self, addresses):
        """Test a FIFO writer resolves to the reader holding the pipe name."""
        table = {
            10: process(10, DescriptorRecord(1, TransportType.FIFO, "", "pipe:[4242]")),
            20: process(20, DescriptorRecord(0, TransportType.FIFO, "pipe:[4242]", "")),
        }
        conns = links(correlate(table, addresses=addresses))
        assert len(conns) == 1
        assert (conns[0].local.pid, conns[0].local.descriptor) == (10, 1)
        assert (conns[0].peer.pid, conns[0].peer.descriptor) == (20, 0)

    def test_peer_id_recorded(self, addresses):
        """Test the resolved peer is attached to the descriptor in the pass snapshot."""
        table = {
            10: process(10, DescriptorRecord(3, UNIX, "0x1", "0x2")),
            20: process(20, DescriptorRecord(4, UNIX, "0x2", "0x1")),
        }
        result = correlate(table, addresses=addresses)
        assert result.table[10].descriptors[0].peer_id == NodeId.process(20)
        assert table[10].descriptors[0].peer_id is None


class TestNamedSockets:
    """Tests for the named unix socket fallback."""

    @pytest.fixture
    def table(self):
        """A server on a named socket and a client pointing at it."""
        return {
            10: process(10, DescriptorRecord(3, UNIX, "0xaa", "/var/run/app.sock")),
            20: process(20, DescriptorRecord(5, UNIX, "0xbb", "0xaa")),
        }

    def test_client_matched_through_partial_key(self, table, addresses):
        """Test the client finds the server by its address alone."""
        conns = links(correlate(table, addresses=addresses))
        assert len(conns) == 1
        assert (conns[0].local.pid, conns[0].local.descriptor) == (20, 5)
        assert (conns[0].peer.pid, conns[0].peer.descriptor) == (10, 3)

    def test_server_backfilled(self, table, addresses):
        """Test the server's peer is repaired within the pass snapshot."""
        result = correlate(table, addresses=addresses)
        server = result.table[10].descriptors[0]
        assert server.peer == "0xbb"
        assert server.peer_id == NodeId.process(20)

    def test_backfill_does_not_leak(self, table, addresses):
        """Test the caller's table is untouched and passes repeat exactly."""
        first = correlate(table, addresses=addresses)
        second = correlate(table, addresses=addresses)
        assert table[10].descriptors[0].peer == "/var/run/app.sock"
        assert first.connections == second.connections


class TestExternalHosts:
    """Tests for classification of unmatched TCP/UDP peers."""

    def test_remote_peer_is_external_host(self, addresses):
        """Test a peer outside the host becomes a host endpoint."""
        table = {10: process(10, DescriptorRecord(3, TCP, "192.168.1.10:51000", "203.0.113.5:443"))}
        conns = links(correlate(table, addresses=addresses))

        assert len(conns) == 1
        conn = conns[0]
        assert conn.peer.id == NodeId.host("TCP:203.0.113.5:443")
        assert conn.peer.id.kind == NodeKind.HOST
        assert conn.peer.executable == "443"
        assert (conn.local.pid, conn.local.descriptor) == (10, 3)

    @pytest.mark.parametrize("peer", [
        "127.0.0.1:8080",
        "[::1]:8080",
        "192.168.1.10:22",
        "[fe80::1%en0]:5353",
        "224.0.0.251:5353",
        "localhost:631",
        "[::ffff:127.0.0.1]:8080",
        "[::ffff:192.168.1.10]:8080",
    ])
    def test_local_peer_discarded(self, peer, addresses):
        """Test unidentified local peers are not external hosts."""
        table = {10: process(10, DescriptorRecord(3, TCP, "192.168.1.10:51000", peer))}
        assert links(correlate(table, addresses=addresses)) == []

    @pytest.mark.parametrize("peer", ["*:*", "garbage", "10.0.0.1:"])
    def test_malformed_peer_discarded(self, peer, addresses):
        """Test unparseable peers are no match, not an error."""
        table = {10: process(10, DescriptorRecord(3, UDP, "192.168.1.10:5000", peer))}
        result = correlate(table, addresses=addresses)
        assert result.ok
        assert links(result) == []

    def test_unix_never_external(self, addresses):
        """Test only TCP/UDP peers can be hosts."""
        table = {10: process(10, DescriptorRecord(3, UNIX, "0x1", "203.0.113.5:443"))}
        assert links(correlate(table, addresses=addresses)) == []


class TestOtherDescriptors:
    """Tests for data, kernel and discarded descriptor types."""

    def test_regular_file_is_data(self, addresses):
        """Test files connect to a data resource named by their path."""
        table = {10: process(10, DescriptorRecord(4, TransportType.REGULAR, "/var/log/a.log", "/var/log/a.log"))}
        conns = links(correlate(table, addresses=addresses))
        assert len(conns) == 1
        assert conns[0].peer.id == NodeId.data("/var/log/a.log")
        assert conns[0].peer.name == "/var/log/a.log"

    def test_shared_memory_is_data(self, addresses):
        """Test shared memory connects to a data resource."""
        table = {10: process(10, DescriptorRecord(4, TransportType.SHARED_MEMORY, "/shm1", "/shm1"))}
        conns = links(correlate(table, addresses=addresses))
        assert conns[0].peer.id.kind == NodeKind.DATA

    def test_kernel_channel(self, addresses):
        """Test kernel channels connect to the kernel."""
        table = {10: process(10, DescriptorRecord(5, TransportType.KERNEL, "0xfeed", ""))}
        conns = links(correlate(table, addresses=addresses))
        assert len(conns) == 1
        assert conns[0].peer.id == NodeId.kernel()
        assert conns[0].peer.pid == 0

    @pytest.mark.parametrize("type", [TransportType.NULL, TransportType.SEMAPHORE, TransportType.OTHER])
    def test_discarded_types(self, type, addresses):
        """Test null devices, semaphores and unknown types are discarded."""
        table = {10: process(10, DescriptorRecord(0, type, "x", "x"))}
        assert links(correlate(table, addresses=addresses)) == []


class TestParentLinks:
    """Tests for injected parent to child connections."""

    def test_parent_link_without_transport(self, addresses):
        """Test a child is linked to its parent with no shared descriptor."""
        table = {
            10: process(10, ppid=1),
            50: process(50, ppid=10),
        }
        result = correlate(table, addresses=addresses)
        parents = [c for c in result.connections if c.type == TransportType.PARENT]
        assert len(parents) == 1
        assert parents[0].local.pid == 10
        assert parents[0].peer.pid == 50
        assert parents[0].name == "child:50"

    def test_no_link_to_root_or_missing_parent(self, addresses):
        """Test children of pid 0/1 and of unknown parents get no link."""
        table = {
            1: process(1, ppid=0),
            10: process(10, ppid=1),
            20: process(20, ppid=999),
        }
        result = correlate(table, addresses=addresses)
        assert [c for c in result.connections if c.type == TransportType.PARENT] == []


class TestPass:
    """Tests for ordering, determinism and fault recovery of a pass."""

    @pytest.fixture
    def table(self):
        return {
            30: process(30, DescriptorRecord(3, UNIX, "0x3", "0x4"), ppid=20),
            20: process(20, DescriptorRecord(9, TransportType.REGULAR, "/etc/hosts", "/etc/hosts"),
                        DescriptorRecord(3, TCP, "10.0.0.2:40000", "203.0.113.9:80"), ppid=1),
            40: process(40, DescriptorRecord(8, UNIX, "0x4", "0x3"), ppid=20),
        }

    def test_sorted_output(self, table, addresses):
        """Test connections are ordered by self id, peer id, then descriptors."""
        result = correlate(table, addresses=addresses)
        keys = [c.sort_key() for c in result.connections]
        assert keys == sorted(keys)
        assert [(str(c.local.id), str(c.peer.id)) for c in result.connections] == [
            ("20", "host:TCP:203.0.113.9:80"),
            ("20", "30"),
            ("20", "40"),
            ("20", "data:/etc/hosts"),
            ("30", "40"),
        ]

    def test_deterministic(self, table, addresses):
        """Test two passes over one snapshot produce identical output."""
        assert correlate(table, addresses=addresses).connections == correlate(table, addresses=addresses).connections

    def test_fault_recovered_at_boundary(self, addresses):
        """Test an internal fault yields an empty result with the fault described."""
        table = {10: process(10), 20: None}
        result = correlate(table, addresses=addresses)
        assert not result.ok
        assert "AttributeError" in result.fault
        assert result.connections == []

    def test_fault_keeps_partial_result(self, addresses):
        """Test connections resolved before a fault are returned."""
        good = {
            10: process(10, DescriptorRecord(3, UNIX, "0x1", "0x2")),
            20: process(20, DescriptorRecord(4, UNIX, "0x2", "0x1")),
        }
        index = EndpointIndex.build(good)
        table = dict(good)
        table[30] = None

        result = correlate(table, index=index, addresses=addresses)
        assert not result.ok
        assert [(c.local.pid, c.peer.pid) for c in result.connections] == [(10, 20)]


class TestReciprocal:
    """Tests for the reciprocal match condition."""

    def test_types_must_match(self):
        record = DescriptorRecord(3, TCP, "a:1", "b:2")
        assert not reciprocal(record, DescriptorRecord(4, UDP, "b:2", "a:1"))

    def test_candidate_must_point_back(self):
        record = DescriptorRecord(3, TCP, "a:1", "b:2")
        assert reciprocal(record, DescriptorRecord(4, TCP, "b:2", "a:1"))
        assert not reciprocal(record, DescriptorRecord(4, TCP, "b:2", "c:3"))

    def test_shared_memory_loosened(self):
        record = DescriptorRecord(3, TransportType.SHARED_MEMORY, "m1", "m2")
        assert reciprocal(record, DescriptorRecord(4, TransportType.SHARED_MEMORY, "m2", ""))
