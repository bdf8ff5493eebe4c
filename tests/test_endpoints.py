"""
Unit tests for the ProcLink endpoint index.
"""

import pytest

from linkcore.endpoints import EndpointIndex, is_device_token, is_named_socket
from linkcore.model import DescriptorRecord, ProcessEntry, TransportType


def process(pid, *records, ppid=1):
    return ProcessEntry(pid=pid, ppid=ppid, executable=f"/usr/bin/p{pid}", descriptors=list(records))


class TestEndpointIndex:
    """Tests for EndpointIndex."""

    @pytest.fixture
    def table(self):
        """Two processes sharing a TCP connection plus assorted descriptors."""
        return {
            10: process(
                10,
                DescriptorRecord(3, TransportType.TCP, "127.0.0.1:5000", "127.0.0.1:6000"),
                DescriptorRecord(4, TransportType.REGULAR, "/var/log/a.log", "/var/log/a.log"),
                DescriptorRecord(5, TransportType.TCP, "", ""),
            ),
            20: process(
                20,
                DescriptorRecord(7, TransportType.TCP, "127.0.0.1:6000", "127.0.0.1:5000"),
                DescriptorRecord(8, TransportType.UNIX, "0xaa", "/var/run/app.sock"),
            ),
        }

    def test_empty_table(self):
        """Test empty input yields an empty index."""
        index = EndpointIndex.build({})
        assert len(index) == 0
        assert index.lookup(TransportType.TCP, "127.0.0.1:80") == []

    def test_lookup_by_local_endpoint(self, table):
        """Test owners are found by (type, local endpoint)."""
        index = EndpointIndex.build(table)
        assert index.lookup(TransportType.TCP, "127.0.0.1:6000") == [(20, [0])]
        assert index.lookup(TransportType.TCP, "127.0.0.1:5000") == [(10, [0])]

    def test_type_is_part_of_key(self, table):
        """Test the same endpoint under another transport is not found."""
        index = EndpointIndex.build(table)
        assert index.lookup(TransportType.UDP, "127.0.0.1:6000") == []

    def test_data_and_empty_endpoints_not_indexed(self, table):
        """Test files and descriptors without a local endpoint are skipped."""
        index = EndpointIndex.build(table)
        assert (TransportType.REGULAR, "/var/log/a.log") not in index
        assert (TransportType.TCP, "") not in index
        assert len(index) == 3

    def test_owners_in_ascending_pid_order(self):
        """Test shared endpoints list every owner, lowest pid first."""
        shared = ("0x1", "0x2")
        table = {
            30: process(30, DescriptorRecord(3, TransportType.UNIX, *shared)),
            5: process(5, DescriptorRecord(9, TransportType.UNIX, *shared),
                       DescriptorRecord(11, TransportType.UNIX, *shared)),
        }
        index = EndpointIndex.build(table)
        assert index.lookup(TransportType.UNIX, "0x1") == [(5, [0, 1]), (30, [0])]

    def test_named_socket_partial_key(self, table):
        """Test named unix sockets are also found by the partial key."""
        index = EndpointIndex.build(table)
        assert index.lookup_named(TransportType.UNIX, "0xaa") == (20, 1)
        assert index.lookup_named(TransportType.TCP, "127.0.0.1:6000") is None
        assert index.named_count == 1


class TestNamedSockets:
    """Tests for named socket detection."""

    @pytest.mark.parametrize("peer", ["/var/run/app.sock", "@abstract", ""])
    def test_named(self, peer):
        """Test path, abstract and unknown peers make a named socket."""
        assert is_named_socket(DescriptorRecord(3, TransportType.UNIX, "0xaa", peer))

    @pytest.mark.parametrize("peer", ["0xbb", "123456"])
    def test_anonymous(self, peer):
        """Test peers that are kernel socket addresses are anonymous pairs."""
        assert not is_named_socket(DescriptorRecord(3, TransportType.UNIX, "0xaa", peer))

    def test_not_unix(self):
        """Test only unix-domain sockets can be named."""
        assert not is_named_socket(DescriptorRecord(3, TransportType.TCP, "1.2.3.4:80", "/x"))

    def test_device_token(self):
        """Test kernel address detection."""
        assert is_device_token("0xffff8800abcd")
        assert is_device_token("4242")
        assert not is_device_token("/tmp/.X11-unix/X0")
