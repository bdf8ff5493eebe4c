"""
Unit tests for ProcLink export.
"""

import csv
import json

import pytest

from linkcore.correlate import correlate
from linkcore.export import ExportFormat, Exporter, detect_format
from linkcore.graph import assemble
from linkcore.hosts import LocalAddresses
from linkcore.model import DescriptorRecord, ProcessEntry, TransportType


@pytest.fixture
def snapshot():
    """Connections and graph of two processes sharing a unix socket."""
    addresses = LocalAddresses()
    table = {
        20: ProcessEntry(20, 1, "/usr/bin/srv", descriptors=[
            DescriptorRecord(3, TransportType.UNIX, "0x1", "0x2"),
        ]),
        30: ProcessEntry(30, 1, "/usr/bin/cli", descriptors=[
            DescriptorRecord(4, TransportType.UNIX, "0x2", "0x1"),
        ]),
    }
    result = correlate(table, addresses=addresses)
    return assemble(result.connections, result.table, addresses=addresses), result.connections


class TestDetectFormat:
    """Tests for detect_format."""

    @pytest.mark.parametrize("filename,expected", [
        ("graph.json", ExportFormat.JSON),
        ("GRAPH.JSON", ExportFormat.JSON),
        ("links.csv", ExportFormat.CSV),
    ])
    def test_detect(self, filename, expected):
        """Test formats are detected from the extension."""
        assert detect_format(filename) == expected

    def test_unknown(self):
        """Test unknown extensions are rejected."""
        with pytest.raises(ValueError):
            detect_format("graph.txt")


class TestExporter:
    """Tests for Exporter."""

    def test_json(self, tmp_path, snapshot):
        """Test JSON export holds nodes, edges and export info."""
        graph, connections = snapshot
        path = tmp_path / "graph.json"
        with Exporter(str(path)) as exporter:
            exporter.write(graph, connections)
            assert exporter.connection_count == 1

        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["export_info"]["tool"] == "ProcLink"
        assert data["export_info"]["node_count"] == 2
        assert [n["id"] for n in data["nodes"]] == ["srv[20]", "cli[30]"]
        assert data["edges"][0]["id"] == "srv[20] -> cli[30]"
        assert data["edges"][0]["mainStat"] == "unix"
        assert data["edges"][0]["category"] == "process"
        assert data["unresolved"] == []

    def test_csv(self, tmp_path, snapshot):
        """Test CSV export writes one row per connection."""
        graph, connections = snapshot
        path = tmp_path / "links.csv"
        with Exporter(str(path)) as exporter:
            exporter.write(graph, connections)

        with open(path, newline="", encoding="utf-8") as f:
            rows = list(csv.DictReader(f))
        assert len(rows) == 1
        assert rows[0]["type"] == "unix"
        assert rows[0]["self_id"] == "20"
        assert rows[0]["self_fd"] == "3"
        assert rows[0]["peer_id"] == "30"
        assert rows[0]["peer_executable"] == "/usr/bin/cli"

    def test_forced_format(self, tmp_path, snapshot):
        """Test an explicit format overrides the extension."""
        graph, connections = snapshot
        path = tmp_path / "out.dat"
        with Exporter(str(path), ExportFormat.CSV) as exporter:
            exporter.write(graph, connections)
            assert exporter.filename == str(path)

        assert path.read_text(encoding="utf-8").startswith("type,name,")
