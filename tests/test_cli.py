"""
Unit tests for the ProcLink command-line interface.
"""

import json

import pytest

from linkcore import cli, hosts
from linkcore.collector import CollectorError
from linkcore.hosts import LocalAddresses
from linkcore.model import DescriptorRecord, ProcessEntry, TransportType


class FakeSnapshot:
    """Snapshot stand-in with a fixed process table."""

    def table(self, processes=None):
        return {
            20: ProcessEntry(20, 1, "/usr/bin/srv", descriptors=[
                DescriptorRecord(3, TransportType.UNIX, "0x1", "0x2"),
            ]),
            30: ProcessEntry(30, 1, "/usr/bin/cli", descriptors=[
                DescriptorRecord(4, TransportType.UNIX, "0x2", "0x1"),
            ]),
        }


@pytest.fixture
def fake_host(monkeypatch):
    """Replace descriptor collection and address discovery."""
    monkeypatch.setattr(cli, "collect_lsof", lambda: FakeSnapshot())
    monkeypatch.setattr(hosts, "_discovered", LocalAddresses())


class TestParser:
    """Tests for argument parsing."""

    def test_defaults(self):
        """Test the default options."""
        args = cli.create_parser().parse_args([])
        assert args.source == "lsof"
        assert args.focus_pid is None
        assert not (args.kernel or args.daemons or args.files)
        assert args.export_file is None

    def test_graph_options(self):
        """Test graph flags map onto GraphOptions."""
        args = cli.create_parser().parse_args(["-p", "42", "--kernel", "--files"])
        options = cli.graph_options(args)
        assert options.focus_pid == 42
        assert options.include_kernel
        assert not options.include_daemons
        assert options.include_data

    def test_invalid_source(self):
        """Test unknown sources are rejected."""
        with pytest.raises(SystemExit):
            cli.create_parser().parse_args(["--source", "netstat"])


class TestMain:
    """Tests for the main entry point."""

    def test_run(self, fake_host, capsys):
        """Test a full run prints the graph."""
        assert cli.main(["--no-color", "--connections", "--stats"]) == 0
        out = capsys.readouterr().out
        assert "srv[20]" in out
        assert "cli[30]" in out

    def test_export(self, fake_host, tmp_path):
        """Test the graph is exported when requested."""
        path = tmp_path / "graph.json"
        assert cli.main(["--no-color", "--export", str(path)]) == 0
        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["export_info"]["edge_count"] == 1

    def test_bad_export_extension(self, fake_host, tmp_path):
        """Test an unknown export extension fails before collecting."""
        assert cli.main(["--no-color", "--export", str(tmp_path / "graph.txt")]) == 1

    def test_collector_error(self, monkeypatch, capsys):
        """Test collection failures are reported with exit code 1."""
        def fail():
            raise CollectorError("lsof could not be started")

        monkeypatch.setattr(cli, "collect_lsof", fail)
        assert cli.main(["--no-color"]) == 1
        assert "lsof could not be started" in capsys.readouterr().out
