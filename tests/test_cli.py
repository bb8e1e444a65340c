"""Tests for the command line entry point."""

import json
from unittest.mock import patch

import pytest

from pywitr.cli import build_parser, main, target_from_args
from pywitr.config import Config
from pywitr.models import Process, Target, TargetKind

from conftest import FakeBackend


@pytest.fixture
def backend(systemd_chain, tmp_path):
    processes = systemd_chain + [
        Process(pid=700, ppid=1, command="node", cmdline="node a.js", env=("NODE_ENV=production",)),
        Process(pid=701, ppid=1, command="node", cmdline="node b.js"),
    ]
    fake = FakeBackend(processes, ports={80: [500]}, config=Config(proc_root=tmp_path))
    with patch("pywitr.cli.get_backend", return_value=fake):
        yield fake


class TestTargetFromArgs:
    """Tests for target selection."""

    @pytest.mark.parametrize(
        ("argv", "target"),
        [
            (["nginx"], Target(TargetKind.NAME, "nginx")),
            (["--pid", "42"], Target(TargetKind.PID, "42")),
            (["-o", " 8080 "], Target(TargetKind.PORT, "8080")),
            (["-f", "/var/log/syslog"], Target(TargetKind.FILE, "/var/log/syslog")),
        ],
    )
    def test_single_target(self, argv, target):
        assert target_from_args(build_parser().parse_args(argv)) == target

    def test_no_target(self):
        assert target_from_args(build_parser().parse_args([])) is None

    def test_conflicting_targets(self):
        assert target_from_args(build_parser().parse_args(["nginx", "--pid", "1"])) is None


class TestMain:
    """Tests for main."""

    def test_standard_output(self, backend, capsys):
        assert main(["--pid", "500", "--no-color"]) == 0
        out = capsys.readouterr().out
        assert "nginx (pid 500)" in out
        assert "systemd" in out

    def test_short(self, backend, capsys):
        assert main(["--port", "80", "--short"]) == 0
        assert capsys.readouterr().out.strip() == "systemd (pid 1) → nginx (pid 500)"

    def test_json(self, backend, capsys):
        assert main(["--pid", "500", "--json"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["pid"] == 500
        assert data["source"]["type"] == "systemd"

    def test_json_short(self, backend, capsys):
        assert main(["--pid", "500", "--json", "--short"]) == 0
        assert json.loads(capsys.readouterr().out)["ancestry"] == ["systemd", "nginx"]

    def test_env(self, backend, capsys):
        assert main(["--pid", "700", "--env"]) == 0
        assert "NODE_ENV=production" in capsys.readouterr().out

    def test_not_found(self, backend, capsys):
        assert main(["--pid", "4242"]) == 1
        err = capsys.readouterr().err
        assert "error: process 4242 does not exist" in err
        assert "pywitr --help" in err

    def test_invalid_port(self, backend, capsys):
        assert main(["--port", "99999"]) == 1
        assert "invalid port" in capsys.readouterr().err

    def test_ambiguous_lists_candidates(self, backend, capsys):
        assert main(["node"]) == 1
        err = capsys.readouterr().err
        assert "[1] node (pid 700)" in err
        assert "    node a.js" in err
        assert "[2] node (pid 701)" in err
        assert "pywitr --pid <pid>" in err

    def test_missing_target_prints_help(self, backend, capsys):
        assert main([]) == 1
        assert "usage: pywitr" in capsys.readouterr().err

    def test_tui_opens_viewer(self, backend):
        with patch("pywitr.app.WitrApp.run") as run:
            assert main(["--pid", "500", "--tui"]) == 0
        run.assert_called_once()
