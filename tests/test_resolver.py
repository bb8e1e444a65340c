"""Tests for target resolution."""

import os

import pytest

from pywitr.backend import ProcessEntry
from pywitr.errors import InvalidTargetError, NotFoundError, WitrError
from pywitr.models import Process, Target, TargetKind
from pywitr.resolver import match_processes, matches_name, merge_candidates, parse_positive_int, resolve

from conftest import FakeBackend


def _backend(**kwargs):
    processes = [
        Process(pid=1, ppid=0, command="systemd", cmdline="/sbin/init"),
        Process(pid=700, ppid=1, command="PM2 v5.3.0: God", cmdline="PM2 v5.3.0: God Daemon (/root/.pm2)"),
        Process(pid=710, ppid=700, command="node", cmdline="node /srv/api/server.js"),
        Process(pid=800, ppid=1, command="grep", cmdline="grep pm2"),
        Process(pid=900, ppid=1, command="nginx", cmdline="nginx: master process"),
        Process(pid=901, ppid=900, command="nginx", cmdline="nginx: worker process"),
    ]
    return FakeBackend(processes, **kwargs)


class TestParsePositiveInt:
    """Tests for parse_positive_int."""

    def test_valid(self):
        assert parse_positive_int(" 42 ", "pid") == 42

    @pytest.mark.parametrize("value", ["abc", "", "0", "-5", "1.5"])
    def test_invalid(self, value):
        with pytest.raises(InvalidTargetError):
            parse_positive_int(value, "pid")

    def test_invalid_target_is_value_error(self):
        with pytest.raises(ValueError):
            parse_positive_int("x", "port")


class TestNameMatching:
    """Tests for matches_name and match_processes."""

    def test_substring_is_case_insensitive(self):
        assert matches_name(ProcessEntry(1, "PostgreSQL", ""), "postgres", exact=False)

    def test_cmdline_fallback(self):
        assert matches_name(ProcessEntry(1, "node", "node /srv/api/server.js"), "server.js", exact=False)

    def test_grep_excluded(self):
        assert not matches_name(ProcessEntry(1, "grep", "grep nginx"), "nginx", exact=False)
        assert not matches_name(ProcessEntry(1, "bash", "bash -c ps | grep nginx"), "nginx", exact=False)

    def test_exact(self):
        assert matches_name(ProcessEntry(1, "nginx", ""), "NGINX", exact=True)
        assert not matches_name(ProcessEntry(1, "nginx-proxy", ""), "nginx", exact=True)

    def test_numeric_name_skips_its_own_pid(self):
        entries = [ProcessEntry(80, "worker-80", ""), ProcessEntry(81, "worker-80", "")]
        assert match_processes(entries, "80") == [81]

    def test_exclusions(self):
        entries = [ProcessEntry(5, "python", ""), ProcessEntry(6, "python", "")]
        assert match_processes(entries, "python", exclude={5}) == [6]


class TestMergeCandidates:
    """Tests for merge_candidates."""

    def test_service_first_no_duplicate(self):
        assert merge_candidates(700, [910, 700, 705]) == [700, 705, 910]

    def test_without_service(self):
        assert merge_candidates(None, [3, 1, 3]) == [1, 3]


class TestResolve:
    """Tests for resolve."""

    def test_pid_verified(self):
        backend = _backend()
        assert resolve(Target(TargetKind.PID, "710"), False, backend) == [710]
        assert backend.reads == [710]

    def test_missing_pid(self):
        with pytest.raises(NotFoundError):
            resolve(Target(TargetKind.PID, "4242"), False, _backend())

    def test_port(self):
        backend = _backend(ports={443: [900, 901]})
        assert resolve(Target(TargetKind.PORT, "443"), False, backend) == [900, 901]

    @pytest.mark.parametrize("value", ["0", "70000", "http"])
    def test_invalid_port(self, value):
        with pytest.raises(InvalidTargetError):
            resolve(Target(TargetKind.PORT, value), False, _backend())

    def test_port_upper_bound_accepted(self):
        backend = _backend(ports={65535: [900]})
        assert resolve(Target(TargetKind.PORT, "65535"), False, backend) == [900]

    def test_name_service_pid_merged_once(self):
        """Test the service manager's PID is listed first and not repeated."""
        backend = _backend(services={"pm2": 700})
        assert resolve(Target(TargetKind.NAME, "pm2"), False, backend) == [700]

    def test_name_multiple(self):
        assert resolve(Target(TargetKind.NAME, "nginx"), False, _backend()) == [900, 901]

    def test_name_service_only(self):
        backend = _backend(services={"sshd": 1234})
        assert resolve(Target(TargetKind.NAME, "sshd"), False, backend) == [1234]

    def test_name_not_found(self):
        with pytest.raises(NotFoundError) as exc_info:
            resolve(Target(TargetKind.NAME, "nope"), False, _backend())
        assert "No matching process or service found" in exc_info.value.remediation

    def test_empty_name(self):
        with pytest.raises(InvalidTargetError):
            resolve(Target(TargetKind.NAME, "  "), False, _backend())

    def test_own_process_excluded(self):
        backend = FakeBackend([Process(pid=os.getpid(), ppid=1, command="pywitr-self")])
        with pytest.raises(NotFoundError):
            resolve(Target(TargetKind.NAME, "pywitr-self"), False, backend)

    def test_file(self):
        backend = _backend(files={"/var/log/nginx.log": [900]})
        assert resolve(Target(TargetKind.FILE, "/var/log/nginx.log"), False, backend) == [900]

    def test_errors_share_base(self):
        with pytest.raises(WitrError):
            resolve(Target(TargetKind.FILE, "/nowhere"), False, _backend())
