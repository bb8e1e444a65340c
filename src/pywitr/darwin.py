"""macOS backend: psutil for process data, lsof/netstat for sockets, launchd for services."""

import logging
import plistlib
import xml.parsers.expat
import re

from pywitr import psutil_backend
from pywitr.backend import ProcessEntry
from pywitr.commands import have_command, run_command
from pywitr.config import Config
from pywitr.errors import NotFoundError, OwnerNotDetectedError, UnsupportedError
from pywitr.models import Process

log = logging.getLogger(__name__)

# Labels are interpolated into launchctl arguments.
VALID_LABEL = re.compile(r"^[a-zA-Z0-9._-]+$")

LABEL_PATTERNS = ("{}", "com.apple.{}", "org.{}", "io.{}")

TRIGGER_KEYS = {
    "RunAtLoad": "RunAtLoad",
    "StartInterval": "StartInterval",
    "StartCalendarInterval": "StartCalendarInterval",
    "WatchPaths": "WatchPaths",
    "QueueDirectories": "QueueDirectories",
    "Sockets": "Sockets",
    "StartOnMount": "StartOnMount",
}


def is_valid_label(label: str) -> bool:
    """Accept only launchd labels that are safe to pass to launchctl."""
    return 0 < len(label) <= 256 and VALID_LABEL.match(label) is not None


def parse_launchctl_print(output: str) -> dict[str, str]:
    """Pull the top-level ``key = value`` pairs out of ``launchctl print``."""
    values: dict[str, str] = {}
    depth = 0
    for raw in output.splitlines():
        line = raw.strip()
        if line.endswith("{"):
            depth += 1
            continue
        if line.startswith("}"):
            depth -= 1
            continue
        # The service block itself is depth 1.
        if depth == 1 and " = " in line:
            key, _, value = line.partition(" = ")
            if key not in values:
                values[key] = value.strip()
    return values


def describe_plist(data: dict) -> dict[str, str]:
    """Summarize the trigger and KeepAlive settings of a launchd plist."""
    details: dict[str, str] = {}
    triggers = [label for key, label in TRIGGER_KEYS.items() if data.get(key)]
    if triggers:
        details["triggers"] = ", ".join(triggers)
    keepalive = data.get("KeepAlive")
    if isinstance(keepalive, dict):
        details["keepalive"] = "conditional (" + ", ".join(sorted(keepalive)) + ")"
    elif keepalive is not None:
        details["keepalive"] = "true" if keepalive else "false"
    return details


def parse_lsof_pids(output: str) -> list[int]:
    """Parse ``lsof -t`` output into sorted unique PIDs."""
    pids = set()
    for line in output.split():
        try:
            pid = int(line)
        except ValueError:
            continue
        if pid > 0:
            pids.add(pid)
    return sorted(pids)


def parse_netstat_listeners(output: str, port: int) -> tuple[bool, list[int]]:
    """
    Scan ``netstat -anv -p tcp`` for LISTEN sockets on ``port``.

    Returns:
        (whether a socket was seen, owning PIDs)
    """
    suffix = f".{port}"
    found = False
    pids: set[int] = set()
    for line in output.splitlines():
        if "LISTEN" not in line:
            continue
        fields = line.split()
        if len(fields) < 4 or not fields[3].endswith(suffix):
            continue
        found = True
        if len(fields) >= 9:
            try:
                pid = int(fields[8])
            except ValueError:
                continue
            if pid > 0:
                pids.add(pid)
    return found, sorted(pids)


class DarwinBackend:
    """Backend for macOS."""

    def __init__(self, config: Config) -> None:
        self.config = config

    def _run(self, args: list[str]) -> str | None:
        return run_command(args, timeout=self.config.command_timeout)

    def _service_label(self, pid: int) -> str:
        out = self._run(["launchctl", "blame", str(pid)])
        blame = (out or "").strip()
        if not blame or "unknown" in blame:
            return ""
        return blame

    def read_process(self, pid: int) -> Process:
        return psutil_backend.read_process(pid, self.config, service_label=self._service_label)

    def scan_processes(self) -> list[ProcessEntry]:
        return psutil_backend.scan_processes()

    def pids_for_port(self, port: int) -> list[int]:
        out = self._run(["lsof", "-i", f"TCP:{port}", "-s", "TCP:LISTEN", "-n", "-P", "-t"])
        if out:
            pids = parse_lsof_pids(out)
            if pids:
                return pids
        netstat = self._run(["netstat", "-anv", "-p", "tcp"])
        if netstat is None:
            raise NotFoundError(f"no process listening on port {port}")
        found, pids = parse_netstat_listeners(netstat, port)
        if pids:
            return pids
        if found:
            raise OwnerNotDetectedError("socket found but owning process not detected")
        raise NotFoundError(f"no process listening on port {port}")

    def pids_for_file(self, path: str) -> list[int]:
        out = self._run(["lsof", "-t", "--", path])
        pids = parse_lsof_pids(out or "")
        if not pids:
            raise NotFoundError(f"no process has {path} open")
        return pids

    def service_pid(self, name: str) -> int | None:
        if not is_valid_label(name) or not have_command("launchctl"):
            return None
        for pattern in LABEL_PATTERNS:
            out = self._run(["launchctl", "print", "system/" + pattern.format(name)])
            if out is None:
                continue
            for line in out.splitlines():
                line = line.strip()
                if line.startswith("pid = "):
                    try:
                        pid = int(line[len("pid = ") :])
                    except ValueError:
                        continue
                    if pid > 0:
                        return pid
        return None

    def service_for_port(self, port: int) -> str:
        raise UnsupportedError("systemd is only supported on Linux")

    def restart_count(self, unit: str) -> int:
        raise UnsupportedError("systemd is only supported on Linux")

    def service_details(self, process: Process) -> dict[str, str]:
        """Describe the launchd job behind ``process`` (label, plist, triggers, KeepAlive)."""
        label = process.service
        if not label or not is_valid_label(label):
            return {}
        out = self._run(["launchctl", "print", "system/" + label])
        if out is None:
            return {"label": label}
        values = parse_launchctl_print(out)
        details = {"label": label}
        if values.get("type"):
            details["type"] = values["type"]
        plist_path = values.get("path", "")
        if plist_path:
            details["plist"] = plist_path
            try:
                with open(plist_path, "rb") as fh:
                    details.update(describe_plist(plistlib.load(fh)))
            except (OSError, ValueError, xml.parsers.expat.ExpatError) as exc:
                log.debug("Cannot read plist %s: %s", plist_path, exc)
        return details

    def children(self, pid: int) -> list[int]:
        return psutil_backend.children(pid)

    def command_line(self, pid: int) -> str:
        return psutil_backend.command_line(pid)
