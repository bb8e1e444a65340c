"""FreeBSD backend: psutil for process data, sockstat/fstat and rc.d for the rest."""

import logging
import re
from pathlib import Path

from pywitr import psutil_backend
from pywitr.backend import ProcessEntry
from pywitr.commands import have_command, run_command
from pywitr.config import Config
from pywitr.errors import NotFoundError, OwnerNotDetectedError, UnsupportedError
from pywitr.models import Process

log = logging.getLogger(__name__)

VALID_SERVICE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9._-]*$")
RUNNING_PID = re.compile(r"is running as pid (\d+)")


def is_valid_service(name: str) -> bool:
    """Accept only rc.d names that are safe to use in paths and arguments."""
    return 0 < len(name) <= 256 and VALID_SERVICE.match(name) is not None


def parse_sockstat(output: str, port: int) -> tuple[bool, list[int]]:
    """
    Parse ``sockstat -l -P tcp -p <port>`` output.

    Columns: USER COMMAND PID FD PROTO LOCAL-ADDRESS FOREIGN-ADDRESS.
    A PID of ``?`` means the socket is visible but its owner is not.

    Returns:
        (whether a socket was seen, owning PIDs)
    """
    suffix = f":{port}"
    found = False
    pids: set[int] = set()
    for line in output.splitlines()[1:]:
        fields = line.split()
        if len(fields) < 6 or not fields[5].endswith(suffix):
            continue
        found = True
        if fields[2].isdigit() and int(fields[2]) > 0:
            pids.add(int(fields[2]))
    return found, sorted(pids)


def parse_fstat_pids(output: str) -> list[int]:
    """Parse ``fstat <file>`` output (USER CMD PID FD ...) into PIDs."""
    pids = set()
    for line in output.splitlines()[1:]:
        fields = line.split()
        if len(fields) >= 3 and fields[2].isdigit():
            pids.add(int(fields[2]))
    return sorted(pids)


def parse_jail_id(output: str | None) -> str:
    """``jail`` for a non-zero ``ps -o jid=`` value, else ''."""
    jid = (output or "").strip()
    return "jail" if jid and jid != "0" else ""


class FreeBSDBackend:
    """Backend for FreeBSD."""

    def __init__(self, config: Config, pid_dir: Path = Path("/var/run")) -> None:
        self.config = config
        self._pid_dir = pid_dir

    def _run(self, args: list[str]) -> str | None:
        return run_command(args, timeout=self.config.command_timeout)

    def read_process(self, pid: int) -> Process:
        return psutil_backend.read_process(pid, self.config, container_label=self.jail_label)

    def jail_label(self, pid: int) -> str:
        """``jail`` when ``pid`` runs inside a FreeBSD jail."""
        return parse_jail_id(self._run(["ps", "-p", str(pid), "-o", "jid="]))

    def scan_processes(self) -> list[ProcessEntry]:
        return psutil_backend.scan_processes()

    def pids_for_port(self, port: int) -> list[int]:
        if have_command("sockstat"):
            out = self._run(["sockstat", "-46", "-l", "-P", "tcp", "-p", str(port)])
            if out is not None:
                found, pids = parse_sockstat(out, port)
                if pids:
                    return pids
                if found:
                    raise OwnerNotDetectedError("socket found but owning process not detected")
        return psutil_backend.pids_for_port(port)

    def pids_for_file(self, path: str) -> list[int]:
        for args in (["lsof", "-t", "--", path], ["fstat", path]):
            if not have_command(args[0]):
                continue
            out = self._run(args)
            if not out:
                continue
            if args[0] == "lsof":
                pids = sorted({int(tok) for tok in out.split() if tok.isdigit()})
            else:
                pids = parse_fstat_pids(out)
            if pids:
                return pids
        raise NotFoundError(f"no process has {path} open")

    def _alive(self, pid: int) -> bool:
        out = self._run(["ps", "-p", str(pid), "-o", "pid="])
        return bool(out and out.strip())

    def service_pid(self, name: str) -> int | None:
        """Find a running rc.d service via its pidfile, then ``service <name> status``."""
        if not is_valid_service(name):
            return None
        pid_file = self._pid_dir / f"{name}.pid"
        try:
            pid = int(pid_file.read_text(encoding="utf-8").strip())
        except (OSError, ValueError):
            pid = 0
        if pid > 0 and self._alive(pid):
            return pid

        out = self._run(["service", name, "status"])
        match = RUNNING_PID.search(out or "")
        if match:
            return int(match.group(1))
        return None

    def service_for_port(self, port: int) -> str:
        raise UnsupportedError("systemd is only supported on Linux")

    def restart_count(self, unit: str) -> int:
        raise UnsupportedError("systemd is only supported on Linux")

    def service_details(self, process: Process) -> dict[str, str]:
        return {}

    def children(self, pid: int) -> list[int]:
        return psutil_backend.children(pid)

    def command_line(self, pid: int) -> str:
        return psutil_backend.command_line(pid)
