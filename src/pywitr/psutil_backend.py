"""psutil based process access shared by the non-Linux backends."""

import logging
import os
from collections.abc import Callable
from datetime import datetime, timezone

import psutil

from pywitr.backend import ProcessEntry, classify_forked, classify_health, detect_git_info
from pywitr.config import Config
from pywitr.containers import container_from_cmdline
from pywitr.errors import NotFoundError, OwnerNotDetectedError, UnsupportedError
from pywitr.models import Process

log = logging.getLogger(__name__)

_STATE_LETTERS = {
    psutil.STATUS_ZOMBIE: "Z",
    psutil.STATUS_STOPPED: "T",
}


def _safe(func: Callable, default):
    """Call a psutil accessor, degrading to ``default`` when access is denied."""
    try:
        value = func()
    except (psutil.AccessDenied, psutil.ZombieProcess, OSError):
        return default
    return default if value is None else value


def read_process(
    pid: int,
    config: Config,
    service_label: Callable[[int], str] | None = None,
    container_label: Callable[[int], str] | None = None,
) -> Process:
    """
    Snapshot a process through psutil.

    Uses oneshot() for efficient attribute access. Only a vanished process
    is an error; denied attributes fall back to empty values.

    Args:
        pid: Process ID.
        config: Thresholds for health classification.
        service_label: Platform hook naming the service that owns ``pid``.
        container_label: Platform hook naming the container or jail of
            ``pid``; the command line markers are used when it finds none.
    """
    try:
        proc = psutil.Process(pid)
        with proc.oneshot():
            name = proc.name()
            ppid = proc.ppid()
            cmdline_parts = _safe(proc.cmdline, [])
            exe = _safe(proc.exe, "")
            created = _safe(proc.create_time, 0.0)
            user = _safe(proc.username, "")
            cwd = _safe(proc.cwd, "unknown")
            status = _safe(proc.status, "")
            cpu = _safe(proc.cpu_times, None)
            mem = _safe(proc.memory_info, None)
            environ = _safe(proc.environ, {})
            conns = _safe(lambda: proc.net_connections(kind="inet"), [])
    except (psutil.NoSuchProcess, ValueError) as exc:
        raise NotFoundError(f"process {pid} not found") from exc
    except psutil.AccessDenied as exc:
        raise NotFoundError(f"process {pid}: access denied") from exc

    cmdline = " ".join(cmdline_parts) if cmdline_parts else name
    cpu_seconds = (cpu.user + cpu.system) if cpu else 0.0
    rss = mem.rss if mem else 0

    ports: list[int] = []
    addrs: list[str] = []
    for conn in conns:
        if conn.status == psutil.CONN_LISTEN and conn.laddr:
            ports.append(conn.laddr.port)
            addrs.append(conn.laddr.ip)

    git_repo, git_branch = detect_git_info(cwd)
    return Process(
        pid=pid,
        ppid=ppid,
        command=name,
        cmdline=cmdline,
        exe=exe,
        started_at=datetime.fromtimestamp(created, tz=timezone.utc) if created else None,
        user=user.split("\\")[-1],
        working_dir=cwd,
        git_repo=git_repo,
        git_branch=git_branch,
        container=(container_label(pid) if container_label else "") or container_from_cmdline(cmdline),
        service=service_label(pid) if service_label else "",
        listening_ports=tuple(ports),
        bind_addresses=tuple(addrs),
        health=classify_health(_STATE_LETTERS.get(status, ""), cpu_seconds, rss, config),
        forked=classify_forked(pid, ppid, name),
        env=tuple(f"{key}={value}" for key, value in environ.items()),
        exe_deleted=bool(exe) and not os.path.exists(exe),
    )


def scan_processes() -> list[ProcessEntry]:
    """List every visible process with its name and command line."""
    entries = []
    for proc in psutil.process_iter(attrs=["pid", "name", "cmdline"]):
        info = proc.info
        cmdline = info.get("cmdline") or []
        entries.append(ProcessEntry(info["pid"], info.get("name") or "", " ".join(cmdline)))
    return entries


def pids_for_port(port: int) -> list[int]:
    """
    PIDs with a LISTEN socket on ``port`` from the system connection table.

    Raises:
        NotFoundError: No such socket (or the table is not readable).
        OwnerNotDetectedError: The socket exists but carries no PID.
    """
    try:
        conns = psutil.net_connections(kind="tcp")
    except psutil.AccessDenied as exc:
        raise NotFoundError(
            f"cannot enumerate sockets for port {port}: permission denied"
        ) from exc

    found = False
    owners: set[int] = set()
    for conn in conns:
        if conn.status != psutil.CONN_LISTEN or not conn.laddr or conn.laddr.port != port:
            continue
        found = True
        if conn.pid:
            owners.add(conn.pid)
    if not found:
        raise NotFoundError(f"no process listening on port {port}")
    if not owners:
        raise OwnerNotDetectedError("socket found but owning process not detected")
    return sorted(owners)


def pids_for_file(path: str) -> list[int]:
    """PIDs with ``path`` among their open files."""
    try:
        target = os.path.realpath(path)
        os.stat(target)
    except OSError as exc:
        raise NotFoundError(f"cannot access {path}: {exc.strerror}") from exc

    holders = []
    for proc in psutil.process_iter(attrs=["pid"]):
        try:
            files = proc.open_files()
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            continue
        if any(os.path.realpath(f.path) == target for f in files):
            holders.append(proc.pid)
    if not holders:
        raise NotFoundError(f"no process has {path} open")
    return sorted(holders)


def children(pid: int) -> list[int]:
    """Direct children of ``pid``."""
    try:
        return sorted(child.pid for child in psutil.Process(pid).children())
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return []


def command_line(pid: int) -> str:
    """Full command line of ``pid`` or ''."""
    try:
        return " ".join(psutil.Process(pid).cmdline())
    except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
        return ""


class PsutilBackend:
    """Fallback backend for platforms without a dedicated implementation."""

    def __init__(self, config: Config) -> None:
        self.config = config

    def read_process(self, pid: int) -> Process:
        return read_process(pid, self.config)

    def scan_processes(self) -> list[ProcessEntry]:
        return scan_processes()

    def pids_for_port(self, port: int) -> list[int]:
        return pids_for_port(port)

    def pids_for_file(self, path: str) -> list[int]:
        return pids_for_file(path)

    def service_pid(self, name: str) -> int | None:
        return None

    def service_for_port(self, port: int) -> str:
        raise UnsupportedError("socket activated services are only supported on Linux")

    def restart_count(self, unit: str) -> int:
        raise UnsupportedError("restart counts are only supported on Linux")

    def service_details(self, process: Process) -> dict[str, str]:
        return {}

    def children(self, pid: int) -> list[int]:
        return children(pid)

    def command_line(self, pid: int) -> str:
        return command_line(pid)
