"""Platform backend contract and helpers shared by every backend."""

import os
import sys
from pathlib import Path
from typing import NamedTuple, Protocol

from pywitr.config import Config, load_config
from pywitr.models import Process

SUSPICIOUS_CWD_PREFIXES = ("/proc", "/sys", "/dev", "/boot", "/root")
INIT_COMMANDS = ("systemd", "launchd", "init")


class ProcessEntry(NamedTuple):
    """Lightweight row of a process table scan."""

    pid: int
    command: str
    cmdline: str


class Backend(Protocol):
    """What the resolver, walker and inspector need from an operating system."""

    config: Config

    def read_process(self, pid: int) -> Process:
        """Snapshot one process. Raises NotFoundError if it does not exist."""
        ...

    def scan_processes(self) -> list[ProcessEntry]:
        """List every visible process."""
        ...

    def pids_for_port(self, port: int) -> list[int]:
        """PIDs owning a LISTEN socket on ``port``."""
        ...

    def pids_for_file(self, path: str) -> list[int]:
        """PIDs holding an open handle or lock on ``path``."""
        ...

    def service_pid(self, name: str) -> int | None:
        """PID of a running service-manager entry called ``name``."""
        ...

    def service_for_port(self, port: int) -> str:
        """Service unit activated through a socket on ``port``."""
        ...

    def restart_count(self, unit: str) -> int:
        """How often the service manager restarted ``unit``."""
        ...

    def service_details(self, process: Process) -> dict[str, str]:
        """Extra service-manager descriptor for ``process`` (may be empty)."""
        ...

    def children(self, pid: int) -> list[int]:
        """Direct children of ``pid``."""
        ...

    def command_line(self, pid: int) -> str:
        """Full command line of ``pid`` or ''."""
        ...


def classify_health(
    state: str,
    cpu_seconds: float,
    rss_bytes: int,
    config: Config,
) -> str:
    """
    Map raw process state and usage to a health label.

    Later checks override earlier ones, so a zombie that somehow reports
    >1GB RSS is labelled ``high-mem``.
    """
    health = "healthy"
    if state == "Z":
        health = "zombie"
    elif state == "T":
        health = "stopped"
    if cpu_seconds > config.high_cpu_seconds:
        health = "high-cpu"
    if rss_bytes > config.high_mem_bytes:
        health = "high-mem"
    return health


def classify_forked(pid: int, ppid: int, command: str) -> str:
    """Processes not started directly by init are considered forked."""
    if pid == 1 or ppid == 1 or command in INIT_COMMANDS:
        return "not-forked"
    return "forked"


def validate_cwd(target: str) -> str:
    """Reject working directory links that point somewhere odd."""
    if not target:
        return "invalid"
    if target.startswith("/"):
        for prefix in SUSPICIOUS_CWD_PREFIXES:
            if target == prefix or target.startswith(prefix + "/"):
                return "invalid"
    if "../" in target:
        return "invalid"
    return target


def detect_git_info(cwd: str) -> tuple[str, str]:
    """
    Walk up from ``cwd`` to the nearest ``.git`` directory.

    Returns:
        (repository directory name, branch name) or ("", "").
    """
    if not cwd or cwd in ("unknown", "invalid"):
        return "", ""
    search = Path(cwd)
    for directory in (search, *search.parents):
        if directory == directory.parent:
            break
        git_dir = directory / ".git"
        try:
            if not git_dir.is_dir():
                continue
        except OSError:
            return "", ""
        branch = ""
        try:
            head = (git_dir / "HEAD").read_text(encoding="utf-8").strip()
        except OSError:
            head = ""
        if head.startswith("ref: "):
            branch = head[len("ref: ") :].rsplit("/", 1)[-1]
        return directory.name, branch
    return "", ""


def get_backend(config: Config | None = None, platform: str | None = None) -> Backend:
    """Pick the backend for the running (or given) platform."""
    config = config or load_config()
    platform = platform or sys.platform
    if platform.startswith("linux"):
        from pywitr.linux import LinuxBackend

        return LinuxBackend(config)
    if platform == "darwin":
        from pywitr.darwin import DarwinBackend

        return DarwinBackend(config)
    if platform.startswith("freebsd"):
        from pywitr.freebsd import FreeBSDBackend

        return FreeBSDBackend(config)
    if platform == "win32":
        from pywitr.windows import WindowsBackend

        return WindowsBackend(config)
    from pywitr.psutil_backend import PsutilBackend

    return PsutilBackend(config)


def own_pids() -> set[int]:
    """This process and its parent, excluded from name matches."""
    return {os.getpid(), os.getppid()}
