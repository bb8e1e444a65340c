"""Shared fixtures: a fake procfs tree and an in-memory backend."""

import os
from pathlib import Path

import pytest

from pywitr.backend import ProcessEntry
from pywitr.config import Config
from pywitr.errors import NotFoundError, UnsupportedError
from pywitr.models import Process


class FakeProcfs:
    """Builds just enough of ``/proc`` under a temporary directory."""

    def __init__(self, root: Path, btime: int = 1_700_000_000) -> None:
        self.root = root
        (root / "net").mkdir(parents=True)
        (root / "stat").write_text(f"cpu  1 2 3 4\nbtime {btime}\n")
        self._tcp: list[str] = []
        self._tcp6: list[str] = []
        self._write_tables()

    def add_process(
        self,
        pid: int,
        comm: str,
        ppid: int,
        state: str = "S",
        cmdline: list[str] | None = None,
        uid: int = 1000,
        cwd: str | None = None,
        exe: str | None = None,
        cgroup: str = "0::/user.slice\n",
        environ: list[str] | None = None,
        start_ticks: int = 100,
        utime: int = 0,
        rss_pages: int = 10,
        sockets: list[str] | None = None,
    ) -> Path:
        proc_dir = self.root / str(pid)
        (proc_dir / "fd").mkdir(parents=True)
        fields = [state, ppid, pid, pid, 0, -1, 0, 0, 0, 0, 0, utime, 0, 0, 0, 20, 0, 1, 0, start_ticks, 4096, rss_pages]
        (proc_dir / "stat").write_text(f"{pid} ({comm}) " + " ".join(str(f) for f in fields) + "\n")
        (proc_dir / "comm").write_text(comm + "\n")
        (proc_dir / "cmdline").write_bytes(b"\x00".join(a.encode() for a in (cmdline or [comm])) + b"\x00")
        (proc_dir / "status").write_text(f"Name:\t{comm}\nUid:\t{uid}\t{uid}\t{uid}\t{uid}\n")
        (proc_dir / "cgroup").write_text(cgroup)
        (proc_dir / "environ").write_bytes(b"\x00".join(e.encode() for e in (environ or [])))
        if cwd is not None:
            os.symlink(cwd, proc_dir / "cwd")
        if exe is not None:
            os.symlink(exe, proc_dir / "exe")
        for fd, inode in enumerate(sockets or [], start=3):
            os.symlink(f"socket:[{inode}]", proc_dir / "fd" / str(fd))
        return proc_dir

    def add_listener(self, hex_addr: str, port: int, inode: str, state: str = "0A", ipv6: bool = False) -> None:
        index = len(self._tcp6 if ipv6 else self._tcp)
        remote = "0" * 32 + ":0000" if ipv6 else "00000000:0000"
        line = (
            f"   {index}: {hex_addr}:{port:04X} {remote} {state} 00000000:00000000 "
            f"00:00000000 00000000  1000        0 {inode} 1 0000000000000000 100 0 0 10 0"
        )
        (self._tcp6 if ipv6 else self._tcp).append(line)
        self._write_tables()

    def _write_tables(self) -> None:
        header = "  sl  local_address rem_address   st tx_queue rx_queue tr tm->when retrnsmt   uid  timeout inode\n"
        (self.root / "net" / "tcp").write_text(header + "\n".join(self._tcp) + "\n")
        (self.root / "net" / "tcp6").write_text(header + "\n".join(self._tcp6) + "\n")


class FakeBackend:
    """In-memory Backend implementation driven by a dict of processes."""

    def __init__(
        self,
        processes: list[Process],
        ports: dict[int, list[int]] | None = None,
        files: dict[str, list[int]] | None = None,
        services: dict[str, int] | None = None,
        restarts: dict[str, int] | None = None,
        config: Config | None = None,
    ) -> None:
        self.config = config or Config()
        self.processes = {p.pid: p for p in processes}
        self.ports = ports or {}
        self.files = files or {}
        self.services = services or {}
        self.restarts = restarts
        self.reads: list[int] = []

    def read_process(self, pid: int) -> Process:
        self.reads.append(pid)
        if pid not in self.processes:
            raise NotFoundError(f"process {pid} does not exist")
        return self.processes[pid]

    def scan_processes(self) -> list[ProcessEntry]:
        return [ProcessEntry(p.pid, p.command, p.cmdline) for p in self.processes.values()]

    def pids_for_port(self, port: int) -> list[int]:
        if port not in self.ports:
            raise NotFoundError(f"no process listening on port {port}")
        return self.ports[port]

    def pids_for_file(self, path: str) -> list[int]:
        if path not in self.files:
            raise NotFoundError(f"no process has {path} open")
        return self.files[path]

    def service_pid(self, name: str) -> int | None:
        return self.services.get(name)

    def service_for_port(self, port: int) -> str:
        return ""

    def restart_count(self, unit: str) -> int:
        if self.restarts is None:
            raise UnsupportedError("no restart counts")
        return self.restarts.get(unit, 0)

    def service_details(self, process: Process) -> dict[str, str]:
        return {"unit": process.service} if process.service else {}

    def children(self, pid: int) -> list[int]:
        return sorted(p.pid for p in self.processes.values() if p.ppid == pid and p.pid != pid)

    def command_line(self, pid: int) -> str:
        proc = self.processes.get(pid)
        return proc.cmdline if proc else ""


@pytest.fixture
def fake_proc(tmp_path: Path) -> FakeProcfs:
    """Empty fake procfs rooted in a temporary directory."""
    return FakeProcfs(tmp_path / "proc")


@pytest.fixture
def systemd_chain() -> list[Process]:
    """systemd (1) -> nginx (500), nginx owned by nginx.service."""
    return [
        Process(pid=1, ppid=0, command="systemd", cmdline="/sbin/init"),
        Process(
            pid=500,
            ppid=1,
            command="nginx",
            cmdline="nginx: master process /usr/sbin/nginx",
            user="www-data",
            service="nginx.service",
            working_dir="/var/www",
        ),
    ]
