"""Linux backend reading procfs directly."""

import logging
import os
import pwd
from datetime import datetime, timezone
from pathlib import Path

from pywitr.backend import (
    ProcessEntry,
    classify_forked,
    classify_health,
    detect_git_info,
    validate_cwd,
)
from pywitr.commands import have_command, run_command
from pywitr.config import Config
from pywitr.containers import container_from_cgroup, resolve_docker_proxy_container
from pywitr.errors import NotFoundError, OwnerNotDetectedError
from pywitr.models import Process
from pywitr.sockets import listening_inodes_for_port, read_listening_sockets

log = logging.getLogger(__name__)

DELETED_SUFFIX = " (deleted)"


def parse_stat(raw: str) -> tuple[str, list[str]]:
    """
    Split ``/proc/[pid]/stat`` into the command name and remaining fields.

    The command sits inside parentheses and may itself contain spaces or
    parentheses, so the last ``)`` terminates it. ``fields[0]`` is the state.
    """
    start = raw.find("(")
    end = raw.rfind(")")
    if start == -1 or end == -1 or end < start:
        raise ValueError("invalid stat format")
    return raw[start + 1 : end], raw[end + 2 :].split()


def _socket_inode(link: str) -> str | None:
    if link.startswith("socket:[") and link.endswith("]"):
        return link[len("socket:[") : -1]
    return None


def systemd_unit_for_pid(pid: int, timeout: float) -> str:
    """Name of the systemd service unit a PID belongs to, or ''."""
    if not have_command("systemctl"):
        return ""
    out = run_command(["systemctl", "status", str(pid)], timeout=timeout)
    if not out or "Loaded: loaded" not in out:
        return ""
    # "● nginx.service - ..." header, else the unit file on the Loaded: line
    for part in out.splitlines()[0].split():
        if part.endswith(".service"):
            return part
    for line in out.splitlines():
        line = line.strip()
        if line.startswith("Loaded:") and ".service" in line:
            for part in line.split():
                part = part.strip("(;")
                if part.endswith(".service"):
                    return part.rsplit("/", 1)[-1]
    return ""


def parse_list_sockets(output: str, port: int) -> str:
    """Find the service activated by a listening socket in ``systemctl list-sockets`` output."""
    suffix = f":{port}"
    for line in output.splitlines():
        fields = line.split()
        if len(fields) < 3:
            continue
        if fields[0].endswith(suffix):
            service = fields[2]
            if service.endswith(".service"):
                return service
            socket_unit = fields[1]
            if socket_unit.endswith(".socket"):
                return socket_unit[: -len(".socket")] + ".service"
            return service
    return ""


class LinuxBackend:
    """Backend for Linux based on ``/proc`` and systemd."""

    def __init__(self, config: Config) -> None:
        self.config = config
        self._root = config.proc_root
        self._boot_time: float | None = None

    def _pid_dirs(self) -> list[Path]:
        try:
            return [p for p in self._root.iterdir() if p.name.isdigit()]
        except OSError as exc:
            log.debug("Failed to list %s: %s", self._root, exc)
            return []

    def _read_text(self, path: Path) -> str | None:
        try:
            return path.read_text(encoding="utf-8", errors="replace")
        except OSError:
            return None

    def _read_cmdline(self, pid: int) -> str:
        try:
            raw = (self._root / str(pid) / "cmdline").read_bytes()
        except OSError:
            return ""
        return raw.replace(b"\x00", b" ").decode("utf-8", errors="replace").strip()

    def _read_env(self, pid: int) -> tuple[str, ...]:
        try:
            raw = (self._root / str(pid) / "environ").read_bytes()
        except OSError:
            return ()
        text = raw.decode("utf-8", errors="replace")
        return tuple(entry for entry in text.split("\x00") if entry)

    def _readlink(self, path: Path) -> str | None:
        try:
            return os.readlink(path)
        except OSError:
            return None

    def _boot(self) -> float:
        if self._boot_time is None:
            self._boot_time = 0.0
            text = self._read_text(self._root / "stat") or ""
            for line in text.splitlines():
                if line.startswith("btime "):
                    try:
                        self._boot_time = float(line.split()[1])
                    except (IndexError, ValueError):
                        pass
                    break
        return self._boot_time

    def _user(self, pid: int) -> str:
        status = self._read_text(self._root / str(pid) / "status") or ""
        for line in status.splitlines():
            if line.startswith("Uid:"):
                fields = line.split()
                if len(fields) < 2:
                    return ""
                try:
                    return pwd.getpwuid(int(fields[1])).pw_name
                except (KeyError, ValueError):
                    return fields[1]
        return ""

    def _socket_inodes(self, pid: int) -> list[str]:
        fd_dir = self._root / str(pid) / "fd"
        try:
            fds = sorted(fd_dir.iterdir(), key=lambda p: int(p.name) if p.name.isdigit() else -1)
        except OSError:
            return []
        inodes = []
        for fd in fds:
            link = self._readlink(fd)
            inode = _socket_inode(link) if link else None
            if inode is not None:
                inodes.append(inode)
        return inodes

    def read_process(self, pid: int) -> Process:
        """
        Snapshot a process from procfs.

        Existence is checked right before the stat file is read; every other
        file is optional and degrades to an empty value if the process
        disappears or access is denied.
        """
        proc_dir = self._root / str(pid)
        if not proc_dir.exists():
            raise NotFoundError(f"process {pid} does not exist")
        stat = self._read_text(proc_dir / "stat")
        if stat is None:
            raise NotFoundError(f"process {pid} disappeared during read")
        try:
            comm, fields = parse_stat(stat)
        except ValueError as exc:
            raise NotFoundError(f"process {pid}: {exc}") from exc
        if len(fields) < 22:
            raise NotFoundError(f"process {pid}: truncated stat")

        state = fields[0][:1]
        ticks = os.sysconf("SC_CLK_TCK")
        try:
            ppid = int(fields[1])
            cpu_seconds = (int(fields[11]) + int(fields[12])) / ticks
            rss_bytes = int(fields[21]) * os.sysconf("SC_PAGE_SIZE")
            start_ticks = int(fields[19])
        except ValueError as exc:
            raise NotFoundError(f"process {pid}: malformed stat") from exc
        started_at = None
        boot = self._boot()
        if boot:
            started_at = datetime.fromtimestamp(boot + start_ticks / ticks, tz=timezone.utc)

        cwd_link = self._readlink(proc_dir / "cwd")
        cwd = "unknown" if cwd_link is None else validate_cwd(cwd_link)
        git_repo, git_branch = detect_git_info(cwd)

        cgroup = self._read_text(proc_dir / "cgroup") or ""
        container = container_from_cgroup(cgroup)

        exe = self._readlink(proc_dir / "exe") or ""
        exe_deleted = exe.endswith(DELETED_SUFFIX)
        if exe_deleted:
            exe = exe[: -len(DELETED_SUFFIX)]

        cmdline = self._read_cmdline(pid)
        if comm == "docker-proxy" and not container:
            container = resolve_docker_proxy_container(cmdline, timeout=self.config.command_timeout)

        sockets = read_listening_sockets(self._root)
        ports: list[int] = []
        addrs: list[str] = []
        for inode in self._socket_inodes(pid):
            sock = sockets.get(inode)
            if sock is not None:
                ports.append(sock.port)
                addrs.append(sock.address)

        return Process(
            pid=pid,
            ppid=ppid,
            command=comm,
            cmdline=cmdline,
            exe=exe,
            started_at=started_at,
            user=self._user(pid),
            working_dir=cwd,
            git_repo=git_repo,
            git_branch=git_branch,
            container=container,
            service=systemd_unit_for_pid(pid, self.config.command_timeout),
            listening_ports=tuple(ports),
            bind_addresses=tuple(addrs),
            health=classify_health(state, cpu_seconds, rss_bytes, self.config),
            forked=classify_forked(pid, ppid, comm),
            env=self._read_env(pid),
            exe_deleted=exe_deleted,
        )

    def scan_processes(self) -> list[ProcessEntry]:
        """Every PID directory with its comm and command line."""
        entries = []
        for proc_dir in self._pid_dirs():
            comm = self._read_text(proc_dir / "comm")
            if comm is None:
                continue
            pid = int(proc_dir.name)
            entries.append(ProcessEntry(pid, comm.strip(), self._read_cmdline(pid)))
        return entries

    def pids_for_port(self, port: int) -> list[int]:
        """PIDs holding a listening socket on ``port``."""
        inodes = listening_inodes_for_port(port, self._root)
        if not inodes:
            raise NotFoundError(f"no process listening on port {port}")

        # Several PIDs may share one socket (pre-forked workers).
        owners: set[int] = set()
        for proc_dir in self._pid_dirs():
            for inode in self._socket_inodes(int(proc_dir.name)):
                if inode in inodes:
                    owners.add(int(proc_dir.name))
                    break
        if not owners:
            raise OwnerNotDetectedError("socket found but owning process not detected")
        return sorted(owners)

    def _lock_holders(self, device: int, inode: int) -> set[int]:
        """PIDs holding a lock on the file identified by device and inode."""
        holders: set[int] = set()
        text = self._read_text(self._root / "locks") or ""
        for line in text.splitlines():
            # 1: POSIX  ADVISORY  WRITE 1234 08:01:5678 0 EOF
            fields = line.split()
            if len(fields) < 6 or fields[1] == "->":
                continue
            try:
                pid = int(fields[4])
                major, minor, ino = fields[5].split(":")
                if int(ino) != inode:
                    continue
                if os.makedev(int(major, 16), int(minor, 16)) == device:
                    holders.add(pid)
            except ValueError:
                continue
        return holders

    def pids_for_file(self, path: str) -> list[int]:
        """PIDs with ``path`` open, falling back to lock holders."""
        try:
            target = os.stat(path)
        except OSError as exc:
            raise NotFoundError(f"cannot access {path}: {exc.strerror}") from exc
        key = (target.st_dev, target.st_ino)

        holders = self._lock_holders(target.st_dev, target.st_ino)
        for proc_dir in self._pid_dirs():
            fd_dir = proc_dir / "fd"
            try:
                fds = list(fd_dir.iterdir())
            except OSError:
                continue
            for fd in fds:
                try:
                    st = os.stat(fd)
                except OSError:
                    continue
                if (st.st_dev, st.st_ino) == key:
                    holders.add(int(proc_dir.name))
                    break
        if not holders:
            raise NotFoundError(f"no process has {path} open")
        return sorted(holders)

    def service_pid(self, name: str) -> int | None:
        """MainPID of a systemd service; accepts ``foo`` and ``foo.service``."""
        unit = name if name.endswith(".service") else f"{name}.service"
        if not have_command("systemctl"):
            return None
        out = run_command(
            ["systemctl", "show", "-p", "MainPID", "--value", "--", unit],
            timeout=self.config.command_timeout,
        )
        if out is None:
            return None
        try:
            pid = int(out.strip())
        except ValueError:
            return None
        return pid if pid > 0 else None

    def service_for_port(self, port: int) -> str:
        """Service activated by the systemd socket listening on ``port``."""
        if not have_command("systemctl"):
            return ""
        out = run_command(
            ["systemctl", "list-sockets", "--no-legend", "--full"],
            timeout=self.config.command_timeout,
        )
        return parse_list_sockets(out or "", port)

    def restart_count(self, unit: str) -> int:
        """``NRestarts`` of a systemd unit."""
        if not have_command("systemctl"):
            return 0
        out = run_command(
            ["systemctl", "show", "--property=NRestarts", "--value", unit],
            timeout=self.config.command_timeout,
        )
        try:
            return int((out or "").strip())
        except ValueError:
            return 0

    def service_details(self, process: Process) -> dict[str, str]:
        """systemd unit of ``process``, when known."""
        if process.service:
            return {"unit": process.service}
        return {}

    def children(self, pid: int) -> list[int]:
        """Direct children of ``pid``."""
        kids = []
        for proc_dir in self._pid_dirs():
            stat = self._read_text(proc_dir / "stat")
            if stat is None:
                continue
            try:
                _, fields = parse_stat(stat)
                if int(fields[1]) == pid:
                    kids.append(int(proc_dir.name))
            except (ValueError, IndexError):
                continue
        return sorted(kids)

    def command_line(self, pid: int) -> str:
        """Full command line of ``pid``, or ''."""
        return self._read_cmdline(pid)
