"""Data models for pywitr."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class TargetKind(Enum):
    """What the user asked about."""

    PID = "pid"
    PORT = "port"
    NAME = "name"
    FILE = "file"


@dataclass(slots=True, frozen=True)
class Target:
    """Immutable query target built once from user input."""

    kind: TargetKind
    value: str


@dataclass(slots=True, frozen=True)
class ListeningSocket:
    """A row of the kernel socket table."""

    address: str
    port: int
    inode: str
    state: str = "LISTEN"


@dataclass(slots=True, frozen=True)
class ExtendedInfo:
    """Resource statistics attached to the queried process in verbose mode."""

    rss: int = 0  # Bytes
    vms: int = 0  # Bytes
    read_bytes: int = 0
    write_bytes: int = 0
    read_ops: int = 0
    write_ops: int = 0
    open_files: tuple[str, ...] = ()
    fd_count: int = 0
    fd_limit: int = 0
    thread_count: int = 0
    children: tuple[int, ...] = ()


@dataclass(slots=True, frozen=True)
class Process:
    """Point-in-time snapshot of a single process."""

    pid: int
    ppid: int
    command: str
    cmdline: str = ""
    exe: str = ""
    started_at: datetime | None = None
    user: str = ""
    working_dir: str = ""
    git_repo: str = ""
    git_branch: str = ""
    container: str = ""
    service: str = ""
    listening_ports: tuple[int, ...] = ()
    bind_addresses: tuple[str, ...] = ()
    health: str = "healthy"  # 'healthy', 'zombie', 'stopped', 'high-cpu', 'high-mem'
    forked: str = "unknown"  # 'forked', 'not-forked', 'unknown'
    env: tuple[str, ...] = ()  # KEY=value entries
    exe_deleted: bool = False
    extended: ExtendedInfo | None = None


class SourceType(Enum):
    """Mechanism that caused a process to run."""

    CONTAINER = "container"
    SYSTEMD = "systemd"
    LAUNCHD = "launchd"
    SUPERVISOR = "supervisor"
    CRON = "cron"
    SHELL = "shell"
    UNKNOWN = "unknown"


@dataclass(slots=True, frozen=True)
class Source:
    """Classification result for an ancestry chain."""

    type: SourceType
    name: str = ""
    details: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class SocketInfo:
    """Protocol state of the socket behind a port query."""

    state: str
    explanation: str = ""
    workaround: str = ""


@dataclass(slots=True, frozen=True)
class DockerPortMatch:
    """A Docker container publishing a queried port."""

    id: str
    name: str
    image: str
    ports: str = ""
    compose_project: str = ""
    compose_service: str = ""

    @property
    def source_label(self) -> str:
        """Label used as the source name for this container."""
        if self.compose_project and self.compose_service:
            return f"docker-compose: {self.compose_project}/{self.compose_service}"
        return "docker"


@dataclass(slots=True, frozen=True)
class Result:
    """Everything known about one query, handed to rendering."""

    target: Target
    pid: int
    ancestry: tuple[Process, ...]
    source: Source
    warnings: tuple[str, ...] = ()
    resolved_target: str = ""
    socket_info: SocketInfo | None = None
    restart_count: int = 0
    children: tuple[Process, ...] = ()
    docker_match: DockerPortMatch | None = None

    @property
    def process(self) -> Process | None:
        """The queried process (last element of the ancestry)."""
        return self.ancestry[-1] if self.ancestry else None
