"""Resolve a user supplied target into candidate PIDs."""

import logging
from collections.abc import Iterable

from pywitr.backend import Backend, ProcessEntry, own_pids
from pywitr.errors import InvalidTargetError, NotFoundError
from pywitr.models import Target, TargetKind

log = logging.getLogger(__name__)

MAX_PORT = 65535


def parse_positive_int(value: str, what: str) -> int:
    """Parse a strictly positive integer or raise InvalidTargetError."""
    try:
        number = int(value.strip())
    except (AttributeError, ValueError) as exc:
        raise InvalidTargetError(f"invalid {what}: {value!r}") from exc
    if number <= 0:
        raise InvalidTargetError(f"invalid {what}: {value!r} (must be positive)")
    return number


def matches_name(entry: ProcessEntry, name: str, exact: bool) -> bool:
    """
    Case-insensitive name match against one scanned process.

    Substring mode checks the short command name first and falls back to the
    command line; anything that only matches because it is a ``grep`` is
    skipped. Exact mode compares the short command name only.
    """
    needle = name.lower()
    command = entry.command.lower()
    if exact:
        return command == needle
    if needle in command:
        return "grep" not in command
    cmdline = entry.cmdline.lower()
    return needle in cmdline and "grep" not in cmdline


def match_processes(
    entries: Iterable[ProcessEntry],
    name: str,
    exact: bool = False,
    exclude: set[int] | None = None,
) -> list[int]:
    """PIDs of scanned processes matching ``name``, excluding ``exclude``."""
    exclude = exclude or set()
    needle = name.lower()
    pids = []
    for entry in entries:
        # A numeric name must not match the process whose PID it is.
        if str(entry.pid) == needle or entry.pid in exclude:
            continue
        if matches_name(entry, name, exact):
            pids.append(entry.pid)
    return pids


def merge_candidates(service_pid: int | None, scanned: Iterable[int]) -> list[int]:
    """Service-manager PID first, then the remaining scan matches in numeric order."""
    rest = sorted({pid for pid in scanned if pid != service_pid})
    if service_pid and service_pid > 0:
        return [service_pid, *rest]
    return rest


def resolve_name(name: str, exact: bool, backend: Backend) -> list[int]:
    """Resolve a process or service name."""
    if not name or not name.strip():
        raise InvalidTargetError("empty process name")
    scanned = match_processes(backend.scan_processes(), name, exact, exclude=own_pids())
    service_pid = backend.service_pid(name)
    if service_pid:
        log.debug("service manager reports %s as pid %d", name, service_pid)
    pids = merge_candidates(service_pid, scanned)
    if not pids:
        raise NotFoundError(f"no running process or service named {name!r}")
    return pids


def resolve(target: Target, exact: bool, backend: Backend) -> list[int]:
    """
    Map a target to the PIDs it refers to.

    More than one PID is returned as-is; choosing between them is left to
    the caller.

    Raises:
        InvalidTargetError: The value does not fit the target kind.
        NotFoundError: Nothing matched.
        OwnerNotDetectedError: A socket matched but its owner is invisible.
    """
    if target.kind is TargetKind.PID:
        pid = parse_positive_int(target.value, "pid")
        backend.read_process(pid)
        return [pid]
    if target.kind is TargetKind.PORT:
        port = parse_positive_int(target.value, "port")
        if port > MAX_PORT:
            raise InvalidTargetError(f"invalid port: {target.value!r} (must be <= {MAX_PORT})")
        return backend.pids_for_port(port)
    if target.kind is TargetKind.NAME:
        return resolve_name(target.value, exact, backend)
    if target.kind is TargetKind.FILE:
        if not target.value:
            raise InvalidTargetError("empty file path")
        return backend.pids_for_file(target.value)
    raise InvalidTargetError(f"unsupported target kind: {target.kind}")
