"""Reconstruct the parent chain of a process."""

import logging
from collections.abc import Callable

from pywitr.backend import Backend
from pywitr.errors import NoAncestryFoundError, WitrError
from pywitr.models import Process

log = logging.getLogger(__name__)

ReadFn = Callable[[int], Process]


def walk_ancestry(pid: int, read: ReadFn) -> list[Process]:
    """
    Walk parent pointers from ``pid`` up to the root of the process tree.

    The walk stops at a PID already seen (PID reuse can fake a cycle), at a
    process that can no longer be read, or at the root (PPID 0 or PID 1).
    Whatever was collected before an early stop is kept.

    Args:
        pid: Starting (queried) process.
        read: Process reader; must raise WitrError or OSError on failure.

    Returns:
        The chain, root first and ``pid`` last.

    Raises:
        NoAncestryFoundError: Not even ``pid`` could be read.
    """
    chain: list[Process] = []
    seen: set[int] = set()
    current = pid
    while current > 0:
        if current in seen:
            log.debug("ancestry cycle at pid %d", current)
            break
        seen.add(current)
        try:
            proc = read(current)
        except (WitrError, OSError) as exc:
            log.debug("partial read: pid %d vanished during ancestry walk (%s)", current, exc)
            break
        chain.append(proc)
        if proc.ppid == 0 or proc.pid == 1:
            break
        current = proc.ppid

    if not chain:
        raise NoAncestryFoundError("no process ancestry found")
    chain.reverse()
    return chain


def resolve_ancestry(pid: int, backend: Backend) -> tuple[Process, ...]:
    """Ancestry chain of ``pid`` read through ``backend``."""
    return tuple(walk_ancestry(pid, backend.read_process))


def resolve_children(pid: int, backend: Backend) -> tuple[Process, ...]:
    """Readable direct children of ``pid``."""
    children = []
    for child in backend.children(pid):
        try:
            children.append(backend.read_process(child))
        except WitrError:
            continue
    return tuple(children)
