"""Verbose resource statistics for the queried process."""

import logging
from dataclasses import replace

import psutil

from pywitr.models import ExtendedInfo, Process

log = logging.getLogger(__name__)

MAX_OPEN_FILES = 10


def read_extended_info(pid: int) -> ExtendedInfo | None:
    """
    Collect memory, IO, file descriptor and thread statistics.

    Each statistic is optional; only a vanished process yields None.
    """
    try:
        proc = psutil.Process(pid)
        with proc.oneshot():
            values: dict = {}
            try:
                mem = proc.memory_info()
                values["rss"] = mem.rss
                values["vms"] = mem.vms
            except psutil.AccessDenied:
                pass
            try:
                io = proc.io_counters()
                values["read_bytes"] = io.read_bytes
                values["write_bytes"] = io.write_bytes
                values["read_ops"] = io.read_count
                values["write_ops"] = io.write_count
            except (psutil.AccessDenied, AttributeError, NotImplementedError):
                pass
            try:
                files = proc.open_files()
                values["open_files"] = tuple(f.path for f in files[:MAX_OPEN_FILES])
            except psutil.AccessDenied:
                pass
            try:
                values["fd_count"] = proc.num_fds()
            except (psutil.AccessDenied, AttributeError):
                pass
            try:
                soft, _hard = proc.rlimit(psutil.RLIMIT_NOFILE)
                values["fd_limit"] = soft if soft >= 0 else 0
            except (psutil.AccessDenied, AttributeError, OSError):
                pass
            try:
                values["thread_count"] = proc.num_threads()
            except psutil.AccessDenied:
                pass
            try:
                values["children"] = tuple(sorted(c.pid for c in proc.children()))
            except psutil.AccessDenied:
                pass
    except psutil.NoSuchProcess:
        log.debug("process %d exited before extended info could be read", pid)
        return None
    return ExtendedInfo(**values)


def enrich_last(chain: tuple[Process, ...], info: ExtendedInfo | None) -> tuple[Process, ...]:
    """Return a new chain whose last element carries ``info``."""
    if not chain or info is None:
        return chain
    return (*chain[:-1], replace(chain[-1], extended=info))
