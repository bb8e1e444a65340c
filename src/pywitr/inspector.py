"""Run the full resolution pipeline for one target and build a Result."""

import logging
from datetime import datetime

from pywitr.ancestry import resolve_ancestry, resolve_children
from pywitr.backend import Backend, get_backend
from pywitr.classifier import detect
from pywitr.containers import container_details, resolve_container_by_port
from pywitr.errors import AmbiguousMatchError, NotFoundError, OwnerNotDetectedError, UnsupportedError, WitrError
from pywitr.extended import enrich_last, read_extended_info
from pywitr.models import Result, Source, SourceType, Target, TargetKind
from pywitr.resolver import resolve
from pywitr.rules import warnings
from pywitr.sockets import describe_socket_state, socket_state_for_port

log = logging.getLogger(__name__)


def describe_candidates(pids: list[int], backend: Backend) -> list[tuple[int, str, str]]:
    """(pid, command, cmdline) for each candidate of an ambiguous match."""
    rows = []
    for pid in pids:
        try:
            proc = backend.read_process(pid)
            rows.append((pid, proc.command, proc.cmdline))
        except WitrError:
            rows.append((pid, "unknown", backend.command_line(pid)))
    return rows


def _docker_fallback(target: Target, backend: Backend) -> Result | None:
    try:
        port = int(target.value)
    except ValueError:
        return None
    match = resolve_container_by_port(port, timeout=backend.config.command_timeout)
    if match is None:
        return None
    log.debug("port %d attributed to container %s via docker", port, match.name)
    source = Source(
        SourceType.CONTAINER,
        match.source_label,
        {"container": match.name, "image": match.image},
    )
    return Result(
        target=target,
        pid=0,
        ancestry=(),
        source=source,
        resolved_target=match.name,
        socket_info=describe_socket_state("LISTEN"),
        docker_match=match,
    )


def resolve_single(target: Target, exact: bool, backend: Backend) -> int:
    """Resolve ``target`` to exactly one PID."""
    pids = resolve(target, exact, backend)
    if not pids:
        raise NotFoundError("no matching process found")
    if len(pids) > 1:
        raise AmbiguousMatchError(pids)
    return pids[0]


def inspect(
    target: Target,
    exact: bool = False,
    backend: Backend | None = None,
    verbose: bool = False,
    with_children: bool = False,
    now: datetime | None = None,
) -> Result:
    """
    Explain why ``target`` is running.

    Raises:
        WitrError: Resolution failed; the message and ``remediation``
            are meant for the user.
    """
    backend = backend or get_backend()
    try:
        pid = resolve_single(target, exact, backend)
    except (NotFoundError, OwnerNotDetectedError):
        if target.kind is TargetKind.PORT:
            fallback = _docker_fallback(target, backend)
            if fallback is not None:
                return fallback
        raise

    systemd_service = ""
    if target.kind is TargetKind.PORT and pid == 1:
        try:
            systemd_service = backend.service_for_port(int(target.value))
        except UnsupportedError:
            pass

    ancestry = resolve_ancestry(pid, backend)
    source = detect(ancestry, describe=backend.service_details)

    if source.type is SourceType.CONTAINER:
        owner = next((p for p in ancestry if p.container), None)
        if owner is not None:
            extra = container_details(
                owner.pid,
                owner.container,
                backend.config.proc_root,
                timeout=backend.config.command_timeout,
            )
            if extra:
                source = Source(source.type, source.name, {**source.details, **extra})

    last = ancestry[-1]
    resolved_target = last.command
    if systemd_service:
        resolved_target = systemd_service.removesuffix(".service")

    if verbose:
        ancestry = enrich_last(ancestry, read_extended_info(pid))

    children = resolve_children(last.pid, backend) if (verbose or with_children) else ()

    restart_count = 0
    if source.type is SourceType.SYSTEMD and last.service:
        try:
            restart_count = backend.restart_count(last.service)
        except UnsupportedError:
            pass

    socket_info = None
    if target.kind is TargetKind.PORT:
        socket_info = socket_state_for_port(int(target.value), backend.config.proc_root)
        if socket_info is None:
            socket_info = describe_socket_state("LISTEN")

    return Result(
        target=target,
        pid=pid,
        ancestry=ancestry,
        source=source,
        warnings=tuple(warnings(ancestry, source=source, now=now, config=backend.config)),
        resolved_target=resolved_target,
        socket_info=socket_info,
        restart_count=restart_count,
        children=children,
    )


def inspect_env(target: Target, exact: bool = False, backend: Backend | None = None) -> Result:
    """Resolve ``target`` and read only the process itself (for env display)."""
    backend = backend or get_backend()
    pid = resolve_single(target, exact, backend)
    proc = backend.read_process(pid)
    return Result(
        target=target,
        pid=pid,
        ancestry=(proc,),
        source=Source(SourceType.UNKNOWN),
        resolved_target=proc.command,
    )
