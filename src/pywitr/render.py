"""Text and JSON rendering of a Result.

Text output is rich console markup; every process-controlled string goes
through ``clean`` first so it can neither inject markup nor terminal
control sequences.
"""

import json
import re
from dataclasses import asdict
from datetime import datetime, timezone
from enum import Enum

from rich.markup import escape

from pywitr.models import Process, Result, Source, SourceType, TargetKind

MAX_DISPLAY_ITEMS = 10

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b-\x1f\x7f-\x9f]")

DETAIL_LABELS = {
    "label": "Label",
    "type": "Type",
    "plist": "Plist",
    "triggers": "Trigger",
    "keepalive": "KeepAlive",
    "unit": "Unit",
    "name": "Container",
    "id": "ID",
    "container": "Container",
    "image": "Image",
}


def clean(text: str) -> str:
    """Strip terminal control characters and escape rich markup."""
    return escape(_CONTROL_CHARS.sub("", text))


def format_duration(seconds: float) -> str:
    """Human friendly age such as ``3 days`` or ``12 min``."""
    seconds = max(0, int(seconds))
    if seconds < 60:
        return f"{seconds} sec"
    if seconds < 3600:
        return f"{seconds // 60} min"
    if seconds < 86400:
        return f"{seconds // 3600} hours"
    return f"{seconds // 86400} days"


def format_bytes(size: float) -> str:
    """Format bytes as human-readable string."""
    for unit in ["B", "K", "M", "G", "T"]:
        if size < 1024:
            return f"{size:.1f}{unit}" if unit != "B" else f"{int(size)}{unit}"
        size = size / 1024
    return f"{size:.1f}P"


def describe_source(source: Source) -> str:
    """One line naming the mechanism, e.g. ``systemd`` or ``supervisor (pm2)``."""
    if source.type is SourceType.UNKNOWN:
        return "unknown"
    if source.type is SourceType.SYSTEMD or source.type is SourceType.LAUNCHD:
        return source.type.value
    if source.name:
        return f"{source.type.value} ({source.name})"
    return source.type.value


def _chain_line(ancestry: tuple[Process, ...]) -> str:
    return " → ".join(f"{clean(p.command)} (pid {p.pid})" for p in ancestry)


def _target_label(result: Result) -> str:
    if result.target.kind is TargetKind.PORT:
        return f"port {clean(result.target.value)}"
    if result.target.kind is TargetKind.FILE:
        return f"file {clean(result.target.value)}"
    return clean(result.resolved_target or result.target.value)


def render_standard(result: Result, verbose: bool = False, now: datetime | None = None) -> str:
    """Full human readable report."""
    if result.docker_match is not None:
        return render_docker_fallback(result)
    proc = result.process
    now = now or datetime.now(timezone.utc)
    lines = [f"[blue]Target[/blue]      : {_target_label(result)}", ""]
    if proc is not None:
        lines.append(f"[blue]Process[/blue]     : [green]{clean(proc.command)}[/green] ([bold]pid {proc.pid}[/bold])")
        if proc.user:
            lines.append(f"[blue]User[/blue]        : {clean(proc.user)}")
        if proc.container:
            lines.append(f"[blue]Container[/blue]   : {clean(proc.container)}")
        if proc.service:
            lines.append(f"[blue]Service[/blue]     : {clean(proc.service)}")
        lines.append(f"[blue]Command[/blue]     : {clean(proc.cmdline or proc.command)}")
        if proc.started_at is not None:
            age = format_duration((now - proc.started_at).total_seconds())
            lines.append(f"[blue]Started[/blue]     : {age} ago ({proc.started_at:%a %Y-%m-%d %H:%M:%S %Z})")
        if result.restart_count:
            lines.append(f"[blue]Restarts[/blue]    : {result.restart_count}")

    lines += ["", "[magenta]Why It Exists[/magenta] :", f"  {_chain_line(result.ancestry)}", ""]
    lines.append(f"[cyan]Source[/cyan]      : {clean(describe_source(result.source))}")
    for key, value in sorted(result.source.details.items()):
        label = DETAIL_LABELS.get(key, key)
        lines.append(f"              [bold]{clean(label)}[/bold] : {clean(value)}")

    if proc is not None:
        lines.append("")
        if proc.working_dir:
            lines.append(f"[blue]Working Dir[/blue] : {clean(proc.working_dir)}")
        if proc.git_repo:
            branch = f" ({clean(proc.git_branch)})" if proc.git_branch else ""
            lines.append(f"[blue]Git Repo[/blue]    : {clean(proc.git_repo)}{branch}")
        if proc.listening_ports:
            pairs = [f"{clean(a)}:{p}" for a, p in zip(proc.bind_addresses, proc.listening_ports)]
            lines.append(f"[blue]Listening[/blue]   : {', '.join(pairs[:MAX_DISPLAY_ITEMS])}")

    if result.socket_info is not None:
        info = result.socket_info
        lines.append(f"[blue]Socket[/blue]      : {clean(info.state)}")
        if info.explanation:
            lines.append(f"              {clean(info.explanation)}")
        if info.workaround:
            lines.append(f"              [dim]{clean(info.workaround)}[/dim]")

    if verbose and proc is not None and proc.extended is not None:
        lines += ["", *_extended_lines(proc)]

    if result.children:
        lines += ["", "[blue]Children[/blue]    :"]
        for child in result.children[:MAX_DISPLAY_ITEMS]:
            lines.append(f"  {clean(child.command)} (pid {child.pid})")
        if len(result.children) > MAX_DISPLAY_ITEMS:
            lines.append(f"  ... and {len(result.children) - MAX_DISPLAY_ITEMS} more")

    if result.warnings:
        lines += ["", *_warning_lines(result)]
    return "\n".join(lines)


def _extended_lines(proc: Process) -> list[str]:
    ext = proc.extended
    lines = [
        f"[blue]Memory[/blue]      : RSS {format_bytes(ext.rss)}, VMS {format_bytes(ext.vms)}",
        f"[blue]IO[/blue]          : read {format_bytes(ext.read_bytes)} ({ext.read_ops} ops), "
        f"write {format_bytes(ext.write_bytes)} ({ext.write_ops} ops)",
        f"[blue]Threads[/blue]     : {ext.thread_count}",
    ]
    if ext.fd_count:
        limit = f" / {ext.fd_limit}" if ext.fd_limit else ""
        lines.append(f"[blue]FDs[/blue]         : {ext.fd_count}{limit}")
    for path in ext.open_files:
        lines.append(f"              {clean(path)}")
    return lines


def _warning_lines(result: Result) -> list[str]:
    lines = ["[yellow]Warnings[/yellow]    :"]
    for warning in result.warnings:
        lines.append(f"  • {clean(warning)}")
    return lines


def render_warnings(result: Result) -> str:
    """Only the warnings section."""
    if not result.warnings:
        return "[green]No warnings.[/green]"
    return "\n".join(_warning_lines(result))


def render_short(result: Result) -> str:
    """Single line ancestry."""
    if result.docker_match is not None:
        m = result.docker_match
        return f"port {clean(result.target.value)} → [green]{clean(m.name)}[/green] ({clean(m.image)}) \\[{clean(m.source_label)}]"
    return _chain_line(result.ancestry)


def render_tree(result: Result) -> str:
    """Ancestry as an indented tree, children of the queried process last."""
    lines = []
    depth = 0
    for depth, proc in enumerate(result.ancestry):
        prefix = "  " * depth + ("└─ " if depth else "")
        name = f"[green]{clean(proc.command)}[/green]" if proc is result.process else clean(proc.command)
        lines.append(f"{prefix}{name} (pid {proc.pid})")
    indent = "  " * (depth + 1)
    for child in result.children[:MAX_DISPLAY_ITEMS]:
        lines.append(f"{indent}└─ {clean(child.command)} (pid {child.pid})")
    return "\n".join(lines)


def render_env(result: Result) -> str:
    """Environment variables of the queried process."""
    proc = result.process
    if proc is None:
        return ""
    lines = [f"[blue]Process[/blue]     : [green]{clean(proc.command)}[/green] ([bold]pid {proc.pid}[/bold])", ""]
    if not proc.env:
        lines.append("[dim]No environment variables found (permission denied?)[/dim]")
    lines.extend(clean(entry) for entry in proc.env)
    return "\n".join(lines)


def render_candidates(rows: list[tuple[int, str, str]], env_mode: bool = False) -> str:
    """Enumerated list shown when several processes match."""
    lines = ["Multiple matching processes found:", ""]
    for index, (pid, command, cmdline) in enumerate(rows, start=1):
        lines.append(f"[{index}] [green]{clean(command)}[/green] ([bold]pid {pid}[/bold])")
        lines.append(f"    {clean(cmdline)}")
    lines += ["", "Re-run with:", "  pywitr --pid <pid> --env" if env_mode else "  pywitr --pid <pid>"]
    return "\n".join(lines)


def render_docker_fallback(result: Result) -> str:
    """Report for a port owned by a container invisible to this namespace."""
    m = result.docker_match
    lines = [
        f"[blue]Target[/blue]      : port {clean(result.target.value)}",
        "",
        f"[blue]Container[/blue]   : [green]{clean(m.name)}[/green]",
        f"[blue]Image[/blue]       : {clean(m.image)}",
    ]
    if m.ports:
        lines.append(f"[blue]Ports[/blue]       : {clean(m.ports)}")
    lines += [
        "",
        "[magenta]Why It Exists[/magenta] :",
        "  Docker Desktop (process not visible in current namespace)",
        "",
        f"[cyan]Source[/cyan]      : {clean(m.source_label)}",
        "",
        "[yellow]Note[/yellow]        : The owning process is not visible in this environment.",
        "              This is common when Docker Desktop runs in a separate namespace",
        "              (e.g., WSL2 distro, macOS VM).",
    ]
    return "\n".join(lines)


def _jsonable(value):
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def result_to_dict(result: Result) -> dict:
    """Plain dict view of a Result, suitable for JSON."""
    data = _jsonable(asdict(result))
    data["process"] = data["ancestry"][-1] if data["ancestry"] else None
    return data


def to_json(result: Result, mode: str = "full") -> str:
    """
    Serialize a Result.

    Args:
        result: Pipeline output.
        mode: ``full``, ``short`` (ancestry commands), ``tree`` (ancestry and
            children), ``warnings`` or ``env``.
    """
    data = result_to_dict(result)
    if mode == "short":
        data = {"target": data["target"], "ancestry": [p["command"] for p in data["ancestry"]]}
    elif mode == "tree":
        data = {"ancestry": data["ancestry"], "children": data["children"]}
    elif mode == "warnings":
        data = {"target": data["target"], "pid": data["pid"], "warnings": data["warnings"]}
    elif mode == "env":
        proc = data["process"] or {}
        data = {"pid": data["pid"], "command": proc.get("command", ""), "env": proc.get("env", [])}
    return json.dumps(data, indent=2)
