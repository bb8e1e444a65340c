"""Container runtime detection and Docker CLI lookups."""

import logging
import re
import shlex
from pathlib import Path

from pywitr.commands import DEFAULT_TIMEOUT, have_command, run_command
from pywitr.models import DockerPortMatch

log = logging.getLogger(__name__)

# Order matters: containerd also shows up under docker and kubernetes cgroups.
CGROUP_MARKERS: list[tuple[tuple[str, ...], str]] = [
    (("docker",), "docker"),
    (("podman", "libpod"), "podman"),
    (("kubepods",), "kubernetes"),
    (("colima",), "colima"),
    (("containerd",), "containerd"),
]

_LONG_HEX_ID = re.compile(r"[0-9a-fA-F]{64}")

_INSPECT_COMMANDS = {
    "docker": (
        [
            "docker",
            "inspect",
            "--format",
            '{{.Name}}|{{index .Config.Labels "com.docker.compose.project"}}'
            '|{{index .Config.Labels "com.docker.compose.service"}}',
        ],
        "docker: ",
    ),
    "podman": (["podman", "inspect", "--format", "{{.Name}}"], "podman: "),
    "kubernetes": (
        ["crictl", "inspect", "-o", "go-template", "--template", "{{.status.metadata.name}}"],
        "",
    ),
    "containerd": (["nerdctl", "inspect", "--format", "{{.Name}}"], "containerd: "),
}


def container_from_cgroup(cgroup_text: str) -> str:
    """Return the container runtime named in cgroup text, or ''."""
    for markers, label in CGROUP_MARKERS:
        if any(marker in cgroup_text for marker in markers):
            return label
    return ""


def container_from_cmdline(cmdline: str) -> str:
    """Best-effort runtime detection from a command line (no cgroups on macOS)."""
    return container_from_cgroup(cmdline.lower())


def find_container_id(text: str) -> str:
    """Find the first 64-character hex container ID in ``text``."""
    match = _LONG_HEX_ID.search(text)
    return match.group(0) if match else ""


def resolve_container_name(container_id: str, runtime: str, timeout: float = DEFAULT_TIMEOUT) -> str:
    """Ask the runtime CLI for a human readable container name."""
    spec = _INSPECT_COMMANDS.get(runtime)
    if spec is None or not container_id:
        return ""
    base, prefix = spec
    if not have_command(base[0]):
        return ""
    out = run_command([*base[:2], container_id, *base[2:]], timeout=timeout)
    if out is None:
        return ""
    output = out.strip()

    if runtime == "docker":
        parts = output.split("|")
        if len(parts) == 3:
            name = parts[0].lstrip("/")
            project, service = parts[1], parts[2]
            if project and service:
                return f"docker: {project}/{service} ({name})"
            return f"docker: {name}" if name else ""

    name = output.lstrip("/")
    if not name:
        return ""
    return prefix + name


def container_details(
    pid: int,
    runtime: str,
    proc_root: Path = Path("/proc"),
    timeout: float = DEFAULT_TIMEOUT,
) -> dict[str, str]:
    """Re-read a process's cgroup and describe the container it lives in."""
    try:
        cgroup = (proc_root / str(pid) / "cgroup").read_text(encoding="utf-8", errors="ignore")
    except OSError:
        return {}
    container_id = find_container_id(cgroup)
    if not container_id:
        return {}
    details = {"id": container_id[:12]}
    name = resolve_container_name(container_id, runtime, timeout=timeout)
    if name:
        details["name"] = name
    return details


def flag_value(cmdline: str, *flags: str) -> str:
    """Value following the first of ``flags`` in a command line."""
    try:
        args = shlex.split(cmdline)
    except ValueError:
        args = cmdline.split()
    for i, arg in enumerate(args[:-1]):
        if arg in flags:
            return args[i + 1]
    return ""


def parse_bridge_network(output: str, container_ip: str) -> str:
    """Find the container name owning ``container_ip`` in ``docker network inspect`` output."""
    for line in output.strip().splitlines():
        name, sep, rest = line.partition(":")
        if not sep or not name:
            continue
        ip = rest.split("/", 1)[0]
        if ip == container_ip:
            return f"target: {name}"
    return ""


def resolve_docker_proxy_container(cmdline: str, timeout: float = DEFAULT_TIMEOUT) -> str:
    """Attribute a ``docker-proxy`` process to the container it forwards to."""
    container_ip = flag_value(cmdline, "-container-ip")
    if not container_ip:
        return ""
    out = run_command(
        [
            "docker",
            "network",
            "inspect",
            "bridge",
            "--format",
            '{{range .Containers}}{{.Name}}:{{.IPv4Address}}{{"\\n"}}{{end}}',
        ],
        timeout=timeout,
    )
    if out is None:
        return ""
    return parse_bridge_network(out, container_ip)


def parse_docker_ps_line(line: str) -> DockerPortMatch | None:
    """Parse one ``docker ps`` line in the pipe separated format used below."""
    parts = line.strip().split("|", 5)
    if len(parts) < 6:
        return None
    return DockerPortMatch(
        id=parts[0],
        name=parts[1],
        image=parts[2],
        ports=parts[3],
        compose_project=parts[4],
        compose_service=parts[5],
    )


def resolve_container_by_port(port: int, timeout: float = DEFAULT_TIMEOUT) -> DockerPortMatch | None:
    """
    Query Docker for a container publishing ``port``.

    Used when the owning process is invisible to this namespace (Docker
    Desktop VM, WSL2 distro). Returns None if Docker is unavailable,
    unresponsive within ``timeout`` or nothing matches.
    """
    if not have_command("docker"):
        return None
    fmt = (
        '{{.ID}}|{{.Names}}|{{.Image}}|{{.Ports}}'
        '|{{.Label "com.docker.compose.project"}}|{{.Label "com.docker.compose.service"}}'
    )
    out = run_command(
        ["docker", "ps", "--filter", f"publish={port}", "--format", fmt],
        timeout=timeout,
    )
    if not out or not out.strip():
        return None
    first = out.strip().splitlines()[0]
    return parse_docker_ps_line(first)
