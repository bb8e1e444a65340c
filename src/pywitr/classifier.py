"""
Classify which mechanism caused a process to run.

Detectors are evaluated in a fixed priority order and the first match wins:
container, supervisor, systemd, launchd, cron, shell, unknown.
"""

from collections.abc import Callable, Sequence
from typing import NamedTuple

from pywitr.models import Process, Source, SourceType

DescribeFn = Callable[[Process], dict[str, str]]


class SupervisorEntry(NamedTuple):
    """One known supervisor. ``in_cmdline`` allows substring matches anywhere on the command line."""

    key: str
    label: str
    in_cmdline: bool = True


# Init systems (systemd, launchd, init) are classified by their own detectors
# below and are absent here. Short or common words only match the command
# name or the basename of a command line argument.
SUPERVISORS: list[SupervisorEntry] = [
    SupervisorEntry("pm2", "pm2"),
    SupervisorEntry("pm2god", "pm2"),
    SupervisorEntry("supervisord", "supervisord"),
    SupervisorEntry("supervisor", "supervisord"),
    SupervisorEntry("gunicorn", "gunicorn"),
    SupervisorEntry("uwsgi", "uwsgi"),
    SupervisorEntry("s6-supervise", "s6"),
    SupervisorEntry("s6-svscan", "s6"),
    SupervisorEntry("s6", "s6", in_cmdline=False),
    SupervisorEntry("runsvdir", "runit"),
    SupervisorEntry("runsv", "runit"),
    SupervisorEntry("runit-init", "runit"),
    SupervisorEntry("runit", "runit"),
    SupervisorEntry("openrc-init", "openrc"),
    SupervisorEntry("openrc", "openrc"),
    SupervisorEntry("monit", "monit", in_cmdline=False),
    SupervisorEntry("circusd", "circus"),
    SupervisorEntry("circus", "circus", in_cmdline=False),
    SupervisorEntry("daemontools", "daemontools"),
    SupervisorEntry("svscan", "daemontools", in_cmdline=False),
    SupervisorEntry("initctl", "upstart", in_cmdline=False),
    SupervisorEntry("tini", "tini", in_cmdline=False),
    SupervisorEntry("docker-init", "docker-init"),
    SupervisorEntry("podman-init", "podman-init"),
    SupervisorEntry("smf", "smf", in_cmdline=False),
    SupervisorEntry("god", "god", in_cmdline=False),
    SupervisorEntry("forever", "forever"),
    SupervisorEntry("nssm", "nssm"),
]

SHELLS = ("bash", "zsh", "sh", "fish")
CRON_COMMANDS = ("cron", "crond")


def _normalize(text: str) -> str:
    """Lowercase without spaces."""
    return text.lower().replace(" ", "")


def _arg_names(cmdline: str) -> set[str]:
    """Basenames of the command line tokens, e.g. ``god`` for ``/usr/local/bin/god``."""
    return {tok.replace("\\", "/").rsplit("/", 1)[-1].lower() for tok in cmdline.split()}


def supervisor_label(process: Process) -> str:
    """
    Label of the supervisor ``process`` is, or ''.

    The command name is checked first. On the command line, short keys must
    equal the basename of an argument (interpreter-hosted supervisors such as
    ``ruby /usr/local/bin/god``); other keys may appear anywhere.
    """
    name = _normalize(process.command)
    cmdline = _normalize(process.cmdline)
    arg_names = _arg_names(process.cmdline)
    for entry in SUPERVISORS:
        if name == entry.key:
            return entry.label
    for entry in SUPERVISORS:
        if entry.key in arg_names or (entry.in_cmdline and entry.key in cmdline):
            return entry.label
    return ""


def detect_container(chain: Sequence[Process], describe: DescribeFn | None = None) -> Source | None:
    """First container label found anywhere in the chain."""
    for proc in chain:
        if proc.container:
            return Source(SourceType.CONTAINER, proc.container)
    return None


def detect_supervisor(chain: Sequence[Process], describe: DescribeFn | None = None) -> Source | None:
    """First known supervisor in the chain, root first."""
    for proc in chain:
        label = supervisor_label(proc)
        if label:
            return Source(SourceType.SUPERVISOR, label)
    return None


def _detect_init(chain: Sequence[Process], command: str, kind: SourceType, describe: DescribeFn | None) -> Source | None:
    """Match the init system at PID 1 and attach service details for the queried process."""
    for proc in chain:
        if proc.pid == 1 and proc.command == command:
            details = describe(chain[-1]) if describe else {}
            return Source(kind, command, dict(details))
    return None


def detect_systemd(chain: Sequence[Process], describe: DescribeFn | None = None) -> Source | None:
    """systemd as PID 1."""
    return _detect_init(chain, "systemd", SourceType.SYSTEMD, describe)


def detect_launchd(chain: Sequence[Process], describe: DescribeFn | None = None) -> Source | None:
    """launchd as PID 1."""
    return _detect_init(chain, "launchd", SourceType.LAUNCHD, describe)


def detect_cron(chain: Sequence[Process], describe: DescribeFn | None = None) -> Source | None:
    """A cron daemon among the ancestors."""
    for proc in chain:
        if proc.command in CRON_COMMANDS:
            return Source(SourceType.CRON, "cron")
    return None


def detect_shell(chain: Sequence[Process], describe: DescribeFn | None = None) -> Source | None:
    """A shell among the ancestors, named after the shell."""
    for proc in chain:
        if proc.command in SHELLS:
            return Source(SourceType.SHELL, proc.command)
    return None


DETECTORS: list[Callable[[Sequence[Process], DescribeFn | None], Source | None]] = [
    detect_container,
    detect_supervisor,
    detect_systemd,
    detect_launchd,
    detect_cron,
    detect_shell,
]


def detect(chain: Sequence[Process], describe: DescribeFn | None = None) -> Source:
    """
    Classify an ancestry chain.

    Args:
        chain: Ancestry, root first.
        describe: Optional service-manager lookup used to attach details
            (label, plist, triggers, KeepAlive) to init-system results.
    """
    for detector in DETECTORS:
        source = detector(chain, describe)
        if source is not None:
            return source
    return Source(SourceType.UNKNOWN)
