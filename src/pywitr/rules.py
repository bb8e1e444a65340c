"""
Diagnostic warning rules evaluated over an ancestry chain.

Each rule is independent and yields zero or more messages. Rules run in
declaration order so the output is stable; a rule that cannot evaluate
because data is missing produces nothing instead of failing the others.
"""

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone

from pywitr.classifier import detect
from pywitr.config import Config
from pywitr.models import Process, Source, SourceType
from pywitr.sockets import is_public_bind

log = logging.getLogger(__name__)

HEALTH_WARNINGS = {
    "zombie": "Process is a zombie (defunct)",
    "stopped": "Process is stopped (T state)",
    "high-cpu": "Process is using high CPU (>2h total)",
    "high-mem": "Process is using high memory (>1GB RSS)",
}

SUSPICIOUS_DIRS = ("/", "/tmp", "/var/tmp")


@dataclass(slots=True, frozen=True)
class RuleContext:
    """Inputs shared by every rule."""

    chain: Sequence[Process]
    source: Source
    now: datetime
    config: Config

    @property
    def last(self) -> Process:
        return self.chain[-1]


@dataclass(slots=True, frozen=True)
class EnvRule:
    """Environment variable pattern hinting at library injection."""

    pattern: str
    match: Callable[[str, str], bool]
    warning: str
    include_keys: bool = False


ENV_RULES: list[EnvRule] = [
    EnvRule(
        pattern="LD_PRELOAD",
        match=lambda key, pattern: key == pattern,
        warning="Process sets LD_PRELOAD (potential library injection)",
    ),
    EnvRule(
        pattern="DYLD_",
        match=str.startswith,
        warning="Process sets DYLD_* variables (potential library injection)",
        include_keys=True,
    ),
]


def env_warnings(env: Sequence[str]) -> list[str]:
    """
    Warnings for suspicious environment variables.

    Entries without ``=`` or with an empty value are ignored. Rules that
    report key names list them sorted and deduplicated.
    """
    matched: dict[int, set[str]] = {}
    for entry in env:
        key, sep, value = entry.partition("=")
        if not sep or not value:
            continue
        for index, rule in enumerate(ENV_RULES):
            if rule.match(key, rule.pattern):
                matched.setdefault(index, set()).add(key)

    warnings = []
    for index, rule in enumerate(ENV_RULES):
        if index not in matched:
            continue
        if rule.include_keys:
            warnings.append(f"{rule.warning}: {', '.join(sorted(matched[index]))}")
        else:
            warnings.append(rule.warning)
    return warnings


def _restart_loop(ctx: RuleContext) -> list[str]:
    # Counts adjacent ancestry entries with the same command. These are
    # distinct processes, not relaunches.
    count = 0
    previous = None
    for proc in ctx.chain:
        if proc.command == previous:
            count += 1
        previous = proc.command
    if count > ctx.config.restart_threshold:
        return [f"Process or ancestor restarted more than {ctx.config.restart_threshold} times"]
    return []


def _health(ctx: RuleContext) -> list[str]:
    message = HEALTH_WARNINGS.get(ctx.last.health)
    return [message] if message else []


def _public_bind(ctx: RuleContext) -> list[str]:
    if is_public_bind(ctx.last.bind_addresses):
        return ["Process is listening on a public interface"]
    return []


def _root_user(ctx: RuleContext) -> list[str]:
    if ctx.last.user == "root":
        return ["Process is running as root"]
    return []


def _no_supervisor(ctx: RuleContext) -> list[str]:
    if ctx.source.type is SourceType.UNKNOWN:
        return ["No known supervisor or service manager detected"]
    return []


def _old_process(ctx: RuleContext) -> list[str]:
    started = ctx.last.started_at
    if started is None:
        return []
    days = ctx.config.max_age_days
    if (ctx.now - started).total_seconds() > days * 24 * 60 * 60:
        return [f"Process has been running for over {days} days"]
    return []


def _suspicious_cwd(ctx: RuleContext) -> list[str]:
    cwd = ctx.last.working_dir
    if cwd in SUSPICIOUS_DIRS:
        return [f"Process is running from a suspicious working directory: {cwd}"]
    return []


def _container_healthcheck(ctx: RuleContext) -> list[str]:
    # Healthchecks are never probed.
    if ctx.last.container or ctx.source.type is SourceType.CONTAINER:
        return ["No healthcheck detected for container (best effort)"]
    return []


def _service_mismatch(ctx: RuleContext) -> list[str]:
    service = ctx.last.service.removesuffix(".service")
    command = ctx.last.command
    if service and command and service != command:
        return ["Service name and process name do not match"]
    return []


def _deleted_binary(ctx: RuleContext) -> list[str]:
    if ctx.last.exe_deleted:
        return ["Process is running from a deleted binary (potential library injection or pending update)"]
    return []


def _suspicious_env(ctx: RuleContext) -> list[str]:
    return env_warnings(ctx.last.env)


RULES: list[Callable[[RuleContext], list[str]]] = [
    _restart_loop,
    _health,
    _public_bind,
    _root_user,
    _no_supervisor,
    _old_process,
    _suspicious_cwd,
    _container_healthcheck,
    _service_mismatch,
    _deleted_binary,
    _suspicious_env,
]


def warnings(
    chain: Sequence[Process],
    source: Source | None = None,
    now: datetime | None = None,
    config: Config | None = None,
) -> list[str]:
    """
    Evaluate every rule against ``chain`` (root first, queried process last).

    Args:
        chain: Non-empty ancestry chain.
        source: Classification of the chain; computed when omitted.
        now: Reference time for the age rule.
        config: Thresholds; defaults when omitted.
    """
    if not chain:
        return []
    ctx = RuleContext(
        chain=chain,
        source=source if source is not None else detect(chain),
        now=now or datetime.now(timezone.utc),
        config=config or Config(),
    )
    result: list[str] = []
    for rule in RULES:
        try:
            result.extend(rule(ctx))
        except (AttributeError, TypeError, ValueError) as exc:
            log.debug("rule %s skipped: %s", rule.__name__, exc)
    return result
