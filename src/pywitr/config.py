"""Runtime configuration for pywitr.

Values come from ``PYWITR_*`` environment variables and fall back to
defaults. The result is frozen and passed explicitly to backends, so tests
can point ``proc_root`` at a fake procfs tree.
"""

import os
from dataclasses import dataclass
from pathlib import Path


@dataclass(slots=True, frozen=True)
class Config:
    """Immutable settings for one invocation."""

    proc_root: Path = Path("/proc")
    command_timeout: float = 3.0  # Seconds
    high_cpu_seconds: float = 2 * 60 * 60.0
    high_mem_bytes: int = 1024 * 1024 * 1024
    max_age_days: int = 90
    restart_threshold: int = 5
    log_level: str = "WARNING"


def _get(key: str, default):
    """Read ``PYWITR_<KEY>`` coerced to the type of ``default``."""
    raw = os.getenv(f"PYWITR_{key.upper()}")
    if raw is None or raw.strip() == "":
        return default
    if isinstance(default, Path):
        return Path(raw)
    if isinstance(default, int):
        try:
            return int(raw)
        except ValueError:
            return default
    if isinstance(default, float):
        try:
            return float(raw)
        except ValueError:
            return default
    return raw


def load_config() -> Config:
    """Build a Config from the environment."""
    defaults = Config()
    return Config(
        proc_root=_get("proc_root", defaults.proc_root),
        command_timeout=max(0.1, _get("command_timeout", defaults.command_timeout)),
        high_cpu_seconds=_get("high_cpu_seconds", defaults.high_cpu_seconds),
        high_mem_bytes=_get("high_mem_bytes", defaults.high_mem_bytes),
        max_age_days=_get("max_age_days", defaults.max_age_days),
        restart_threshold=_get("restart_threshold", defaults.restart_threshold),
        log_level=str(_get("log_level", defaults.log_level)).upper(),
    )
