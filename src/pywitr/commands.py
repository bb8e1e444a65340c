"""Time-bounded execution of external OS utilities."""

import logging
import os
import shutil
import subprocess

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 3.0


def have_command(name: str) -> bool:
    """Check whether an executable is on PATH."""
    return shutil.which(name) is not None


def run_command(
    args: list[str],
    timeout: float = DEFAULT_TIMEOUT,
    env: dict[str, str] | None = None,
) -> str | None:
    """
    Run a command and return its stdout.

    Returns None when the executable is missing, exits non-zero or exceeds
    ``timeout``. A timed out call is treated as "no data available".

    Args:
        args: Command and arguments.
        timeout: Seconds before the child is killed.
        env: Extra environment variables layered over the current ones.
    """
    full_env = None
    if env:
        full_env = {**os.environ, **env}
    try:
        completed = subprocess.run(
            args,
            capture_output=True,
            text=True,
            timeout=timeout,
            env=full_env,
            check=False,
        )
    except FileNotFoundError:
        log.debug("command not found: %s", args[0])
        return None
    except subprocess.TimeoutExpired:
        log.debug("command timed out after %.1fs: %s", timeout, " ".join(args))
        return None
    except OSError as exc:
        log.debug("command failed to start: %s (%s)", args[0], exc)
        return None

    if completed.returncode != 0:
        log.debug("command exited %d: %s", completed.returncode, " ".join(args))
        return None
    return completed.stdout
