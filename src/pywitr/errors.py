"""Exceptions raised while resolving a target."""


class WitrError(Exception):
    """Base class for resolution failures reported to the user."""

    remediation = ""

    def __init__(self, message: str, remediation: str | None = None) -> None:
        super().__init__(message)
        if remediation is not None:
            self.remediation = remediation


class InvalidTargetError(WitrError, ValueError):
    """The target value cannot be interpreted for its kind."""

    remediation = "For usage and options, run: pywitr --help"


class NotFoundError(WitrError):
    """The target does not resolve to any process, socket or file owner."""

    remediation = (
        "No matching process or service found. Please check your query or "
        "try a different name/port/PID.\nFor usage and options, run: pywitr --help"
    )


class NoAncestryFoundError(NotFoundError):
    """Not even the starting process of an ancestry walk could be read."""


class OwnerNotDetectedError(WitrError):
    """A socket exists but its owning process could not be attributed."""

    remediation = (
        "A socket was found for the port, but the owning process could not be detected.\n"
        "This may be due to insufficient permissions. Try running with sudo."
    )


class AmbiguousMatchError(WitrError):
    """More than one candidate process matched the target."""

    remediation = "Re-run with:\n  pywitr --pid <pid>"

    def __init__(self, pids: list[int]) -> None:
        super().__init__(f"multiple processes found: {len(pids)} matches")
        self.pids = list(pids)


class UnsupportedError(WitrError):
    """A platform specific feature was requested on another platform."""
