"""Background re-inspection for the interactive viewer."""

import logging
import threading
from collections.abc import Callable
from queue import Queue

from pywitr.errors import WitrError
from pywitr.models import Result

log = logging.getLogger(__name__)

Update = Result | WitrError


class Watcher:
    """
    Re-runs an inspection periodically in a daemon thread.

    Each outcome, a ``Result`` or the ``WitrError`` that ended the run, is
    pushed to a thread-safe Queue for the UI thread to pick up.
    """

    def __init__(
        self,
        inspect_fn: Callable[[], Result],
        update_queue: Queue[Update],
        poll_rate: float = 2.0,
    ) -> None:
        """
        Initialize the Watcher.

        Args:
            inspect_fn: Zero-argument callable running the pipeline once.
            update_queue: Thread-safe queue to push outcomes to.
            poll_rate: Seconds between runs. Default 2.0s.
        """
        self._inspect = inspect_fn
        self._queue = update_queue
        self._poll_rate = max(0.1, poll_rate)
        self._stop_event = threading.Event()
        self._wake_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def poll_rate(self) -> float:
        return self._poll_rate

    @poll_rate.setter
    def poll_rate(self, value: float) -> None:
        self._poll_rate = max(0.1, value)  # Minimum 0.1 seconds

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the watcher thread."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._poll_loop, daemon=True, name="Watcher")
        self._thread.start()

    def trigger(self) -> None:
        """Run the next inspection now instead of waiting for the poll interval."""
        self._wake_event.set()

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the watcher thread.

        Args:
            timeout: How long to wait for thread to stop (seconds).
        """
        self._stop_event.set()
        self._wake_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def run_once(self) -> Update:
        """Run one inspection and return its outcome."""
        try:
            return self._inspect()
        except WitrError as exc:
            return exc

    def _poll_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self._queue.put(self.run_once())
            except Exception:
                # The loop must survive anything the OS throws at a single run.
                log.debug("inspection failed", exc_info=True)
            self._wake_event.wait(timeout=self._poll_rate)
            self._wake_event.clear()
