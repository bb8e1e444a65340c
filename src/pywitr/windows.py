"""Windows backend built on psutil's process, socket and service APIs."""

import logging

import psutil

from pywitr import psutil_backend
from pywitr.backend import ProcessEntry
from pywitr.config import Config
from pywitr.errors import UnsupportedError
from pywitr.models import Process

log = logging.getLogger(__name__)


class WindowsBackend:
    """Backend for Windows."""

    def __init__(self, config: Config) -> None:
        self.config = config
        self._service_pids: dict[int, str] | None = None

    def _services_by_pid(self) -> dict[int, str]:
        if self._service_pids is None:
            self._service_pids = {}
            try:
                for svc in psutil.win_service_iter():
                    try:
                        pid = svc.pid()
                    except (psutil.NoSuchProcess, psutil.AccessDenied, OSError):
                        continue
                    if pid:
                        self._service_pids.setdefault(pid, svc.name())
            except (psutil.AccessDenied, OSError) as exc:
                log.debug("Cannot enumerate services: %s", exc)
        return self._service_pids

    def _service_label(self, pid: int) -> str:
        return self._services_by_pid().get(pid, "")

    def read_process(self, pid: int) -> Process:
        return psutil_backend.read_process(pid, self.config, service_label=self._service_label)

    def scan_processes(self) -> list[ProcessEntry]:
        return psutil_backend.scan_processes()

    def pids_for_port(self, port: int) -> list[int]:
        return psutil_backend.pids_for_port(port)

    def pids_for_file(self, path: str) -> list[int]:
        return psutil_backend.pids_for_file(path)

    def service_pid(self, name: str) -> int | None:
        try:
            pid = psutil.win_service_get(name).pid()
        except (psutil.NoSuchProcess, psutil.AccessDenied, OSError):
            return None
        return pid or None

    def service_for_port(self, port: int) -> str:
        raise UnsupportedError("systemd is only supported on Linux")

    def restart_count(self, unit: str) -> int:
        raise UnsupportedError("systemd is only supported on Linux")

    def service_details(self, process: Process) -> dict[str, str]:
        if not process.service:
            return {}
        try:
            info = psutil.win_service_get(process.service).as_dict()
        except (psutil.NoSuchProcess, psutil.AccessDenied, OSError):
            return {}
        details = {"start_type": str(info.get("start_type") or "")}
        if info.get("binpath"):
            details["binpath"] = info["binpath"]
        return {k: v for k, v in details.items() if v}

    def children(self, pid: int) -> list[int]:
        return psutil_backend.children(pid)

    def command_line(self, pid: int) -> str:
        return psutil_backend.command_line(pid)
