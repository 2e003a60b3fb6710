import logging
import threading
import time
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from yarnlauncher.platform.filesystem import FileSystem

logger = logging.getLogger(__name__)


class LauncherService(threading.Thread):
    """
    A daemon thread that calls `run_cycle()` every `service_period` seconds
    until `stop()` is signalled, then calls `cleanup()` once.
    """

    def __init__(self, service_period: float = 1.0, name: Optional[str] = None) -> None:
        super().__init__(name=name or self.__class__.__name__, daemon=True)
        self.service_period = service_period
        self._exit_event = threading.Event()

    @property
    def started(self) -> bool:
        return self.ident is not None

    @property
    def stopping(self) -> bool:
        return self._exit_event.is_set()

    def run(self) -> None:
        while not self._exit_event.wait(timeout=self.service_period):
            try:
                self.run_cycle()
            except Exception:
                logger.exception(f"{self.name} cycle raised an exception; continuing")
        logger.info(f"Signal: {self.name} cleaning up")
        try:
            self.cleanup()
        except Exception:
            logger.exception(f"{self.name} cleanup failed")
        logger.info(f"{self.name} exit")

    def stop(self) -> None:
        self._exit_event.set()

    def run_cycle(self) -> None:
        pass

    def cleanup(self) -> None:
        pass


class ServiceManager:
    def __init__(self, services: Iterable[LauncherService]) -> None:
        self.services: List[LauncherService] = list(services)

    def start(self) -> None:
        for service in self.services:
            if not service.started:
                logger.info(f"Starting service: {service.name}")
                service.start()

    def stop_and_wait(self, timeout: Optional[float] = None) -> None:
        for service in self.services:
            service.stop()

        deadline = None if timeout is None else time.monotonic() + timeout
        for service in self.services:
            if not service.started or service is threading.current_thread():
                continue
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            service.join(timeout=remaining)

        alive = [s.name for s in self.services if s.is_alive() and s is not threading.current_thread()]
        if alive:
            raise TimeoutError(f"Services still running after {timeout} seconds: {', '.join(alive)}")

    def __len__(self) -> int:
        return len(self.services)


class LogCopier(LauncherService):
    """
    Mirrors container log files (by extension) from the application's log
    directory in distributed storage into a local sink directory.
    """

    def __init__(
        self,
        fs: FileSystem,
        src_log_dir: str,
        sink_log_dir: Path,
        extensions: Sequence[str] = (".stdout", ".stderr"),
        service_period: float = 60.0,
    ) -> None:
        super().__init__(service_period=service_period)
        self.fs = fs
        self.src_log_dir = src_log_dir.rstrip("/")
        self.sink_log_dir = Path(sink_log_dir)
        self.extensions = tuple(extensions)
        self._copied_lengths: Dict[str, int] = {}

    def _walk(self, path: str, relative: str = "") -> Iterable[Tuple[str, str]]:
        for status in self.fs.list_status(path):
            rel = f"{relative}/{status.name}" if relative else status.name
            if status.is_dir:
                yield from self._walk(status.path, rel)
            elif status.name.endswith(self.extensions):
                if self._copied_lengths.get(status.path) != status.length:
                    self._copied_lengths[status.path] = status.length
                    yield status.path, rel

    def copy_logs(self) -> int:
        if not self.fs.exists(self.src_log_dir):
            return 0
        num_copied = 0
        for src, relative in list(self._walk(self.src_log_dir)):
            dest = self.sink_log_dir.joinpath(relative)
            dest.parent.mkdir(parents=True, exist_ok=True)
            dest.write_bytes(self.fs.read_bytes(src))
            num_copied += 1
        if num_copied:
            logger.debug(f"Copied {num_copied} log files to {self.sink_log_dir}")
        return num_copied

    def run_cycle(self) -> None:
        self.copy_logs()

    def cleanup(self) -> None:
        # Final copy picks up whatever was written since the last cycle
        self.copy_logs()


class PeriodicTask:
    """
    Runs `func` on one dedicated thread at a fixed rate: first immediately,
    then every `period` seconds. Exceptions are logged and never cancel the
    schedule.
    """

    def __init__(self, func: Callable[[], None], period: float, name: str = "periodic-task") -> None:
        if period <= 0:
            raise ValueError("period must be positive")
        self.func = func
        self.period = period
        self.name = name
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    @property
    def is_running(self) -> bool:
        return self._thread.is_alive() and not self._stop_event.is_set()

    def start(self) -> None:
        self._thread.start()

    def _run(self) -> None:
        next_run = time.monotonic()
        while not self._stop_event.is_set():
            try:
                self.func()
            except Exception:
                logger.exception(f"{self.name} raised an exception; will run again in {self.period} seconds")
            next_run += self.period
            delay = next_run - time.monotonic()
            if delay < 0:
                next_run = time.monotonic()
                delay = 0
            if self._stop_event.wait(timeout=delay):
                break
        logger.debug(f"{self.name} exit")

    def shutdown(self, timeout: Optional[float] = None) -> bool:
        """
        Stop scheduling and wait up to `timeout` seconds for an in-progress run.
        Returns True if the thread exited (or if called from the task's own thread).
        """
        self._stop_event.set()
        if threading.current_thread() is self._thread or self._thread.ident is None:
            return True
        self._thread.join(timeout=timeout)
        return not self._thread.is_alive()
