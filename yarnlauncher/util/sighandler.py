import logging
import signal
from threading import Event
from types import FrameType
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

TRAPPED_SIGNALS = (signal.SIGTERM, signal.SIGINT)


class SigHandler:
    """
    Turns SIGTERM/SIGINT into an exit event the launcher main loop can wait on.
    Use as a context manager to restore the previous handlers on exit.
    """

    _exit_event = Event()
    received_signal: Optional[int] = None

    def __init__(self) -> None:
        self._previous: Dict[int, Any] = {}
        for signum in TRAPPED_SIGNALS:
            self._previous[signum] = signal.signal(signum, SigHandler._handler)

    @staticmethod
    def _handler(signum: int, frame: Optional[FrameType]) -> None:
        SigHandler.received_signal = signum
        SigHandler._exit_event.set()

    @staticmethod
    def is_set() -> bool:
        return SigHandler._exit_event.is_set()

    @staticmethod
    def wait_until_exit(timeout: float = 1.0) -> bool:
        """Sleep up to timeout seconds. Return True immediately if triggered."""
        return SigHandler._exit_event.wait(timeout=timeout)

    @staticmethod
    def set() -> None:
        SigHandler._exit_event.set()

    @staticmethod
    def clear() -> None:
        SigHandler.received_signal = None
        SigHandler._exit_event.clear()

    def restore(self) -> None:
        for signum, handler in self._previous.items():
            if handler is not None:
                signal.signal(signum, handler)
        self._previous.clear()

    def __enter__(self) -> "SigHandler":
        return self

    def __exit__(self, exc_type: Any, exc_value: Any, traceback: Any) -> None:
        if SigHandler.received_signal is not None:
            logger.info(f"Exiting on signal {signal.Signals(SigHandler.received_signal).name}")
        self.restore()
