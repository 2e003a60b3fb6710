"""
Bounded-timeout execution of blocking calls (cluster RPCs, plugin construction).

The call runs on its own daemon thread so that a hung RPC can be abandoned:
Python cannot interrupt a running thread, so on timeout the future is
cancelled and the worker is left to finish (or hang) without blocking exit.
"""
import concurrent.futures
import logging
import threading
from typing import Any, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def run_with_timeout(func: Callable[..., T], timeout: Optional[float], *args: Any, **kwargs: Any) -> T:
    """
    Run `func(*args, **kwargs)` and return its result within `timeout` seconds.
    Exceptions raised by `func` propagate unchanged; a missed deadline raises TimeoutError.
    """
    future: "concurrent.futures.Future[T]" = concurrent.futures.Future()
    name = getattr(func, "__qualname__", repr(func))

    def _target() -> None:
        if not future.set_running_or_notify_cancel():
            return
        try:
            result = func(*args, **kwargs)
        except BaseException as exc:
            future.set_exception(exc)
        else:
            future.set_result(result)

    worker = threading.Thread(target=_target, name=f"timeout-{name}", daemon=True)
    worker.start()
    try:
        return future.result(timeout=timeout)
    except concurrent.futures.TimeoutError:
        future.cancel()
        logger.warning(f"{name} did not complete within {timeout} seconds; abandoning worker thread")
        raise TimeoutError(f"{name} timed out after {timeout} seconds") from None
