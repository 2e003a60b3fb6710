import logging
import threading
from typing import Any, List, Optional, Protocol, TypeVar

logger = logging.getLogger(__name__)


class Closeable(Protocol):
    def close(self) -> Any:
        ...


C = TypeVar("C", bound=Closeable)


class Closer:
    """
    Collects acquired resources and releases each of them exactly once,
    in reverse order of registration. Every close() is attempted even if an
    earlier one fails; the first failure is re-raised afterwards.
    """

    def __init__(self) -> None:
        self._resources: List[Closeable] = []
        self._lock = threading.Lock()

    def register(self, resource: C) -> C:
        with self._lock:
            self._resources.append(resource)
        return resource

    def close(self) -> None:
        with self._lock:
            resources, self._resources = self._resources, []

        first_error: Optional[BaseException] = None
        for resource in reversed(resources):
            try:
                resource.close()
            except Exception as exc:
                logger.warning(f"Failed to close {resource!r}: {exc}")
                if first_error is None:
                    first_error = exc
        if first_error is not None:
            raise first_error

    def __len__(self) -> int:
        with self._lock:
            return len(self._resources)

    def __enter__(self) -> "Closer":
        return self

    def __exit__(self, exc_type: Any, exc_value: Any, traceback: Any) -> None:
        self.close()
