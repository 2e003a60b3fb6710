import threading


class AtomicBoolean:
    def __init__(self, value: bool = False) -> None:
        self._value = value
        self._lock = threading.Lock()

    def get(self) -> bool:
        with self._lock:
            return self._value

    def set(self, value: bool) -> None:
        with self._lock:
            self._value = value

    def compare_and_set(self, expect: bool, update: bool) -> bool:
        """Set to `update` only if the current value is `expect`. Returns True if the value was set."""
        with self._lock:
            if self._value != expect:
                return False
            self._value = update
            return True

    def __bool__(self) -> bool:
        return self.get()

    def __repr__(self) -> str:
        return f"AtomicBoolean({self.get()})"


class AtomicCounter:
    def __init__(self, value: int = 0) -> None:
        self._value = value
        self._lock = threading.Lock()

    def get(self) -> int:
        with self._lock:
            return self._value

    def set(self, value: int) -> None:
        with self._lock:
            self._value = value

    def increment_and_get(self) -> int:
        with self._lock:
            self._value += 1
            return self._value

    def __repr__(self) -> str:
        return f"AtomicCounter({self.get()})"
