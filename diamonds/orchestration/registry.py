from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, TypeVar

T = TypeVar("T")


@dataclass
class _InFlight:
    done: threading.Event = field(default_factory=threading.Event)
    result: Any = None
    error: Optional[BaseException] = None


class DeploymentRegistry:
    """Explicit registry of per-key objects plus a reentrancy guard for runs.

    Keys are deployment ids ("<diamond>-<network>-<chain_id>"). Nothing here is
    global: callers share a registry by passing it around.
    """

    def __init__(self, *, poll_interval_s: float = 1.0) -> None:
        self.poll_interval_s = float(poll_interval_s)
        self._lock = threading.Lock()
        self._objects: Dict[str, Any] = {}
        self._in_flight: Dict[str, _InFlight] = {}

    def get_or_create(self, key: str, factory: Callable[[], T]) -> T:
        with self._lock:
            if key not in self._objects:
                self._objects[key] = factory()
            return self._objects[key]

    def get(self, key: str) -> Any:
        with self._lock:
            return self._objects.get(key)

    def clear(self) -> None:
        with self._lock:
            self._objects.clear()

    def in_progress(self, key: str) -> bool:
        with self._lock:
            return key in self._in_flight

    def run_exclusive(self, key: str, fn: Callable[[], T]) -> T:
        """Run fn once per key at a time.

        A caller arriving while a run for the same key is in flight does not
        start a second one: it waits for the first and gets its result, or its
        error re-raised.
        """
        with self._lock:
            flight = self._in_flight.get(key)
            owner = flight is None
            if owner:
                flight = _InFlight()
                self._in_flight[key] = flight

        if not owner:
            print(f"[registry] key={key} status=in_progress action=wait")
            while not flight.done.wait(self.poll_interval_s):
                pass
            if flight.error is not None:
                raise flight.error
            return flight.result

        try:
            flight.result = fn()
            return flight.result
        except BaseException as e:
            flight.error = e
            raise
        finally:
            with self._lock:
                self._in_flight.pop(key, None)
            flight.done.set()
