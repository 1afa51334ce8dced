from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterator, TypeVar

from .errors import RelayError

T = TypeVar("T")


class LaneTimeoutError(RelayError):
    def __init__(self, thread_id: str, timeout: float) -> None:
        super().__init__(f"thread {thread_id} stayed busy for {timeout:.0f}s")
        self.thread_id = thread_id
        self.timeout = timeout


@dataclass(frozen=True)
class LaneMetrics:
    thread_id: str
    wait_ms: float
    run_ms: float


@dataclass
class _Lane:
    lock: threading.RLock = field(default_factory=threading.RLock)
    users: int = 0


class ThreadLanes:
    """
    One lane per conversation thread. Work on the same thread is serialized,
    work on different threads runs in parallel. Lanes are reentrant so a
    session can re-enter its own thread's lane, and a lane is dropped once
    nobody holds or waits on it.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._lanes: dict[str, _Lane] = {}

    def active_count(self) -> int:
        """Number of threads currently held or waited on."""
        with self._guard:
            return len(self._lanes)

    def _checkout(self, thread_id: str) -> _Lane:
        with self._guard:
            lane = self._lanes.get(thread_id)
            if lane is None:
                lane = self._lanes[thread_id] = _Lane()
            lane.users += 1
            return lane

    def _checkin(self, thread_id: str, lane: _Lane) -> None:
        with self._guard:
            lane.users -= 1
            if lane.users == 0 and self._lanes.get(thread_id) is lane:
                del self._lanes[thread_id]

    @contextmanager
    def lane(self, thread_id: str, timeout: float | None = None) -> Iterator[None]:
        """Hold the thread's lane; raises LaneTimeoutError if ``timeout`` seconds pass first."""
        lane = self._checkout(thread_id)
        try:
            if not lane.lock.acquire(timeout=-1 if timeout is None else max(0.0, timeout)):
                raise LaneTimeoutError(thread_id, timeout or 0.0)
            try:
                yield
            finally:
                lane.lock.release()
        finally:
            self._checkin(thread_id, lane)

    def run(
        self,
        thread_id: str,
        fn: Callable[[], T],
        on_metrics: Callable[[LaneMetrics], None] | None = None,
        timeout: float | None = None,
    ) -> T:
        """Run ``fn`` inside the thread's lane; ``on_metrics`` sees the queue wait and run time."""
        entered = time.monotonic()
        with self.lane(thread_id, timeout=timeout):
            acquired = time.monotonic()
            try:
                return fn()
            finally:
                if on_metrics is not None:
                    released = time.monotonic()
                    on_metrics(
                        LaneMetrics(
                            thread_id=thread_id,
                            wait_ms=(acquired - entered) * 1000.0,
                            run_ms=(released - acquired) * 1000.0,
                        )
                    )


_GLOBAL_THREAD_LANES = ThreadLanes()
