from __future__ import annotations

import heapq
import threading
import time
from typing import Callable, Dict, List, Optional, Tuple


TimerCallback = Callable[[], None]
# Wraps every timer callback; the engine uses it to serialize timers with decoding
TimerRunner = Callable[[TimerCallback], None]

# Mixxx refuses timers shorter than this
MIN_INTERVAL_MS = 20


def _direct(cb: TimerCallback) -> None:
    cb()


class TimerHost:
    """Host clock that script timers are registered against."""

    runner: TimerRunner = staticmethod(_direct)

    def start_timer(self, interval_ms: float, callback: TimerCallback, one_shot: bool = False) -> int:  # pragma: no cover - interface
        raise NotImplementedError

    def stop_timer(self, timer_id: int) -> bool:  # pragma: no cover - interface
        raise NotImplementedError

    def stop_all(self) -> None:  # pragma: no cover - interface
        raise NotImplementedError


class _Schedule:
    """Deadline heap shared by both timer hosts. Times are in milliseconds."""

    def __init__(self) -> None:
        self._heap: List[Tuple[float, int]] = []
        self._timers: Dict[int, Tuple[float, TimerCallback, bool]] = {}
        self._next_id = 1

    def add(self, now_ms: float, interval_ms: float, callback: TimerCallback, one_shot: bool) -> int:
        tid = self._next_id
        self._next_id += 1
        interval = max(float(MIN_INTERVAL_MS), float(interval_ms))
        self._timers[tid] = (interval, callback, one_shot)
        heapq.heappush(self._heap, (now_ms + interval, tid))
        return tid

    def remove(self, tid: int) -> bool:
        return self._timers.pop(int(tid), None) is not None

    def clear(self) -> None:
        self._timers.clear()
        self._heap.clear()

    def next_deadline(self) -> Optional[float]:
        while self._heap and self._heap[0][1] not in self._timers:
            heapq.heappop(self._heap)
        return self._heap[0][0] if self._heap else None

    def pop_due(self, now_ms: float) -> Optional[Tuple[int, TimerCallback]]:
        """Pop one due timer, rescheduling it if it repeats."""
        due = self.next_deadline()
        if due is None or due > now_ms:
            return None
        _, tid = heapq.heappop(self._heap)
        interval, callback, one_shot = self._timers[tid]
        if one_shot:
            del self._timers[tid]
        else:
            heapq.heappush(self._heap, (due + interval, tid))
        return tid, callback

    def __len__(self) -> int:
        return len(self._timers)


class ThreadTimerHost(TimerHost):
    """Runs script timers on a daemon thread using the monotonic clock."""

    def __init__(self, runner: Optional[TimerRunner] = None, on_error: Optional[Callable[[BaseException], None]] = None):
        self.runner: TimerRunner = runner or _direct
        self.on_error = on_error
        self._sched = _Schedule()
        self._lock = threading.Lock()
        self._wake = threading.Event()
        self._stop = threading.Event()
        self._t: Optional[threading.Thread] = None

    def _now_ms(self) -> float:
        return time.monotonic() * 1000.0

    def start(self) -> None:
        if self._t and self._t.is_alive():
            return
        self._stop.clear()
        self._t = threading.Thread(target=self._run, daemon=True)
        self._t.start()

    def stop(self) -> None:
        self._stop.set()
        self._wake.set()
        if self._t:
            self._t.join(timeout=1.0)

    def start_timer(self, interval_ms: float, callback: TimerCallback, one_shot: bool = False) -> int:
        with self._lock:
            tid = self._sched.add(self._now_ms(), interval_ms, callback, one_shot)
        self.start()
        self._wake.set()
        return tid

    def stop_timer(self, timer_id: int) -> bool:
        with self._lock:
            return self._sched.remove(timer_id)

    def stop_all(self) -> None:
        with self._lock:
            self._sched.clear()

    def _run(self) -> None:
        while not self._stop.is_set():
            with self._lock:
                item = self._sched.pop_due(self._now_ms())
                nxt = self._sched.next_deadline()
            if item is not None:
                _, callback = item
                try:
                    self.runner(callback)
                except Exception as e:
                    if self.on_error:
                        self.on_error(e)
                continue
            self._wake.clear()
            wait_s = 0.05 if nxt is None else max(0.0, (nxt - self._now_ms()) / 1000.0)
            self._wake.wait(timeout=min(0.05, wait_s))


class ManualTimerHost(TimerHost):
    """Timer host driven by explicit advance() calls (tests, offline replay)."""

    def __init__(self, runner: Optional[TimerRunner] = None) -> None:
        self.runner: TimerRunner = runner or _direct
        self.now_ms = 0.0
        self._sched = _Schedule()

    def start_timer(self, interval_ms: float, callback: TimerCallback, one_shot: bool = False) -> int:
        return self._sched.add(self.now_ms, interval_ms, callback, one_shot)

    def stop_timer(self, timer_id: int) -> bool:
        return self._sched.remove(timer_id)

    def stop_all(self) -> None:
        self._sched.clear()

    @property
    def active(self) -> int:
        return len(self._sched)

    def advance(self, ms: float) -> int:
        """Move the clock forward, firing due timers in deadline order. Returns callbacks fired."""
        target = self.now_ms + float(ms)
        fired = 0
        while True:
            due = self._sched.next_deadline()
            if due is None or due > target:
                break
            self.now_ms = due
            item = self._sched.pop_due(due)
            if item is None:
                break
            self.runner(item[1])
            fired += 1
        self.now_ms = target
        return fired
