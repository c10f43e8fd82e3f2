"""Cancellable countdown owned by an exam session."""

from __future__ import annotations

import math
import time
from collections.abc import Callable
from threading import Lock, Timer
from typing import Protocol


class TimerHandle(Protocol):
    daemon: bool

    def start(self) -> None: ...

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], TimerHandle]


class Countdown:
    """Deadline-based countdown with a scheduled expiry callback.

    The remaining time is derived from a fixed deadline, so it never
    increases while running and cannot be extended by cancel/resume.
    Expiry is claimed exactly once, either by the timer handle firing or by
    a caller noticing the deadline through :meth:`poll`.
    """

    def __init__(
        self,
        total_seconds: int,
        on_expire: Callable[[], None],
        clock: Callable[[], float] = time.monotonic,
        timer_factory: TimerFactory = Timer,
    ) -> None:
        if total_seconds <= 0:
            raise ValueError("Countdown length must be positive.")
        self._total_seconds = total_seconds
        self._on_expire = on_expire
        self._clock = clock
        self._timer_factory = timer_factory
        self._lock = Lock()
        self._deadline: float | None = None
        self._handle: TimerHandle | None = None
        self._frozen_remaining: int | None = None
        self._running = False
        self._expired = False

    @property
    def total_seconds(self) -> int:
        return self._total_seconds

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def expired(self) -> bool:
        return self._expired

    def start(self) -> None:
        with self._lock:
            if self._deadline is not None:
                raise RuntimeError("Countdown has already been started.")
            self._deadline = self._clock() + self._total_seconds
            self._running = True
            self._schedule(self._total_seconds)

    def remaining_seconds(self) -> int:
        with self._lock:
            return self._remaining_locked()

    def poll(self) -> bool:
        """Return True if this call claimed the expiry of a running countdown."""
        with self._lock:
            if not self._running or self._remaining_locked() > 0:
                return False
            return self._claim_locked()

    def cancel(self) -> None:
        """Stop the countdown and release the timer handle. Remaining time is frozen."""
        with self._lock:
            if self._running:
                self._frozen_remaining = self._remaining_locked()
            self._running = False
            self._release_handle()

    def resume(self) -> bool:
        """Restart against the original deadline. Returns False if no time is left."""
        with self._lock:
            if self._deadline is None or self._expired or self._running:
                return self._running
            remaining = self._deadline - self._clock()
            if remaining <= 0:
                self._frozen_remaining = 0
                return False
            self._frozen_remaining = None
            self._running = True
            self._schedule(remaining)
            return True

    def _fire(self) -> None:
        with self._lock:
            claimed = self._running and self._claim_locked()
        if claimed:
            self._on_expire()

    def _claim_locked(self) -> bool:
        if self._expired:
            return False
        self._expired = True
        self._running = False
        self._frozen_remaining = 0
        self._release_handle()
        return True

    def _remaining_locked(self) -> int:
        if self._deadline is None:
            return self._total_seconds
        if self._frozen_remaining is not None and not self._running:
            return self._frozen_remaining
        return max(0, math.ceil(self._deadline - self._clock()))

    def _schedule(self, delay: float) -> None:
        handle = self._timer_factory(delay, self._fire)
        handle.daemon = True
        handle.start()
        self._handle = handle

    def _release_handle(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
