# assess_core/timing.py
"""Countdown disciplines for a session and the thread that drives them.

``TimingPolicy`` is pure bookkeeping: the owner calls ``tick()`` once per
second. ``IntervalTicker`` is the single background source of those ticks.
"""
from __future__ import annotations
from enum import Enum
from typing import Callable, Optional
import logging
import threading

from .config import TICK_SECONDS

log = logging.getLogger(__name__)


class SessionSignal(str, Enum):
    ADVANCE_ITEM = "ADVANCE_ITEM"
    FORCE_FINALIZE = "FORCE_FINALIZE"


class TimingPolicy:
    """One of three countdowns: ``unbounded``, ``per_item`` or ``total_session``."""

    def __init__(self, mode: str = "unbounded", budget_seconds: int = 0):
        if mode not in ("unbounded", "per_item", "total_session"):
            raise ValueError(f"unknown timing mode: {mode}")
        if mode != "unbounded" and int(budget_seconds) <= 0:
            raise ValueError("timed modes need a positive budget")
        self.mode = mode
        self.budget = int(budget_seconds) if mode != "unbounded" else 0
        self.remaining = self.budget
        self._running = False
        self._expired = False

    @property
    def bounded(self) -> bool:
        return self.mode != "unbounded"

    @property
    def running(self) -> bool:
        return self._running

    @property
    def expired(self) -> bool:
        return self._expired

    def start(self) -> None:
        self.remaining = self.budget
        self._expired = False
        self._running = self.bounded

    def on_item_changed(self) -> bool:
        """Restart a per-item countdown. Returns True when a restart happened."""
        if self.mode != "per_item":
            return False
        self.remaining = self.budget
        self._expired = False
        self._running = True
        return True

    def tick(self) -> int:
        if not self._running:
            return self.remaining
        self.remaining = max(0, self.remaining - 1)
        if self.remaining == 0:
            self._expired = True
            self._running = False
        return self.remaining

    def on_expire(self) -> Optional[SessionSignal]:
        if not self._expired:
            return None
        if self.mode == "per_item":
            return SessionSignal.ADVANCE_ITEM
        if self.mode == "total_session":
            return SessionSignal.FORCE_FINALIZE
        return None

    def cancel(self) -> None:
        self._running = False


class IntervalTicker:
    """Calls ``callback`` every ``interval`` seconds on one daemon thread.

    ``restart()`` drops the partially elapsed interval so the next call comes a
    full interval later; there is never more than one pending wait.
    ``cancel()`` only signals, so it is safe while holding a lock the
    callback needs; ``join()`` waits and must be called without it.
    """

    def __init__(self, callback: Callable[[], object], interval: float = TICK_SECONDS, name: str = "session-ticker"):
        self.callback = callback
        self.interval = float(interval)
        self._stop = threading.Event()
        self._rephase = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    def start(self) -> "IntervalTicker":
        self._thread.start()
        return self

    @property
    def alive(self) -> bool:
        return self._thread.is_alive()

    def restart(self) -> None:
        self._rephase.set()

    def cancel(self) -> None:
        """Ask the thread to exit without waiting for it."""
        self._stop.set()
        self._rephase.set()

    def join(self, timeout: float = 2.0) -> bool:
        if self._thread.is_alive() and threading.current_thread() is not self._thread:
            self._thread.join(timeout)
        return not self._thread.is_alive()

    def stop(self, timeout: float = 2.0) -> None:
        self.cancel()
        self.join(timeout)

    def _run(self) -> None:
        while not self._stop.is_set():
            woke = self._rephase.wait(self.interval)
            if self._stop.is_set():
                break
            if woke:
                self._rephase.clear()
                continue
            try:
                self.callback()
            except Exception:
                log.exception("ticker callback failed; stopping %s", self._thread.name)
                break
