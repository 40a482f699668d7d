"""
Observability helpers for the Understanding Layer.

Components:
    setup_logging  - rotating log files for the "understanding" logger tree.
    CircuitBreaker - stop calling a failing remote service for a while.
"""

import logging
import os
import threading
import time
from collections import deque
from logging.handlers import RotatingFileHandler
from typing import Callable, Optional

from understanding import config

logger = logging.getLogger(__name__)

ROOT_LOGGER_NAME = "understanding"
_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


# ── Logging setup ────────────────────────────────────────────────────────────

def setup_logging(
    log_dir: Optional[str] = None,
    level: Optional[str] = None,
    console: bool = False,
) -> logging.Logger:
    """
    Configure two rotating log files on the package logger:
        understanding.log         - configured level and above
        understanding_errors.log  - ERROR and above

    Calling it again does not stack duplicate handlers.
    """
    log_dir = log_dir or config.LOG_DIR
    os.makedirs(log_dir, exist_ok=True)

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(getattr(logging, (level or config.LOG_LEVEL).upper(), logging.INFO))

    for handler in list(root.handlers):
        if getattr(handler, "_understanding_managed", False):
            root.removeHandler(handler)
            handler.close()

    fmt = logging.Formatter(_FORMAT)
    for filename, handler_level in (
        ("understanding.log", logging.NOTSET),
        ("understanding_errors.log", logging.ERROR),
    ):
        handler = RotatingFileHandler(
            os.path.join(log_dir, filename),
            maxBytes=config.LOG_MAX_BYTES,
            backupCount=config.LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        handler.setLevel(handler_level)
        handler.setFormatter(fmt)
        handler._understanding_managed = True
        root.addHandler(handler)

    if console:
        stream = logging.StreamHandler()
        stream.setFormatter(fmt)
        stream._understanding_managed = True
        root.addHandler(stream)

    return root


# ── Circuit Breaker ──────────────────────────────────────────────────────────

class CircuitBreaker:
    """
    Keeps classification local while the remote service is failing.

    After *failure_threshold* network or timeout failures within
    *window_seconds* the circuit opens for *recovery_seconds*. Then exactly
    one request is let through (half-open): success closes the circuit,
    failure opens it again. The sync and async classify paths share one
    breaker, so every transition happens under a lock.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = config.REMOTE_FAILURE_THRESHOLD,
        window_seconds: float = config.REMOTE_FAILURE_WINDOW_SECONDS,
        recovery_seconds: float = config.REMOTE_RECOVERY_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.window_seconds = window_seconds
        self.recovery_seconds = recovery_seconds

        self._clock = clock
        self._lock = threading.Lock()
        self._failures: deque = deque()
        self._state = "closed"          # closed | open | half_open
        self._opened_at = 0.0
        self._probe_taken = False

    def _refresh(self, now: float):
        if self._state == "open" and now - self._opened_at >= self.recovery_seconds:
            self._state = "half_open"
            self._probe_taken = False

    @property
    def is_open(self) -> bool:
        """False when a request may go out; a half-open circuit admits one caller."""
        with self._lock:
            self._refresh(self._clock())
            if self._state == "closed":
                return False
            if self._state == "half_open" and not self._probe_taken:
                self._probe_taken = True
                return False
            return True

    @property
    def state(self) -> str:
        with self._lock:
            self._refresh(self._clock())
            return self._state

    def retry_after(self) -> float:
        """Seconds until the next probe is allowed (0 unless open)."""
        with self._lock:
            if self._state != "open":
                return 0.0
            return max(0.0, self.recovery_seconds - (self._clock() - self._opened_at))

    def record_success(self):
        with self._lock:
            if self._state != "closed":
                logger.info("CircuitBreaker[%s]: closed, remote classifier back", self.name)
            self._state = "closed"
            self._probe_taken = False
            self._failures.clear()

    def record_failure(self):
        with self._lock:
            now = self._clock()
            self._failures.append(now)
            cutoff = now - self.window_seconds
            while self._failures and self._failures[0] < cutoff:
                self._failures.popleft()

            if self._state == "half_open":
                self._trip(now, "probe failed")
            elif self._state == "closed" and len(self._failures) >= self.failure_threshold:
                self._trip(now, f"{len(self._failures)} failures in {self.window_seconds:.0f}s")

    def _trip(self, now: float, reason: str):
        self._state = "open"
        self._opened_at = now
        self._probe_taken = False
        logger.warning(
            "CircuitBreaker[%s]: open (%s), local classification only for %.0fs",
            self.name, reason, self.recovery_seconds,
        )
