from __future__ import annotations

import logging
import re
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable

from api_errors import GatewayError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    level: str
    message: str
    created_at: float

    def to_dict(self) -> dict:
        return {"level": self.level, "message": self.message, "created_at": self.created_at}


class Notifier:
    """Bounded queue of user-visible notifications (toasts)."""

    MAX_PENDING = 50

    def __init__(self, name: str = "game", clock=time.time):
        self.name = name
        self.clock = clock
        self._lock = threading.Lock()
        self._pending: deque[Notification] = deque(maxlen=self.MAX_PENDING)

    def notify(self, level: str, message: str) -> Notification:
        notification = Notification(level=level, message=message, created_at=self.clock())
        with self._lock:
            self._pending.append(notification)
        log_level = logging.WARNING if level in {"warning", "error"} else logging.INFO
        logger.log(log_level, "[%s] %s: %s", self.name, level, message)
        return notification

    def info(self, message: str) -> Notification:
        return self.notify("info", message)

    def success(self, message: str) -> Notification:
        return self.notify("success", message)

    def warning(self, message: str) -> Notification:
        return self.notify("warning", message)

    def error(self, message: str) -> Notification:
        return self.notify("error", message)

    def peek(self) -> list[Notification]:
        with self._lock:
            return list(self._pending)

    def drain(self) -> list[Notification]:
        with self._lock:
            items = list(self._pending)
            self._pending.clear()
        return items


class ScheduledCall:
    def __init__(self, scheduler: "Scheduler", delay: float, fn: Callable[[], Any]):
        self._scheduler = scheduler
        self._fn = fn
        self.cancelled = False
        self.fired = False
        self._timer = threading.Timer(delay, self._run)
        self._timer.daemon = True

    def start(self) -> None:
        self._timer.start()

    def _run(self) -> None:
        if self.cancelled:
            return
        self.fired = True
        self._scheduler._forget(self)
        try:
            self._fn()
        except Exception:
            logger.exception("Scheduled callback failed")

    def cancel(self) -> None:
        self.cancelled = True
        self._timer.cancel()
        self._scheduler._forget(self)


class Scheduler:
    """Fire-and-forget delayed callbacks on daemon timer threads."""

    def __init__(self):
        self._lock = threading.Lock()
        self._pending: set[ScheduledCall] = set()

    def call_later(self, delay: float, fn: Callable[[], Any]) -> ScheduledCall:
        call = ScheduledCall(self, delay, fn)
        with self._lock:
            self._pending.add(call)
        call.start()
        return call

    def _forget(self, call: ScheduledCall) -> None:
        with self._lock:
            self._pending.discard(call)

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def cancel_all(self) -> None:
        with self._lock:
            calls = list(self._pending)
        for call in calls:
            call.cancel()


class MultiplayerServiceCore:
    """Shared plumbing for the Game Master and player engines."""

    GAME_NAME = "Elephant Puzzle"
    PLAYER_NAME_MAX = 28

    def __init__(self, *, store, notifier: Notifier | None = None, scheduler=None, clock=None):
        self.store = store
        self.clock = clock or time.time
        self.notifier = notifier or Notifier(clock=self.clock)
        self.scheduler = scheduler or Scheduler()
        self._subscriptions = []
        self._scheduled = []

    def _gateway_call(self, label: str, failure_message: str, fn: Callable[[], Any]):
        """Run a store call; on failure log, notify and return (False, None)."""
        try:
            return True, fn()
        except GatewayError as exc:
            logger.warning("%s failed: %s", label, exc)
            self.notifier.error(failure_message)
            return False, None

    def _subscribe(self, collection: str, callback, filters: dict | None = None) -> None:
        self._subscriptions.append(self.store.subscribe(collection, callback, filters))

    def _unsubscribe_all(self) -> None:
        subscriptions, self._subscriptions = self._subscriptions, []
        for subscription in subscriptions:
            subscription.unsubscribe()

    def _schedule(self, delay: float, fn: Callable[[], Any]):
        self._scheduled = [call for call in self._scheduled if not call.fired and not call.cancelled]
        call = self.scheduler.call_later(delay, fn)
        self._scheduled.append(call)
        return call

    def _cancel_scheduled(self) -> None:
        scheduled, self._scheduled = self._scheduled, []
        for call in scheduled:
            call.cancel()

    def close(self) -> None:
        self._unsubscribe_all()
        self._cancel_scheduled()

    @classmethod
    def _sanitize_player_name(cls, player_name: str) -> str:
        collapsed = re.sub(r"\s+", " ", str(player_name or "")).strip()
        return collapsed[: cls.PLAYER_NAME_MAX]
