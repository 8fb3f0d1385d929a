import itertools
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class _Timer:
    token: int
    duration: float
    deadline: float
    on_expire: Callable[[str], None]
    label: str = ''


class TimerScheduler:
    """One countdown per session, addressed by session id.

    - ``start`` replaces any timer already running for the session
    - ``cancel`` is idempotent; a cancelled timer never fires
    - expiry fires ``on_expire(session_id)`` exactly once
    - with ``auto_fire=False`` deadlines are tracked but only ``fire`` expires them
    """

    def __init__(self, spawn: Callable, sleep: Callable[[float], None] = time.sleep,
                 auto_fire: bool = True, heartbeat_sec: int = 0, clock: Callable[[], float] = time.time):
        self._spawn = spawn
        self._sleep = sleep
        self._clock = clock
        self.auto_fire = auto_fire
        self.heartbeat_sec = heartbeat_sec
        self._timers: Dict[str, _Timer] = {}
        self._tokens = itertools.count(1)
        self._lock = threading.Lock()

    def start(self, session_id: str, duration: float, on_expire: Callable[[str], None], label: str = '') -> float:
        with self._lock:
            token = next(self._tokens)
            deadline = self._clock() + duration
            replaced = self._timers.get(session_id)
            self._timers[session_id] = _Timer(token, duration, deadline, on_expire, label)
        if replaced is not None:
            logger.info(f"[timer-replace] game={session_id} old={replaced.label} new={label}")
        logger.info(f"[timer-set] game={session_id} {label} duration={duration}s deadline={deadline}")
        if self.auto_fire:
            self._spawn(self._worker, session_id, token, duration)
        return deadline

    def cancel(self, session_id: str) -> bool:
        with self._lock:
            timer = self._timers.pop(session_id, None)
        if timer is not None:
            logger.info(f"[timer-cancel] game={session_id} {timer.label}")
        return timer is not None

    def cancel_all(self) -> None:
        with self._lock:
            self._timers.clear()

    def fire(self, session_id: str) -> bool:
        """Expire the session's pending timer now. Returns False if none is pending."""
        with self._lock:
            timer = self._timers.get(session_id)
            token = timer.token if timer else None
        if token is None:
            return False
        return self._expire(session_id, token)

    def has_timer(self, session_id: str) -> bool:
        return session_id in self._timers

    def deadline(self, session_id: str) -> Optional[float]:
        timer = self._timers.get(session_id)
        return timer.deadline if timer else None

    def remaining(self, session_id: str) -> float:
        timer = self._timers.get(session_id)
        if not timer:
            return 0.0
        return max(0.0, timer.deadline - self._clock())

    @property
    def active_count(self) -> int:
        return len(self._timers)

    def _is_current(self, session_id: str, token: int) -> bool:
        timer = self._timers.get(session_id)
        return timer is not None and timer.token == token

    def _worker(self, session_id: str, token: int, delay: float) -> None:
        hb = self.heartbeat_sec
        if hb and hb > 0:
            slept = 0.0
            while slept < delay:
                step = min(hb, delay - slept)
                self._sleep(step)
                slept += step
                if not self._is_current(session_id, token):
                    logger.info(f"[timer-abort] game={session_id} cancelled while sleeping")
                    return
                logger.info(f"[timer-heartbeat] game={session_id} remaining={max(0, delay - slept)}s")
        else:
            self._sleep(delay)
        self._expire(session_id, token)

    def _expire(self, session_id: str, token: int) -> bool:
        with self._lock:
            if not self._is_current(session_id, token):
                logger.info(f"[timer-abort] game={session_id} token={token} superseded or cancelled")
                return False
            timer = self._timers.pop(session_id)
        logger.info(f"[timer-fire] game={session_id} {timer.label}")
        try:
            timer.on_expire(session_id)
        except Exception:
            logger.exception(f"[timer-error] game={session_id} {timer.label}")
        return True
