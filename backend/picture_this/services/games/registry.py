"""Live session table keyed by join code.

All mutation of session state, here and in the phase machine, happens inside
:meth:`SessionRegistry.mutation`, which holds the registry's single lock and
publishes the events produced by the step only after the lock is released.
"""

import logging
import random
import string
import threading
import time
from contextlib import contextmanager
from typing import Callable, Dict, List, Optional

from .errors import (
    AlreadyStarted,
    CodeExhausted,
    InvalidConfig,
    PlayerNotFound,
    SessionFull,
    SessionNotFound,
)
from .events import (
    EventBus,
    HostDisconnected,
    PlayerCountChanged,
    SessionCreated,
    SessionEnded,
    SessionEvicted,
)
from .state import Phase, Player, Session

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 6
MAX_CODE_ATTEMPTS = 10

MIN_ROUNDS, MAX_ROUNDS = 1, 20
MIN_PLAYERS, MAX_PLAYERS = 2, 20


class SessionRegistry:

    def __init__(self, events: Optional[EventBus] = None, timeout_minutes: float = 60,
                 rng=None, clock: Callable[[], float] = time.time):
        self.events = events or EventBus()
        self.timeout_minutes = timeout_minutes
        self._rng = rng or random.SystemRandom()
        self._clock = clock
        self._sessions: Dict[str, Session] = {}
        self._live_codes = set()
        self._lock = threading.RLock()
        self._outbox = None
        self._deferred: List[Callable[[], None]] = []
        self._remove_hooks: List[Callable[[Session], None]] = []

    # ---- mutation scope ----

    @contextmanager
    def mutation(self):
        """Serialize one operation against shared session state.

        Nested scopes share the outermost outbox; events go out once the
        outermost scope exits cleanly.
        """
        with self._lock:
            owner = self._outbox is None
            if owner:
                self._outbox = []
                self._deferred = []
            try:
                yield self._outbox
            finally:
                if owner:
                    pending, self._outbox = self._outbox, None
                    deferred, self._deferred = self._deferred, []
        if owner:
            self.events.publish_all(pending)
            for callback in deferred:
                callback()

    def defer(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` once the current mutation scope releases the lock."""
        if self._outbox is None:
            raise RuntimeError('defer() called outside of a mutation scope')
        self._deferred.append(callback)

    def on_remove(self, hook: Callable[[Session], None]) -> None:
        self._remove_hooks.append(hook)

    # ---- codes ----

    def generate_code(self) -> str:
        for _ in range(MAX_CODE_ATTEMPTS):
            code = ''.join(self._rng.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))
            if code not in self._live_codes:
                return code
        raise CodeExhausted(f'Failed to generate a unique code after {MAX_CODE_ATTEMPTS} attempts')

    @property
    def live_codes(self):
        return frozenset(self._live_codes)

    # ---- lookup ----

    def find(self, code: Optional[str]) -> Optional[Session]:
        if not code:
            return None
        return self._sessions.get(code.upper())

    def get(self, code: Optional[str]) -> Session:
        session = self.find(code)
        if session is None:
            raise SessionNotFound(f'Session not found: {code}')
        return session

    def find_by_id(self, session_id: str) -> Optional[Session]:
        for session in self._sessions.values():
            if session.id == session_id:
                return session
        return None

    def all(self) -> List[Session]:
        return list(self._sessions.values())

    def __len__(self):
        return len(self._sessions)

    # ---- lifecycle ----

    def create_session(self, host_id: str, max_rounds: int = 5, max_players: int = 8,
                       host_name: Optional[str] = None, host_avatar: Optional[str] = None) -> Session:
        if not host_id:
            raise InvalidConfig('host_id is required')
        if isinstance(max_rounds, bool) or not isinstance(max_rounds, int) or not MIN_ROUNDS <= max_rounds <= MAX_ROUNDS:
            raise InvalidConfig(f'max_rounds must be between {MIN_ROUNDS} and {MAX_ROUNDS}')
        if isinstance(max_players, bool) or not isinstance(max_players, int) or not MIN_PLAYERS <= max_players <= MAX_PLAYERS:
            raise InvalidConfig(f'max_players must be between {MIN_PLAYERS} and {MAX_PLAYERS}')

        with self.mutation() as outbox:
            code = self.generate_code()
            now = self._clock()
            session = Session(code=code, host_id=host_id, max_rounds=max_rounds, max_players=max_players,
                              created_at=now, last_activity_at=now)
            session.players.append(Player(id=host_id, name=host_name or 'Host', avatar=host_avatar or '🎮',
                                          is_host=True, joined_at=now))
            self._sessions[code] = session
            self._live_codes.add(code)
            outbox.append(SessionCreated(code=code, session_id=session.id))
            outbox.append(PlayerCountChanged(code=code, player_id=host_id, reason='joined',
                                             player_count=1, connected_count=1))
        logger.info(f"[session-create] game={code} host={host_id} rounds={max_rounds} max_players={max_players}")
        return session

    def join(self, code: str, player_id: str, name: Optional[str] = None, avatar: Optional[str] = None) -> Session:
        with self.mutation() as outbox:
            session = self.get(code)
            existing = session.find_player(player_id)
            if existing is not None:
                if not existing.connected:
                    existing.connected = True
                    session.touch(self._clock())
                    outbox.append(self._count_event(session, player_id, 'connected'))
                return session
            if session.phase != Phase.LOBBY:
                raise AlreadyStarted('Cannot join a game that has already started')
            if len(session.players) >= session.max_players:
                raise SessionFull('Session is full')
            now = self._clock()
            session.players.append(Player(id=player_id, name=name or 'Anonymous', avatar=avatar or '🎮', joined_at=now))
            session.touch(now)
            outbox.append(self._count_event(session, player_id, 'joined'))
        logger.info(f"[join] game={session.code} player={player_id} count={len(session.players)}")
        return session

    def leave(self, code: str, player_id: str) -> Player:
        with self.mutation() as outbox:
            session = self.get(code)
            player = session.find_player(player_id)
            if player is None:
                raise PlayerNotFound(f'Player not found: {player_id}')
            session.players.remove(player)
            session.judged_this_cycle.discard(player_id)
            session.touch(self._clock())
            if player.is_host:
                outbox.append(HostDisconnected(code=session.code, host_id=player_id))
            outbox.append(self._count_event(session, player_id, 'left'))
        logger.info(f"[leave] game={session.code} player={player_id} host={player.is_host} count={len(session.players)}")
        return player

    def set_connected(self, code: str, player_id: str, connected: bool) -> Session:
        with self.mutation() as outbox:
            session = self.get(code)
            player = session.find_player(player_id)
            if player is None:
                raise PlayerNotFound(f'Player not found: {player_id}')
            if player.connected == connected:
                return session
            player.connected = connected
            if connected:
                session.touch(self._clock())
            if player.is_host and not connected:
                outbox.append(HostDisconnected(code=session.code, host_id=player_id))
            outbox.append(self._count_event(session, player_id, 'connected' if connected else 'disconnected'))
        return session

    def touch(self, code: str) -> None:
        session = self.find(code)
        if session is not None:
            session.touch(self._clock())

    def remove(self, code: str, reason: str = 'ended') -> Session:
        """Drop a session from the table; observers receive a final snapshot."""
        with self.mutation() as outbox:
            session = self.get(code)
            for hook in self._remove_hooks:
                hook(session)
            del self._sessions[session.code]
            self._live_codes.discard(session.code)
            snapshot = session.to_dict()
            if reason == 'inactive':
                outbox.append(SessionEvicted(code=session.code, snapshot=snapshot))
            else:
                outbox.append(SessionEnded(code=session.code, reason=reason, snapshot=snapshot))
        logger.info(f"[session-remove] game={session.code} reason={reason}")
        return session

    # ---- inactivity sweep ----

    def expired_codes(self, now: Optional[float] = None) -> List[str]:
        now = now if now is not None else self._clock()
        limit = self.timeout_minutes * 60
        return [s.code for s in self.all() if now - s.last_activity_at > limit]

    def sweep(self, now: Optional[float] = None) -> List[str]:
        evicted = []
        with self.mutation():
            for code in self.expired_codes(now):
                self.remove(code, reason='inactive')
                evicted.append(code)
        if evicted:
            logger.info(f"[sweep] evicted={len(evicted)} codes={evicted}")
        return evicted

    def start_sweeper(self, spawn: Callable, sleep: Callable[[float], None], interval_sec: float) -> None:
        def _runner():
            while True:
                sleep(interval_sec)
                try:
                    self.sweep()
                except Exception:
                    logger.exception('[sweep] failed')

        spawn(_runner)
        logger.info(f"[sweep] started interval={interval_sec}s timeout={self.timeout_minutes}min")

    # ---- stats ----

    def statistics(self) -> dict:
        sessions = self.all()
        return {
            'total_active_sessions': len(sessions),
            'lobby_count': sum(1 for s in sessions if s.phase == Phase.LOBBY),
            'in_progress_count': sum(1 for s in sessions if s.is_in_progress()),
            'completed_count': sum(1 for s in sessions if s.phase == Phase.COMPLETED),
            'total_players': sum(len(s.players) for s in sessions),
            'active_codes': sorted(self._live_codes),
        }

    @staticmethod
    def _count_event(session: Session, player_id: str, reason: str) -> PlayerCountChanged:
        return PlayerCountChanged(
            code=session.code,
            player_id=player_id,
            reason=reason,
            player_count=len(session.players),
            connected_count=sum(1 for p in session.players if p.connected),
        )
