"""Facade over the registry, phase machine, timers and image pipeline.

Every inbound operation runs inside one registry mutation scope, so it sees
and leaves a consistent session; events go out after the scope closes.
"""

import logging
import time
from typing import Callable, Optional

from .errors import NotHost
from .events import EventBus
from .images import ImageClient, ImageGenerationPipeline, RetryPolicy
from .phases import PhaseSettings, PhaseStateMachine
from .registry import SessionRegistry
from .scheduler import TimerScheduler
from .state import Phase, Session

logger = logging.getLogger(__name__)


def run_inline(fn, *args, **kwargs):
    """``spawn`` stand-in that runs the task on the calling thread."""
    fn(*args, **kwargs)


class GameEngine:

    def __init__(self, app=None):
        self.events = EventBus()
        self.registry: Optional[SessionRegistry] = None
        self.timers: Optional[TimerScheduler] = None
        self.pipeline: Optional[ImageGenerationPipeline] = None
        self.machine: Optional[PhaseStateMachine] = None
        if app is not None:
            self.init_app(app)

    def configure(self, spawn: Callable = run_inline, sleep: Callable[[float], None] = time.sleep,
                  image_client=None, settings: Optional[PhaseSettings] = None, auto_fire_timers: bool = True,
                  timer_heartbeat_sec: int = 0, timeout_minutes: float = 60, max_concurrent: int = 2,
                  retry_policy: Optional[RetryPolicy] = None,
                  placeholder_url: str = '/images/placeholder-image-error.png',
                  rng=None, clock: Callable[[], float] = time.time) -> 'GameEngine':
        """Wire up fresh components. Existing sessions and subscribers are discarded."""
        if self.timers is not None:
            self.timers.cancel_all()
        self.events.clear()
        self.registry = SessionRegistry(self.events, timeout_minutes=timeout_minutes, rng=rng, clock=clock)
        self.timers = TimerScheduler(spawn, sleep, auto_fire=auto_fire_timers,
                                     heartbeat_sec=timer_heartbeat_sec, clock=clock)
        self.pipeline = ImageGenerationPipeline(
            image_client, spawn, sleep,
            policy=retry_policy or RetryPolicy(),
            max_concurrent=max_concurrent,
            placeholder_url=placeholder_url,
        )
        self.machine = PhaseStateMachine(self.registry, self.timers, self.pipeline, settings, rng=rng, clock=clock)
        self.registry.on_remove(lambda session: self.timers.cancel(session.id))
        return self

    def init_app(self, app, spawn: Optional[Callable] = None, sleep: Optional[Callable[[float], None]] = None) -> None:
        from picture_this import socketio

        config = app.config
        testing = bool(config.get('TESTING'))
        if spawn is None:
            spawn = run_inline if testing else socketio.start_background_task
        if sleep is None:
            sleep = socketio.sleep
        client = ImageClient(
            api_url=config.get('IMAGE_API_URL'),
            api_key=config.get('IMAGE_API_KEY'),
            model=config.get('IMAGE_MODEL', 'dall-e-2'),
            size=config.get('IMAGE_SIZE', '1024x1024'),
            timeout=config.get('IMAGE_TIMEOUT_SEC', 60),
        )
        self.configure(
            spawn=spawn,
            sleep=sleep,
            image_client=client,
            settings=PhaseSettings.from_config(config),
            # Tests drive timers by hand unless explicitly enabled
            auto_fire_timers=not testing or bool(config.get('ENABLE_SCHEDULER_IN_TESTS')),
            timer_heartbeat_sec=config.get('TIMER_HEARTBEAT_SEC', 0),
            timeout_minutes=config.get('SESSION_TIMEOUT_MIN', 60),
            max_concurrent=config.get('IMAGE_MAX_CONCURRENT', 2),
            retry_policy=RetryPolicy(
                max_attempts=config.get('IMAGE_MAX_ATTEMPTS', 3),
                backoff_base=config.get('IMAGE_BACKOFF_BASE_SEC', 1.0),
            ),
            placeholder_url=config.get('PLACEHOLDER_IMAGE_URL', '/images/placeholder-image-error.png'),
        )
        app.extensions['picture_this'] = self
        if not testing:
            self.registry.start_sweeper(spawn, sleep, config.get('SESSION_SWEEP_INTERVAL_SEC', 300))

    # ---- session lifecycle ----

    def create_session(self, host_id: str, host_name: Optional[str] = None, host_avatar: Optional[str] = None,
                       max_rounds: int = 5, max_players: int = 8) -> Session:
        return self.registry.create_session(host_id, max_rounds=max_rounds, max_players=max_players,
                                            host_name=host_name, host_avatar=host_avatar)

    def join_session(self, code: str, player_id: str, name: Optional[str] = None,
                     avatar: Optional[str] = None) -> Session:
        return self.registry.join(code, player_id, name=name, avatar=avatar)

    def leave_session(self, code: str, player_id: str) -> Optional[Session]:
        """Remove a player; the session goes away with its last player."""
        with self.registry.mutation():
            session = self.registry.get(code)
            player = self.registry.leave(code, player_id)
            if not session.players:
                self.registry.remove(session.code, reason='empty')
                return None
            if player.is_host:
                # Oldest remaining player takes over host controls
                successor = session.players[0]
                successor.is_host = True
                session.host_id = successor.id
                logger.info(f"[host] game={session.code} host left, promoted={successor.id}")
            if session.is_in_progress():
                self.machine.player_left(session, player_id, hand=player.hand)
        return session

    def set_connected(self, code: str, player_id: str, connected: bool) -> Session:
        return self.registry.set_connected(code, player_id, connected)

    def end_session(self, code: str, player_id: Optional[str] = None, reason: str = 'ended') -> Session:
        with self.registry.mutation():
            session = self.registry.get(code)
            if player_id is not None and player_id != session.host_id:
                raise NotHost('Only the host can end the session')
            return self.registry.remove(session.code, reason=reason)

    def sweep(self, now: Optional[float] = None):
        return self.registry.sweep(now)

    # ---- game flow ----

    def start_game(self, code: str, player_id: str) -> Session:
        with self.registry.mutation():
            session = self.registry.get(code)
            self.machine.start_game(session, player_id)
        return session

    def submit_selection(self, code: str, player_id: str, cards, art_style: Optional[str] = None) -> Session:
        with self.registry.mutation():
            session = self.registry.get(code)
            self.machine.submit_selection(session, player_id, cards, art_style)
        return session

    def mark_image_loaded(self, code: str, candidate_id: str, judge_id: Optional[str]) -> bool:
        with self.registry.mutation():
            session = self.registry.get(code)
            all_loaded = self.machine.mark_image_loaded(session, candidate_id, judge_id)
            session.touch()
        return all_loaded

    def select_rank(self, code: str, judge_id: str, slot: str, candidate_id: str) -> Session:
        with self.registry.mutation():
            session = self.registry.get(code)
            self.machine.select_rank(session, judge_id, slot, candidate_id)
            session.touch()
        return session

    def deselect_rank(self, code: str, judge_id: str, slot: str) -> Session:
        with self.registry.mutation():
            session = self.registry.get(code)
            self.machine.deselect_rank(session, judge_id, slot)
            session.touch()
        return session

    def finalize_ranking(self, code: str, judge_id: str) -> Session:
        with self.registry.mutation():
            session = self.registry.get(code)
            self.machine.finalize_ranking(session, judge_id)
        return session

    def submit_judge_ranking(self, code: str, judge_id: str, first_place_id: str,
                             second_place_id: Optional[str] = None) -> Session:
        with self.registry.mutation():
            session = self.registry.get(code)
            self.machine.submit_judge_ranking(session, judge_id, first_place_id, second_place_id)
        return session

    def advance(self, code: str, player_id: str) -> bool:
        """Host skip: expire the current phase timer now."""
        with self.registry.mutation():
            session = self.registry.get(code)
            if player_id != session.host_id:
                raise NotHost('Only the host can advance the game')
            session_id = session.id
            session.touch()
        # Fired outside the scope; the callback opens its own
        fired = self.timers.fire(session_id)
        logger.info(f"[advance] game={code} by={player_id} fired={fired}")
        return fired

    # ---- queries ----

    def snapshot(self, code: str, viewer_id: Optional[str] = None) -> dict:
        with self.registry.mutation():
            session = self.registry.get(code)
            data = session.to_dict(viewer_id=viewer_id)
            data['remaining_sec'] = self.timers.remaining(session.id)
            data['durations'] = {
                Phase.ROUND_INTRO.value: self.machine.settings.round_intro_sec,
                Phase.CARD_SELECTION.value: self.machine.settings.selection_sec,
                Phase.RESULTS.value: self.machine.settings.results_sec,
            }
        return data

    def statistics(self) -> dict:
        with self.registry.mutation():
            stats = self.registry.statistics()
            stats['active_timers'] = self.timers.active_count
            stats['image_queue_length'] = self.pipeline.queue_length
            stats['images_in_flight'] = self.pipeline.in_flight
        return stats
