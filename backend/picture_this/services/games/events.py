"""Typed notifications emitted by the engine.

One frozen dataclass per event kind; the socket broadcaster and the
snapshot archiver subscribe through an :class:`EventBus`.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GameEvent:
    code: str
    name = 'game_event'

    def to_payload(self) -> dict:
        payload = asdict(self)
        payload['game_code'] = payload.pop('code')
        return payload


@dataclass(frozen=True)
class SessionCreated(GameEvent):
    session_id: str = ''
    name = 'session_created'


@dataclass(frozen=True)
class PlayerCountChanged(GameEvent):
    player_id: str = ''
    reason: str = ''  # joined | left | connected | disconnected
    player_count: int = 0
    connected_count: int = 0
    name = 'player_count_changed'


@dataclass(frozen=True)
class HostDisconnected(GameEvent):
    host_id: str = ''
    name = 'host_disconnected'


@dataclass(frozen=True)
class PhaseChanged(GameEvent):
    phase: str = ''
    previous_phase: str = ''
    round: int = 0
    judge_id: Optional[str] = None
    sentence_template: Optional[str] = None
    deadline: Optional[float] = None
    reason: str = ''
    name = 'phase_changed'


@dataclass(frozen=True)
class SubmissionProgress(GameEvent):
    submitted: int = 0
    expected: int = 0
    name = 'submission_progress'


@dataclass(frozen=True)
class ImageGenerationStarted(GameEvent):
    round: int = 0
    total: int = 0
    name = 'image_generation_started'


@dataclass(frozen=True)
class ImagesReady(GameEvent):
    round: int = 0
    images: Tuple[dict, ...] = field(default_factory=tuple)
    name = 'images_ready'


@dataclass(frozen=True)
class RankingChanged(GameEvent):
    first_place_id: Optional[str] = None
    second_place_id: Optional[str] = None
    loaded: int = 0
    total: int = 0
    name = 'ranking_changed'


@dataclass(frozen=True)
class RoundResults(GameEvent):
    round: int = 0
    first_place_id: Optional[str] = None
    second_place_id: Optional[str] = None
    points: Tuple[Tuple[str, int], ...] = field(default_factory=tuple)
    standings: Tuple[dict, ...] = field(default_factory=tuple)
    name = 'round_results'

    def to_payload(self) -> dict:
        payload = super().to_payload()
        payload['points'] = dict(self.points)
        return payload


@dataclass(frozen=True)
class GameCompleted(GameEvent):
    standings: Tuple[dict, ...] = field(default_factory=tuple)
    name = 'game_completed'


@dataclass(frozen=True)
class SessionEnded(GameEvent):
    reason: str = 'ended'
    snapshot: dict = field(default_factory=dict, hash=False, compare=False)
    name = 'session_ended'

    def to_payload(self) -> dict:
        return {'game_code': self.code, 'reason': self.reason}


@dataclass(frozen=True)
class SessionEvicted(SessionEnded):
    reason: str = 'inactive'
    name = 'session_evicted'


Subscriber = Callable[[GameEvent], None]


class EventBus:
    def __init__(self):
        self._subscribers: List[Subscriber] = []

    def subscribe(self, handler: Subscriber) -> None:
        self._subscribers.append(handler)

    def clear(self) -> None:
        self._subscribers.clear()

    def publish(self, event: GameEvent) -> None:
        for handler in list(self._subscribers):
            try:
                handler(event)
            except Exception:
                logger.exception(f"[event-error] game={event.code} event={event.name} handler={handler!r}")

    def publish_all(self, events) -> None:
        for event in events:
            self.publish(event)
