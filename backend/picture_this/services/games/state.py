import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set


class Phase(str, Enum):
    LOBBY = 'lobby'
    ROUND_INTRO = 'round_intro'
    CARD_SELECTION = 'card_selection'
    JUDGE_PHASE = 'judge_phase'
    RESULTS = 'results'
    COMPLETED = 'completed'


@dataclass
class Player:
    id: str
    name: str
    avatar: str = '🎮'
    score: int = 0
    connected: bool = True
    is_host: bool = False
    joined_at: float = field(default_factory=time.time)
    hand: List[str] = field(default_factory=list)

    def to_dict(self, include_hand: bool = False):
        data = {
            'id': self.id,
            'name': self.name,
            'avatar': self.avatar,
            'score': self.score,
            'connected': self.connected,
            'is_host': self.is_host,
        }
        if include_hand:
            data['hand'] = list(self.hand)
        return data


@dataclass
class SelectionRecord:
    player_id: str
    cards: List[str]
    art_style: Optional[str] = None
    submitted_at: float = field(default_factory=time.time)

    def to_dict(self):
        return {
            'player_id': self.player_id,
            'cards': list(self.cards),
            'art_style': self.art_style,
            'submitted_at': self.submitted_at,
        }


@dataclass
class ImageResult:
    player_id: str
    round: int
    image_url: str
    completed_sentence: str = ''
    art_style: str = ''
    is_placeholder: bool = False
    error: Optional[str] = None
    attempts: int = 0
    generated_at: float = field(default_factory=time.time)

    def to_dict(self):
        return {
            'player_id': self.player_id,
            'round': self.round,
            'image_url': self.image_url,
            'completed_sentence': self.completed_sentence,
            'art_style': self.art_style,
            'is_placeholder': self.is_placeholder,
            'error': self.error,
            'attempts': self.attempts,
            'generated_at': self.generated_at,
        }


@dataclass
class Session:
    code: str
    host_id: str
    max_rounds: int
    max_players: int
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    players: List[Player] = field(default_factory=list)
    phase: Phase = Phase.LOBBY
    current_round: int = 0
    judge_id: Optional[str] = None
    # Players who have judged in the current rotation cycle
    judged_this_cycle: Set[str] = field(default_factory=set)
    sentence_template: Optional[str] = None
    blank_count: int = 0
    selections: Dict[str, SelectionRecord] = field(default_factory=dict)
    images: Dict[str, ImageResult] = field(default_factory=dict)
    ranking: Optional[object] = None  # JudgeRankingTracker
    deck: Optional[object] = None  # CardDeck
    phase_deadline: Optional[float] = None
    last_results: Optional[dict] = None
    round_history: List[dict] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)
    started_at: Optional[float] = None
    last_activity_at: float = field(default_factory=time.time)

    def touch(self, now: Optional[float] = None) -> None:
        self.last_activity_at = now if now is not None else time.time()

    def find_player(self, player_id: str) -> Optional[Player]:
        for p in self.players:
            if p.id == player_id:
                return p
        return None

    def non_judge_players(self) -> List[Player]:
        return [p for p in self.players if p.id != self.judge_id]

    def is_in_progress(self) -> bool:
        return self.phase not in (Phase.LOBBY, Phase.COMPLETED)

    def standings(self):
        ranked = sorted(self.players, key=lambda p: p.score, reverse=True)
        return [{'id': p.id, 'name': p.name, 'avatar': p.avatar, 'score': p.score} for p in ranked]

    def to_dict(self, viewer_id: Optional[str] = None):
        """Snapshot for clients; only the viewer's own hand is revealed."""
        ranking = self.ranking.to_dict() if self.ranking is not None else None
        return {
            'id': self.id,
            'game_code': self.code,
            'host_id': self.host_id,
            'phase': self.phase.value,
            'current_round': self.current_round,
            'max_rounds': self.max_rounds,
            'max_players': self.max_players,
            'judge_id': self.judge_id,
            'sentence_template': self.sentence_template,
            'blank_count': self.blank_count,
            'players': [p.to_dict(include_hand=(p.id == viewer_id)) for p in self.players],
            'submitted_player_ids': sorted(self.selections.keys()),
            'submission_count': len(self.selections),
            'expected_submissions': len(self.non_judge_players()) if self.judge_id else 0,
            'images': [img.to_dict() for img in self.images.values()],
            'ranking': ranking,
            'phase_deadline': self.phase_deadline,
            'last_results': self.last_results,
            'round_history': list(self.round_history),
            'created_at': self.created_at,
            'started_at': self.started_at,
            'last_activity_at': self.last_activity_at,
        }
