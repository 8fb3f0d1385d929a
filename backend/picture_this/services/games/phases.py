"""Round pipeline: lobby -> round_intro -> card_selection -> judge_phase -> results.

Every method that mutates a session expects the caller to hold
:meth:`SessionRegistry.mutation`; timer and image callbacks open their own
scope and re-check the phase and round they were armed for before acting.
"""

import logging
import random
import time
from dataclasses import dataclass
from functools import partial
from typing import Dict, FrozenSet, List, Optional, Sequence

from .content import NOUN_CARDS, SENTENCE_TEMPLATES, CardDeck, draw_template, format_image_prompt
from .errors import (
    AlreadyStarted,
    InvalidConfig,
    InvalidTransition,
    NotEnoughPlayers,
    NotHost,
    NotJudge,
    NotReady,
    WrongPhase,
)
from .events import (
    GameCompleted,
    ImageGenerationStarted,
    ImagesReady,
    PhaseChanged,
    RankingChanged,
    RoundResults,
    SubmissionProgress,
)
from .images import ImageRequest
from .judging import JudgeRankingTracker
from .scoring import score_round
from .selections import (
    abstaining_players,
    clear_selections,
    discard_selection,
    expected_submitters,
    is_complete,
    record_selection,
    submission_count,
)
from .state import ImageResult, Phase, Session

logger = logging.getLogger(__name__)

TRANSITIONS: Dict[Phase, FrozenSet[Phase]] = {
    Phase.LOBBY: frozenset({Phase.ROUND_INTRO}),
    Phase.ROUND_INTRO: frozenset({Phase.CARD_SELECTION}),
    Phase.CARD_SELECTION: frozenset({Phase.JUDGE_PHASE}),
    Phase.JUDGE_PHASE: frozenset({Phase.RESULTS}),
    Phase.RESULTS: frozenset({Phase.ROUND_INTRO, Phase.COMPLETED}),
    Phase.COMPLETED: frozenset(),
}


def can_transition(source: Phase, target: Phase) -> bool:
    return target in TRANSITIONS.get(source, frozenset())


@dataclass
class PhaseSettings:
    round_intro_sec: float = 5
    selection_sec: float = 45
    results_sec: float = 5
    min_players: int = 2
    hand_size: int = 8
    prompt_max_chars: int = 1000

    @classmethod
    def from_config(cls, config) -> 'PhaseSettings':
        return cls(
            round_intro_sec=config.get('ROUND_INTRO_DURATION_SEC', 5),
            selection_sec=config.get('SELECTION_DURATION_SEC', 45),
            results_sec=config.get('RESULTS_DURATION_SEC', 5),
            min_players=config.get('MIN_PLAYERS', 2),
            hand_size=config.get('HAND_SIZE', 8),
            prompt_max_chars=config.get('IMAGE_PROMPT_MAX_CHARS', 1000),
        )


class PhaseStateMachine:

    def __init__(self, registry, timers, pipeline, settings: Optional[PhaseSettings] = None,
                 rng=None, templates: Sequence[str] = SENTENCE_TEMPLATES, cards: Sequence[str] = NOUN_CARDS,
                 clock=time.time):
        self.registry = registry
        self.timers = timers
        self.pipeline = pipeline
        self.settings = settings or PhaseSettings()
        self._rng = rng or random.Random()
        self._templates = list(templates)
        self._cards = list(cards)
        self._clock = clock

    # ---- transitions ----

    def transition(self, session: Session, target: Phase, reason: str = '', **entry_args) -> Phase:
        """Move ``session`` to ``target`` and run its entry actions.

        Raises :class:`InvalidTransition` (leaving the phase untouched) for
        any edge outside :data:`TRANSITIONS`. Entering ``round_intro`` past
        the last round lands on ``completed`` instead.
        """
        source = session.phase
        if not can_transition(source, target):
            raise InvalidTransition(source, target)
        if target == Phase.ROUND_INTRO and session.current_round >= session.max_rounds:
            target = Phase.COMPLETED
            reason = reason or 'max_rounds'

        # Any pending countdown belongs to the phase being left
        self.timers.cancel(session.id)
        session.phase = target
        session.phase_deadline = None
        session.touch(self._clock())

        with self.registry.mutation() as outbox:
            mark = len(outbox)
            entry = {
                Phase.ROUND_INTRO: self._enter_round_intro,
                Phase.CARD_SELECTION: self._enter_card_selection,
                Phase.JUDGE_PHASE: self._enter_judge_phase,
                Phase.RESULTS: self._enter_results,
                Phase.COMPLETED: self._enter_completed,
            }[target]
            entry(session, outbox, **entry_args)
            outbox.insert(mark, PhaseChanged(
                code=session.code,
                phase=target.value,
                previous_phase=source.value,
                round=session.current_round,
                judge_id=session.judge_id,
                sentence_template=session.sentence_template,
                deadline=session.phase_deadline,
                reason=reason,
            ))
        logger.info(
            f"[phase] game={session.code} from={source.value} to={target.value} round={session.current_round} reason={reason}"
        )
        return target

    def _arm_timer(self, session: Session, duration: float) -> None:
        callback = partial(self._on_timer, session.phase, session.current_round)
        label = f"phase={session.phase.value} round={session.current_round}"
        session.phase_deadline = self.timers.start(session.id, duration, callback, label=label)

    def _on_timer(self, expected_phase: Phase, expected_round: int, session_id: str) -> None:
        with self.registry.mutation():
            session = self.registry.find_by_id(session_id)
            if session is None:
                logger.info(f"[timer-abort] game={session_id} session gone")
                return
            if session.phase != expected_phase or session.current_round != expected_round:
                logger.info(
                    f"[timer-abort] game={session.code} expected={expected_phase.value}/{expected_round} "
                    f"actual={session.phase.value}/{session.current_round}"
                )
                return
            if expected_phase == Phase.ROUND_INTRO:
                self.transition(session, Phase.CARD_SELECTION, 'timer')
            elif expected_phase == Phase.CARD_SELECTION:
                abstained = abstaining_players(session)
                if abstained:
                    logger.info(f"[selection] game={session.code} round={session.current_round} abstained={abstained}")
                self.transition(session, Phase.JUDGE_PHASE, 'timer')
            elif expected_phase == Phase.RESULTS:
                self.advance_after_results(session, 'timer')

    # ---- entry actions ----

    def _enter_round_intro(self, session: Session, outbox: List) -> None:
        session.current_round += 1
        session.judge_id = self.pick_judge(session)
        session.sentence_template, session.blank_count = draw_template(self._templates, self._rng)
        clear_selections(session)
        session.images = {}
        session.ranking = None
        session.last_results = None
        self._refill_hands(session)
        self._arm_timer(session, self.settings.round_intro_sec)

    def _enter_card_selection(self, session: Session, outbox: List) -> None:
        self._arm_timer(session, self.settings.selection_sec)
        outbox.append(SubmissionProgress(code=session.code, submitted=0,
                                         expected=len(expected_submitters(session))))

    def _enter_judge_phase(self, session: Session, outbox: List) -> None:
        # Only players still present who submitted contribute; abstainers are skipped
        contributors = [pid for pid in expected_submitters(session) if pid in session.selections]
        image_requests = []
        for pid in contributors:
            record = session.selections[pid]
            prompt, sentence, style = format_image_prompt(
                session.sentence_template, record.cards, record.art_style, self.settings.prompt_max_chars
            )
            image_requests.append(ImageRequest(
                game_code=session.code,
                round=session.current_round,
                player_id=pid,
                prompt=prompt,
                art_style=style,
                completed_sentence=sentence,
            ))
        session.images = {}
        session.ranking = None
        outbox.append(ImageGenerationStarted(code=session.code, round=session.current_round,
                                             total=len(image_requests)))
        on_complete = partial(self._on_images_ready, session.id, session.current_round)
        self.registry.defer(partial(self.pipeline.submit_batch, image_requests, on_complete))

    def _enter_results(self, session: Session, outbox: List,
                       first_place_id: Optional[str] = None, second_place_id: Optional[str] = None) -> None:
        points = score_round(session, first_place_id, second_place_id)
        if session.deck is not None:
            for pid, record in session.selections.items():
                player = session.find_player(pid)
                if player is None:
                    continue
                player.hand = [c for c in player.hand if c not in record.cards]
                session.deck.discard(record.cards)
        outbox.append(RoundResults(
            code=session.code,
            round=session.current_round,
            first_place_id=first_place_id,
            second_place_id=second_place_id,
            points=tuple(points.items()),
            standings=tuple(session.standings()),
        ))
        logger.info(
            f"[results] game={session.code} round={session.current_round} first={first_place_id} "
            f"second={second_place_id} points={points}"
        )
        self._arm_timer(session, self.settings.results_sec)

    def _enter_completed(self, session: Session, outbox: List) -> None:
        session.ranking = None
        outbox.append(GameCompleted(code=session.code, standings=tuple(session.standings())))
        logger.info(f"[game-complete] game={session.code} rounds={session.current_round}")

    # ---- judge rotation ----

    def pick_judge(self, session: Session) -> Optional[str]:
        """Uniformly pick someone who has not judged yet this cycle.

        Once everyone has judged the cycle resets; the outgoing judge sits
        the next pick out so nobody judges twice in a row.
        """
        if not session.players:
            return None
        pool = [p.id for p in session.players if p.id not in session.judged_this_cycle]
        if not pool:
            session.judged_this_cycle.clear()
            pool = [p.id for p in session.players if p.id != session.judge_id] or [p.id for p in session.players]
        judge_id = self._rng.choice(pool)
        session.judged_this_cycle.add(judge_id)
        logger.info(f"[judge] game={session.code} round={session.current_round} judge={judge_id} pool={len(pool)}")
        return judge_id

    # ---- cards ----

    def _refill_hands(self, session: Session) -> None:
        if session.deck is None:
            session.deck = CardDeck(self._cards, rng=self._rng)
        for player in session.players:
            player.hand = session.deck.refill(player.hand, self.settings.hand_size)

    # ---- operations (caller holds the registry mutation scope) ----

    def start_game(self, session: Session, requester_id: str) -> None:
        if session.phase != Phase.LOBBY:
            raise AlreadyStarted('Game has already started')
        if requester_id != session.host_id:
            raise NotHost('Only the host can start the game')
        if len(session.players) < self.settings.min_players:
            raise NotEnoughPlayers(
                f'Need at least {self.settings.min_players} players to start',
                players=len(session.players),
            )
        needed = len(session.players) * self.settings.hand_size
        if len(self._cards) < needed:
            raise InvalidConfig(
                f'Deck of {len(self._cards)} cards cannot deal {self.settings.hand_size} to {len(session.players)} players',
                deck=len(self._cards), needed=needed,
            )
        session.started_at = self._clock()
        self.transition(session, Phase.ROUND_INTRO, 'game_started')

    def submit_selection(self, session: Session, player_id: str, cards, art_style: Optional[str] = None) -> None:
        if session.phase != Phase.CARD_SELECTION:
            raise WrongPhase(f'Selections are closed during {session.phase.value}', phase=session.phase.value)
        record_selection(session, player_id, cards, art_style, now=self._clock())
        session.touch(self._clock())
        with self.registry.mutation() as outbox:
            outbox.append(SubmissionProgress(code=session.code, submitted=submission_count(session),
                                             expected=len(expected_submitters(session))))
        logger.info(
            f"[selection] game={session.code} round={session.current_round} player={player_id} "
            f"submitted={submission_count(session)}/{len(expected_submitters(session))}"
        )
        if is_complete(session):
            self.transition(session, Phase.JUDGE_PHASE, 'all_submitted')

    def _on_images_ready(self, session_id: str, expected_round: int, results: List[ImageResult]) -> None:
        with self.registry.mutation() as outbox:
            session = self.registry.find_by_id(session_id)
            if session is None or session.phase != Phase.JUDGE_PHASE or session.current_round != expected_round:
                logger.info(f"[image-batch] session={session_id} round={expected_round} stale, dropping results")
                return
            session.images = {r.player_id: r for r in results}
            session.ranking = JudgeRankingTracker(r.player_id for r in results)
            outbox.append(ImagesReady(code=session.code, round=session.current_round,
                                      images=tuple(r.to_dict() for r in results)))
            if not results:
                self.close_round(session, 'no_submissions')
            elif session.find_player(session.judge_id) is None:
                self.close_round(session, 'judge_left')

    def _require_ranking(self, session: Session, judge_id: str) -> JudgeRankingTracker:
        if session.phase != Phase.JUDGE_PHASE:
            raise WrongPhase(f'Judging is closed during {session.phase.value}', phase=session.phase.value)
        if not judge_id or judge_id != session.judge_id:
            raise NotJudge('Only the judge can rank images')
        if session.ranking is None:
            raise NotReady('Images are still generating')
        return session.ranking

    def _ranking_event(self, session: Session) -> RankingChanged:
        tracker = session.ranking
        return RankingChanged(
            code=session.code,
            first_place_id=tracker.first_place,
            second_place_id=tracker.second_place,
            loaded=len(tracker.loaded),
            total=len(tracker.candidates),
        )

    def mark_image_loaded(self, session: Session, player_id: str, judge_id: Optional[str]) -> bool:
        """Judge's client reports one image rendered; returns True once all have."""
        tracker = self._require_ranking(session, judge_id)
        all_loaded = tracker.mark_loaded(player_id)
        with self.registry.mutation() as outbox:
            outbox.append(self._ranking_event(session))
        return all_loaded

    def select_rank(self, session: Session, judge_id: str, slot: str, player_id: str) -> None:
        tracker = self._require_ranking(session, judge_id)
        tracker.select(slot, player_id)
        with self.registry.mutation() as outbox:
            outbox.append(self._ranking_event(session))

    def deselect_rank(self, session: Session, judge_id: str, slot: str) -> None:
        tracker = self._require_ranking(session, judge_id)
        tracker.deselect(slot)
        with self.registry.mutation() as outbox:
            outbox.append(self._ranking_event(session))

    def finalize_ranking(self, session: Session, judge_id: str) -> None:
        tracker = self._require_ranking(session, judge_id)
        first, second = tracker.finalize()
        self.transition(session, Phase.RESULTS, 'judged', first_place_id=first, second_place_id=second)

    def submit_judge_ranking(self, session: Session, judge_id: str, first_place_id: str,
                             second_place_id: Optional[str] = None) -> None:
        tracker = self._require_ranking(session, judge_id)
        tracker.assign(first_place_id, second_place_id)
        self.finalize_ranking(session, judge_id)

    def close_round(self, session: Session, reason: str) -> None:
        """Leave judging with no winners (no candidates, or the judge is gone)."""
        logger.info(f"[judge] game={session.code} round={session.current_round} closing without winners reason={reason}")
        self.transition(session, Phase.RESULTS, reason)

    def advance_after_results(self, session: Session, reason: str = '') -> Phase:
        if session.phase != Phase.RESULTS:
            raise WrongPhase(f'Cannot leave results during {session.phase.value}', phase=session.phase.value)
        if session.current_round >= session.max_rounds:
            return self.transition(session, Phase.COMPLETED, reason or 'max_rounds')
        if len(session.players) < self.settings.min_players:
            return self.transition(session, Phase.COMPLETED, 'not_enough_players')
        return self.transition(session, Phase.ROUND_INTRO, reason)

    # ---- departures ----

    def player_left(self, session: Session, player_id: str, hand: Sequence[str] = ()) -> None:
        """Reconcile round state after ``player_id`` was removed from ``session``."""
        if session.deck is not None and hand:
            session.deck.discard(hand)
        if session.phase == Phase.CARD_SELECTION:
            discard_selection(session, player_id)
            with self.registry.mutation() as outbox:
                outbox.append(SubmissionProgress(code=session.code, submitted=submission_count(session),
                                                 expected=len(expected_submitters(session))))
            if is_complete(session) or len(session.players) < self.settings.min_players:
                self.transition(session, Phase.JUDGE_PHASE, 'all_submitted')
        elif session.phase == Phase.JUDGE_PHASE and player_id == session.judge_id and session.ranking is not None:
            self.close_round(session, 'judge_left')

