"""The judge's first/second place picks over one round's images."""

import time
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .errors import DuplicateAssignment, IncompleteRanking, NotReady, StateError, UnknownCandidate, UnknownSlot

FIRST = 'first'
SECOND = 'second'


class JudgeRankingTracker:
    """Two-slot ranking over one candidate image per contributing player.

    A candidate may hold at most one slot. Re-selecting a slot replaces its
    holder. With a single candidate only the first slot is required.
    """

    def __init__(self, candidate_ids: Iterable[str]):
        self.candidates: List[str] = list(dict.fromkeys(candidate_ids))
        self.loaded: Set[str] = set()
        self.slots: Dict[str, Optional[str]] = {FIRST: None, SECOND: None}
        self.history: List[dict] = []
        self.finalized: Optional[Tuple[Optional[str], Optional[str]]] = None

    @property
    def first_place(self) -> Optional[str]:
        return self.slots[FIRST]

    @property
    def second_place(self) -> Optional[str]:
        return self.slots[SECOND]

    @property
    def required_slots(self) -> int:
        return min(2, len(self.candidates))

    def mark_loaded(self, player_id: str) -> bool:
        if player_id not in self.candidates:
            raise UnknownCandidate(f'No image for player {player_id}')
        self.loaded.add(player_id)
        return self.all_loaded()

    def all_loaded(self) -> bool:
        return len(self.loaded) == len(self.candidates)

    def select_first(self, player_id: str) -> None:
        self._select(FIRST, SECOND, player_id)

    def select_second(self, player_id: str) -> None:
        self._select(SECOND, FIRST, player_id)

    def select(self, slot: str, player_id: str) -> None:
        if slot == FIRST:
            self.select_first(player_id)
        elif slot == SECOND:
            self.select_second(player_id)
        else:
            raise UnknownSlot(f'Unknown rank slot {slot!r}')

    def assign(self, first_place_id: str, second_place_id: Optional[str] = None) -> None:
        """Set a complete ranking at once; on any rejection neither slot changes."""
        self._ensure_open()
        if not self.all_loaded():
            raise NotReady('Cannot rank until every image has loaded')
        for pid in (first_place_id, second_place_id):
            if pid is not None and pid not in self.candidates:
                raise UnknownCandidate(f'No image for player {pid}')
        if first_place_id is not None and first_place_id == second_place_id:
            raise DuplicateAssignment(f'Player {first_place_id} cannot hold both places')
        proposed = {FIRST: first_place_id, SECOND: second_place_id}
        if any(proposed[s] is None for s in (FIRST, SECOND)[:self.required_slots]):
            raise IncompleteRanking('Both first and second place must be selected')

        now = time.time()
        for slot in (FIRST, SECOND):
            pid = proposed[slot]
            if pid is not None and self.slots[slot] != pid:
                self.history.append({'slot': slot, 'player_id': pid, 'at': now})
        self.slots = proposed

    def deselect(self, slot: str) -> None:
        self._ensure_open()
        if slot not in self.slots:
            raise UnknownSlot(f'Unknown rank slot {slot!r}')
        self.slots[slot] = None

    def _select(self, slot: str, other: str, player_id: str) -> None:
        self._ensure_open()
        if not self.all_loaded():
            raise NotReady('Cannot rank until every image has loaded')
        if player_id not in self.candidates:
            raise UnknownCandidate(f'No image for player {player_id}')
        if self.slots[other] == player_id:
            raise DuplicateAssignment(f'Player {player_id} already holds {other} place')
        if self.slots[slot] != player_id:
            self.history.append({'slot': slot, 'player_id': player_id, 'at': time.time()})
        self.slots[slot] = player_id

    def _ensure_open(self) -> None:
        if self.finalized is not None:
            raise StateError('Ranking already finalized')

    def is_complete(self) -> bool:
        filled = [s for s in (FIRST, SECOND)[:self.required_slots] if self.slots[s] is not None]
        return len(filled) == self.required_slots

    def finalize(self) -> Tuple[Optional[str], Optional[str]]:
        """Commit the ranking; the pair is handed out exactly once."""
        self._ensure_open()
        if self.required_slots == 0 or not self.is_complete():
            raise IncompleteRanking('Both first and second place must be selected')
        self.finalized = (self.slots[FIRST], self.slots[SECOND])
        return self.finalized

    def to_dict(self):
        return {
            'candidates': list(self.candidates),
            'loaded': sorted(self.loaded),
            'all_loaded': self.all_loaded(),
            'first_place_id': self.slots[FIRST],
            'second_place_id': self.slots[SECOND],
            'is_complete': self.is_complete(),
            'finalized': self.finalized is not None,
        }
