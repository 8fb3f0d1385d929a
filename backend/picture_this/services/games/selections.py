"""Per-round card selection bookkeeping.

Holds no timing logic; the phase machine polls :func:`is_complete` after
each submission and closes the window on timer expiry.
"""

from typing import List, Optional, Sequence

from .errors import InvalidSelectionShape, JudgeCannotSubmit, PlayerNotInSession
from .state import Session, SelectionRecord


def record_selection(session: Session, player_id: str, cards: Sequence[str],
                     art_style: Optional[str] = None, now: Optional[float] = None) -> SelectionRecord:
    """Record (or overwrite) a player's cards for the active round.

    One card per blank, all distinct, all taken from the player's hand.
    """
    player = session.find_player(player_id)
    if player is None:
        raise PlayerNotInSession(f'Player {player_id} is not in session {session.code}')
    if player_id == session.judge_id:
        raise JudgeCannotSubmit('The judge cannot submit card selections')
    if isinstance(cards, str) or not isinstance(cards, (list, tuple)):
        raise InvalidSelectionShape('Selections must be a list of cards')
    cards = list(cards)
    if len(cards) != session.blank_count:
        raise InvalidSelectionShape(
            f'Expected {session.blank_count} card(s), got {len(cards)}',
            expected=session.blank_count,
        )
    if any(not isinstance(c, str) or not c.strip() for c in cards):
        raise InvalidSelectionShape('Cards must be non-empty strings')
    if len(set(cards)) != len(cards):
        raise InvalidSelectionShape('Cannot select the same card twice')
    missing = [c for c in cards if c not in player.hand]
    if missing:
        raise InvalidSelectionShape(f'Card(s) not in hand: {", ".join(missing)}')

    record = SelectionRecord(player_id=player_id, cards=cards, art_style=art_style)
    if now is not None:
        record.submitted_at = now
    session.selections[player_id] = record
    return record


def expected_submitters(session: Session) -> List[str]:
    return [p.id for p in session.non_judge_players()]


def submission_count(session: Session) -> int:
    eligible = set(expected_submitters(session))
    return len(eligible.intersection(session.selections))


def is_complete(session: Session) -> bool:
    expected = expected_submitters(session)
    return bool(expected) and submission_count(session) == len(expected)


def abstaining_players(session: Session) -> List[str]:
    return [pid for pid in expected_submitters(session) if pid not in session.selections]


def discard_selection(session: Session, player_id: str) -> None:
    session.selections.pop(player_id, None)


def clear_selections(session: Session) -> None:
    session.selections = {}
