import time
from typing import Dict, Optional

from .state import Session

FIRST_PLACE_POINTS = 5
SECOND_PLACE_POINTS = 2
# Audience-favorite channel; not fed by the judge's ranking
AUDIENCE_FAVORITE_POINTS = 1


def score_round(session: Session, first_place_id: Optional[str], second_place_id: Optional[str],
                audience_favorite_id: Optional[str] = None) -> Dict[str, int]:
    """Apply points for the current round and append it to the round history.

    +5 to the judge's first pick, +2 to the second, +1 to the audience
    favorite when one is supplied. Players who left since are skipped.
    """
    awards = (
        (first_place_id, FIRST_PLACE_POINTS),
        (second_place_id, SECOND_PLACE_POINTS),
        (audience_favorite_id, AUDIENCE_FAVORITE_POINTS),
    )
    points: Dict[str, int] = {}
    for player_id, amount in awards:
        if not player_id:
            continue
        player = session.find_player(player_id)
        if player is None:
            continue
        player.score += amount
        points[player_id] = points.get(player_id, 0) + amount

    summary = {
        'round': session.current_round,
        'judge_id': session.judge_id,
        'sentence_template': session.sentence_template,
        'first_place_id': first_place_id,
        'second_place_id': second_place_id,
        'audience_favorite_id': audience_favorite_id,
        'points': points,
        'contributors': sorted(session.images.keys()),
        'timestamp': time.time(),
    }
    session.round_history.append(summary)
    session.last_results = summary
    return points
