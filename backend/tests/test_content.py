import random

import pytest

from picture_this.services.games.content import (
    BLANK,
    DEFAULT_ART_STYLE,
    SENTENCE_TEMPLATES,
    CardDeck,
    complete_sentence,
    count_blanks,
    draw_template,
    format_image_prompt,
)
from picture_this.services.games.scoring import score_round
from picture_this.services.games.state import ImageResult, Player, Session


def test_every_template_has_a_blank():
    assert all(count_blanks(t) >= 1 for t in SENTENCE_TEMPLATES)
    template, blanks = draw_template(rng=random.Random(3))
    assert template in SENTENCE_TEMPLATES
    assert blanks == template.count(BLANK)


def test_complete_sentence_fills_left_to_right():
    template = f'{BLANK} meets {BLANK} in an epic battle!'
    assert complete_sentence(template, ['robot', 'pizza']) == 'robot meets pizza in an epic battle!'
    with pytest.raises(ValueError):
        complete_sentence(template, ['robot'])
    with pytest.raises(ValueError):
        complete_sentence('No blanks here', ['robot'])


def test_prompt_uses_style_and_truncates():
    template = f'A wild {BLANK} appeared!'
    prompt, sentence, style = format_image_prompt(template, ['dragon'], 'cartoon')
    assert sentence == 'A wild dragon appeared!'
    assert style == 'cartoon'
    assert sentence in prompt and 'cartoon' in prompt

    prompt, _, style = format_image_prompt(template, ['dragon'], 'vaporwave', max_chars=50)
    assert style == DEFAULT_ART_STYLE
    assert len(prompt) == 50


def test_deck_refills_hands_and_reshuffles_discards():
    deck = CardDeck(['a', 'b', 'c', 'd'], rng=random.Random(1))
    hand = deck.refill([], 3)
    assert len(hand) == 3
    assert deck.refill(hand, 3) == hand
    played = hand[:2]
    deck.discard(played)
    hand = deck.refill(hand[2:], 3)
    assert len(hand) == 3
    assert deck.remaining == 1
    assert len(set(hand)) == 3


def test_score_round_awards_and_records():
    session = Session(code='ABC123', host_id='p1', max_rounds=3, max_players=8)
    session.players = [Player(id='p1', name='A'), Player(id='p2', name='B'), Player(id='p3', name='C')]
    session.current_round = 2
    session.judge_id = 'p1'
    session.images = {'p2': ImageResult('p2', 2, 'u2'), 'p3': ImageResult('p3', 2, 'u3')}

    points = score_round(session, 'p3', 'gone', audience_favorite_id='p2')
    assert points == {'p3': 5, 'p2': 1}
    assert [p.score for p in session.players] == [0, 1, 5]
    assert session.last_results['round'] == 2
    assert session.round_history[-1]['contributors'] == ['p2', 'p3']
    assert session.standings()[0]['id'] == 'p3'
