import pytest

from picture_this.services.games import selections
from picture_this.services.games.errors import InvalidSelectionShape, JudgeCannotSubmit, PlayerNotInSession
from picture_this.services.games.state import Player, Session


@pytest.fixture()
def session():
    s = Session(code='ABC123', host_id='p1', max_rounds=3, max_players=8)
    s.players = [
        Player(id='p1', name='Judge', is_host=True, hand=['robot', 'pizza']),
        Player(id='p2', name='Two', hand=['dragon', 'kitten', 'laser']),
        Player(id='p3', name='Three', hand=['ghost', 'donut', 'comet']),
    ]
    s.judge_id = 'p1'
    s.blank_count = 2
    return s


def test_records_and_overwrites(session):
    selections.record_selection(session, 'p2', ['dragon', 'kitten'], art_style='cartoon')
    selections.record_selection(session, 'p2', ['kitten', 'laser'])
    assert session.selections['p2'].cards == ['kitten', 'laser']
    assert selections.submission_count(session) == 1
    assert not selections.is_complete(session)

    selections.record_selection(session, 'p3', ['ghost', 'comet'])
    assert selections.is_complete(session)
    assert selections.abstaining_players(session) == []


@pytest.mark.parametrize('cards', [
    'dragon',
    ['dragon'],
    ['dragon', 'kitten', 'laser'],
    ['dragon', 'dragon'],
    ['dragon', ''],
    ['dragon', 'unicorn'],
])
def test_rejects_bad_shapes(session, cards):
    with pytest.raises(InvalidSelectionShape):
        selections.record_selection(session, 'p2', cards)
    assert 'p2' not in session.selections


def test_judge_and_outsiders_cannot_submit(session):
    with pytest.raises(JudgeCannotSubmit):
        selections.record_selection(session, 'p1', ['robot', 'pizza'])
    with pytest.raises(PlayerNotInSession):
        selections.record_selection(session, 'stranger', ['a', 'b'])


def test_abstainers_and_discard(session):
    selections.record_selection(session, 'p2', ['dragon', 'kitten'])
    assert selections.abstaining_players(session) == ['p3']
    selections.discard_selection(session, 'p2')
    assert selections.submission_count(session) == 0
    selections.discard_selection(session, 'p2')


def test_no_eligible_submitters_is_never_complete(session):
    session.players = session.players[:1]
    assert selections.expected_submitters(session) == []
    assert not selections.is_complete(session)


def test_empty_hand_cannot_submit_invented_cards(session):
    session.find_player('p2').hand = []
    with pytest.raises(InvalidSelectionShape):
        selections.record_selection(session, 'p2', ['dragon', 'kitten'])
    assert 'p2' not in session.selections
