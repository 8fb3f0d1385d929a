import os
import sys
import random
import pytest

# Ensure the backend root (containing the `picture_this` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from picture_this import create_app, db, socketio
from picture_this.services.games import GameEngine, run_inline
from picture_this.services.games.phases import PhaseSettings


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    # No key: every image request resolves to the placeholder without a network call
    IMAGE_API_URL = 'http://images.invalid/v1/images/generations'
    IMAGE_API_KEY = ''
    PLACEHOLDER_IMAGE_URL = '/images/placeholder-image-error.png'
    CONTROLLER_DEBOUNCE_MS = 0


class FakeImageClient:
    """Image vendor double: succeeds unless told to fail for a player's prompt."""

    def __init__(self, failures=None):
        self.calls = []
        # prompt substring -> list of exceptions raised on successive calls
        self.failures = failures or {}

    def generate(self, prompt, art_style=''):
        self.calls.append(prompt)
        for needle, errors in self.failures.items():
            if needle in prompt and errors:
                raise errors.pop(0)
        return f'https://images.test/{len(self.calls)}.png'


def no_sleep(_seconds):
    return None


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import picture_this.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    try:
        test_client.disconnect(namespace='/ws')
    except Exception:
        pass


@pytest.fixture()
def image_client():
    return FakeImageClient()


@pytest.fixture()
def game_engine(image_client):
    """Engine with hand-driven timers and an inline image pipeline."""
    return GameEngine().configure(
        spawn=run_inline,
        sleep=no_sleep,
        image_client=image_client,
        settings=PhaseSettings(round_intro_sec=5, selection_sec=45, results_sec=5, min_players=2, hand_size=8),
        auto_fire_timers=False,
        rng=random.Random(1234),
    )


@pytest.fixture()
def recorded_events(game_engine):
    events = []
    game_engine.events.subscribe(events.append)
    return events


def make_lobby(engine, players=3, max_rounds=3):
    """Create a session hosted by p1 with ``players`` members; returns the code."""
    session = engine.create_session('p1', host_name='Player 1', max_rounds=max_rounds)
    for i in range(2, players + 1):
        engine.join_session(session.code, f'p{i}', name=f'Player {i}')
    return session.code


def submit_all(engine, code, skip=()):
    """Every non-judge player (except ``skip``) plays the first cards in hand."""
    session = engine.registry.get(code)
    for player in list(session.non_judge_players()):
        if player.id in skip:
            continue
        engine.submit_selection(code, player.id, player.hand[:session.blank_count])


def play_to_judging(engine, code, skip=()):
    session = engine.registry.get(code)
    engine.timers.fire(session.id)  # round_intro -> card_selection
    submit_all(engine, code, skip=skip)
    return session

