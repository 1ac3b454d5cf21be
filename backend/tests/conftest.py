import os
import random
import sys
import pytest

# Ensure the backend root (containing the `probe` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from probe import create_app, db, socketio
from probe.models import PlayerIdentity, User
from probe.services.games.archive import JsonFileArchiver
from probe.services.games.cards import NORMAL, get_card
from probe.services.games.engine import GameEngine
from probe.services.games.words import WordValidator


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    ARCHIVE_DIR = None
    MIN_WORD_LENGTH = 3
    OLLAMA_TIMEOUT_SEC = 1.0
    BOT_WORD_HISTORY_PATH = None


class ScriptedDeck:
    """Deals the given card types in order, then plain turns forever."""

    def __init__(self, *card_types):
        self.queue = [get_card(t) for t in card_types]

    def draw(self):
        if self.queue:
            return self.queue.pop(0)
        return get_card(NORMAL)


class StubLLM:
    """Returns canned replies in order; raises any reply that is an exception."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls = []

    def generate(self, model, prompt, options=None, system_prompt=None, timeout=None):
        self.calls.append({'model': model, 'prompt': prompt, 'options': options or {}})
        reply = self.replies.pop(0) if self.replies else ''
        if isinstance(reply, Exception):
            raise reply
        return reply


def ident(user):
    return PlayerIdentity.human(user.id)


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import probe.models  # noqa: F401
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
    if test_client.is_connected('/ws'):
        test_client.disconnect(namespace='/ws')


@pytest.fixture()
def archive_dir(tmp_path):
    return tmp_path / 'games'


@pytest.fixture()
def engine(flask_app, archive_dir):
    eng = GameEngine(
        validator=WordValidator(min_length=3),
        deck=ScriptedDeck(),
        archiver=JsonFileArchiver(archive_dir),
        rng=random.Random(7),
    )
    flask_app.extensions['probe.engine'] = eng
    flask_app.extensions['probe.bot_driver'].engine = eng
    return eng


@pytest.fixture()
def users(flask_app):
    made = [User(username=name) for name in ('alice', 'bob', 'cara', 'dan')]
    db.session.add_all(made)
    db.session.commit()
    return made


@pytest.fixture()
def start_game(engine, users):
    """Create a game for the first len(words) users and submit their words.

    ``paddings`` is an optional list of (front, back) pairs, one per word.
    Returns the room code; the game is ACTIVE with users[0] to play.
    """
    def _start(*words, paddings=None):
        host = users[0]
        room = engine.create_game(host)['room_code']
        for user in users[1:len(words)]:
            engine.join_game(room, user)
        engine.start_game(room, host)
        for idx, word in enumerate(words):
            front, back = paddings[idx] if paddings else (0, 0)
            engine.select_word(room, ident(users[idx]), word, front, back)
        return room
    return _start
