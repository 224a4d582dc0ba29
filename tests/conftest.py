import os
import sys
import random

import pytest

# 測試用設定：in-memory SQLite、不啟動背景計時器
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["ENABLE_TIMERS"] = "false"

# Ensure the project root (containing main.py / core / services) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

import models  # noqa: E402,F401
from database import Base, build_engine, get_db  # noqa: E402
from core.context import build_game_context, get_game_context  # noqa: E402
from core.ledger import Ledger  # noqa: E402
from main import app  # noqa: E402


class FixedRandom(random.Random):
    """
    Deterministic stand-in for the outcome draws.

    choice() and randint() hand out the queued values in order and fall back
    to the first option / lower bound once the queue is empty.
    """

    def __init__(self, choices=(), ints=()):
        super().__init__(0)
        self.choices = list(choices)
        self.ints = list(ints)

    def choice(self, seq):
        if self.choices:
            return self.choices.pop(0)
        return seq[0]

    def randint(self, a, b):
        if self.ints:
            return self.ints.pop(0)
        return a


def _make_session_factory(database_url):
    engine = build_engine(database_url)
    Base.metadata.create_all(bind=engine)
    return engine, sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def session_factory():
    engine, factory = _make_session_factory("sqlite://")
    yield factory
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def file_session_factory(tmp_path):
    """File-backed SQLite so several threads can hold their own connections."""
    engine, factory = _make_session_factory(f"sqlite:///{tmp_path / 'nexus_test.db'}")
    yield factory
    engine.dispose()


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture()
def rng():
    return FixedRandom()


@pytest.fixture()
def ctx(rng):
    context = build_game_context(rng=rng, enable_timers=False)
    yield context
    context.timers.shutdown()


@pytest.fixture()
def player(db):
    created, _ = Ledger.create_player(db, "Nova")
    return created


@pytest.fixture()
def client(session_factory, ctx):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_game_context] = lambda: ctx
    yield TestClient(app)
    app.dependency_overrides.clear()
