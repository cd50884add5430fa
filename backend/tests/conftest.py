"""
Pytest fixtures for PackTrack backend tests.

Provides test database setup, seeded games/bins, and test client.
"""

import pytest

from packtrack import create_app
from packtrack.extensions import db
from packtrack.models import LotteryGame, LotteryBin
from packtrack.time_utils import now_ms


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        # Individual tests switch enforcement on with monkeypatch
        'SCAN_ONLY_ENFORCEMENT': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def game(db_session):
    """$5 game, 150 tickets per pack."""
    game = LotteryGame(code="0033", name="Lucky 7s", price_cents=500, tickets_per_pack=150)
    db_session.add(game)
    db_session.commit()
    return game


@pytest.fixture(scope='function')
def second_game(db_session):
    """$2 game, 50 tickets per pack."""
    game = LotteryGame(code="0044", name="Cash Blast", price_cents=200, tickets_per_pack=50)
    db_session.add(game)
    db_session.commit()
    return game


@pytest.fixture(scope='function')
def bins(db_session):
    """Bins 1-3 for store 1."""
    created = [LotteryBin(store_id=1, bin_number=n, name=f"Bin {n}") for n in (1, 2, 3)]
    db_session.add_all(created)
    db_session.commit()
    return created


def make_barcode(game_code: str, pack_number: str, serial: int, reserved: str = "0" * 10) -> str:
    """24-digit pack scan barcode."""
    return f"{game_code}{pack_number.zfill(7)}{serial:03d}{reserved}"


def scanner_metrics(char_count: int = 24, delay_ms: int = 8, end_ms: int | None = None) -> dict:
    """Client-side metrics for a clean scanner burst ending just now."""
    end = now_ms() if end_ms is None else end_ms
    start = end - delay_ms * (char_count - 1)
    timestamps = [start + i * delay_ms for i in range(char_count)]
    return {
        "keystroke_timestamps": timestamps,
        "input_method": "SCANNER",
        "avg_inter_key_delay_ms": float(delay_ms),
    }
