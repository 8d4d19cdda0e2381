"""
Shared fixtures for the tracker tests.

Provides:
- a temporary database path
- factories for Player and Match records with controlled dates
"""

import itertools
from datetime import datetime, timedelta, timezone

import pytest

from models import Match, Player, decide_winner


# Noon UTC keeps every match on the same calendar day in nearby time zones
BASE_DATE = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def db_path(tmp_path):
    """Path to a fresh SQLite file for one test."""
    return str(tmp_path / "tracker.db")


@pytest.fixture
def make_player():
    """Factory for Player records."""
    counter = itertools.count(1)

    def _make(name=None, room_id="room-1", player_id=None):
        n = next(counter)
        return Player(
            id=player_id or f"p{n}",
            room_id=room_id,
            name=name or f"Player {n}",
            created_at=BASE_DATE,
            updated_at=BASE_DATE,
        )

    return _make


@pytest.fixture
def make_match():
    """Factory for Match records.

    ``day`` and ``minute`` offset the match date from BASE_DATE so tests can
    order matches explicitly.
    """
    counter = itertools.count(1)

    def _make(player1, player2, score1, score2, day=0, minute=0, room_id="room-1", match_id=None):
        p1 = player1 if isinstance(player1, str) else player1.id
        p2 = player2 if isinstance(player2, str) else player2.id
        return Match(
            id=match_id or f"m{next(counter)}",
            room_id=room_id,
            player1_id=p1,
            player2_id=p2,
            player1_score=score1,
            player2_score=score2,
            winner_id=decide_winner(p1, p2, score1, score2),
            date=BASE_DATE + timedelta(days=day, minutes=minute),
        )

    return _make
