"""Statistics calculations for Ping Pong Match Tracker.

Everything here is a pure function over snapshots of players and matches
handed in by the caller. Nothing reads the database, and empty or missing
input produces zero-valued statistics instead of errors.
"""

import math
from datetime import tzinfo
from typing import Iterable, Optional

from config import DEFAULT_ACTIVITY_DAYS
from models import (
    Match, Player, PlayerStats, PlayerHighlight, RoomStats, HeadToHeadStats,
    WinDistributionEntry, DayActivity, LeaderboardEntry,
)
from utils.helpers import local_day, round_half_up


def _newest_first(matches: Iterable[Match]) -> list[Match]:
    # sorted() is stable with reverse=True: equal dates keep input order
    return sorted(matches, key=lambda m: m.date, reverse=True)


def _average(total: float, count: int) -> float:
    return round_half_up(total / count, 1) if count > 0 else 0


def player_stats(player: Optional[Player], matches: Iterable[Match]) -> PlayerStats:
    """Calculate statistics for one player from the matches they played."""
    if player is None:
        return PlayerStats()

    played = [m for m in matches if m.involves(player.id)]
    if not played:
        return PlayerStats()

    wins = sum(1 for m in played if m.winner_id == player.id)
    losses = len(played) - wins

    # Current streak: walk back from the newest match while the outcome holds
    newest = _newest_first(played)
    streak_is_winning = newest[0].winner_id == player.id
    current_streak = 0
    for match in newest:
        if (match.winner_id == player.id) != streak_is_winning:
            break
        current_streak += 1

    score_for = 0
    score_against = 0
    for match in played:
        own, other = match.score_for(player.id)
        score_for += own
        score_against += other

    if losses > 0:
        win_loss_ratio = round_half_up(wins / losses, 2)
    else:
        win_loss_ratio = math.inf if wins > 0 else 0

    return PlayerStats(
        match_count=len(played),
        wins=wins,
        losses=losses,
        win_percentage=round_half_up(wins / len(played) * 100),
        current_streak=current_streak,
        streak_is_winning=streak_is_winning,
        avg_score_for=_average(score_for, len(played)),
        avg_score_against=_average(score_against, len(played)),
        win_loss_ratio=win_loss_ratio
    )


def _highlight(players: list[Player], counts: dict[str, int]) -> Optional[PlayerHighlight]:
    """First player with the strictly highest non-zero count."""
    best = None
    for player in players:
        count = counts.get(player.id, 0)
        if count > (best.count if best else 0):
            best = PlayerHighlight(player_id=player.id, name=player.name, count=count)
    return best


def room_stats(
    players: Iterable[Player],
    matches: Iterable[Match],
    tz: Optional[tzinfo] = None
) -> RoomStats:
    """Calculate room-wide statistics.

    Days are calendar days in ``tz`` (the local time zone when omitted).
    """
    players = list(players)
    matches = list(matches)
    total_matches = len(matches)

    total_score = sum(m.player1_score + m.player2_score for m in matches)
    active_days = {local_day(m.date, tz) for m in matches}

    match_counts = {p.id: sum(1 for m in matches if m.involves(p.id)) for p in players}
    win_counts = {p.id: sum(1 for m in matches if m.winner_id == p.id) for p in players}

    return RoomStats(
        total_matches=total_matches,
        avg_score_per_match=_average(total_score, total_matches),
        avg_matches_per_day=_average(total_matches, len(active_days)),
        most_active_player=_highlight(players, match_counts),
        most_winning_player=_highlight(players, win_counts)
    )


def head_to_head(
    player_a: Optional[Player],
    player_b: Optional[Player],
    matches: Iterable[Match]
) -> HeadToHeadStats:
    """Compare two players over the matches they played against each other.

    ``player1_*`` fields describe ``player_a`` regardless of which side they
    were on in each match.
    """
    if player_a is None or player_b is None or player_a.id == player_b.id:
        return HeadToHeadStats(0, 0, 0, 0, 0, 0, None)

    pair = {player_a.id, player_b.id}
    shared = [m for m in matches if {m.player1_id, m.player2_id} == pair]

    a_wins = sum(1 for m in shared if m.winner_id == player_a.id)
    b_wins = sum(1 for m in shared if m.winner_id == player_b.id)
    a_total = sum(m.score_for(player_a.id)[0] for m in shared)
    b_total = sum(m.score_for(player_b.id)[0] for m in shared)

    current_streak = 0
    streak_holder = None
    if shared:
        newest = _newest_first(shared)
        streak_holder = player_a if newest[0].winner_id == player_a.id else player_b
        for match in newest:
            winner = player_a if match.winner_id == player_a.id else player_b
            if winner.id != streak_holder.id:
                break
            current_streak += 1

    return HeadToHeadStats(
        total_matches=len(shared),
        player1_wins=a_wins,
        player2_wins=b_wins,
        player1_avg_score=_average(a_total, len(shared)),
        player2_avg_score=_average(b_total, len(shared)),
        current_streak=current_streak,
        streak_holder=streak_holder
    )


def win_distribution(players: Iterable[Player], matches: Iterable[Match]) -> list[WinDistributionEntry]:
    """Wins per player, most wins first."""
    matches = list(matches)
    entries = []
    for player in players:
        stats = player_stats(player, matches)
        entries.append(WinDistributionEntry(
            player_id=player.id,
            name=player.name,
            wins=stats.wins,
            win_percentage=stats.win_percentage
        ))
    entries.sort(key=lambda e: e.wins, reverse=True)
    return entries


def match_activity(
    matches: Iterable[Match],
    day_limit: Optional[int] = DEFAULT_ACTIVITY_DAYS,
    tz: Optional[tzinfo] = None
) -> list[DayActivity]:
    """Matches grouped by calendar day, oldest day first.

    Only the latest ``day_limit`` days that had matches are returned; gaps
    between them are not filled in. ``None`` returns every day.
    """
    if day_limit is not None and day_limit <= 0:
        return []

    by_day: dict = {}
    for match in matches:
        by_day.setdefault(local_day(match.date, tz), []).append(match)

    activity = [
        DayActivity(day=day, count=len(day_matches), matches=day_matches)
        for day, day_matches in sorted(by_day.items())
    ]
    if day_limit is None:
        return activity
    return activity[-day_limit:]


def leaderboard(players: Iterable[Player], matches: Iterable[Match]) -> list[LeaderboardEntry]:
    """Rank players by win percentage, then wins, then fewest matches."""
    matches = list(matches)
    entries = [
        LeaderboardEntry(player_id=p.id, name=p.name, stats=player_stats(p, matches))
        for p in players
    ]
    entries.sort(key=lambda e: (-e.stats.win_percentage, -e.stats.wins, e.stats.match_count))
    return entries
