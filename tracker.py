"""Application entry point for Ping Pong Match Tracker.

``Tracker`` is what a front-end talks to: it owns the record store and
combines it with the statistics and export/import modules. Every
room-scoped call takes the room ID explicitly.
"""

import argparse
import asyncio
import logging
import sys
from typing import Any, Optional

from dotenv import load_dotenv

import export_import
import stats
from config import Config, DEFAULT_ACTIVITY_DAYS, SETTING_LAST_SELECTED_ROOM
from database import Database
from errors import NotFoundError, TrackerError
from models import (
    DayActivity, HeadToHeadStats, ImportResult, LeaderboardEntry,
    PlayerStats, RoomStats, WinDistributionEntry,
)
from utils import Colors, format_ratio, format_streak, format_win_rate, log, truncate_string

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("pingpong-tracker")


class Tracker:
    """Ping Pong Match Tracker application core."""

    def __init__(self, config: Config):
        self.config = config
        self.db = Database(config.database_path)

    @classmethod
    def from_env(cls) -> "Tracker":
        """Build a tracker from environment variables (and a .env file)."""
        load_dotenv()
        return cls(Config.from_env())

    async def start(self) -> str:
        """Connect the database. Returns a backup reminder ("" if none)."""
        log("TRACKER", "Starting...", Colors.GREEN)
        await self.db.connect()
        log("TRACKER", f"Database ready at {self.config.database_path}", Colors.GREEN)

        reminder = await self.backup_reminder()
        if reminder:
            log("TRACKER", reminder, Colors.YELLOW)
        return reminder

    async def close(self) -> None:
        """Clean up on shutdown."""
        await self.db.close()
        log("TRACKER", "Closed", Colors.GREEN)

    async def __aenter__(self) -> "Tracker":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # Room selection
    async def select_room(self, room_id: str) -> None:
        """Remember the room the user is looking at."""
        if await self.db.get_room(room_id) is None:
            raise NotFoundError("rooms", room_id)
        await self.db.save_setting(SETTING_LAST_SELECTED_ROOM, room_id)

    async def last_selected_room(self) -> Optional[str]:
        """ID of the last selected room, if it still exists."""
        room_id = await self.db.get_setting(SETTING_LAST_SELECTED_ROOM)
        if room_id and await self.db.get_room(room_id) is not None:
            return room_id
        return None

    # Statistics
    async def player_stats(self, player_id: str) -> PlayerStats:
        player = await self.db.get_player(player_id)
        if player is None:
            raise NotFoundError("players", player_id)
        matches = await self.db.get_player_matches(player_id)
        return stats.player_stats(player, matches)

    async def room_stats(self, room_id: str) -> RoomStats:
        players = await self.db.get_players_in_room(room_id)
        matches = await self.db.get_matches_in_room(room_id)
        return stats.room_stats(players, matches)

    async def head_to_head(self, player_a_id: str, player_b_id: str) -> HeadToHeadStats:
        player_a = await self.db.get_player(player_a_id)
        player_b = await self.db.get_player(player_b_id)
        if player_a is None:
            raise NotFoundError("players", player_a_id)
        if player_b is None:
            raise NotFoundError("players", player_b_id)

        matches = await self.db.get_player_matches(player_a_id)
        return stats.head_to_head(player_a, player_b, matches)

    async def leaderboard(self, room_id: str) -> list[LeaderboardEntry]:
        players = await self.db.get_players_in_room(room_id)
        matches = await self.db.get_matches_in_room(room_id)
        return stats.leaderboard(players, matches)

    async def win_distribution(self, room_id: str) -> list[WinDistributionEntry]:
        players = await self.db.get_players_in_room(room_id)
        matches = await self.db.get_matches_in_room(room_id)
        return stats.win_distribution(players, matches)

    async def match_activity(self, room_id: str, day_limit: int = DEFAULT_ACTIVITY_DAYS) -> list[DayActivity]:
        matches = await self.db.get_matches_in_room(room_id)
        return stats.match_activity(matches, day_limit)

    # Backups
    async def export_all(self) -> dict:
        """Export everything and record the backup date."""
        bundle = await export_import.export_all(self.db)
        await export_import.update_last_backup_date(self.db)
        return bundle

    async def export_room(self, room_id: str) -> dict:
        """Export one room and record the backup date."""
        bundle = await export_import.export_room(self.db, room_id)
        await export_import.update_last_backup_date(self.db)
        return bundle

    async def import_bundle(self, bundle: Any) -> ImportResult:
        return await export_import.import_bundle(self.db, bundle)

    async def backup_reminder(self) -> str:
        return await export_import.check_backup_reminder(self.db)


async def show_rooms(tracker: Tracker) -> None:
    """Print every room with its leaderboard."""
    rooms = await tracker.db.get_all_rooms()
    if not rooms:
        log("TRACKER", "No rooms yet", Colors.YELLOW)
        return

    for room in rooms:
        summary = await tracker.db.get_room_summary(room.id)
        print(f"{room.name} ({summary.player_count} players, {summary.match_count} matches)")
        for rank, entry in enumerate(await tracker.leaderboard(room.id), start=1):
            player = entry.stats
            print(
                f"  {rank}. {truncate_string(entry.name, 24):<24} "
                f"{player.wins}-{player.losses}  {format_win_rate(player.win_percentage):>5}  "
                f"ratio {format_ratio(player.win_loss_ratio):>5}  "
                f"{format_streak(player.current_streak, player.streak_is_winning)}"
            )


async def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Ping Pong Match Tracker")
    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("rooms", help="List rooms and their leaderboards")
    export_parser = subparsers.add_parser("export", help="Export data to a JSON file")
    export_parser.add_argument("path")
    export_parser.add_argument("--room", help="Export only this room ID")
    import_parser = subparsers.add_parser("import", help="Import a JSON backup")
    import_parser.add_argument("path")
    args = parser.parse_args()

    tracker = Tracker.from_env()
    try:
        async with tracker:
            if args.command == "export":
                if args.room:
                    bundle = await tracker.export_room(args.room)
                else:
                    bundle = await tracker.export_all()
                export_import.dump_bundle(bundle, args.path)
            elif args.command == "import":
                result = await tracker.import_bundle(export_import.load_bundle(args.path))
                log("TRACKER", f"Imported {result.total} record(s)", Colors.GREEN)
            else:
                await show_rooms(tracker)
    except TrackerError as e:
        logger.error("%s", e)
        print(e.user_message, file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
