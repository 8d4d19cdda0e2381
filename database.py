"""Database setup and async helpers for Ping Pong Match Tracker."""

import asyncio
import json
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Awaitable, Iterable, Mapping, Optional

import aiosqlite

from config import COLLECTIONS
from errors import NotFoundError, StorageError, ValidationError
from models import (
    MODELS, Record, Room, Player, Match, Setting, RoomSummary,
    decide_winner, parse_score,
)
from utils import Colors, log
from utils.helpers import format_timestamp, generate_id, parse_timestamp, to_camel, utc_now


@dataclass
class BatchResult:
    """Per-item outcome of a batch of independent sub-operations."""

    succeeded: list = field(default_factory=list)
    failed: list = field(default_factory=list)  # [(key, exception), ...]

    @property
    def ok(self) -> bool:
        return not self.failed

    def raise_for_failures(self, operation: str) -> None:
        """Raise StorageError if any item failed. Succeeded items stay applied."""
        if not self.failed:
            return
        key, error = self.failed[0]
        total = len(self.succeeded) + len(self.failed)
        raise StorageError(
            operation,
            f"{len(self.failed)} of {total} sub-operations failed (first: {key}: {error})",
            batch=self
        )


async def run_batch(items: Iterable[tuple[str, Awaitable]]) -> BatchResult:
    """Issue every awaitable at once, wait for all, and collect each result."""
    items = list(items)
    results = await asyncio.gather(*(aw for _, aw in items), return_exceptions=True)

    batch = BatchResult()
    for (key, _), result in zip(items, results):
        if isinstance(result, BaseException):
            batch.failed.append((key, result))
        else:
            batch.succeeded.append(key)
    return batch


@contextmanager
def storage_errors(operation: str):
    """Translate driver errors into StorageError."""
    try:
        yield
    except aiosqlite.Error as e:
        log("DB", f"  {operation} failed: {e}", Colors.RED)
        raise StorageError(operation, str(e)) from e


def record_to_row(record: Record) -> dict:
    """Column values for a record."""
    row = {}
    for name in record.field_names():
        value = getattr(record, name)
        if name in record.TIMESTAMP_FIELDS:
            value = format_timestamp(value)
        elif isinstance(record, Setting) and name == "value":
            try:
                value = json.dumps(value)
            except (TypeError, ValueError) as e:
                raise ValidationError(
                    f"Setting '{record.id}' value is not JSON serializable: {e}",
                    field="value"
                )
        row[name] = value
    return row


def row_to_record(collection: str, row: aiosqlite.Row) -> Record:
    """Build a record from a table row."""
    model = MODELS[collection]
    values = {name: row[name] for name in model.field_names()}
    for name in model.TIMESTAMP_FIELDS:
        values[name] = parse_timestamp(values[name])
    if model is Setting:
        values["value"] = json.loads(values["value"]) if values["value"] is not None else None
    return model(**values)


def _required_text(values: Mapping[str, Any], name: str, label: str) -> str:
    value = values.get(name)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{label} {to_camel(name)} is required", field=to_camel(name))
    return value.strip()


def _optional_text(values: Mapping[str, Any], name: str) -> str:
    value = values.get(name)
    return value.strip() if isinstance(value, str) else ""


class Database:
    """Async SQLite record store for rooms, players, matches and settings."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._connection: Optional[aiosqlite.Connection] = None

    async def connect(self) -> None:
        """Establish database connection and initialize schema."""
        log("DB", f"Connecting to {self.db_path}", Colors.BLUE)
        with storage_errors("connect"):
            self._connection = await aiosqlite.connect(self.db_path)
            self._connection.row_factory = aiosqlite.Row
            await self._create_tables()

    async def close(self) -> None:
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    async def __aenter__(self) -> "Database":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def conn(self) -> aiosqlite.Connection:
        """Get the active connection."""
        if not self._connection:
            raise RuntimeError("Database not connected")
        return self._connection

    async def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        # No FOREIGN KEY clauses: dangling room/player references are allowed
        await self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS rooms (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_rooms_name ON rooms(name);
            CREATE INDEX IF NOT EXISTS idx_rooms_created_at ON rooms(created_at);

            CREATE TABLE IF NOT EXISTS players (
                id TEXT PRIMARY KEY,
                room_id TEXT NOT NULL,
                name TEXT NOT NULL,
                nickname TEXT NOT NULL DEFAULT '',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_players_room_id ON players(room_id);
            CREATE INDEX IF NOT EXISTS idx_players_name ON players(name);

            CREATE TABLE IF NOT EXISTS matches (
                id TEXT PRIMARY KEY,
                room_id TEXT NOT NULL,
                player1_id TEXT NOT NULL,
                player2_id TEXT NOT NULL,
                player1_score INTEGER NOT NULL CHECK (player1_score >= 0),
                player2_score INTEGER NOT NULL CHECK (player2_score >= 0),
                winner_id TEXT NOT NULL,
                notes TEXT NOT NULL DEFAULT '',
                date TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_matches_room_id ON matches(room_id);
            CREATE INDEX IF NOT EXISTS idx_matches_player1_id ON matches(player1_id);
            CREATE INDEX IF NOT EXISTS idx_matches_player2_id ON matches(player2_id);
            CREATE INDEX IF NOT EXISTS idx_matches_winner_id ON matches(winner_id);
            CREATE INDEX IF NOT EXISTS idx_matches_date ON matches(date);

            CREATE TABLE IF NOT EXISTS settings (
                id TEXT PRIMARY KEY,
                value TEXT,
                updated_at TEXT NOT NULL
            );
        """)
        await self.conn.commit()

    async def storage_usage(self) -> int:
        """Size of the database in bytes (page count times page size)."""
        with storage_errors("storage usage"):
            async with self.conn.execute("PRAGMA page_count") as cursor:
                page_count = (await cursor.fetchone())[0]
            async with self.conn.execute("PRAGMA page_size") as cursor:
                page_size = (await cursor.fetchone())[0]
        return page_count * page_size

    @staticmethod
    def _check_collection(collection: str) -> None:
        if collection not in COLLECTIONS:
            raise ValidationError(
                f"Unknown collection '{collection}'",
                field="collection",
                collection=collection
            )

    @staticmethod
    def _normalize(collection: str, data: Mapping[str, Any]) -> dict:
        """Map input keys to attribute names, rejecting unknown ones."""
        model = MODELS[collection]
        values = {}
        for key, value in data.items():
            name = model.resolve_field(key)
            if name is None:
                raise ValidationError(
                    f"Unknown field '{key}' for {collection}",
                    field=key,
                    collection=collection
                )
            values[name] = value
        return values

    # Record construction
    def _build(self, collection: str, values: dict) -> Record:
        now = utc_now()

        if collection == "rooms":
            return Room(
                id=generate_id(),
                name=_required_text(values, "name", "Room"),
                description=_optional_text(values, "description"),
                created_at=now,
                updated_at=now
            )

        if collection == "players":
            return Player(
                id=generate_id(),
                room_id=_required_text(values, "room_id", "Player"),
                name=_required_text(values, "name", "Player"),
                nickname=_optional_text(values, "nickname"),
                created_at=now,
                updated_at=now
            )

        if collection == "matches":
            room_id = _required_text(values, "room_id", "Match")
            player1_id = _required_text(values, "player1_id", "Match")
            player2_id = _required_text(values, "player2_id", "Match")
            player1_score = parse_score(values.get("player1_score"), "player1Score")
            player2_score = parse_score(values.get("player2_score"), "player2Score")
            self._check_opponents(player1_id, player2_id)

            return Match(
                id=generate_id(),
                room_id=room_id,
                player1_id=player1_id,
                player2_id=player2_id,
                player1_score=player1_score,
                player2_score=player2_score,
                winner_id=decide_winner(player1_id, player2_id, player1_score, player2_score),
                notes=_optional_text(values, "notes"),
                date=now
            )

        return Setting(
            id=_required_text(values, "id", "Setting"),
            value=values.get("value"),
            updated_at=now
        )

    @staticmethod
    def _check_opponents(player1_id: str, player2_id: str) -> None:
        if player1_id == player2_id:
            raise ValidationError("A player cannot play against themselves", field="player2Id")

    def _refresh(self, collection: str, existing: Record, merged: Record, changed: set) -> Record:
        """Re-validate a merged record and stamp its update time."""
        if collection == "matches":
            if changed & {"player1_id", "player2_id", "player1_score", "player2_score", "winner_id"}:
                self._check_opponents(merged.player1_id, merged.player2_id)
                winner_id = decide_winner(
                    merged.player1_id, merged.player2_id,
                    merged.player1_score, merged.player2_score
                )
                return merged.merge({"winner_id": winner_id})
            return merged

        if collection in ("rooms", "players"):
            _required_text({"name": merged.name}, "name", type(merged).__name__)
            return merged.merge({
                "name": merged.name.strip(),
                "updated_at": max(utc_now(), existing.created_at)
            })

        return merged.merge({"updated_at": utc_now()})

    # Generic operations
    async def create(self, collection: str, data: Mapping[str, Any]) -> Record:
        """Create a record with a fresh ID and timestamps."""
        self._check_collection(collection)
        record = self._build(collection, self._normalize(collection, data))

        row = record_to_row(record)
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        with storage_errors(f"create {collection}"):
            await self.conn.execute(
                f"INSERT INTO {collection} ({columns}) VALUES ({placeholders})",
                tuple(row.values())
            )
            await self.conn.commit()

        log("DB", f"create({collection}) -> {record.id}", Colors.BLUE)
        return record

    async def get_all(self, collection: str) -> list:
        """Get every record in a collection (insertion order)."""
        self._check_collection(collection)
        with storage_errors(f"get all {collection}"):
            async with self.conn.execute(
                f"SELECT * FROM {collection} ORDER BY rowid"
            ) as cursor:
                return [row_to_record(collection, row) async for row in cursor]

    async def get_by_id(self, collection: str, record_id: str) -> Optional[Record]:
        """Get a record by ID, or None if it does not exist."""
        self._check_collection(collection)
        with storage_errors(f"get {collection} {record_id}"):
            async with self.conn.execute(
                f"SELECT * FROM {collection} WHERE id = ?",
                (record_id,)
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return None
        return row_to_record(collection, row)

    async def get_by_index(self, collection: str, field_name: str, value: Any) -> list:
        """Get all records whose ``field_name`` equals ``value``."""
        self._check_collection(collection)
        model = MODELS[collection]
        column = model.resolve_field(field_name)
        if column is None:
            raise ValidationError(
                f"Unknown field '{field_name}' for {collection}",
                field=field_name,
                collection=collection
            )
        if column in model.TIMESTAMP_FIELDS and value is not None:
            value = format_timestamp(parse_timestamp(value))

        with storage_errors(f"get {collection} by {column}"):
            async with self.conn.execute(
                f"SELECT * FROM {collection} WHERE {column} = ? ORDER BY rowid",
                (value,)
            ) as cursor:
                return [row_to_record(collection, row) async for row in cursor]

    async def update(self, collection: str, partial: Mapping[str, Any]) -> Record:
        """Read-merge-write update. Fields missing from ``partial`` are kept."""
        self._check_collection(collection)
        record_id = partial.get("id")
        if not record_id:
            raise ValidationError(f"Updating {collection} requires an id", field="id", collection=collection)

        existing = await self.get_by_id(collection, record_id)
        if existing is None:
            log("DB", f"  update({collection}): no record with id={record_id}", Colors.YELLOW)
            raise NotFoundError(collection, record_id)

        changed = set(self._normalize(collection, partial)) - {"id"}
        merged = self._refresh(collection, existing, existing.merge(partial), changed)

        row = record_to_row(merged)
        row_id = row.pop("id")
        assignments = ", ".join(f"{column} = ?" for column in row)
        with storage_errors(f"update {collection} {record_id}"):
            async with self.conn.execute(
                f"UPDATE {collection} SET {assignments} WHERE id = ?",
                (*row.values(), row_id)
            ) as cursor:
                updated = cursor.rowcount
            await self.conn.commit()

        if updated == 0:
            raise NotFoundError(collection, record_id)

        log("DB", f"update({collection}) -> {record_id}", Colors.BLUE)
        return merged

    async def upsert(self, collection: str, record: Record) -> Record:
        """Insert a whole record or overwrite the one with the same ID."""
        self._check_collection(collection)
        if not isinstance(record, MODELS[collection]):
            raise ValidationError(
                f"Expected {MODELS[collection].__name__} for {collection}, got {type(record).__name__}",
                collection=collection
            )

        row = record_to_row(record)
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        assignments = ", ".join(f"{column} = excluded.{column}" for column in row if column != "id")
        with storage_errors(f"upsert {collection} {record.id}"):
            await self.conn.execute(
                f"INSERT INTO {collection} ({columns}) VALUES ({placeholders}) "
                f"ON CONFLICT(id) DO UPDATE SET {assignments}",
                tuple(row.values())
            )
            await self.conn.commit()
        return record

    async def delete(self, collection: str, record_id: str) -> None:
        """Delete a record. Deleting a missing ID is not an error."""
        self._check_collection(collection)
        with storage_errors(f"delete {collection} {record_id}"):
            await self.conn.execute(
                f"DELETE FROM {collection} WHERE id = ?",
                (record_id,)
            )
            await self.conn.commit()
        log("DB", f"delete({collection}, {record_id})", Colors.BLUE)

    # Room operations
    async def create_room(self, name: str, description: str = "") -> Room:
        """Create a new room."""
        return await self.create("rooms", {"name": name, "description": description})

    async def get_room(self, room_id: str) -> Optional[Room]:
        return await self.get_by_id("rooms", room_id)

    async def get_all_rooms(self) -> list[Room]:
        return await self.get_all("rooms")

    async def update_room(self, room_id: str, **changes) -> Room:
        return await self.update("rooms", {**changes, "id": room_id})

    async def delete_room_cascade(self, room_id: str) -> BatchResult:
        """Delete a room along with all of its players and matches.

        Every delete is attempted even if some fail; completed deletes are
        not rolled back. Raises StorageError if any of them failed.
        """
        log("DB", f"delete_room_cascade({room_id})", Colors.BLUE)
        players = await self.get_by_index("players", "room_id", room_id)
        matches = await self.get_by_index("matches", "room_id", room_id)

        items = [(f"rooms/{room_id}", self.delete("rooms", room_id))]
        items += [(f"players/{p.id}", self.delete("players", p.id)) for p in players]
        items += [(f"matches/{m.id}", self.delete("matches", m.id)) for m in matches]

        batch = await run_batch(items)
        log("DB", f"  removed {len(batch.succeeded)} record(s), {len(batch.failed)} failure(s)", Colors.BLUE)
        batch.raise_for_failures(f"delete room {room_id}")
        return batch

    async def get_room_summary(self, room_id: str) -> RoomSummary:
        """Get player/match counts and the most recent match of a room."""
        players = await self.get_players_in_room(room_id)
        matches = await self.get_matches_in_room(room_id)

        return RoomSummary(
            player_count=len(players),
            match_count=len(matches),
            most_recent_match=max(matches, key=lambda m: m.date, default=None)
        )

    # Player operations
    async def create_player(self, room_id: str, name: str, nickname: str = "") -> Player:
        """Create a new player in a room."""
        return await self.create("players", {"room_id": room_id, "name": name, "nickname": nickname})

    async def get_player(self, player_id: str) -> Optional[Player]:
        return await self.get_by_id("players", player_id)

    async def get_players_in_room(self, room_id: str) -> list[Player]:
        return await self.get_by_index("players", "room_id", room_id)

    async def update_player(self, player_id: str, **changes) -> Player:
        return await self.update("players", {**changes, "id": player_id})

    async def delete_player(self, player_id: str) -> None:
        """Delete a player. Matches referencing the player are kept."""
        await self.delete("players", player_id)

    # Match operations
    async def create_match(
        self,
        room_id: str,
        player1_id: str,
        player2_id: str,
        player1_score: int,
        player2_score: int,
        notes: str = ""
    ) -> Match:
        """Record a match. The winner is derived from the scores."""
        return await self.create("matches", {
            "room_id": room_id,
            "player1_id": player1_id,
            "player2_id": player2_id,
            "player1_score": player1_score,
            "player2_score": player2_score,
            "notes": notes,
        })

    async def get_match(self, match_id: str) -> Optional[Match]:
        return await self.get_by_id("matches", match_id)

    async def get_matches_in_room(self, room_id: str) -> list[Match]:
        return await self.get_by_index("matches", "room_id", room_id)

    async def get_player_matches(self, player_id: str) -> list[Match]:
        """Get every match a player took part in, on either side."""
        as_player1 = await self.get_by_index("matches", "player1_id", player_id)
        as_player2 = await self.get_by_index("matches", "player2_id", player_id)

        unique: dict[str, Match] = {}
        for match in as_player1 + as_player2:
            unique.setdefault(match.id, match)
        return list(unique.values())

    async def delete_match(self, match_id: str) -> None:
        await self.delete("matches", match_id)

    # Setting operations
    async def save_setting(self, key: str, value: Any) -> Setting:
        """Save a setting, replacing any previous value."""
        setting = Setting(id=key, value=value, updated_at=utc_now())
        return await self.upsert("settings", setting)

    async def get_setting(self, key: str, default: Any = None) -> Any:
        """Get a setting's value, or ``default`` if it was never saved."""
        setting = await self.get_by_id("settings", key)
        return setting.value if setting is not None else default
