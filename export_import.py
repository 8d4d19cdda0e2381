"""Data export and import for Ping Pong Match Tracker.

Bundles are plain JSON documents:

- full export: ``version``, ``exportDate``, ``rooms``, ``players``,
  ``matches``, ``settings``
- room export: ``version``, ``exportDate``, ``room``, ``players``,
  ``matches``

Both carry a ``metadata`` block describing the exporting app. Imports upsert
records by ID and never delete anything that is missing from the bundle.
"""

import json
import math
from datetime import datetime
from pathlib import Path
from typing import Any, Mapping, Optional, Union

from config import (
    APP_NAME, APP_VERSION, EXPORT_VERSION,
    BACKUP_REMINDERS, NEVER_BACKED_UP_REMINDER, SETTING_LAST_BACKUP_DATE,
)
from database import Database, run_batch
from errors import NotFoundError, ValidationError
from models import MODELS, ImportResult, Match
from utils import Colors, log
from utils.helpers import format_timestamp, parse_timestamp, utc_now


# Required fields per collection, in the order they are checked
REQUIRED_FIELDS = {
    "rooms": ("id", "name"),
    "players": ("id", "roomId", "name"),
    "matches": ("id", "roomId", "player1Id", "player2Id", "player1Score", "player2Score", "winnerId", "date"),
}

# Fields where zero is a legitimate value: only absence (or null) is an error
ZERO_ALLOWED = ("player1Score", "player2Score")

LABELS = {"rooms": "Room", "players": "Player", "matches": "Match", "settings": "Setting"}


def _metadata(export_type: str, export_date: str) -> dict:
    return {
        "exportDate": export_date,
        "appName": APP_NAME,
        "appVersion": APP_VERSION,
        "exportType": export_type,
    }


async def export_all(db: Database) -> dict:
    """Snapshot every room, player, match and setting."""
    export_date = format_timestamp(utc_now())
    rooms = await db.get_all("rooms")
    players = await db.get_all("players")
    matches = await db.get_all("matches")
    settings = await db.get_all("settings")

    log("EXPORT", f"export_all: {len(rooms)} rooms, {len(players)} players, "
                  f"{len(matches)} matches, {len(settings)} settings", Colors.MAGENTA)
    return {
        "version": EXPORT_VERSION,
        "exportDate": export_date,
        "rooms": [r.to_dict() for r in rooms],
        "players": [p.to_dict() for p in players],
        "matches": [m.to_dict() for m in matches],
        "settings": [s.to_dict() for s in settings],
        "metadata": _metadata("full", export_date),
    }


async def export_room(db: Database, room_id: str) -> dict:
    """Snapshot one room with its players and matches."""
    room = await db.get_room(room_id)
    if room is None:
        log("EXPORT", f"export_room: room {room_id} not found", Colors.YELLOW)
        raise NotFoundError("rooms", room_id)

    export_date = format_timestamp(utc_now())
    players = await db.get_players_in_room(room_id)
    matches = await db.get_matches_in_room(room_id)

    log("EXPORT", f"export_room({room.name}): {len(players)} players, {len(matches)} matches", Colors.MAGENTA)
    return {
        "version": EXPORT_VERSION,
        "exportDate": export_date,
        "room": room.to_dict(),
        "players": [p.to_dict() for p in players],
        "matches": [m.to_dict() for m in matches],
        "metadata": _metadata("room", export_date),
    }


def _is_missing(record: Mapping, field_name: str) -> bool:
    value = record.get(field_name)
    if field_name in ZERO_ALLOWED:
        return value is None
    return not value


def _check_record(collection: str, record: Any, index: Optional[int]) -> None:
    label = LABELS[collection]
    where = f"{label} at index {index}" if index is not None else label

    if not isinstance(record, Mapping):
        raise ValidationError(
            f"Invalid data format: {where} must be an object",
            index=index,
            collection=collection
        )

    for field_name in REQUIRED_FIELDS[collection]:
        if _is_missing(record, field_name):
            raise ValidationError(
                f"Invalid data format: {where} is missing {field_name}",
                field=field_name,
                index=index,
                collection=collection
            )


def _check_list(bundle: Mapping, collection: str) -> list:
    records = bundle.get(collection)
    if records is None:
        return []
    if not isinstance(records, list):
        raise ValidationError(
            f"Invalid data format: {collection} must be an array",
            field=collection,
            collection=collection
        )
    return records


def validate(bundle: Any) -> None:
    """Check the structure of an import bundle.

    Raises ValidationError naming the first offending field (and record
    index, for arrays). Record-level problems are reported before a missing
    ``rooms``/``room`` section.
    """
    if not isinstance(bundle, Mapping):
        raise ValidationError("Invalid data format: Data must be an object")

    if not bundle.get("version"):
        raise ValidationError("Invalid data format: Missing version", field="version")

    has_rooms = isinstance(bundle.get("rooms"), list)
    for index, room in enumerate(_check_list(bundle, "rooms")):
        _check_record("rooms", room, index)

    room = bundle.get("room")
    if room is not None:
        _check_record("rooms", room, None)

    for index, player in enumerate(_check_list(bundle, "players")):
        _check_record("players", player, index)

    for index, match in enumerate(_check_list(bundle, "matches")):
        _check_record("matches", match, index)

    for index, setting in enumerate(_check_list(bundle, "settings")):
        if not isinstance(setting, Mapping) or not setting.get("id"):
            raise ValidationError(
                f"Invalid data format: Setting at index {index} is missing id",
                field="id",
                index=index,
                collection="settings"
            )

    if not has_rooms and not room:
        raise ValidationError("Invalid data format: Missing rooms or room", field="rooms")


def _parse_records(collection: str, raw_records: list) -> list:
    model = MODELS[collection]
    records = []
    for index, raw in enumerate(raw_records):
        try:
            record = model.from_dict(raw)
            if isinstance(record, Match):
                record.check_winner()
            records.append(record)
        except ValidationError as e:
            raise ValidationError(
                f"Invalid data format: {LABELS[collection]} at index {index}: {e}",
                field=e.field,
                index=index,
                collection=collection
            ) from e
    return records


async def import_bundle(db: Database, bundle: Any) -> ImportResult:
    """Validate a bundle, then upsert every record it contains.

    Not atomic: if an upsert fails, records written before it stay written
    and StorageError is raised.
    """
    validate(bundle)

    raw = {
        "rooms": _check_list(bundle, "rooms"),
        "players": _check_list(bundle, "players"),
        "matches": _check_list(bundle, "matches"),
        "settings": _check_list(bundle, "settings"),
    }
    if not raw["rooms"] and bundle.get("room"):
        raw["rooms"] = [bundle["room"]]

    # Convert everything first so a malformed record fails before any write
    parsed = {collection: _parse_records(collection, records) for collection, records in raw.items()}

    result = ImportResult()
    for collection in ("rooms", "players", "matches", "settings"):
        records = parsed[collection]
        batch = await run_batch(
            (f"{collection}/{record.id}", db.upsert(collection, record)) for record in records
        )
        setattr(result, collection, len(batch.succeeded))
        batch.raise_for_failures(f"import {collection}")

    log("EXPORT", f"import_bundle: upserted {result.total} record(s) "
                  f"({result.rooms} rooms, {result.players} players, "
                  f"{result.matches} matches, {result.settings} settings)", Colors.MAGENTA)
    return result


def dump_bundle(bundle: Mapping, path: Union[str, Path]) -> Path:
    """Write a bundle to a pretty-printed JSON file."""
    path = Path(path)
    path.write_text(json.dumps(bundle, indent=2, ensure_ascii=False), encoding="utf-8")
    log("EXPORT", f"Wrote bundle to {path}", Colors.MAGENTA)
    return path


def load_bundle(path: Union[str, Path]) -> Any:
    """Read a bundle from a JSON file."""
    try:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValidationError(f"Invalid data format: not valid JSON ({e.msg} at line {e.lineno})") from e


def generate_backup_reminder(days: int) -> str:
    """Reminder message for the number of days since the last backup."""
    for threshold, message in BACKUP_REMINDERS:
        if days >= threshold:
            return message
    return ""


async def check_backup_reminder(db: Database, now: Optional[datetime] = None) -> str:
    """Reminder message based on the stored last backup date."""
    last_backup = await db.get_setting(SETTING_LAST_BACKUP_DATE)
    if not last_backup:
        return NEVER_BACKED_UP_REMINDER

    now = parse_timestamp(now) if now else utc_now()
    elapsed = abs((now - parse_timestamp(last_backup)).total_seconds())
    return generate_backup_reminder(math.ceil(elapsed / 86400))


async def update_last_backup_date(db: Database, now: Optional[datetime] = None) -> str:
    """Record that a backup was just taken."""
    timestamp = format_timestamp(now or utc_now())
    await db.save_setting(SETTING_LAST_BACKUP_DATE, timestamp)
    return timestamp
