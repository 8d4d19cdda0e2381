"""
Tests for bundle export, validation, import and backup reminders.
"""
import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest

import export_import
from config import EXPORT_VERSION, NEVER_BACKED_UP_REMINDER
from database import Database
from errors import NotFoundError, StorageError, ValidationError


def run(coro):
    return asyncio.run(coro)


async def seed(db):
    """Two rooms with players, matches and a setting."""
    office = await db.create_room("Office", "Second floor table")
    garage = await db.create_room("Garage")
    ann = await db.create_player(office.id, "Ann", "Ace")
    ben = await db.create_player(office.id, "Ben")
    cat = await db.create_player(garage.id, "Cat")
    dan = await db.create_player(garage.id, "Dan")
    await db.create_match(office.id, ann.id, ben.id, 11, 0)
    await db.create_match(office.id, ben.id, ann.id, 11, 9, notes="rematch")
    await db.create_match(garage.id, cat.id, dan.id, 7, 11)
    await db.save_setting("lastSelectedRoom", office.id)
    return office, garage


def valid_match(**overrides):
    match = {
        "id": "m1",
        "roomId": "r1",
        "player1Id": "p1",
        "player2Id": "p2",
        "player1Score": 11,
        "player2Score": 0,
        "winnerId": "p1",
        "date": "2024-05-01T12:00:00.000Z",
    }
    match.update(overrides)
    return match


class TestValidate:

    def test_missing_version(self):
        with pytest.raises(ValidationError) as exc_info:
            export_import.validate({})
        assert exc_info.value.field == "version"
        assert "version" in str(exc_info.value)

    def test_match_missing_room_id(self):
        with pytest.raises(ValidationError) as exc_info:
            export_import.validate({"version": 1, "matches": [{"id": "m1"}]})

        error = exc_info.value
        assert error.collection == "matches"
        assert error.index == 0
        assert error.field == "roomId"
        assert "index 0" in str(error)

    @pytest.mark.parametrize("bundle", [None, [], "backup", 42])
    def test_not_an_object(self, bundle):
        with pytest.raises(ValidationError):
            export_import.validate(bundle)

    def test_missing_rooms_and_room(self):
        with pytest.raises(ValidationError) as exc_info:
            export_import.validate({"version": 1, "players": []})
        assert exc_info.value.field == "rooms"

    def test_room_missing_name_reports_index(self):
        bundle = {"version": 1, "rooms": [{"id": "r1", "name": "Office"}, {"id": "r2"}]}

        with pytest.raises(ValidationError) as exc_info:
            export_import.validate(bundle)
        assert exc_info.value.index == 1
        assert exc_info.value.field == "name"

    def test_single_room_missing_id(self):
        with pytest.raises(ValidationError) as exc_info:
            export_import.validate({"version": 1, "room": {"name": "Office"}})
        assert exc_info.value.field == "id"
        assert exc_info.value.index is None

    def test_player_missing_room_id(self):
        bundle = {"version": 1, "rooms": [], "players": [{"id": "p1", "name": "Ann"}]}

        with pytest.raises(ValidationError) as exc_info:
            export_import.validate(bundle)
        assert exc_info.value.collection == "players"
        assert exc_info.value.field == "roomId"

    def test_zero_score_is_valid(self):
        export_import.validate({"version": 1, "rooms": [], "matches": [valid_match(player2Score=0)]})

    @pytest.mark.parametrize("field", ["player1Score", "player2Score", "winnerId", "date"])
    def test_match_required_fields(self, field):
        match = valid_match()
        del match[field]

        with pytest.raises(ValidationError) as exc_info:
            export_import.validate({"version": 1, "rooms": [], "matches": [match]})
        assert exc_info.value.field == field

    def test_null_score_is_missing(self):
        with pytest.raises(ValidationError) as exc_info:
            export_import.validate({"version": 1, "rooms": [], "matches": [valid_match(player1Score=None)]})
        assert exc_info.value.field == "player1Score"

    def test_collection_must_be_array(self):
        with pytest.raises(ValidationError) as exc_info:
            export_import.validate({"version": 1, "rooms": [], "players": {"id": "p1"}})
        assert exc_info.value.field == "players"


class TestExport:

    def test_export_all(self, db_path):
        async def scenario():
            async with Database(db_path) as db:
                await seed(db)
                return await export_import.export_all(db)

        bundle = run(scenario())

        assert bundle["version"] == EXPORT_VERSION
        assert bundle["exportDate"].endswith("Z")
        assert len(bundle["rooms"]) == 2
        assert len(bundle["players"]) == 4
        assert len(bundle["matches"]) == 3
        assert bundle["settings"][0]["id"] == "lastSelectedRoom"
        assert bundle["metadata"]["exportType"] == "full"
        assert set(bundle["matches"][0]) == {
            "id", "roomId", "player1Id", "player2Id", "player1Score",
            "player2Score", "winnerId", "notes", "date",
        }
        json.dumps(bundle)

    def test_export_room(self, db_path):
        async def scenario():
            async with Database(db_path) as db:
                office, _ = await seed(db)
                return office, await export_import.export_room(db, office.id)

        office, bundle = run(scenario())

        assert bundle["room"]["id"] == office.id
        assert bundle["room"]["description"] == "Second floor table"
        assert {p["name"] for p in bundle["players"]} == {"Ann", "Ben"}
        assert len(bundle["matches"]) == 2
        assert "rooms" not in bundle
        assert bundle["metadata"]["exportType"] == "room"

    def test_export_missing_room(self, db_path):
        async def scenario():
            async with Database(db_path) as db:
                await export_import.export_room(db, "nowhere")

        with pytest.raises(NotFoundError):
            run(scenario())


class TestImport:

    def test_round_trip_into_empty_store(self, tmp_path):
        async def scenario():
            async with Database(str(tmp_path / "source.db")) as source:
                await seed(source)
                bundle = await export_import.export_all(source)
            async with Database(str(tmp_path / "target.db")) as target:
                result = await export_import.import_bundle(target, bundle)
                copy = await export_import.export_all(target)
            return bundle, result, copy

        bundle, result, copy = run(scenario())

        assert result.rooms == 2
        assert result.players == 4
        assert result.matches == 3
        assert result.settings == 1
        for collection in ("rooms", "players", "matches", "settings"):
            original = {r["id"]: r for r in bundle[collection]}
            restored = {r["id"]: r for r in copy[collection]}
            assert restored == original

    def test_import_overwrites_but_never_deletes(self, db_path):
        async def scenario():
            async with Database(db_path) as db:
                office, garage = await seed(db)
                bundle = {
                    "version": 1,
                    "room": {"id": office.id, "name": "Renamed"},
                    "players": [],
                    "matches": [],
                }
                await export_import.import_bundle(db, bundle)
                return office, await db.get_room(office.id), await db.get_all("rooms"), await db.get_all("players")

        office, renamed, rooms, players = run(scenario())

        assert renamed.name == "Renamed"
        # upsert replaces the whole record, not a merge
        assert renamed.description == ""
        assert len(rooms) == 2
        assert len(players) == 4

    def test_single_room_bundle(self, db_path):
        bundle = {
            "version": 1,
            "exportDate": "2024-05-02T08:00:00.000Z",
            "room": {"id": "r1", "name": "Club", "createdAt": "2024-05-01T10:00:00.000Z"},
            "players": [
                {"id": "p1", "roomId": "r1", "name": "Ann"},
                {"id": "p2", "roomId": "r1", "name": "Ben"},
            ],
            "matches": [valid_match(), valid_match(id="m2", player1Score=3, player2Score=11, winnerId="p2")],
        }

        async def scenario():
            async with Database(db_path) as db:
                result = await export_import.import_bundle(db, bundle)
                return result, await db.get_room("r1"), await db.get_player_matches("p1")

        result, room, matches = run(scenario())

        assert result.rooms == 1
        assert room.created_at == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
        assert {m.id for m in matches} == {"m1", "m2"}

    def test_invalid_bundle_writes_nothing(self, db_path):
        async def scenario():
            async with Database(db_path) as db:
                with pytest.raises(ValidationError):
                    await export_import.import_bundle(db, {"version": 1, "matches": [{"id": "m1"}]})
                return await db.get_all("matches")

        assert run(scenario()) == []

    def test_null_optional_fields(self, db_path):
        bundle = {
            "version": 1,
            "rooms": [{"id": "r1", "name": "Office", "description": None}],
            "players": [
                {"id": "p1", "roomId": "r1", "name": "Ann", "nickname": None},
                {"id": "p2", "roomId": "r1", "name": "Ben"},
            ],
            "matches": [valid_match(notes=None)],
        }

        async def scenario():
            async with Database(db_path) as db:
                result = await export_import.import_bundle(db, bundle)
                return result, await db.get_room("r1"), await db.get_player("p1"), await db.get_match("m1")

        result, room, player, match = run(scenario())

        assert result.total == 4
        assert room.description == ""
        assert player.nickname == ""
        assert match.notes == ""

    @pytest.mark.parametrize("overrides", [
        {"winnerId": "p3"},
        {"winnerId": "p2"},
        {"player1Score": 11, "player2Score": 11},
        {"player2Id": "p1"},
    ])
    def test_inconsistent_winner_rejected(self, db_path, overrides):
        bundle = {"version": 1, "rooms": [], "matches": [valid_match(), valid_match(id="m2", **overrides)]}

        async def scenario():
            async with Database(db_path) as db:
                with pytest.raises(ValidationError) as exc_info:
                    await export_import.import_bundle(db, bundle)
                return exc_info.value, await db.get_all("matches")

        error, matches = run(scenario())

        assert error.collection == "matches"
        assert error.index == 1
        assert error.field in ("winnerId", "player2Score", "player2Id")
        assert matches == []

    def test_failed_upsert_keeps_earlier_writes(self, db_path, monkeypatch):
        original_upsert = Database.upsert

        async def flaky_upsert(self, collection, record):
            if collection == "players" and record.id == "p2":
                raise StorageError(f"upsert players {record.id}", "disk I/O error")
            return await original_upsert(self, collection, record)

        monkeypatch.setattr(Database, "upsert", flaky_upsert)
        bundle = {
            "version": 1,
            "rooms": [{"id": "r1", "name": "Office"}],
            "players": [
                {"id": "p1", "roomId": "r1", "name": "Ann"},
                {"id": "p2", "roomId": "r1", "name": "Ben"},
            ],
            "matches": [valid_match()],
        }

        async def scenario():
            async with Database(db_path) as db:
                with pytest.raises(StorageError) as exc_info:
                    await export_import.import_bundle(db, bundle)
                return (
                    exc_info.value,
                    await db.get_all("rooms"),
                    await db.get_all("players"),
                    await db.get_all("matches"),
                )

        error, rooms, players, matches = run(scenario())

        assert [key for key, _ in error.batch.failed] == ["players/p2"]
        assert error.batch.succeeded == ["players/p1"]
        assert [r.id for r in rooms] == ["r1"]
        assert [p.id for p in players] == ["p1"]
        assert matches == []

    def test_unparseable_record(self, db_path):
        bundle = {"version": 1, "rooms": [], "matches": [valid_match(player1Score="eleven")]}

        async def scenario():
            async with Database(db_path) as db:
                await export_import.import_bundle(db, bundle)

        with pytest.raises(ValidationError) as exc_info:
            run(scenario())
        assert exc_info.value.collection == "matches"
        assert exc_info.value.index == 0


class TestBundleFiles:

    def test_dump_and_load(self, tmp_path):
        bundle = {"version": 1, "rooms": [{"id": "r1", "name": "Café"}]}
        path = export_import.dump_bundle(bundle, tmp_path / "backup.json")

        assert export_import.load_bundle(path) == bundle
        assert "Café" in path.read_text(encoding="utf-8")

    def test_load_invalid_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(ValidationError):
            export_import.load_bundle(path)


class TestBackupReminder:

    @pytest.mark.parametrize("days, fragment", [
        (0, ""),
        (6, ""),
        (7, "over a week"),
        (14, "over two weeks"),
        (45, "over a month"),
    ])
    def test_generate(self, days, fragment):
        message = export_import.generate_backup_reminder(days)
        if fragment:
            assert fragment in message
        else:
            assert message == ""

    def test_check_reminder(self, db_path):
        now = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

        async def scenario():
            async with Database(db_path) as db:
                never = await export_import.check_backup_reminder(db, now=now)
                await export_import.update_last_backup_date(db, now=now - timedelta(days=10))
                stale = await export_import.check_backup_reminder(db, now=now)
                await export_import.update_last_backup_date(db, now=now)
                fresh = await export_import.check_backup_reminder(db, now=now)
                return never, stale, fresh

        never, stale, fresh = run(scenario())

        assert never == NEVER_BACKED_UP_REMINDER
        assert "over a week" in stale
        assert fresh == ""
