"""Data models for Ping Pong Match Tracker."""

from dataclasses import MISSING, dataclass, field, fields, replace
from datetime import date as Date, datetime
from typing import Any, ClassVar, Mapping, Optional

from errors import ValidationError
from utils.helpers import format_timestamp, parse_timestamp, to_camel, to_snake, utc_now


class Record:
    """Shared behaviour for stored records.

    Attributes are snake_case; ``to_dict``/``from_dict`` speak the camelCase
    JSON wire format used by exports.
    """

    TIMESTAMP_FIELDS: ClassVar[tuple] = ()
    IMMUTABLE_FIELDS: ClassVar[tuple] = ("id",)
    # Free-text fields stored as "" when absent or null
    OPTIONAL_TEXT_FIELDS: ClassVar[tuple] = ()

    @classmethod
    def field_names(cls) -> tuple:
        return tuple(f.name for f in fields(cls))

    @classmethod
    def resolve_field(cls, key: str) -> Optional[str]:
        """Map a snake_case or camelCase key to an attribute name."""
        names = cls.field_names()
        if key in names:
            return key
        snake = to_snake(key)
        return snake if snake in names else None

    @classmethod
    def _coerce(cls, values: dict) -> dict:
        for name in cls.OPTIONAL_TEXT_FIELDS:
            if name in values and values[name] is None:
                values[name] = ""
        return values

    @classmethod
    def _convert(cls, values: dict) -> dict:
        for name in cls.TIMESTAMP_FIELDS:
            if values.get(name) is not None:
                try:
                    values[name] = parse_timestamp(values[name])
                except (TypeError, ValueError):
                    raise ValidationError(
                        f"{cls.__name__} has an invalid {to_camel(name)}: {values[name]!r}",
                        field=to_camel(name)
                    )
        return cls._coerce(values)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Record":
        """Build a record from a wire-format mapping, ignoring unknown keys."""
        values = {}
        for key, value in data.items():
            name = cls.resolve_field(key)
            if name is not None:
                values[name] = value

        # Missing or null timestamps fall back to the dataclass defaults
        for name in cls.TIMESTAMP_FIELDS:
            if values.get(name) is None:
                values.pop(name, None)

        for f in fields(cls):
            if f.name not in values and f.default is MISSING and f.default_factory is MISSING:
                raise ValidationError(
                    f"{cls.__name__} is missing {to_camel(f.name)}",
                    field=to_camel(f.name)
                )

        return cls(**cls._convert(values))

    def to_dict(self) -> dict:
        """Serialize to the camelCase wire format."""
        data = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name in self.TIMESTAMP_FIELDS and value is not None:
                value = format_timestamp(value)
            data[to_camel(f.name)] = value
        return data

    def merge(self, changes: Mapping[str, Any]) -> "Record":
        """Return a new record with ``changes`` applied over this one."""
        values = {}
        for key, value in changes.items():
            name = self.resolve_field(key)
            if name is None:
                raise ValidationError(
                    f"Unknown field '{key}' for {type(self).__name__}",
                    field=key
                )
            values[name] = value

        values = self._convert(values)
        for name in self.IMMUTABLE_FIELDS:
            if name in values and values[name] != getattr(self, name):
                raise ValidationError(
                    f"Field '{to_camel(name)}' of {type(self).__name__} cannot be changed",
                    field=to_camel(name)
                )

        return replace(self, **values)


def parse_score(value: Any, field_name: str) -> int:
    """Coerce a score to a non-negative integer."""
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be an integer", field=field_name)
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if not isinstance(value, int):
        raise ValidationError(f"{field_name} must be an integer, got {value!r}", field=field_name)
    if value < 0:
        raise ValidationError(f"{field_name} cannot be negative", field=field_name)
    return value


def decide_winner(player1_id: str, player2_id: str, player1_score: int, player2_score: int) -> str:
    """Return the ID of the player with the strictly higher score.

    Ties are rejected: a match must have a winner.
    """
    if player1_score == player2_score:
        raise ValidationError(
            f"Match cannot end in a tie ({player1_score}-{player2_score})",
            field="player2Score"
        )
    return player1_id if player1_score > player2_score else player2_id


@dataclass(frozen=True)
class Room(Record):
    """Represents a room: an isolated set of players and matches."""

    TIMESTAMP_FIELDS: ClassVar[tuple] = ("created_at", "updated_at")
    IMMUTABLE_FIELDS: ClassVar[tuple] = ("id", "created_at")
    OPTIONAL_TEXT_FIELDS: ClassVar[tuple] = ("description",)

    id: str
    name: str
    description: str = ""
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class Player(Record):
    """Represents a player in a room."""

    TIMESTAMP_FIELDS: ClassVar[tuple] = ("created_at", "updated_at")
    IMMUTABLE_FIELDS: ClassVar[tuple] = ("id", "created_at")
    OPTIONAL_TEXT_FIELDS: ClassVar[tuple] = ("nickname",)

    id: str
    room_id: str
    name: str
    nickname: str = ""
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class Match(Record):
    """Represents a single match between two players."""

    TIMESTAMP_FIELDS: ClassVar[tuple] = ("date",)
    IMMUTABLE_FIELDS: ClassVar[tuple] = ("id", "date")
    OPTIONAL_TEXT_FIELDS: ClassVar[tuple] = ("notes",)

    id: str
    room_id: str
    player1_id: str
    player2_id: str
    player1_score: int
    player2_score: int
    winner_id: str
    notes: str = ""
    date: datetime = field(default_factory=utc_now)

    @classmethod
    def _coerce(cls, values: dict) -> dict:
        values = super()._coerce(values)
        for name in ("player1_score", "player2_score"):
            if name in values:
                values[name] = parse_score(values[name], to_camel(name))
        return values

    def check_winner(self) -> None:
        """Raise ValidationError unless winner_id is the higher-scoring participant."""
        if self.player1_id == self.player2_id:
            raise ValidationError("A player cannot play against themselves", field="player2Id")
        expected = decide_winner(self.player1_id, self.player2_id, self.player1_score, self.player2_score)
        if self.winner_id != expected:
            raise ValidationError(
                f"winnerId {self.winner_id!r} does not match the scores (expected {expected!r})",
                field="winnerId"
            )

    def involves(self, player_id: str) -> bool:
        return player_id in (self.player1_id, self.player2_id)

    def score_for(self, player_id: str) -> tuple[int, int]:
        """(own score, opponent score) from the given player's side."""
        if self.player1_id == player_id:
            return self.player1_score, self.player2_score
        return self.player2_score, self.player1_score


@dataclass(frozen=True)
class Setting(Record):
    """A process-wide key/value setting. The ID is the key."""

    TIMESTAMP_FIELDS: ClassVar[tuple] = ("updated_at",)

    id: str
    value: Any = None
    updated_at: datetime = field(default_factory=utc_now)


MODELS = {
    "rooms": Room,
    "players": Player,
    "matches": Match,
    "settings": Setting,
}


@dataclass
class RoomSummary:
    """Counts and latest match for a room."""

    player_count: int
    match_count: int
    most_recent_match: Optional[Match]


@dataclass
class PlayerStats:
    """Computed statistics for a player."""

    match_count: int = 0
    wins: int = 0
    losses: int = 0
    win_percentage: int = 0
    current_streak: int = 0
    streak_is_winning: bool = False
    avg_score_for: float = 0
    avg_score_against: float = 0
    win_loss_ratio: float = 0


@dataclass
class PlayerHighlight:
    """A player standing out in a room, with the count that earned it."""

    player_id: str
    name: str
    count: int


@dataclass
class RoomStats:
    """Computed statistics for a room."""

    total_matches: int
    avg_score_per_match: float
    avg_matches_per_day: float
    most_active_player: Optional[PlayerHighlight]
    most_winning_player: Optional[PlayerHighlight]


@dataclass
class HeadToHeadStats:
    """Head-to-head statistics between two players."""

    total_matches: int
    player1_wins: int
    player2_wins: int
    player1_avg_score: float
    player2_avg_score: float
    current_streak: int
    streak_holder: Optional[Player]


@dataclass
class WinDistributionEntry:
    player_id: str
    name: str
    wins: int
    win_percentage: int


@dataclass
class DayActivity:
    """Matches played on one calendar day."""

    day: Date
    count: int
    matches: list[Match]


@dataclass
class LeaderboardEntry:
    player_id: str
    name: str
    stats: PlayerStats


@dataclass
class ImportResult:
    """Number of records upserted per collection by an import."""

    rooms: int = 0
    players: int = 0
    matches: int = 0
    settings: int = 0

    @property
    def total(self) -> int:
        return self.rooms + self.players + self.matches + self.settings
