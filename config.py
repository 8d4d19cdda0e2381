"""Environment configuration for Ping Pong Match Tracker."""

import os
from dataclasses import dataclass


@dataclass
class Config:
    """Tracker configuration loaded from environment variables."""

    database_path: str

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        database_path = os.getenv("TRACKER_DATABASE_PATH", DB_NAME)
        if not database_path.strip():
            raise ValueError("TRACKER_DATABASE_PATH cannot be empty")

        return cls(database_path=database_path)


DB_NAME = "pingpong_tracker.db"

# Collections in the record store (one table each)
COLLECTIONS = ("rooms", "players", "matches", "settings")

# Export/import schema version
EXPORT_VERSION = 1

APP_NAME = "Ping Pong Match Tracker"
APP_VERSION = "1.0.0"

# Setting keys
SETTING_LAST_SELECTED_ROOM = "lastSelectedRoom"
SETTING_LAST_BACKUP_DATE = "lastBackupDate"

# Backup reminder thresholds (days since last backup -> message)
BACKUP_REMINDERS = [
    (30, "It has been over a month since your last backup. Please consider exporting your data."),
    (14, "It has been over two weeks since your last backup. Consider exporting your data soon."),
    (7, "It has been over a week since your last backup."),
]
NEVER_BACKED_UP_REMINDER = "You have never backed up your data. Consider exporting your data."

# Days shown in the match activity chart
DEFAULT_ACTIVITY_DAYS = 10
