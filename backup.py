"""
Backup and restore of the SQLite database file.

Importing a snapshot replaces the whole stored state, so a timestamped copy
of the database file is taken first. Backups are plain file copies named
finance_backup_<timestamp>.db and can be copied back over the database.
"""

import logging
import shutil
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from sqlalchemy.exc import ArgumentError

from exceptions import BackupError
from utils import get_project_root, sqlite_file_path

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "finance_backup_"


def extract_db_path_from_connection_string(connection_string: str) -> Path:
    """
    Database file behind a connection string.

    Raises:
        BackupError: If the string cannot be parsed, names another driver or
            an in-memory database
    """
    try:
        db_file = sqlite_file_path(connection_string)
    except ArgumentError as exc:
        raise BackupError(
            f"Invalid connection string: {connection_string}",
            details={"connection_string": connection_string},
            original_error=exc
        ) from exc

    if db_file is None:
        driver = connection_string.split(":", 1)[0]
        if driver.startswith("sqlite"):
            message = "In-memory SQLite databases have no file to back up"
        else:
            message = f"Backups need a SQLite database file, got driver '{driver}'"
        raise BackupError(message, details={"connection_string": connection_string})
    return db_file.resolve()


def _database_file(target: str) -> Path:
    """Accept either a connection string or a plain file path."""
    if str(target).startswith("sqlite"):
        return extract_db_path_from_connection_string(target)
    return Path(target).resolve()


def get_backup_dir(db_path: Optional[Path] = None, config: Optional[dict] = None) -> Path:
    """
    Folder holding the backups.

    backup.backup_dir from the config is used when set (relative values are
    taken from the project root). Otherwise a backups/ folder beside the
    database file, or data/backups when no database is known.
    """
    configured = ((config or {}).get("backup") or {}).get("backup_dir")
    if configured:
        folder = Path(configured)
        if not folder.is_absolute():
            folder = get_project_root() / folder
    elif db_path is not None:
        folder = Path(db_path).parent / "backups"
    else:
        folder = get_project_root() / "data" / "backups"
    return folder.resolve()


def _copy(source: Path, destination: Path, action: str) -> None:
    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, destination)
    except (OSError, shutil.Error) as exc:
        raise BackupError(
            f"Failed to {action}: {exc}",
            details={"source": str(source), "destination": str(destination)},
            original_error=exc
        ) from exc


def create_backup(db_path: str, config: Optional[dict] = None) -> str:
    """
    Copy the database file into the backup folder.

    The copy is checked against the original size and removed if it was
    truncated.

    Args:
        db_path: Connection string or database file path
        config: Loaded configuration (for backup.backup_dir)

    Returns:
        Path of the new backup file

    Raises:
        BackupError: If the database is missing or the copy fails
    """
    source = _database_file(db_path)
    if not source.is_file():
        raise BackupError(f"Database file not found: {source}", details={"db_path": str(source)})

    stamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
    destination = get_backup_dir(source, config) / f"{BACKUP_PREFIX}{stamp}.db"
    logger.info(f"Backing up {source} to {destination}")
    _copy(source, destination, "create backup")

    expected, written = source.stat().st_size, destination.stat().st_size
    if expected != written:
        destination.unlink(missing_ok=True)
        raise BackupError(
            f"Backup size mismatch: expected {expected} bytes, wrote {written}",
            details={"backup_path": str(destination)}
        )
    return str(destination)


def list_backups(db_path: Optional[str] = None, config: Optional[dict] = None) -> List[str]:
    """Backup files in the backup folder, newest first."""
    folder = get_backup_dir(_database_file(db_path) if db_path else None, config)
    if not folder.is_dir():
        logger.debug(f"No backup folder at {folder}")
        return []
    # Timestamps sort lexically
    names = sorted((f for f in folder.glob(f"{BACKUP_PREFIX}*.db") if f.is_file()), key=lambda f: f.name)
    return [str(f) for f in reversed(names)]


def restore_backup(backup_path: str, db_path: str) -> None:
    """
    Copy a backup over the database file.

    Never asks for confirmation; the CLI does that before calling. Open
    connections to the database should be disposed first.

    Raises:
        BackupError: If the backup is missing or the copy fails
    """
    source = Path(backup_path).resolve()
    if not source.is_file():
        raise BackupError(f"Backup file not found: {backup_path}", details={"backup_path": str(source)})

    destination = _database_file(db_path)
    logger.info(f"Restoring {source} over {destination}")
    _copy(source, destination, "restore backup")
