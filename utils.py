"""
Utility helpers for money values, month arithmetic and filesystem paths.

Centralizes decimal coercion (every amount entering the engine goes through
to_decimal), "YYYY-MM" month handling, and the logic for resolving the
project data directory and database connection strings so the CLI and the
tests stay in sync.
"""

from __future__ import annotations

import calendar
import logging
import os
import sys
import uuid
from datetime import date
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

from sqlalchemy.engine import make_url

from exceptions import InvalidAmountError, InvalidInputError

logger = logging.getLogger(__name__)

_PROJECT_ROOT = Path(__file__).resolve().parent
_DEFAULT_DATA_DIR_NAME = "data"
_DEFAULT_DB_FILENAME = "finance.db"

CENT = Decimal("0.01")


def to_decimal(value: Any, field_name: str = "amount") -> Decimal:
    """
    Convert user input into a Decimal.

    Floats go through their string form so 0.1 stays 0.1. Strings may use a
    comma as decimal separator ("12,50").

    Args:
        value: Number or numeric string
        field_name: Name reported in the error details

    Returns:
        Decimal value

    Raises:
        InvalidAmountError: If the value is missing, boolean or not numeric
    """
    if isinstance(value, Decimal):
        result = value
    elif value is None or isinstance(value, bool):
        raise InvalidAmountError(f"Invalid {field_name}", details={field_name: value})
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(repr(value))
    elif isinstance(value, str):
        text = value.strip()
        if "," in text and "." not in text:
            text = text.replace(",", ".")
        try:
            result = Decimal(text)
        except InvalidOperation as exc:
            raise InvalidAmountError(
                f"Invalid {field_name}",
                details={field_name: value},
                original_error=exc
            ) from exc
    else:
        raise InvalidAmountError(f"Invalid {field_name}", details={field_name: value})

    if not result.is_finite():
        raise InvalidAmountError(f"Invalid {field_name}", details={field_name: value})
    return result


def to_positive_decimal(value: Any, field_name: str = "amount") -> Decimal:
    """
    Convert a value that must be strictly positive.

    Raises:
        InvalidAmountError: If the value is not numeric or is <= 0
    """
    amount = to_decimal(value, field_name)
    if amount <= 0:
        raise InvalidAmountError(f"{field_name} must be greater than 0", details={field_name: value})
    return amount


def quantize_cents(value: Decimal, rounding: str = ROUND_HALF_UP) -> Decimal:
    """Round a Decimal to cents."""
    return value.quantize(CENT, rounding=rounding)


def floor_cents(value: Decimal) -> Decimal:
    """Round a Decimal down to cents."""
    return value.quantize(CENT, rounding=ROUND_DOWN)


def new_id(prefix: str = "") -> str:
    """Generate a unique identifier, optionally prefixed (e.g. 'custom_')."""
    return f"{prefix}{uuid.uuid4().hex[:12]}"


def parse_month(month: str) -> Tuple[int, int]:
    """
    Parse a "YYYY-MM" month string.

    Args:
        month: Month string

    Returns:
        Tuple of (year, month)

    Raises:
        InvalidInputError: If the string is not a valid month
    """
    try:
        year_str, month_str = str(month).strip().split("-")[:2]
        year, month_num = int(year_str), int(month_str)
    except (ValueError, AttributeError) as exc:
        raise InvalidInputError(
            f"Invalid month '{month}'. Use YYYY-MM",
            details={"month": month},
            original_error=exc
        ) from exc
    if not 1 <= month_num <= 12:
        raise InvalidInputError(f"Invalid month '{month}'. Use YYYY-MM", details={"month": month})
    return year, month_num


def format_month(value: date) -> str:
    """Return the "YYYY-MM" month of a date."""
    return f"{value.year:04d}-{value.month:02d}"


def months_between(start: date, end_month: str) -> int:
    """
    Whole months from the month of `start` to `end_month`.

    Args:
        start: Reference date (only year/month are used)
        end_month: Target month as "YYYY-MM"

    Returns:
        Signed number of months (negative when the target is in the past)
    """
    year, month = parse_month(end_month)
    return (year - start.year) * 12 + (month - start.month)


def days_in_month(year: int, month: int) -> int:
    """Number of days of the given month."""
    return calendar.monthrange(year, month)[1]


def charge_day(day_of_month: int, year: int, month: int) -> int:
    """
    Actual charge day of a recurring obligation in a month.

    An obligation configured for day 31 is charged on the last day of
    shorter months.
    """
    return min(day_of_month, days_in_month(year, month))


def in_month(value: date, month: str) -> bool:
    """True when the date falls in the "YYYY-MM" month."""
    return format_month(value) == month


def prompt_user_choice(
    message: str,
    options: Dict[str, str],
    default: str,
    *,
    input_func: Optional[Callable[[str], str]] = None
) -> str:
    """
    Ask the user to pick one of several keyed options.

    Answers are matched case-insensitively and an empty answer selects the
    default. Without an input_func and without a terminal attached, the
    default is returned straight away so scripted runs never block.

    Args:
        message: Question shown to the user
        options: Option key -> short description
        default: Key chosen on empty input or in non-interactive runs
        input_func: Replacement for the builtin input

    Returns:
        The chosen option key

    Raises:
        ValueError: If options is empty or default is not one of them
    """
    if default not in (options or {}):
        raise ValueError(f"Default '{default}' must be one of {list(options or {})}")

    if input_func is None:
        if sys.stdin is None or not sys.stdin.isatty():
            logger.debug(f"No terminal attached, answering '{default}' to: {message}")
            return default
        input_func = input

    choices = ", ".join(f"[{key}] {label}" for key, label in options.items())
    question = f"{message} {choices} (default {default}): "
    answer = input_func(question).strip().lower()
    while answer and answer not in options:
        logger.warning(f"'{answer}' is not one of {', '.join(options)}")
        answer = input_func(question).strip().lower()
    return answer or default


def get_project_root() -> Path:
    """Directory holding the application modules; relative paths hang off it."""
    return _PROJECT_ROOT


def _absolute(path_value: str | Path) -> Path:
    path = Path(path_value)
    return path if path.is_absolute() else get_project_root() / path


def _make_parent(path: Path) -> Path:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.error(f"Cannot create directory {path.parent}: {exc}")
        raise
    return path


def get_data_dir(config: Optional[Dict[str, Any]] = None) -> Path:
    """Configured data directory (database.data_dir), not created."""
    database = (config or {}).get("database") or {}
    return _absolute(database.get("data_dir") or _DEFAULT_DATA_DIR_NAME)


def ensure_data_dir(config: Optional[Dict[str, Any]] = None) -> Path:
    """Like get_data_dir, but creates the directory when it is missing."""
    data_dir = get_data_dir(config)
    try:
        data_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.error(f"Cannot create data directory {data_dir}: {exc}")
        raise
    return data_dir


def sqlite_file_path(connection_string: str) -> Optional[Path]:
    """
    File behind a SQLite connection string.

    Args:
        connection_string: SQLAlchemy URL, e.g. "sqlite:///data/finance.db"

    Returns:
        Absolute path of the database file, or None for other drivers and
        in-memory databases

    Raises:
        sqlalchemy.exc.ArgumentError: If the URL cannot be parsed
    """
    url = make_url(connection_string)
    if not url.drivername.startswith("sqlite") or url.database in (None, "", ":memory:"):
        return None
    return _absolute(url.database)


def resolve_connection_string(config: Optional[Dict[str, Any]] = None) -> str:
    """
    Pick the database URL the application should open.

    DB_CONNECTION_STRING in the environment wins over
    database.connection_string, which wins over a SQLite file named by
    database.path inside the data directory. For SQLite files the parent
    directory is created so the engine can open them.

    Args:
        config: Loaded configuration

    Returns:
        SQLAlchemy connection string
    """
    database = (config or {}).get("database") or {}
    explicit = os.environ.get("DB_CONNECTION_STRING") or database.get("connection_string")
    if explicit:
        db_file = sqlite_file_path(explicit)
        if db_file is not None:
            _make_parent(db_file)
        return explicit

    db_file = Path(database.get("path") or _DEFAULT_DB_FILENAME)
    if not db_file.is_absolute():
        db_file = ensure_data_dir(config) / db_file
    return f"sqlite:///{_make_parent(db_file).as_posix()}"


def resolve_log_path(log_path: str) -> Path:
    """Absolute location for the log file, with its directory in place."""
    return _make_parent(_absolute(log_path))
