"""
Backup table and dump file naming.

Names have second resolution: two reaps of the same table within one second
collide, so reaps of a table must be serialized by the caller.
"""
from datetime import datetime
from pathlib import Path

from dbreaper.reaper.conditions import IDENTIFIER_RE
from dbreaper.reaper.errors import InvalidInputError

TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"

# PostgreSQL truncates longer identifiers, MySQL rejects them past 64
MAX_IDENTIFIER_LENGTH = 63


def reap_timestamp(captured_at: datetime) -> str:
    return captured_at.strftime(TIMESTAMP_FORMAT)


def backup_table_name(prefix: str, table_name: str, captured_at: datetime) -> str:
    """Build ``{prefix}{table}_{YYYYMMDDHHMMSS}``"""
    if not table_name or not table_name.strip():
        raise InvalidInputError("backup_table_name cannot be empty")

    name = f"{prefix or ''}{table_name}_{reap_timestamp(captured_at)}"

    if not IDENTIFIER_RE.match(name):
        raise InvalidInputError(f"Backup table name {name!r} is not a valid identifier")
    if len(name) > MAX_IDENTIFIER_LENGTH:
        raise InvalidInputError(
            f"Backup table name {name!r} exceeds {MAX_IDENTIFIER_LENGTH} characters"
        )
    return name


def dump_file_path(data_dir: str, database: str, table_name: str, captured_at: datetime) -> Path:
    """Build ``{data_dir}/{table}/{database}.reaped_{table}_{YYYYMMDDHHMMSS}.sql``"""
    filename = f"{database}.reaped_{table_name}_{reap_timestamp(captured_at)}.sql"
    return Path(data_dir) / table_name / filename
