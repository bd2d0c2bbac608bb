"""
Value types passed between the reaper components.
"""
from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from sqlalchemy import DateTime, bindparam, text
from sqlalchemy.sql.elements import TextClause

# Bind name reserved for the expiry cutoff
CUTOFF_PARAM = "reaper_cutoff"

DEFAULT_EXPIRY = 7776000  # 90 days

# A caller condition is raw SQL or (SQL with :named binds, params)
Condition = Union[str, Tuple[str, Mapping[str, Any]]]


@dataclass(frozen=True)
class RetentionPolicy:
    """Effective retention settings for one reap invocation"""
    expiry: int = DEFAULT_EXPIRY
    move_records: bool = True
    dump_to_file: bool = True
    preserve_backup_table: bool = False
    backup_table_prefix: str = "reaper_"
    reaper_data_dir: str = "reaped"
    dump_timeout: Optional[int] = None

    def merge(self, **overrides) -> "RetentionPolicy":
        """Return a copy with the given options applied; None values are ignored"""
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise TypeError(f"Unknown retention option(s): {', '.join(sorted(unknown))}")
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes) if changes else self


@dataclass(frozen=True)
class ReapRequest:
    """Per-call reap options"""
    conditions: Optional[Condition] = None
    ignore_expiry: bool = False
    order: Optional[str] = None
    limit: Optional[int] = None


@dataclass(frozen=True)
class Predicate:
    """A WHERE expression plus the values bound into it"""
    sql: str = ""
    params: Mapping[str, Any] = field(default_factory=dict)
    cutoff: Optional[datetime] = None

    def __bool__(self) -> bool:
        return bool(self.sql)

    @property
    def where(self) -> str:
        return f" WHERE {self.sql}" if self.sql else ""

    def bind(self, statement: str) -> TextClause:
        """Build a text() statement with this predicate's parameters bound"""
        clause = text(statement)
        binds = [bindparam(name, value) for name, value in self.params.items()]
        if self.cutoff is not None:
            binds.append(bindparam(CUTOFF_PARAM, self.cutoff, type_=DateTime()))
        return clause.bindparams(*binds) if binds else clause


@dataclass(frozen=True)
class ReapResult:
    """Outcome of a reap"""
    table_name: str
    rows_reaped: int = 0
    backup_table_name: Optional[str] = None
    export_performed: bool = False
    output_file: Optional[str] = None
    reaped_at: Optional[datetime] = None
    cutoff: Optional[datetime] = None
    skipped_reason: Optional[str] = None

    @property
    def skipped(self) -> bool:
        return self.skipped_reason is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table_name": self.table_name,
            "rows_reaped": self.rows_reaped,
            "backup_table_name": self.backup_table_name,
            "export_performed": self.export_performed,
            "output_file": self.output_file,
            "reaped_at": self.reaped_at.isoformat() if self.reaped_at else None,
            "cutoff": self.cutoff.isoformat() if self.cutoff else None,
            "skipped_reason": self.skipped_reason,
        }
