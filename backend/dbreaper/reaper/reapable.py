"""
The Reapable contract: anything backed by a table the reaper can operate on.
"""
from dataclasses import dataclass
from typing import FrozenSet, Optional, Protocol, runtime_checkable

from sqlalchemy.engine import Engine

from dbreaper.reaper.conditions import (
    SanitizedCondition,
    restrict_to_columns,
    sanitize_condition,
    validate_identifier,
)
from dbreaper.reaper.types import Condition


@runtime_checkable
class Reapable(Protocol):
    """Table name, connection access and condition screening for one table"""

    @property
    def table_name(self) -> str: ...

    @property
    def engine(self) -> Engine: ...

    @property
    def timestamp_column(self) -> str: ...

    def sanitize_conditions(self, conditions: Optional[Condition]) -> Optional[SanitizedCondition]: ...


@dataclass(frozen=True)
class ReapableTable:
    """
    A plain table reachable through an engine.

    With ``condition_columns`` set, conditions may only compare those columns
    with bound values.
    """
    table_name: str
    engine: Engine
    timestamp_column: str = "created_at"
    condition_columns: Optional[FrozenSet[str]] = None

    def __post_init__(self):
        validate_identifier(self.table_name, "table name")
        validate_identifier(self.timestamp_column, "timestamp column")

    @classmethod
    def for_model(cls, model, engine: Engine, timestamp_column: str = "created_at") -> "ReapableTable":
        """Build from a SQLAlchemy declarative model class"""
        return cls(table_name=model.__tablename__, engine=engine, timestamp_column=timestamp_column)

    def sanitize_conditions(self, conditions: Optional[Condition]) -> Optional[SanitizedCondition]:
        sanitized = sanitize_condition(conditions)
        if sanitized and self.condition_columns is not None:
            restrict_to_columns(sanitized[0], self.condition_columns)
        return sanitized
