"""
Reaper core: move expired rows into timestamped backup tables and dump them.
"""
from dbreaper.reaper.conditions import build_predicate, restrict_to_columns, sanitize_condition
from dbreaper.reaper.copier import TableCopier
from dbreaper.reaper.errors import (
    ExportError,
    InvalidInputError,
    QueryExecutionError,
    ReaperError,
    ToolUnavailableError,
)
from dbreaper.reaper.exporter import ConnectionParams, DumpExporter
from dbreaper.reaper.naming import backup_table_name, dump_file_path
from dbreaper.reaper.orchestrator import ReapOrchestrator
from dbreaper.reaper.reapable import Reapable, ReapableTable
from dbreaper.reaper.types import Predicate, ReapRequest, ReapResult, RetentionPolicy

__all__ = [
    "build_predicate",
    "restrict_to_columns",
    "sanitize_condition",
    "TableCopier",
    "ReaperError",
    "InvalidInputError",
    "ToolUnavailableError",
    "QueryExecutionError",
    "ExportError",
    "ConnectionParams",
    "DumpExporter",
    "backup_table_name",
    "dump_file_path",
    "ReapOrchestrator",
    "Reapable",
    "ReapableTable",
    "Predicate",
    "ReapRequest",
    "ReapResult",
    "RetentionPolicy",
]
