"""
Reaper exception taxonomy.

- ToolUnavailableError: dump utility not resolvable (logged, not raised, by reap)
- QueryExecutionError: statement failure during copy/delete (transaction rolled back)
- ExportError: dump subprocess failed (rows already reaped, backup table kept)
- InvalidInputError: bad table name, predicate, order or limit (no side effects)
"""
from typing import List, Optional


class ReaperError(Exception):
    """Base class for reaper errors"""
    pass


class InvalidInputError(ReaperError):
    """Raised before any side effect when reap input is unusable"""
    pass


class ToolUnavailableError(ReaperError):
    """Raised when the dump utility cannot be found on the execution path"""

    def __init__(self, tool: str):
        self.tool = tool
        super().__init__(
            f"{tool} is not available in your environment. "
            "The reaper will not do anything until this has been resolved."
        )


class QueryExecutionError(ReaperError):
    """Raised when a copy/delete statement fails; the transaction is rolled back"""

    def __init__(self, message: str, table_name: str, backup_table_name: Optional[str] = None):
        self.table_name = table_name
        self.backup_table_name = backup_table_name
        super().__init__(message)


class ExportError(ReaperError):
    """
    Raised when the dump utility fails or times out.

    The backup table is left in place as the only copy of the reaped rows.
    ``rows_reaped`` is filled in by the orchestrator, since the copy has
    already been committed when the export runs.
    """

    def __init__(
        self,
        command: List[str],
        exit_status: Optional[int],
        backup_table_name: str,
        timed_out: bool = False,
        reason: Optional[str] = None,
    ):
        self.command = list(command)
        self.exit_status = exit_status
        self.backup_table_name = backup_table_name
        self.timed_out = timed_out
        self.rows_reaped: Optional[int] = None

        if reason is None:
            reason = "timed out" if timed_out else f"exit status {exit_status}"
        self.reason = reason
        super().__init__(
            f"Failed to run dump cmd [{' '.join(self.command)}] ({reason}). "
            f"Data is left in the database under {backup_table_name}"
        )
