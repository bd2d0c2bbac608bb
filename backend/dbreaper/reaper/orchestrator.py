"""
The reap entry point.

CheckingToolAvailability -> BuildingPredicate -> CopyingRows -> (Exporting) -> Done

Any error aborts the reap and propagates, except a missing dump tool, which
is logged and turns the reap into a no-op so rows are never removed without a
way to export them.
"""
import logging
from datetime import datetime
from typing import Callable, Optional

from dbreaper.reaper.conditions import build_predicate
from dbreaper.reaper.copier import TableCopier
from dbreaper.reaper.errors import ExportError, InvalidInputError, ToolUnavailableError
from dbreaper.reaper.exporter import ConnectionParams, DumpExporter
from dbreaper.reaper.naming import backup_table_name, dump_file_path
from dbreaper.reaper.reapable import Reapable
from dbreaper.reaper.types import ReapRequest, ReapResult, RetentionPolicy

module_logger = logging.getLogger(__name__)


class ReapOrchestrator:
    """Runs one reap per call against a Reapable"""

    def __init__(
        self,
        policy: Optional[RetentionPolicy] = None,
        exporter: Optional[DumpExporter] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
        logger: Optional[logging.Logger] = None,
    ):
        self.policy = policy or RetentionPolicy()
        self.exporter = exporter or DumpExporter()
        self.clock = clock
        self.logger = logger or module_logger

    def reap(
        self,
        reapable: Reapable,
        request: Optional[ReapRequest] = None,
        policy: Optional[RetentionPolicy] = None,
        **overrides,
    ) -> ReapResult:
        """
        Move expired rows of ``reapable`` into a timestamped backup table.

        Args:
            reapable: Table to reap
            request: Per-call conditions, ignore_expiry, order and limit
            policy: Replaces the orchestrator's policy for this call
            **overrides: Individual policy options for this call

        Returns:
            ReapResult; ``rows_reaped`` is 0 and ``skipped_reason`` set when
            the dump tool is unavailable

        Raises:
            InvalidInputError: Bad names, conditions or dump target (nothing executed)
            QueryExecutionError: Copy/delete failed and was rolled back
            ExportError: Dump failed; rows are reaped and the backup table kept
        """
        policy = (policy or self.policy).merge(**overrides)
        request = request or ReapRequest()
        engine = reapable.engine
        table_name = reapable.table_name

        try:
            self.exporter.resolve_tool(engine.dialect.name)
        except ToolUnavailableError as e:
            self.logger.error(str(e))
            return ReapResult(table_name=table_name, skipped_reason=str(e))
        except InvalidInputError:
            # No dump tool exists for this dialect; only fatal if we need one
            if policy.dump_to_file:
                raise

        if policy.dump_to_file:
            self.exporter.check_target(engine)

        reaped_at = self.clock()
        backup = backup_table_name(policy.backup_table_prefix, table_name, reaped_at)

        predicate = build_predicate(
            policy.expiry,
            request.conditions,
            ignore_expiry=request.ignore_expiry,
            now=reaped_at,
            timestamp_column=reapable.timestamp_column,
            sanitize=reapable.sanitize_conditions,
        )

        rows_reaped = TableCopier(engine).copy(
            table_name,
            backup,
            predicate,
            move_records=policy.move_records,
            order=request.order,
            limit=request.limit,
        )

        output_file = None
        if policy.dump_to_file:
            database = ConnectionParams.from_url(engine.url).database_label
            path = dump_file_path(policy.reaper_data_dir, database, table_name, reaped_at)
            try:
                output_file = self.exporter.export(
                    engine,
                    backup,
                    path,
                    preserve_backup_table=policy.preserve_backup_table,
                    timeout=policy.dump_timeout,
                )
            except ExportError as e:
                e.rows_reaped = rows_reaped
                raise

        self.logger.info(
            f"Reaped {rows_reaped} rows from {table_name}"
            + (f" to {output_file}" if output_file else f" into {backup}")
        )

        return ReapResult(
            table_name=table_name,
            rows_reaped=rows_reaped,
            backup_table_name=backup,
            export_performed=output_file is not None,
            output_file=str(output_file) if output_file else None,
            reaped_at=reaped_at,
            cutoff=predicate.cutoff,
        )
