"""
Reap Service for running and recording reaps.

Provides:
- Reaping a single table with its configured policy
- Reaping every configured table in one pass
- Previewing what a reap would take
- Reap history and statistics
- Listing backup tables still waiting for reconciliation
"""

import logging
import time
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dbreaper.config import Settings, get_settings
from dbreaper.metrics import record_reap
from dbreaper.models import ReapLog, ReapStatus
from dbreaper.reaper import (
    DumpExporter,
    ExportError,
    InvalidInputError,
    QueryExecutionError,
    ReapableTable,
    ReapOrchestrator,
    ReapRequest,
    ReapResult,
    build_predicate,
)
from dbreaper.reaper.conditions import validate_identifier

logger = logging.getLogger(__name__)


class ReapService:
    """Service for running reaps against configured tables"""

    def __init__(
        self,
        db: Session,
        settings: Optional[Settings] = None,
        orchestrator: Optional[ReapOrchestrator] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.engine = db.get_bind()
        self.orchestrator = orchestrator or ReapOrchestrator(
            policy=self.settings.default_policy(),
            exporter=DumpExporter(
                tool_path=self.settings.dump_tool_path,
                timeout=self.settings.dump_timeout,
            ),
        )

    def reapable(self, table_name: str, restrict_conditions: bool = False) -> ReapableTable:
        """
        Build the reapable for a table.

        With ``restrict_conditions`` the table's columns are reflected and
        conditions may only compare them with bound values.
        """
        columns = self._table_columns(table_name) if restrict_conditions else None
        return ReapableTable(
            table_name=table_name,
            engine=self.engine,
            timestamp_column=self.settings.timestamp_column_for(table_name),
            condition_columns=columns,
        )

    def _table_columns(self, table_name: str) -> frozenset:
        validate_identifier(table_name, "table name")
        try:
            return frozenset(c["name"] for c in inspect(self.engine).get_columns(table_name))
        except SQLAlchemyError as e:
            raise QueryExecutionError(
                f"Could not read the columns of {table_name}: {e}",
                table_name=table_name,
            ) from e

    @staticmethod
    def _check_restricted(request: ReapRequest) -> None:
        # Restricted callers can't take a whole table in one request
        if request.ignore_expiry and not request.conditions:
            raise InvalidInputError("ignore_expiry needs a condition")

    # ==================== Execution ====================

    def reap_table(
        self,
        table_name: str,
        request: Optional[ReapRequest] = None,
        restrict_conditions: bool = False,
        **overrides,
    ) -> ReapResult:
        """
        Reap one table and record the attempt.

        Errors are recorded in the reap log and then re-raised. Requests from
        untrusted callers should set ``restrict_conditions``.
        """
        result, _, error = self._run(table_name, request or ReapRequest(), overrides, restrict_conditions)
        if error is not None:
            raise error
        return result

    def reap_configured_tables(self) -> List[ReapLog]:
        """Reap every configured table in order; a failed table doesn't stop the rest"""
        logs = []
        for table_name in self.settings.tables:
            _, log, _ = self._run(table_name, ReapRequest(), {})
            logs.append(log)

        total = sum(log.rows_reaped for log in logs)
        failed = sum(1 for log in logs if log.status in (ReapStatus.FAILED.value, ReapStatus.EXPORT_FAILED.value))
        logger.info(f"Reaped {total} rows across {len(logs)} tables ({failed} failed)")
        return logs

    def _run(
        self,
        table_name: str,
        request: ReapRequest,
        overrides: Dict[str, Any],
        restrict_conditions: bool = False,
    ) -> Tuple[Optional[ReapResult], ReapLog, Optional[Exception]]:
        start_time = time.time()

        # Don't hold a session snapshot open across the reap's own transaction
        self.db.commit()

        try:
            policy = self.settings.policy_for(table_name).merge(**overrides)
            if restrict_conditions:
                self._check_restricted(request)
            reapable = self.reapable(table_name, restrict_conditions=restrict_conditions)
            result = self.orchestrator.reap(reapable, request, policy=policy)
        except ExportError as e:
            log = self._create_log(
                table_name, request, policy,
                status=ReapStatus.EXPORT_FAILED,
                rows_reaped=e.rows_reaped or 0,
                backup_table_name=e.backup_table_name,
                error=e,
                start_time=start_time,
            )
            logger.error(
                f"Reaped {e.rows_reaped} rows from {table_name} but the export failed; "
                f"{e.backup_table_name} must be reconciled manually"
            )
            return None, log, e
        except Exception as e:
            log = self._create_log(
                table_name, request, None,
                status=ReapStatus.FAILED,
                error=e,
                start_time=start_time,
            )
            logger.error(f"Failed to reap {table_name}: {e}")
            return None, log, e

        status = ReapStatus.SKIPPED if result.skipped else ReapStatus.SUCCESS
        log = self._create_log(
            table_name, request, policy,
            status=status,
            rows_reaped=result.rows_reaped,
            backup_table_name=result.backup_table_name,
            export_performed=result.export_performed,
            output_file=result.output_file,
            cutoff_date=result.cutoff,
            start_time=start_time,
        )
        return result, log, None

    def _create_log(
        self,
        table_name: str,
        request: ReapRequest,
        policy,
        status: ReapStatus,
        rows_reaped: int = 0,
        backup_table_name: Optional[str] = None,
        export_performed: bool = False,
        output_file: Optional[str] = None,
        cutoff_date: Optional[datetime] = None,
        error: Optional[Exception] = None,
        start_time: Optional[float] = None,
    ) -> ReapLog:
        """Create a reap execution log"""
        duration = time.time() - start_time if start_time else None
        conditions = request.conditions
        if isinstance(conditions, (tuple, list)):
            conditions = conditions[0]

        if policy is None:
            policy = self.settings.policy_for(table_name)

        # The backup table stays when the export was skipped, failed, or asked to keep it
        preserved = bool(backup_table_name) and status != ReapStatus.FAILED and (
            not export_performed or policy.preserve_backup_table
        )

        log = ReapLog(
            table_name=table_name[:64],
            backup_table_name=backup_table_name if status != ReapStatus.FAILED else None,
            conditions=conditions[:1000] if conditions else None,
            ignore_expiry=request.ignore_expiry,
            cutoff_date=cutoff_date,
            status=status.value,
            rows_reaped=rows_reaped,
            move_records=policy.move_records,
            export_performed=export_performed,
            output_file=output_file,
            backup_table_preserved=preserved,
            error_type=type(error).__name__ if error else None,
            error_message=str(error)[:500] if error else None,
            duration_ms=int(duration * 1000) if duration is not None else None,
        )

        self.db.add(log)
        self.db.commit()
        self.db.refresh(log)

        record_reap(table_name, status.value, rows_reaped, duration)

        return log

    # ==================== Preview ====================

    def preview(
        self,
        table_name: str,
        request: Optional[ReapRequest] = None,
        restrict_conditions: bool = False,
    ) -> Dict[str, Any]:
        """Count the rows a reap would take, without touching anything"""
        request = request or ReapRequest()
        if restrict_conditions:
            self._check_restricted(request)
        reapable = self.reapable(table_name, restrict_conditions=restrict_conditions)
        policy = self.settings.policy_for(table_name)

        predicate = build_predicate(
            policy.expiry,
            request.conditions,
            ignore_expiry=request.ignore_expiry,
            timestamp_column=reapable.timestamp_column,
            sanitize=reapable.sanitize_conditions,
        )
        source = self.engine.dialect.identifier_preparer.quote_identifier(table_name)

        try:
            with self.engine.connect() as conn:
                count = conn.execute(
                    predicate.bind(f"SELECT COUNT(*) FROM {source}{predicate.where}")
                ).scalar_one()
        except SQLAlchemyError as e:
            raise QueryExecutionError(
                f"Query execution failed while previewing {table_name}: {e}",
                table_name=table_name,
            ) from e

        if request.limit:
            count = min(count, request.limit)

        return {
            "table_name": table_name,
            "expiry": policy.expiry,
            "cutoff_date": predicate.cutoff.isoformat() if predicate.cutoff else None,
            "predicate": predicate.sql,
            "rows_to_reap": int(count),
        }

    # ==================== Reporting ====================

    def get_logs(
        self,
        table_name: Optional[str] = None,
        days: int = 30,
        limit: int = 100,
    ) -> List[ReapLog]:
        """Get reap execution logs"""
        since = datetime.utcnow() - timedelta(days=days)

        query = self.db.query(ReapLog).filter(ReapLog.executed_at >= since)

        if table_name:
            query = query.filter(ReapLog.table_name == table_name)

        return query.order_by(ReapLog.executed_at.desc(), ReapLog.id.desc()).limit(limit).all()

    def list_backup_tables(self) -> List[str]:
        """Backup tables still in the database (exports skipped, failed or preserved)"""
        prefixes = {self.settings.backup_table_prefix}
        prefixes.update(
            o.backup_table_prefix for o in self.settings.tables.values() if o.backup_table_prefix
        )
        names = inspect(self.engine).get_table_names()
        return sorted(n for n in names if any(n.startswith(p) for p in prefixes if p))

    def get_stats(self) -> Dict[str, Any]:
        """Get reap statistics"""
        runs = dict(
            self.db.query(ReapLog.status, func.count(ReapLog.id)).group_by(ReapLog.status).all()
        )
        rows_by_table = dict(
            self.db.query(ReapLog.table_name, func.coalesce(func.sum(ReapLog.rows_reaped), 0))
            .group_by(ReapLog.table_name)
            .all()
        )

        return {
            "tables": {
                "configured": len(self.settings.tables),
                "reaped": len(rows_by_table),
            },
            "runs": {status.value: runs.get(status.value, 0) for status in ReapStatus},
            "total_rows_reaped": int(sum(rows_by_table.values())),
            "rows_reaped_by_table": {k: int(v) for k, v in rows_by_table.items()},
            "backup_tables": self.list_backup_tables(),
        }
