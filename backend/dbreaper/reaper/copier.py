"""
Transactional copy of expired rows into a backup table.

Inside a single transaction:
1. drop any table already carrying the backup name
2. CREATE TABLE backup AS SELECT * FROM source WHERE predicate
3. optionally delete the same rows from source
4. count the rows in the backup table
"""
import logging
import re
from typing import Optional

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql.elements import TextClause

from dbreaper.reaper.conditions import validate_identifier
from dbreaper.reaper.errors import InvalidInputError, QueryExecutionError
from dbreaper.reaper.types import Predicate

logger = logging.getLogger(__name__)

ORDER_RE = re.compile(
    r"^\s*[A-Za-z_]\w*(\s+(asc|desc))?(\s*,\s*[A-Za-z_]\w*(\s+(asc|desc))?)*\s*$",
    re.IGNORECASE,
)

# DDL on these dialects commits implicitly, so rollback can't remove the backup table
NON_TRANSACTIONAL_DDL = {"mysql", "mariadb"}


class TableCopier:
    """Copies (and optionally moves) predicate-matched rows into a backup table"""

    def __init__(self, engine: Engine):
        self.engine = engine
        self.preparer = engine.dialect.identifier_preparer

    def copy(
        self,
        table_name: str,
        backup_table_name: str,
        predicate: Predicate,
        move_records: bool = True,
        order: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> int:
        """
        Copy matching rows into ``backup_table_name``.

        Args:
            table_name: Live table to reap
            backup_table_name: Table to create; replaced if it already exists
            predicate: WHERE expression selecting rows to reap
            move_records: Also delete the copied rows from the live table
            order: Optional ``col [asc|desc], ...`` applied to the copy
            limit: Optional cap on the number of rows reaped

        Returns:
            Number of rows in the backup table after the copy

        Raises:
            InvalidInputError: Bad names, order or limit (nothing executed)
            QueryExecutionError: A statement failed; everything was rolled back
        """
        if not backup_table_name or not backup_table_name.strip():
            raise InvalidInputError("backup_table_name cannot be empty")
        validate_identifier(table_name, "table name")
        validate_identifier(backup_table_name, "backup table name")
        if order is not None and not ORDER_RE.match(order):
            raise InvalidInputError(f"Invalid order clause: {order!r}")
        if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit < 1):
            raise InvalidInputError(f"Limit must be a positive integer, got {limit!r}")

        source = self.preparer.quote_identifier(table_name)
        backup = self.preparer.quote_identifier(backup_table_name)

        copy_stmt = predicate.bind(self._copy_sql(source, backup, predicate, order, limit))
        delete_stmt = self._delete_stmt(table_name, source, backup, predicate, limit) if move_records else None

        with self.engine.connect() as conn:
            trans = conn.begin()
            try:
                conn.execute(text(f"DROP TABLE IF EXISTS {backup}"))
                conn.execute(copy_stmt)
                rows_reaped = conn.execute(text(f"SELECT COUNT(*) FROM {backup}")).scalar_one()

                if delete_stmt is not None:
                    deleted = conn.execute(delete_stmt).rowcount
                    if deleted is not None and deleted >= 0 and deleted != rows_reaped:
                        raise QueryExecutionError(
                            f"Deleted {deleted} rows from {table_name} but copied {rows_reaped} "
                            f"into {backup_table_name}",
                            table_name=table_name,
                            backup_table_name=backup_table_name,
                        )

                trans.commit()
            except QueryExecutionError:
                self._rollback(trans, backup)
                raise
            except SQLAlchemyError as e:
                self._rollback(trans, backup)
                logger.error(f"Reap of {table_name} into {backup_table_name} rolled back: {e}")
                raise QueryExecutionError(
                    f"Query execution failed while reaping {table_name}: {e}",
                    table_name=table_name,
                    backup_table_name=backup_table_name,
                ) from e
            except Exception:
                self._rollback(trans, backup)
                raise

        logger.info(f"Copied {rows_reaped} rows from {table_name} into {backup_table_name}")
        return int(rows_reaped)

    def _copy_sql(
        self,
        source: str,
        backup: str,
        predicate: Predicate,
        order: Optional[str],
        limit: Optional[int],
    ) -> str:
        sql = f"CREATE TABLE {backup} AS SELECT * FROM {source}{predicate.where}"
        if order:
            sql += f" ORDER BY {order.strip()}"
        if limit:
            sql += f" LIMIT {int(limit)}"
        return sql

    def _delete_stmt(
        self,
        table_name: str,
        source: str,
        backup: str,
        predicate: Predicate,
        limit: Optional[int],
    ) -> TextClause:
        if not limit:
            return predicate.bind(f"DELETE FROM {source}{predicate.where}")

        # A limited copy only covers part of the matching rows; delete exactly those
        pk_columns = inspect(self.engine).get_pk_constraint(table_name).get("constrained_columns") or []
        if len(pk_columns) != 1:
            raise InvalidInputError(
                f"A limited reap needs a single-column primary key on {table_name}, "
                f"found {pk_columns or 'none'}"
            )
        pk = self.preparer.quote_identifier(pk_columns[0])
        return text(f"DELETE FROM {source} WHERE {pk} IN (SELECT {pk} FROM {backup})")

    def _rollback(self, trans, backup: str) -> None:
        if trans.is_active:
            trans.rollback()

        if self.engine.dialect.name in NON_TRANSACTIONAL_DDL:
            try:
                with self.engine.begin() as conn:
                    conn.execute(text(f"DROP TABLE IF EXISTS {backup}"))
            except SQLAlchemyError as e:
                logger.error(f"Could not remove {backup} after rollback: {e}")
