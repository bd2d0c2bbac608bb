"""
Reap history model.

One row per reap attempt, kept for audit and so operators can find backup
tables left behind by skipped exports or failed dumps.
"""

from sqlalchemy import Column, String, DateTime, Boolean, Integer, Index
from datetime import datetime
import enum
from dbreaper.database import Base


class ReapStatus(str, enum.Enum):
    """Outcome of a reap attempt"""
    SUCCESS = "success"
    SKIPPED = "skipped"  # dump tool unavailable, nothing touched
    FAILED = "failed"  # copy/delete rolled back, or input rejected
    EXPORT_FAILED = "export_failed"  # rows reaped, backup table kept


class ReapLog(Base):
    """
    Log of reap executions.

    Tracks what was reaped and where it went.
    """
    __tablename__ = "reap_logs"
    __table_args__ = (
        # Per-table history queries
        Index("ix_reap_logs_table_executed", "table_name", "executed_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)

    # What was reaped
    table_name = Column(String(64), nullable=False, index=True)
    backup_table_name = Column(String(64), nullable=True)
    conditions = Column(String(1000), nullable=True)
    ignore_expiry = Column(Boolean, default=False, nullable=False)
    cutoff_date = Column(DateTime, nullable=True)

    # Result
    status = Column(String(20), nullable=False, index=True)  # ReapStatus value
    rows_reaped = Column(Integer, default=0, nullable=False)
    move_records = Column(Boolean, nullable=False)
    export_performed = Column(Boolean, default=False, nullable=False)
    output_file = Column(String(500), nullable=True)
    backup_table_preserved = Column(Boolean, default=False, nullable=False)

    # Failure details
    error_type = Column(String(50), nullable=True)
    error_message = Column(String(500), nullable=True)

    # Metadata
    executed_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    duration_ms = Column(Integer, nullable=True)

    @property
    def success(self) -> bool:
        return self.status == ReapStatus.SUCCESS.value

    def __repr__(self):
        return f"<ReapLog(table={self.table_name}, status={self.status}, rows={self.rows_reaped})>"
