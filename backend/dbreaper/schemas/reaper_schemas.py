"""
Pydantic schemas for the reaper API.
"""

from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any
from datetime import datetime

from dbreaper.reaper.types import ReapRequest


class ReapRequestSchema(BaseModel):
    """Options for a single reap"""
    conditions: Optional[str] = Field(None, max_length=1000, description="Extra SQL predicate")
    params: Optional[Dict[str, Any]] = Field(None, description="Values for :named binds in conditions")
    ignore_expiry: bool = Field(False, description="Skip the expiry clause")
    order: Optional[str] = Field(None, max_length=200, description="col [asc|desc], ...")
    limit: Optional[int] = Field(None, ge=1, description="Maximum rows to reap")

    # Per-call policy overrides
    move_records: Optional[bool] = None
    dump_to_file: Optional[bool] = None
    preserve_backup_table: Optional[bool] = None

    def to_request(self) -> ReapRequest:
        conditions = (self.conditions, self.params) if self.params else self.conditions
        return ReapRequest(
            conditions=conditions,
            ignore_expiry=self.ignore_expiry,
            order=self.order,
            limit=self.limit,
        )

    def policy_overrides(self) -> Dict[str, Any]:
        return {
            "move_records": self.move_records,
            "dump_to_file": self.dump_to_file,
            "preserve_backup_table": self.preserve_backup_table,
        }


class ReapResultResponse(BaseModel):
    """Result of a reap"""
    table_name: str
    rows_reaped: int
    backup_table_name: Optional[str] = None
    export_performed: bool
    output_file: Optional[str] = None
    reaped_at: Optional[datetime] = None
    cutoff: Optional[datetime] = None
    skipped_reason: Optional[str] = None


class ReapLogResponse(BaseModel):
    """Reap execution log"""
    id: int
    table_name: str
    backup_table_name: Optional[str] = None
    conditions: Optional[str] = None
    ignore_expiry: bool
    cutoff_date: Optional[datetime] = None
    status: str
    rows_reaped: int
    move_records: bool
    export_performed: bool
    output_file: Optional[str] = None
    backup_table_preserved: bool
    error_type: Optional[str] = None
    error_message: Optional[str] = None
    executed_at: datetime
    duration_ms: Optional[int] = None

    class Config:
        from_attributes = True


class TablePolicyResponse(BaseModel):
    """Effective policy of a configured table"""
    table_name: str
    timestamp_column: str
    expiry: int
    move_records: bool
    dump_to_file: bool
    preserve_backup_table: bool
    backup_table_prefix: str
    reaper_data_dir: str
    dump_timeout: Optional[int] = None


class ReapPreviewResponse(BaseModel):
    """Preview of what would be reaped"""
    table_name: str
    expiry: int
    cutoff_date: Optional[str] = None
    predicate: str
    rows_to_reap: int


class ReapStatsResponse(BaseModel):
    """Reap statistics"""
    tables: Dict[str, int]
    runs: Dict[str, int]
    total_rows_reaped: int
    rows_reaped_by_table: Dict[str, int]
    backup_tables: List[str]


class ReapAllResponse(BaseModel):
    """Response after reaping every configured table"""
    executed: int
    total_reaped: int
    logs: List[ReapLogResponse]
