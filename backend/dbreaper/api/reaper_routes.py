"""
Reaper API routes.

Endpoints:
- GET /reaper/tables - List configured tables and their effective policies
- GET /reaper/tables/{table}/preview - Count rows a reap would take
- POST /reaper/tables/{table}/reap - Reap one configured table
- POST /reaper/reap - Reap every configured table
- GET /reaper/logs - Get reap history
- GET /reaper/stats - Get reap statistics

Reaps block on the dump tool, so handlers are plain functions and run in
the threadpool.

Conditions sent over HTTP may only compare the table's own columns with
:named parameters, e.g. ``status = :status``.
"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from dbreaper.config import Settings, get_settings
from dbreaper.database import get_db
from dbreaper.error_handlers import NotFoundError
from dbreaper.middleware.auth import get_api_key
from dbreaper.reaper import InvalidInputError, ReapRequest
from dbreaper.services.reap_service import ReapService
from dbreaper.schemas.reaper_schemas import (
    ReapAllResponse,
    ReapLogResponse,
    ReapPreviewResponse,
    ReapRequestSchema,
    ReapResultResponse,
    ReapStatsResponse,
    TablePolicyResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reaper", tags=["Reaper"], dependencies=[Depends(get_api_key)])


def get_reap_service(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> ReapService:
    return ReapService(db, settings=settings)


def _require_configured(service: ReapService, table_name: str) -> None:
    # Only tables an operator configured can be reaped over HTTP
    if table_name not in service.settings.tables:
        raise NotFoundError(f"Table '{table_name}' is not configured for reaping")


def _parse_params(raw: str) -> dict:
    try:
        params = json.loads(raw)
    except ValueError:
        raise InvalidInputError("params must be a JSON object")
    if not isinstance(params, dict):
        raise InvalidInputError("params must be a JSON object")
    return params


@router.get(
    "/tables",
    response_model=list[TablePolicyResponse],
    status_code=status.HTTP_200_OK,
    summary="List configured tables"
)
def list_tables(service: ReapService = Depends(get_reap_service)):
    """
    List the tables configured for reaping with their effective policies.
    """
    tables = []
    for table_name in service.settings.tables:
        policy = service.settings.policy_for(table_name)
        tables.append(TablePolicyResponse(
            table_name=table_name,
            timestamp_column=service.settings.timestamp_column_for(table_name),
            expiry=policy.expiry,
            move_records=policy.move_records,
            dump_to_file=policy.dump_to_file,
            preserve_backup_table=policy.preserve_backup_table,
            backup_table_prefix=policy.backup_table_prefix,
            reaper_data_dir=policy.reaper_data_dir,
            dump_timeout=policy.dump_timeout,
        ))
    return tables


@router.get(
    "/tables/{table_name}/preview",
    response_model=ReapPreviewResponse,
    status_code=status.HTTP_200_OK,
    summary="Preview a reap"
)
def preview_table(
    table_name: str,
    conditions: Optional[str] = Query(None, max_length=1000, description="Extra predicate, e.g. status = :status"),
    params: Optional[str] = Query(None, max_length=2000, description="JSON object of values for :named parameters"),
    ignore_expiry: bool = Query(False, description="Skip the expiry clause"),
    limit: Optional[int] = Query(None, ge=1),
    service: ReapService = Depends(get_reap_service),
):
    """
    Count the rows a reap of this table would take. Nothing is changed.
    """
    _require_configured(service, table_name)
    if params:
        conditions = (conditions or "", _parse_params(params))
    request = ReapRequest(conditions=conditions, ignore_expiry=ignore_expiry, limit=limit)
    return ReapPreviewResponse(**service.preview(table_name, request, restrict_conditions=True))


@router.post(
    "/tables/{table_name}/reap",
    response_model=ReapResultResponse,
    status_code=status.HTTP_200_OK,
    summary="Reap a table"
)
def reap_table(
    table_name: str,
    body: Optional[ReapRequestSchema] = None,
    service: ReapService = Depends(get_reap_service),
):
    """
    Move expired rows of a configured table into a backup table and dump it.

    **Example:**
    ```json
    {
        "conditions": "status = :status",
        "params": {"status": "archived"},
        "ignore_expiry": false
    }
    ```

    A reap that finds no dump tool returns ``rows_reaped = 0`` with
    ``skipped_reason`` set. A failed dump answers 502 with the number of rows
    already reaped and the backup table holding them.
    """
    _require_configured(service, table_name)
    body = body or ReapRequestSchema()

    logger.info(f"Reap of {table_name} requested")
    result = service.reap_table(
        table_name,
        body.to_request(),
        restrict_conditions=True,
        **body.policy_overrides(),
    )
    return ReapResultResponse(**result.to_dict())


@router.post(
    "/reap",
    response_model=ReapAllResponse,
    status_code=status.HTTP_200_OK,
    summary="Reap all configured tables"
)
def reap_all(service: ReapService = Depends(get_reap_service)):
    """
    Reap every configured table with its configured policy.

    Failures are recorded per table and don't stop the remaining tables.
    """
    logs = service.reap_configured_tables()

    return ReapAllResponse(
        executed=len(logs),
        total_reaped=sum(log.rows_reaped for log in logs),
        logs=[ReapLogResponse.model_validate(log) for log in logs],
    )


@router.get(
    "/logs",
    response_model=list[ReapLogResponse],
    status_code=status.HTTP_200_OK,
    summary="Get reap history"
)
def get_logs(
    table_name: Optional[str] = Query(None, description="Filter by table"),
    days: int = Query(30, ge=1, le=365, description="Days of history"),
    limit: int = Query(100, ge=1, le=1000, description="Maximum logs to return"),
    service: ReapService = Depends(get_reap_service),
):
    """
    Get the reap history, newest first.
    """
    logs = service.get_logs(table_name=table_name, days=days, limit=limit)
    return [ReapLogResponse.model_validate(log) for log in logs]


@router.get(
    "/stats",
    response_model=ReapStatsResponse,
    status_code=status.HTTP_200_OK,
    summary="Get reap statistics"
)
def get_stats(service: ReapService = Depends(get_reap_service)):
    """
    Get reap statistics, including backup tables still awaiting reconciliation.
    """
    return ReapStatsResponse(**service.get_stats())
