#!/usr/bin/env python3
"""
Reap expired rows from the database

Moves rows older than the configured expiry into a timestamped backup table,
dumps that table to {reaper_data_dir}/{table}/{database}.reaped_{table}_{timestamp}.sql
and drops it. Every attempt is written to the reap_logs table.

Examples:
    # Reap every table configured in TABLES
    python scripts/reap_tables.py

    # Reap one table, taking only archived rows
    python scripts/reap_tables.py --table events --conditions "status = 'archived'"

    # See how many rows would go, without changing anything
    python scripts/reap_tables.py --table events --preview

Exits with status 1 when any reap fails. A failed dump leaves the rows in the
backup table named in the log output.
"""
import sys
import logging
import argparse
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dbreaper.config import get_settings
from dbreaper.database import get_session_factory, init_db
from dbreaper.models import ReapStatus
from dbreaper.reaper import ReaperError, ReapRequest
from dbreaper.services.reap_service import ReapService

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Reap expired rows into backup tables and SQL dumps",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )

    parser.add_argument(
        '--table',
        help='Reap only this table (default: every configured table)'
    )
    parser.add_argument(
        '--conditions',
        help='Extra SQL predicate ANDed with the expiry clause'
    )
    parser.add_argument(
        '--ignore-expiry',
        action='store_true',
        help='Drop the expiry clause and reap on --conditions alone'
    )
    parser.add_argument(
        '--order',
        help='Order rows before --limit, e.g. "created_at asc"'
    )
    parser.add_argument(
        '--limit',
        type=int,
        help='Reap at most this many rows'
    )
    parser.add_argument(
        '--no-dump',
        action='store_true',
        help="Don't dump the backup table; it stays in the database"
    )
    parser.add_argument(
        '--keep-rows',
        action='store_true',
        help='Copy rows into the backup table without deleting them'
    )
    parser.add_argument(
        '--preserve-backup',
        action='store_true',
        help='Keep the backup table after a successful dump'
    )
    parser.add_argument(
        '--preview',
        action='store_true',
        help='Only report how many rows would be reaped'
    )
    return parser


def main(argv=None):
    """Main entry point"""
    args = build_parser().parse_args(argv)
    settings = get_settings()

    if args.limit is not None and args.limit < 1:
        logger.error("--limit must be a positive number")
        return 1
    if args.ignore_expiry and not args.conditions:
        logger.warning("--ignore-expiry without --conditions reaps every row")

    init_db()
    db = get_session_factory()()

    try:
        service = ReapService(db, settings=settings)
        request = ReapRequest(
            conditions=args.conditions,
            ignore_expiry=args.ignore_expiry,
            order=args.order,
            limit=args.limit,
        )

        if args.preview:
            tables = [args.table] if args.table else list(settings.tables)
            for table_name in tables:
                preview = service.preview(table_name, request)
                logger.info(
                    f"{table_name}: {preview['rows_to_reap']} rows would be reaped "
                    f"(cutoff {preview['cutoff_date'] or 'none'})"
                )
            return 0

        if args.table:
            result = service.reap_table(
                args.table,
                request,
                move_records=False if args.keep_rows else None,
                dump_to_file=False if args.no_dump else None,
                preserve_backup_table=True if args.preserve_backup else None,
            )
            if result.skipped:
                logger.warning(f"{args.table} was not reaped: {result.skipped_reason}")
                return 1
            logger.info(f"Reaped {result.rows_reaped} rows from {args.table}")
            return 0

        if not settings.tables:
            logger.error("No tables configured; pass --table or set TABLES")
            return 1

        logs = service.reap_configured_tables()
        failed = [
            log for log in logs
            if log.status in (ReapStatus.FAILED.value, ReapStatus.EXPORT_FAILED.value)
        ]
        if failed:
            logger.warning(f"{len(failed)} tables failed to reap. Check logs for details.")
            return 1
        return 0

    except ReaperError as e:
        logger.error(f"Reap failed: {e}")
        return 1

    except Exception as e:
        logger.error(f"Error during reaping: {str(e)}", exc_info=True)
        return 1

    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
