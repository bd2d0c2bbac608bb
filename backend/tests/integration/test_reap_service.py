"""Integration tests for ReapService (services/reap_service.py)"""
import pytest
from sqlalchemy import inspect, text

from conftest import row_ids
from dbreaper.config import TablePolicyOverride
from dbreaper.models import ReapLog, ReapStatus
from dbreaper.reaper import ExportError, InvalidInputError, QueryExecutionError, ReapRequest
from dbreaper.services.reap_service import ReapService


@pytest.fixture
def service(db_session, settings, items_table):
    return ReapService(db_session, settings=settings)


@pytest.mark.integration
class TestReapTable:
    """Test reaping a single table and recording it"""

    def test_success_is_logged(self, service, db_session, db_engine):
        result = service.reap_table("items")

        assert result.rows_reaped == 2
        assert row_ids(db_engine, "items") == [1, 2, 3]

        log = db_session.query(ReapLog).one()
        assert log.status == ReapStatus.SUCCESS.value
        assert log.success
        assert log.rows_reaped == 2
        assert log.table_name == "items"
        assert log.backup_table_name == result.backup_table_name
        assert log.output_file == result.output_file
        assert log.export_performed is True
        assert log.backup_table_preserved is False
        assert log.cutoff_date is not None
        assert log.duration_ms is not None

    def test_request_and_overrides(self, service, db_session, db_engine):
        result = service.reap_table(
            "items",
            ReapRequest(conditions="status = 'archived'", ignore_expiry=True),
            dump_to_file=False,
        )

        assert result.rows_reaped == 3
        log = db_session.query(ReapLog).one()
        assert log.conditions == "status = 'archived'"
        assert log.ignore_expiry is True
        assert log.export_performed is False
        assert log.backup_table_preserved is True
        assert service.list_backup_tables() == [result.backup_table_name]

    def test_tuple_conditions_logged_without_params(self, service, db_session):
        service.reap_table("items", ReapRequest(conditions=("status = :s", {"s": "active"})))
        assert db_session.query(ReapLog).one().conditions == "status = :s"

    def test_missing_tool_logged_as_skipped(self, db_session, settings, items_table, db_engine, tmp_path):
        settings = settings.model_copy(update={"dump_tool_path": str(tmp_path / "no_such_tool")})
        service = ReapService(db_session, settings=settings)

        result = service.reap_table("items")

        assert result.skipped
        assert row_ids(db_engine, "items") == [1, 2, 3, 4, 5]
        log = db_session.query(ReapLog).one()
        assert log.status == ReapStatus.SKIPPED.value
        assert log.rows_reaped == 0

    def test_export_failure_logged_and_raised(self, db_session, settings, items_table, failing_dump_tool):
        settings = settings.model_copy(update={"dump_tool_path": str(failing_dump_tool)})
        service = ReapService(db_session, settings=settings)

        with pytest.raises(ExportError) as exc_info:
            service.reap_table("items")

        log = db_session.query(ReapLog).one()
        assert log.status == ReapStatus.EXPORT_FAILED.value
        assert log.rows_reaped == 2
        assert log.backup_table_name == exc_info.value.backup_table_name
        assert log.backup_table_preserved is True
        assert log.error_type == "ExportError"
        assert service.list_backup_tables() == [exc_info.value.backup_table_name]

    def test_unwritable_data_dir_logged_as_export_failure(self, db_session, settings, items_table, db_engine, tmp_path):
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("")
        service = ReapService(db_session, settings=settings.model_copy(update={"reaper_data_dir": str(blocker)}))

        with pytest.raises(ExportError, match="could not create") as exc_info:
            service.reap_table("items")

        assert exc_info.value.rows_reaped == 2
        assert row_ids(db_engine, "items") == [1, 2, 3]
        assert row_ids(db_engine, exc_info.value.backup_table_name) == [4, 5]

        log = db_session.query(ReapLog).one()
        assert log.status == ReapStatus.EXPORT_FAILED.value
        assert log.rows_reaped == 2
        assert log.backup_table_name == exc_info.value.backup_table_name
        assert log.backup_table_preserved is True

    def test_query_failure_logged_and_raised(self, service, db_session):
        with pytest.raises(QueryExecutionError):
            service.reap_table("items", ReapRequest(conditions="no_such_column = 1"))

        log = db_session.query(ReapLog).one()
        assert log.status == ReapStatus.FAILED.value
        assert log.rows_reaped == 0
        assert log.backup_table_name is None
        assert log.error_type == "QueryExecutionError"
        assert "no_such_column" in log.error_message

    def test_invalid_input_logged_and_raised(self, service, db_session):
        with pytest.raises(InvalidInputError):
            service.reap_table("items", ReapRequest(limit=0))
        assert db_session.query(ReapLog).one().error_type == "InvalidInputError"

    def test_table_override_applies(self, db_session, settings, items_table, db_engine):
        settings = settings.model_copy(update={
            "tables": {"items": TablePolicyOverride(expiry=25 * 24 * 60 * 60, move_records=False)},
        })
        service = ReapService(db_session, settings=settings)

        assert service.reap_table("items").rows_reaped == 3
        assert row_ids(db_engine, "items") == [1, 2, 3, 4, 5]
        assert db_session.query(ReapLog).one().move_records is False


@pytest.mark.integration
class TestReapConfiguredTables:

    def test_failures_do_not_stop_other_tables(self, db_session, settings, items_table, db_engine):
        settings = settings.model_copy(update={
            "tables": {"missing_table": TablePolicyOverride(), "items": TablePolicyOverride()},
        })
        service = ReapService(db_session, settings=settings)

        logs = service.reap_configured_tables()

        assert [log.table_name for log in logs] == ["missing_table", "items"]
        assert logs[0].status == ReapStatus.FAILED.value
        assert logs[1].status == ReapStatus.SUCCESS.value
        assert row_ids(db_engine, "items") == [1, 2, 3]

    def test_nothing_configured(self, db_session, settings):
        service = ReapService(db_session, settings=settings.model_copy(update={"tables": {}}))
        assert service.reap_configured_tables() == []


@pytest.mark.integration
class TestPreview:

    def test_counts_without_changing_anything(self, service, db_engine):
        preview = service.preview("items")

        assert preview["rows_to_reap"] == 2
        assert preview["expiry"] == 30 * 24 * 60 * 60
        assert preview["cutoff_date"] is not None
        assert "created_at" in preview["predicate"]
        assert row_ids(db_engine, "items") == [1, 2, 3, 4, 5]

    def test_limit_caps_count(self, service):
        assert service.preview("items", ReapRequest(limit=1))["rows_to_reap"] == 1

    def test_ignore_expiry(self, service):
        preview = service.preview("items", ReapRequest(conditions="status = 'active'", ignore_expiry=True))
        assert preview["rows_to_reap"] == 2
        assert preview["cutoff_date"] is None

    def test_query_failure(self, service):
        with pytest.raises(QueryExecutionError):
            service.preview("items", ReapRequest(conditions="no_such_column = 1"))

    def test_subquery_is_rejected(self, service, db_engine):
        with db_engine.begin() as conn:
            conn.execute(text("CREATE TABLE secrets (pw VARCHAR(20))"))
            conn.execute(text("INSERT INTO secrets (pw) VALUES ('hunter2')"))

        with pytest.raises(InvalidInputError, match="Forbidden keyword"):
            service.preview("items", ReapRequest(
                conditions="(SELECT count(*) FROM secrets WHERE pw LIKE 'h%') > 0",
                ignore_expiry=True,
            ))


@pytest.mark.integration
class TestRestrictedConditions:
    """Conditions from untrusted callers may only compare columns with bound values"""

    def test_column_comparison_with_params(self, service, db_engine):
        request = ReapRequest(conditions=("status = :status", {"status": "archived"}), ignore_expiry=True)

        assert service.preview("items", request, restrict_conditions=True)["rows_to_reap"] == 3
        assert service.reap_table("items", request, restrict_conditions=True).rows_reaped == 3
        assert row_ids(db_engine, "items") == [2, 4]

    @pytest.mark.parametrize("sql,params", [
        ("status = 'archived'", {}),
        ("1 = 1", {}),
        ("id = id", {}),
        ("length(name) > :n", {"n": 1}),
        ("secret = :x", {"x": 1}),
    ])
    def test_outside_grammar_is_rejected(self, service, db_engine, db_session, sql, params):
        with pytest.raises(InvalidInputError):
            service.reap_table("items", ReapRequest(conditions=(sql, params)), restrict_conditions=True)
        assert row_ids(db_engine, "items") == [1, 2, 3, 4, 5]
        assert db_session.query(ReapLog).one().error_type == "InvalidInputError"

    def test_ignore_expiry_needs_a_condition(self, service, db_engine):
        with pytest.raises(InvalidInputError, match="ignore_expiry"):
            service.reap_table("items", ReapRequest(ignore_expiry=True), restrict_conditions=True)
        with pytest.raises(InvalidInputError, match="ignore_expiry"):
            service.preview("items", ReapRequest(ignore_expiry=True), restrict_conditions=True)
        assert row_ids(db_engine, "items") == [1, 2, 3, 4, 5]

    def test_unrestricted_callers_keep_raw_sql(self, service):
        preview = service.preview("items", ReapRequest(conditions="status = 'active'", ignore_expiry=True))
        assert preview["rows_to_reap"] == 2


@pytest.mark.integration
class TestReporting:

    def test_logs_newest_first_and_filtered(self, service):
        service.reap_table("items")
        with pytest.raises(QueryExecutionError):
            service.reap_table("items", ReapRequest(conditions="no_such_column = 1"))

        logs = service.get_logs()
        assert [log.status for log in logs] == [ReapStatus.FAILED.value, ReapStatus.SUCCESS.value]
        assert service.get_logs(table_name="other") == []
        assert len(service.get_logs(limit=1)) == 1

    def test_stats(self, service):
        service.reap_table("items")
        service.reap_table("items", dump_to_file=False, expiry=0)

        stats = service.get_stats()
        assert stats["tables"] == {"configured": 1, "reaped": 1}
        assert stats["runs"][ReapStatus.SUCCESS.value] == 2
        assert stats["runs"][ReapStatus.FAILED.value] == 0
        assert stats["total_rows_reaped"] == 5
        assert stats["rows_reaped_by_table"] == {"items": 5}
        assert len(stats["backup_tables"]) == 1

    def test_history_index_created_with_the_tables(self, db_engine):
        indexes = {ix["name"]: ix["column_names"] for ix in inspect(db_engine).get_indexes("reap_logs")}
        assert indexes["ix_reap_logs_table_executed"] == ["table_name", "executed_at"]
