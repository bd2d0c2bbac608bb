"""Integration tests for the reap_tables.py command line script."""
import importlib.util
import logging
from pathlib import Path

import pytest
from sqlalchemy.orm import sessionmaker

from conftest import row_ids
from dbreaper.models import ReapLog


SCRIPT = Path(__file__).resolve().parents[2] / "scripts" / "reap_tables.py"


@pytest.fixture
def script(monkeypatch, db_engine, settings, items_table):
    """The script module wired to the test database and settings"""
    spec = importlib.util.spec_from_file_location("reap_tables", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)

    monkeypatch.setattr(module, "get_settings", lambda: settings)
    monkeypatch.setattr(module, "get_session_factory", lambda: sessionmaker(bind=db_engine))
    monkeypatch.setattr(module, "init_db", lambda: None)
    return module


def reap_logs(engine):
    session = sessionmaker(bind=engine)()
    try:
        return session.query(ReapLog).order_by(ReapLog.id).all()
    finally:
        session.close()


@pytest.mark.integration
class TestReapTablesScript:

    def test_reaps_configured_tables(self, script, db_engine):
        assert script.main([]) == 0
        assert row_ids(db_engine, "items") == [1, 2, 3]
        assert [log.status for log in reap_logs(db_engine)] == ["success"]

    def test_single_table_with_conditions(self, script, db_engine):
        exit_code = script.main([
            "--table", "items",
            "--conditions", "status = 'archived'",
            "--ignore-expiry",
            "--no-dump",
        ])
        assert exit_code == 0
        assert row_ids(db_engine, "items") == [2, 4]
        assert reap_logs(db_engine)[0].export_performed is False

    def test_keep_rows(self, script, db_engine):
        assert script.main(["--table", "items", "--keep-rows"]) == 0
        assert row_ids(db_engine, "items") == [1, 2, 3, 4, 5]
        assert reap_logs(db_engine)[0].rows_reaped == 2

    def test_order_and_limit(self, script, db_engine):
        assert script.main(["--table", "items", "--order", "created_at asc", "--limit", "1"]) == 0
        assert row_ids(db_engine, "items") == [1, 2, 3, 4]

    def test_preview_changes_nothing(self, script, db_engine, caplog):
        with caplog.at_level(logging.INFO):
            assert script.main(["--table", "items", "--preview"]) == 0
        assert "items: 2 rows would be reaped" in caplog.text
        assert row_ids(db_engine, "items") == [1, 2, 3, 4, 5]
        assert reap_logs(db_engine) == []

    def test_invalid_condition_fails(self, script, db_engine):
        assert script.main(["--table", "items", "--conditions", "1=1; DROP TABLE items"]) == 1
        assert row_ids(db_engine, "items") == [1, 2, 3, 4, 5]

    def test_invalid_limit_fails(self, script):
        assert script.main(["--table", "items", "--limit", "0"]) == 1

    def test_export_failure_fails(self, script, monkeypatch, settings, failing_dump_tool):
        broken = settings.model_copy(update={"dump_tool_path": str(failing_dump_tool)})
        monkeypatch.setattr(script, "get_settings", lambda: broken)
        assert script.main([]) == 1

    def test_missing_tool_fails(self, script, monkeypatch, settings, tmp_path, db_engine):
        missing = settings.model_copy(update={"dump_tool_path": str(tmp_path / "nope")})
        monkeypatch.setattr(script, "get_settings", lambda: missing)
        assert script.main(["--table", "items"]) == 1
        assert row_ids(db_engine, "items") == [1, 2, 3, 4, 5]

    def test_nothing_configured_fails(self, script, monkeypatch, settings):
        empty = settings.model_copy(update={"tables": {}})
        monkeypatch.setattr(script, "get_settings", lambda: empty)
        assert script.main([]) == 1
