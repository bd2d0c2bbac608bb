"""
Test Configuration and Fixtures

Each test gets its own SQLite file database so reaps, backup tables and dump
tools can run for real. Set TEST_DATABASE_URL to run against another server;
the database is created if missing.
"""

import os
import stat
from datetime import datetime, timedelta

import pytest
from sqlalchemy import Column, DateTime, Integer, MetaData, String, Table, insert, inspect, text
from sqlalchemy.orm import sessionmaker
from sqlalchemy_utils import database_exists, create_database

from dbreaper.config import Settings, TablePolicyOverride
from dbreaper.database import Base, create_reaper_engine
from dbreaper.models import ReapLog  # noqa: F401


TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")

# Ages of the rows in the items table, ids 1..5
ITEM_AGES_WEEKS = [2, 3, 4, 5, 6]

THIRTY_DAYS = 30 * 24 * 60 * 60


@pytest.fixture(scope="function")
def db_engine(tmp_path):
    """Create a test database engine with the reaper's own tables"""
    url = TEST_DATABASE_URL or f"sqlite:///{tmp_path / 'reaper_test.db'}"

    if not database_exists(url):
        create_database(url)

    engine = create_reaper_engine(url)
    Base.metadata.create_all(bind=engine)

    yield engine

    # Cleanup - drop everything, including backup tables left by reaps
    leftovers = MetaData()
    leftovers.reflect(bind=engine)
    leftovers.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(db_engine):
    """Create a test database session"""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = TestingSessionLocal()

    yield session

    session.close()


@pytest.fixture
def items_table(db_engine):
    """
    An items table with five rows aged 2 to 6 weeks.

    Odd ids are archived, even ids active. A 30 day expiry reaps ids 4 and 5.
    """
    metadata = MetaData()
    table = Table(
        "items",
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=False),
        Column("name", String(50), nullable=False),
        Column("status", String(20), nullable=False),
        Column("created_at", DateTime, nullable=False),
    )
    metadata.create_all(bind=db_engine)

    now = datetime.utcnow()
    with db_engine.begin() as conn:
        conn.execute(insert(table), [
            {
                "id": item_id,
                "name": f"item-{item_id}",
                "status": "archived" if item_id % 2 else "active",
                "created_at": now - timedelta(weeks=weeks),
            }
            for item_id, weeks in enumerate(ITEM_AGES_WEEKS, start=1)
        ])

    return table


def _write_script(path, body):
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def dump_tool(tmp_path):
    """A dump tool that writes a line naming its last argument and succeeds"""
    return _write_script(
        tmp_path / "fake_dump",
        'for arg; do last="$arg"; done\necho "-- dump of $last"\nexit 0\n',
    )


@pytest.fixture
def failing_dump_tool(tmp_path):
    """A dump tool that writes partial output then exits 3"""
    return _write_script(tmp_path / "broken_dump", 'echo "-- partial"\nexit 3\n')


@pytest.fixture
def data_dir(tmp_path):
    return tmp_path / "reaped"


@pytest.fixture
def settings(db_engine, dump_tool, data_dir):
    """Settings pointing at the test database with items configured"""
    return Settings(
        _env_file=None,
        database_url=db_engine.url.render_as_string(hide_password=False),
        reaper_data_dir=str(data_dir),
        expiry=THIRTY_DAYS,
        dump_tool_path=str(dump_tool),
        tables={"items": TablePolicyOverride()},
    )


def row_ids(engine, table_name):
    """Sorted ids currently in a table"""
    quoted = engine.dialect.identifier_preparer.quote_identifier(table_name)
    with engine.connect() as conn:
        return sorted(row[0] for row in conn.execute(text(f"SELECT id FROM {quoted}")))


def table_names(engine):
    return set(inspect(engine).get_table_names())
