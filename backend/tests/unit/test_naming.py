"""Unit tests for backup table and dump file naming (reaper/naming.py)"""
from datetime import datetime
from pathlib import Path

import pytest

from dbreaper.reaper.errors import InvalidInputError
from dbreaper.reaper.naming import MAX_IDENTIFIER_LENGTH, backup_table_name, dump_file_path


CAPTURED_AT = datetime(2026, 10, 19, 8, 5, 3)


@pytest.mark.unit
class TestBackupTableName:

    def test_prefix_table_and_timestamp(self):
        assert backup_table_name("reaper_", "items", CAPTURED_AT) == "reaper_items_20261019080503"

    def test_empty_prefix(self):
        assert backup_table_name("", "items", CAPTURED_AT) == "items_20261019080503"

    def test_same_second_gives_same_name(self):
        """Names only have second resolution"""
        later = CAPTURED_AT.replace(microsecond=999999)
        assert backup_table_name("reaper_", "items", later) == backup_table_name("reaper_", "items", CAPTURED_AT)

    @pytest.mark.parametrize("table", ["", "   "])
    def test_blank_table_raises(self, table):
        with pytest.raises(InvalidInputError, match="cannot be empty"):
            backup_table_name("reaper_", table, CAPTURED_AT)

    def test_invalid_characters_raise(self):
        with pytest.raises(InvalidInputError, match="not a valid identifier"):
            backup_table_name("reaper_", "items; drop table x", CAPTURED_AT)

    def test_prefix_is_validated_too(self):
        with pytest.raises(InvalidInputError):
            backup_table_name("reaper-", "items", CAPTURED_AT)

    def test_too_long_raises(self):
        table = "t" * (MAX_IDENTIFIER_LENGTH - len("reaper__20261019080503") + 1)
        with pytest.raises(InvalidInputError, match="exceeds"):
            backup_table_name("reaper_", table, CAPTURED_AT)

    def test_longest_allowed_name(self):
        table = "t" * (MAX_IDENTIFIER_LENGTH - len("reaper__20261019080503"))
        assert len(backup_table_name("reaper_", table, CAPTURED_AT)) == MAX_IDENTIFIER_LENGTH


@pytest.mark.unit
class TestDumpFilePath:

    def test_layout(self):
        path = dump_file_path("reaped", "shop", "items", CAPTURED_AT)
        assert path == Path("reaped/items/shop.reaped_items_20261019080503.sql")

    def test_absolute_data_dir(self, tmp_path):
        path = dump_file_path(str(tmp_path), "shop", "orders", CAPTURED_AT)
        assert path.parent == tmp_path / "orders"
        assert path.name == "shop.reaped_orders_20261019080503.sql"
