"""Tests for read-only Bear database access."""

import logging
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from bearnotes.bear_database import (
    CORE_DATA_EPOCH,
    LOWER_FUNCTION,
    BearDatabase,
    core_data_to_datetime,
    datetime_to_core_data,
)
from bearnotes.config import ApplicationConfig
from bearnotes.container import create_services
from bearnotes.errors import DatabaseConnectionError, DatabaseError
from bearnotes.models import NoteRecord


class TestTimestamps:
    """Test Core Data timestamp conversion."""

    def test_epoch(self):
        assert core_data_to_datetime(0) == datetime(2001, 1, 1, tzinfo=timezone.utc)

    def test_none(self):
        assert core_data_to_datetime(None) is None

    def test_round_trip_aware(self):
        value = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)

        assert core_data_to_datetime(datetime_to_core_data(value)) == value

    def test_naive_values_are_local_time(self):
        naive = datetime(2024, 5, 1, 12, 30)

        assert datetime_to_core_data(naive) == (naive.astimezone() - CORE_DATA_EPOCH).total_seconds()

    def test_one_day(self):
        assert datetime_to_core_data(CORE_DATA_EPOCH + timedelta(days=1)) == 86400.0


class TestBearDatabase:
    """Test the read-only connection."""

    @pytest_asyncio.fixture
    async def database(self, bear_db_path):
        db = BearDatabase(bear_db_path)
        await db.connect()

        yield db

        await db.close()

    @pytest.mark.asyncio
    async def test_fetch_all_returns_dicts(self, database):
        rows = await database.fetch_all("SELECT Z_PK, ZTITLE FROM ZSFNOTE WHERE Z_PK = ?", [1])

        assert rows == [{"Z_PK": 1, "ZTITLE": "Project Plan"}]

    @pytest.mark.asyncio
    async def test_unicode_lower_function(self, database):
        rows = await database.fetch_all(
            f"SELECT {LOWER_FUNCTION}(?) AS folded, LOWER(?) AS ascii_only", ["ÉCLAIR", "ÉCLAIR"]
        )

        assert rows == [{"folded": "éclair", "ascii_only": "Éclair"}]

    @pytest.mark.asyncio
    async def test_connection_is_read_only(self, database):
        with pytest.raises(DatabaseError):
            await database.fetch_all("DELETE FROM ZSFNOTE")

    @pytest.mark.asyncio
    async def test_bad_sql_raises_database_error(self, database):
        with pytest.raises(DatabaseError, match="Query failed"):
            await database.fetch_all("SELECT * FROM NOPE")

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path):
        database = BearDatabase(str(tmp_path / "missing.sqlite"))

        with pytest.raises(DatabaseConnectionError):
            await database.connect()
        assert not database.is_connected

    @pytest.mark.asyncio
    async def test_query_before_connect(self, bear_db_path):
        with pytest.raises(DatabaseError, match="not initialized"):
            await BearDatabase(bear_db_path).fetch_all("SELECT 1")

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, database):
        await database.close()
        await database.close()

        assert not database.is_connected

    def test_file_stats(self, bear_db_path):
        stats = BearDatabase(bear_db_path).file_stats()

        assert stats["size"] > 0
        assert stats["last_modified"].tzinfo is not None

    @pytest.mark.asyncio
    async def test_note_record_from_row(self, database):
        rows = await database.fetch_all(
            "SELECT *, 'work,work/projects' AS tag_names FROM ZSFNOTE WHERE Z_PK = 1"
        )

        note = NoteRecord.from_row(rows[0])

        assert note.tags == ["work", "work/projects"]
        assert note.content_length == len(note.text)
        assert note.modified_at == core_data_to_datetime(700000500.0)


class TestServiceLifecycle:
    """Test building and disposing services."""

    @pytest.mark.asyncio
    async def test_context_manager(self, app_config):
        async with create_services(app_config) as services:
            assert services.database.is_connected
            await services.notes.get_tags()
            assert len(services.cache) == 1

        assert not services.database.is_connected
        assert len(services.cache) == 0

    def test_independent_instances(self, app_config):
        first = create_services(app_config)
        second = create_services(app_config)

        assert first.cache is not second.cache
        assert first.executor.query_ttl == app_config.cache.query_ttl_seconds

    @pytest.mark.asyncio
    async def test_initialize_fails_for_missing_database(self, tmp_path):
        config = ApplicationConfig()
        config.database.bear_db_path = str(tmp_path / "missing.sqlite")

        with pytest.raises(DatabaseConnectionError):
            await create_services(config).initialize()

    @pytest.mark.asyncio
    async def test_initialize_logs_masked_configuration(self, app_config, caplog):
        with caplog.at_level(logging.DEBUG, logger="bearnotes.container"):
            async with create_services(app_config):
                pass

        messages = [
            record.getMessage()
            for record in caplog.records
            if record.name == "bearnotes.container" and "Configuration" in record.getMessage()
        ]
        assert len(messages) == 1
        assert "***MASKED***" in messages[0]
        assert app_config.database.bear_db_path not in messages[0]
