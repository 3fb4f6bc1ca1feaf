"""
Unit tests for the Postgres store and record repository.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from relay.core.exceptions import TransportError, PersistFailure
from relay.repositories import RecordRepository
from relay.schemas.envelope import Record
from relay.services.postgres_store import PostgresStore


@pytest.fixture
def mock_session():
    """Mock database session."""
    session = AsyncMock(spec=AsyncSession)
    session.execute = AsyncMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    return session


@pytest.fixture
def session_factory(mock_session):
    factory = MagicMock()
    factory.return_value.__aenter__.return_value = mock_session
    return factory


@pytest.fixture
def record():
    return Record(id="m1", timestamp="2024-05-01T12:00:00.123Z", message="hello")


class TestRecordRepository:
    """Test cases for RecordRepository."""

    @pytest.mark.asyncio
    async def test_upsert_uses_on_conflict_update(self, mock_session):
        repo = RecordRepository(mock_session)

        await repo.upsert("m1", "2024-05-01T12:00:00.123Z", "hello")

        stmt = mock_session.execute.call_args.args[0]
        sql = str(stmt.compile(dialect=postgresql.dialect()))
        assert "INSERT INTO relay_records" in sql
        assert "ON CONFLICT (id) DO UPDATE" in sql
        assert "excluded" in sql
        mock_session.flush.assert_called_once()

    @pytest.mark.asyncio
    async def test_upsert_rolls_back_on_error(self, mock_session):
        mock_session.execute.side_effect = IntegrityError("INSERT", {}, Exception("violation"))
        repo = RecordRepository(mock_session)

        with pytest.raises(IntegrityError):
            await repo.upsert("m1", "ts", "hello")

        mock_session.rollback.assert_called_once()


class TestPostgresStore:
    """Test cases for PostgresStore."""

    @pytest.mark.asyncio
    async def test_upsert_commits(self, session_factory, mock_session, record):
        store = PostgresStore(session_factory)

        await store.upsert(record)

        mock_session.execute.assert_called_once()
        mock_session.commit.assert_called_once()

    @pytest.mark.asyncio
    async def test_rejected_write_is_persist_failure(self, session_factory, mock_session, record):
        mock_session.execute.side_effect = IntegrityError("INSERT", {}, Exception("violation"))
        store = PostgresStore(session_factory)

        with pytest.raises(PersistFailure) as exc_info:
            await store.upsert(record)

        assert exc_info.value.message_id == "m1"
        mock_session.commit.assert_not_called()

    @pytest.mark.asyncio
    async def test_unreachable_database_is_transport_error(self, session_factory, mock_session, record):
        mock_session.execute.side_effect = OperationalError("INSERT", {}, Exception("connection refused"))
        store = PostgresStore(session_factory)

        with pytest.raises(TransportError) as exc_info:
            await store.upsert(record)

        assert exc_info.value.backend == "postgres"

    @pytest.mark.asyncio
    async def test_connection_refused_is_transport_error(self, session_factory, mock_session, record):
        mock_session.execute.side_effect = ConnectionRefusedError("connect failed")
        store = PostgresStore(session_factory)

        with pytest.raises(TransportError):
            await store.upsert(record)
