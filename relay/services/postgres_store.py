from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from relay.core.exceptions import TransportError, PersistFailure
from relay.repositories import RecordRepository
from relay.schemas.envelope import Record
from .store_service import DurableStore


class PostgresStore(DurableStore):
    """``relay_records`` table upserted with INSERT ... ON CONFLICT, one transaction per record."""

    backend = "postgres"

    def __init__(self, session_factory: async_sessionmaker, table_ref: str = "relay_records"):
        super().__init__(table_ref)
        self.session_factory = session_factory

    async def upsert(self, record: Record) -> None:
        try:
            async with self.session_factory() as session:
                repo = RecordRepository(session)
                await repo.upsert(record.id, record.timestamp, record.message)
                await session.commit()
        except (OperationalError, InterfaceError, OSError) as e:
            self.logger.error("postgres.unreachable", error=str(e))
            raise TransportError(f"Postgres unavailable: {e}", backend=self.backend) from e
        except SQLAlchemyError as e:
            raise PersistFailure(f"Postgres upsert rejected: {e}", message_id=record.id) from e
