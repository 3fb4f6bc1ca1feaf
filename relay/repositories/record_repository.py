import logging
from sqlalchemy import func
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from relay.models.relay_record import RelayRecord

logger = logging.getLogger(__name__)


class RecordRepository:
    """Repository for RelayRecord operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def upsert(self, record_id: str, timestamp: str, message: str) -> None:
        """Upsert a record (insert or overwrite on conflict)."""
        try:
            # Use PostgreSQL's INSERT ... ON CONFLICT
            stmt = insert(RelayRecord).values(
                id=record_id,
                timestamp=timestamp,
                message=message,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["id"],
                set_=dict(
                    timestamp=stmt.excluded.timestamp,
                    message=stmt.excluded.message,
                    updated_at=func.now(),
                )
            )

            await self.session.execute(stmt)
            await self.session.flush()
        except Exception as e:
            logger.error(f"Error upserting RelayRecord {record_id}: {e}")
            await self.session.rollback()
            raise
