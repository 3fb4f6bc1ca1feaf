from abc import ABC, abstractmethod

from relay.core.logging import get_logger
from relay.schemas.envelope import Record


class DurableStore(ABC):
    """
    Upsert-by-key store contract consumed by the relay loop.

    ``upsert`` overwrites an existing record with the same id. It raises
    PersistFailure when the write is rejected and TransportError when the
    store cannot be reached or refuses the credentials.
    """

    backend: str = "store"

    def __init__(self, table_ref: str):
        self.table_ref = table_ref
        self.logger = get_logger(self.__class__.__name__)

    @abstractmethod
    async def upsert(self, record: Record) -> None:
        """Insert or overwrite ``record`` keyed by ``record.id``."""
