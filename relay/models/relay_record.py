from sqlalchemy import Column, String, Text
from sqlalchemy.orm import Mapped

from .base import BaseModel


class RelayRecord(BaseModel):
    """A relayed queue message, keyed by the queue's message id."""

    __tablename__ = "relay_records"

    id: Mapped[str] = Column(String(128), primary_key=True)
    # ISO-8601 capture time as generated by the relay, kept verbatim
    timestamp: Mapped[str] = Column(String(40), nullable=False)
    message: Mapped[str] = Column(Text, nullable=False)

    def __repr__(self) -> str:
        return f"<RelayRecord(id='{self.id}', timestamp='{self.timestamp}')>"
