from .relay_record import RelayRecord

__all__ = [
    "RelayRecord",
]
