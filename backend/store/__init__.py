from .rfq_store import (
    MemoryQuoteStore,
    MemoryRfqStore,
    SqlQuoteStore,
    SqlRfqStore,
    create_db_engine,
    create_stores,
)

__all__ = [
    "MemoryQuoteStore",
    "MemoryRfqStore",
    "SqlQuoteStore",
    "SqlRfqStore",
    "create_db_engine",
    "create_stores",
]
