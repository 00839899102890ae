from typing import Optional
from sqlalchemy.ext.asyncio import AsyncEngine

from ... import config
from ._base import DocumentStore
from ._file import FileDocumentStore
from ._sql import SqlDocumentStore

BACKEND = config.STORE_BACKEND  # 'file' | 'sql'


# Factory keeps server.py simple and constructor-agnostic:
def new_store(*, path: Optional[str] = None,
              engine: Optional[AsyncEngine] = None,
              backend: Optional[str] = None) -> DocumentStore:
    backend = (backend or BACKEND).lower()
    if backend == "sql":
        if engine is None:
            raise RuntimeError("DocumentStore(sql) requires engine=AsyncEngine")
        return SqlDocumentStore(engine)
    return FileDocumentStore(path or config.DB_PATH)


__all__ = [
    "DocumentStore", "FileDocumentStore", "SqlDocumentStore", "new_store",
    "BACKEND",
]
