from __future__ import annotations
import logging
import time

import orjson
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from ...errors import ErrorCode, StoreError
from ...helpers import now_utc
from ..document import Document, ensure_shape, seed_document
from ._base import DocumentStore

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------------------
# DDL (idempotent)
# ------------------------------------------------------------------------------
SQL_CREATE_DOCUMENTS = r"""
-- one row per named document; body is the full JSON document
CREATE TABLE IF NOT EXISTS documents (
  name        TEXT PRIMARY KEY,
  body        TEXT NOT NULL,
  updated_at  DOUBLE PRECISION NOT NULL
);
"""


async def create_schema(conn: AsyncConnection) -> None:
    await conn.execute(text(SQL_CREATE_DOCUMENTS))


async def _upsert(conn: AsyncConnection, name: str, body: str) -> None:
    res = await conn.execute(
        text("""
            UPDATE documents SET body = :body, updated_at = :ts
            WHERE name = :name
        """),
        {"name": name, "body": body, "ts": time.time()},
    )
    if res.rowcount == 0:
        await conn.execute(
            text("""
                INSERT INTO documents (name, body, updated_at)
                VALUES (:name, :body, :ts)
            """),
            {"name": name, "body": body, "ts": time.time()},
        )


class SqlDocumentStore(DocumentStore):
    """The document kept as a single row; each save is one DB transaction."""

    def __init__(self, engine: AsyncEngine, name: str = "main") -> None:
        super().__init__()
        self.engine = engine
        self.name = name
        self._schema_ready = False

    async def _ensure_schema(self) -> None:
        if self._schema_ready:
            return
        async with self.engine.begin() as conn:
            await create_schema(conn)
        self._schema_ready = True

    async def load(self) -> Document:
        await self._ensure_schema()
        async with self.engine.begin() as conn:
            row = (await conn.execute(
                text("SELECT body FROM documents WHERE name = :name"),
                {"name": self.name},
            )).first()

            if row is None:
                doc = seed_document()
                await _upsert(conn, self.name, orjson.dumps(doc).decode())
                return doc

            try:
                doc = orjson.loads(row[0])
            except orjson.JSONDecodeError:
                doc = None

            if not isinstance(doc, dict):
                stamp = now_utc().isoformat().replace(":", "-")
                backup = f"{self.name}.corrupt.{stamp}.bak"
                await _upsert(conn, backup, row[0])
                logger.warning(
                    "%s: document %r unreadable, backup row %r; reseeding",
                    ErrorCode.STORE_CORRUPT.value, self.name, backup,
                )
                doc = seed_document()
                await _upsert(conn, self.name, orjson.dumps(doc).decode())
                return doc

        return ensure_shape(doc)

    async def save(self, doc: Document) -> None:
        await self._ensure_schema()
        try:
            body = orjson.dumps(doc).decode()
            async with self.engine.begin() as conn:
                await _upsert(conn, self.name, body)
        except (SQLAlchemyError, TypeError) as e:
            raise StoreError(f"could not save document {self.name!r}: {e}") \
                from e

    async def close(self) -> None:
        await self.engine.dispose()
