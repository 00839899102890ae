from __future__ import annotations
import asyncio
import logging
import os
import shutil

import orjson

from ...errors import ErrorCode, StoreError
from ...helpers import now_utc
from ..document import Document, ensure_shape, seed_document
from ._base import DocumentStore

logger = logging.getLogger(__name__)


def _backup_suffix() -> str:
    return now_utc().isoformat().replace(":", "-").replace(".", "-")


class FileDocumentStore(DocumentStore):
    """JSON document on local disk, replaced atomically on every save."""

    def __init__(self, path: str) -> None:
        super().__init__()
        self.path = path
        self.tmp_path = path + ".tmp"

    def _ensure_parent(self) -> None:
        parent = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(parent, exist_ok=True)

    def _write(self, doc: Document) -> None:
        self._ensure_parent()
        raw = orjson.dumps(doc, option=orjson.OPT_INDENT_2)
        with open(self.tmp_path, "wb") as f:
            f.write(raw)
            f.flush()
            os.fsync(f.fileno())
        os.replace(self.tmp_path, self.path)

    def _read(self) -> bytes:
        with open(self.path, "rb") as f:
            return f.read()

    def _quarantine(self) -> str:
        backup = f"{self.path}.corrupt.{_backup_suffix()}.bak"
        shutil.copyfile(self.path, backup)
        return backup

    async def load(self) -> Document:
        if not await asyncio.to_thread(os.path.exists, self.path):
            doc = seed_document()
            await self.save(doc)
            return doc

        raw = await asyncio.to_thread(self._read)
        try:
            doc = orjson.loads(raw)
        except orjson.JSONDecodeError:
            doc = None

        if not isinstance(doc, dict):
            # abrupt shutdown or hand edits: keep the evidence, start fresh
            backup = await asyncio.to_thread(self._quarantine)
            logger.warning(
                "%s: could not parse %s, backup written to %s; reseeding",
                ErrorCode.STORE_CORRUPT.value, self.path, backup,
            )
            doc = seed_document()
            await self.save(doc)
            return doc

        return ensure_shape(doc)

    async def save(self, doc: Document) -> None:
        try:
            await asyncio.to_thread(self._write, doc)
        except (OSError, TypeError) as e:
            raise StoreError(f"could not write {self.path}: {e}") from e
