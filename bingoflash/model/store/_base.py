from __future__ import annotations
import asyncio
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator

from ..document import Document


class DocumentStore(ABC):
    """
    Whole-document store with a single writer gate.

    Every mutation is load -> mutate in memory -> save of the complete
    document. The gate serialises transactions of this process; writers in
    other processes still race on last-writer-wins.
    """

    def __init__(self) -> None:
        self._gate = asyncio.Lock()

    @abstractmethod
    async def load(self) -> Document: ...

    @abstractmethod
    async def save(self, doc: Document) -> None: ...

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Document]:
        """
        async with store.transaction() as doc:
            doc["orders"].append(...)

        Saves on clean exit only; an exception in the body leaves the
        persisted document untouched.
        """
        async with self._gate:
            doc = await self.load()
            yield doc
            await self.save(doc)

    @asynccontextmanager
    async def snapshot(self) -> AsyncIterator[Document]:
        async with self._gate:
            yield await self.load()

    async def close(self) -> None:
        return None
