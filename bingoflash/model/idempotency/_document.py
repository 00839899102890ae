from __future__ import annotations
from typing import Optional

from ...helpers import now_utc, to_iso
from ..document import Document


class IdempotencyMap:
    """
    Key -> order id map living inside the store document.

    Only meaningful within one store transaction: the lookup and the write
    land in the same load/save cycle.
    """

    def __init__(self, doc: Document) -> None:
        self.doc = doc

    @property
    def _rows(self) -> dict:
        return self.doc.setdefault("idempotency", {})

    async def get(self, key: str) -> Optional[str]:
        row = self._rows.get(key)
        if isinstance(row, dict):
            return row.get("order_id") or None
        return None

    async def claim(self, key: str, order_id: str) -> str:
        # insert-if-absent; returns whichever order id owns the key
        current = await self.get(key)
        if current:
            return current
        await self.put(key, order_id)
        return order_id

    async def put(self, key: str, order_id: str) -> None:
        self._rows[key] = {"order_id": order_id,
                           "created_at": to_iso(now_utc())}
