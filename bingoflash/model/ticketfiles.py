"""
Card artefacts (PDF/JPG) for issued tickets.

Rendering is done client-side from the stored grid, so this only prepares
the per-order directory and reports no URLs. Issuance treats any renderer as
best effort: a failure here never blocks a ticket.
"""
from __future__ import annotations
import os
from typing import Awaitable, Callable, Optional, TypedDict

from .. import config
from .cards import Cols


class CardFiles(TypedDict):
    pdf_url: Optional[str]
    jpg_url: Optional[str]


CardRenderer = Callable[[str, dict, int, Cols], Awaitable[Optional[CardFiles]]]


def order_files_dir(event_id: str, order_id: str) -> str:
    return os.path.join(config.FILES_PATH, event_id or "default", order_id)


async def render_card_files(event_id: str, order: dict, card_index: int,
                            cols: Cols) -> Optional[CardFiles]:
    os.makedirs(order_files_dir(event_id, order["id"]), exist_ok=True)
    return {"pdf_url": None, "jpg_url": None}
