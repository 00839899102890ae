"""
Card grids for 75-ball bingo.

A card is five columns (B, I, N, G, O) of five numbers each, every column
drawn without replacement from its own band of 15 numbers and sorted. The
middle cell of the N column is the free cell and holds 0.
"""
from __future__ import annotations
import json
import random
import re
import string
from typing import List, Tuple

Cols = List[List[int]]

COLUMN_RANGES: Tuple[Tuple[int, int], ...] = (
    (1, 15),    # B
    (16, 30),   # I
    (31, 45),   # N
    (46, 60),   # G
    (61, 75),   # O
)
CELLS_PER_COLUMN = 5
FREE_COLUMN = 2
FREE_ROW = 2
FREE_VALUE = 0

SERIAL_PREFIX = "BF"
_B36 = string.digits + string.ascii_uppercase


def sample_range(a: int, b: int, n: int, rng=random) -> List[int]:
    """n distinct numbers from [a, b], ascending."""
    return sorted(rng.sample(range(a, b + 1), n))


def gen_cols(rng=random) -> Cols:
    cols = [sample_range(a, b, CELLS_PER_COLUMN, rng)
            for a, b in COLUMN_RANGES]
    cols[FREE_COLUMN][FREE_ROW] = FREE_VALUE
    return cols


def sign(cols: Cols) -> str:
    # column-major, then row: the same grid always yields the same string
    flat = [int(cols[ci][ri])
            for ci in range(len(COLUMN_RANGES))
            for ri in range(CELLS_PER_COLUMN)]
    return json.dumps(flat, separators=(",", ":"))


def to_base36(n: int) -> str:
    if n <= 0:
        return "0"
    out = []
    while n:
        n, rem = divmod(n, 36)
        out.append(_B36[rem])
    return "".join(reversed(out))


def serial_prefix(event_id) -> str:
    return re.sub(r"[^A-Za-z0-9]", "", str(event_id or "")).upper()[:12]


def make_serial(event_id, seq: int, rng=random) -> str:
    """BF-<EVENT>-<seq base36, width 5>-<4 random chars>"""
    seq_part = to_base36(int(seq or 0)).zfill(5)
    rand = "".join(rng.choices(_B36, k=4))
    return f"{SERIAL_PREFIX}-{serial_prefix(event_id)}-{seq_part}-{rand}"
