"""In-memory row store, used for tests and ``storage: memory``."""
import asyncio
from collections.abc import Iterable

from .base import RowStore, delete_at, set_cell


class MemoryRowStore(RowStore):
    """Sheets kept as lists of rows in process memory.

    Every call yields to the event loop once, so concurrent callers
    interleave the way they would against a remote service.
    """

    def __init__(self, sheets: dict[str, list[list[str]]] | None = None):
        self._sheets: dict[str, list[list[str]]] = {
            name: [list(row) for row in rows]
            for name, rows in (sheets or {}).items()
        }

    async def setup(self, sheets: Iterable[str]) -> None:
        for name in sheets:
            self._sheets.setdefault(name, [])

    async def read_rows(self, sheet: str) -> list[list[str]]:
        await asyncio.sleep(0)
        return [list(row) for row in self._sheets.get(sheet, [])]

    async def append_row(self, sheet: str, values: list[str]) -> None:
        await asyncio.sleep(0)
        self._sheets.setdefault(sheet, []).append(list(values))

    async def delete_row(self, sheet: str, index: int) -> None:
        await asyncio.sleep(0)
        delete_at(self._sheets.setdefault(sheet, []), sheet, index)

    async def update_cell(self, sheet: str, cell: str, value: str) -> None:
        await asyncio.sleep(0)
        set_cell(self._sheets.setdefault(sheet, []), cell, value)
