"""
JSON File Row Store — sheets persisted as one local JSON document.

Format::

    {"sheets": {"Secrets": [["description", "user", "secret"], ...],
                "Keys": [["<wrapped key>"]]}}

Every write reads the file, applies the change and replaces the file
atomically. An ``asyncio.Lock`` serialises writers within the process.
"""
import os
import asyncio
import logging
import tempfile
from collections.abc import Iterable
from pathlib import Path
from typing import Union

import orjson

from ..exceptions import StoreError
from .base import RowStore, delete_at, set_cell

logger = logging.getLogger("secretable.providers")


class JsonRowStore(RowStore):
    """Row store backed by a JSON file on local disk."""

    def __init__(self, path: Union[str, Path]):
        self._path = Path(path).expanduser()
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> dict[str, list[list[str]]]:
        try:
            raw = self._path.read_bytes()
        except FileNotFoundError:
            return {}
        except OSError as err:
            raise StoreError(f"Unable to read {self._path}: {err}") from err
        if not raw.strip():
            return {}
        try:
            document = orjson.loads(raw)
        except orjson.JSONDecodeError as err:
            raise StoreError(f"Unable to parse {self._path}: {err}") from err
        if not isinstance(document, dict):
            raise StoreError(f"{self._path} must hold a JSON object")
        sheets = document.get("sheets", {})
        if not isinstance(sheets, dict):
            raise StoreError(f"{self._path}: 'sheets' must be an object")
        for name, rows in sheets.items():
            if not isinstance(rows, list) or not all(
                isinstance(row, list) for row in rows
            ):
                raise StoreError(
                    f"{self._path}: sheet {name} must be a list of rows"
                )
        return {
            name: [[str(cell) for cell in row] for row in rows]
            for name, rows in sheets.items()
        }

    def _write(self, sheets: dict[str, list[list[str]]]) -> None:
        data = orjson.dumps({"sheets": sheets}, option=orjson.OPT_INDENT_2)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self._path.parent, suffix=".tmp")
            try:
                with os.fdopen(fd, "wb") as fh:
                    fh.write(data)
                    fh.flush()
                    os.fsync(fh.fileno())
                os.replace(tmp, self._path)
            except OSError:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as err:
            raise StoreError(f"Unable to write {self._path}: {err}") from err

    async def _modify(self, change) -> None:
        async with self._lock:
            sheets = await asyncio.to_thread(self._read)
            change(sheets)
            await asyncio.to_thread(self._write, sheets)

    async def setup(self, sheets: Iterable[str]) -> None:
        names = list(sheets)

        def _ensure(current: dict[str, list[list[str]]]) -> None:
            for name in names:
                current.setdefault(name, [])

        await self._modify(_ensure)
        logger.info("Using JSON storage file %s", self._path)

    async def read_rows(self, sheet: str) -> list[list[str]]:
        sheets = await asyncio.to_thread(self._read)
        return sheets.get(sheet, [])

    async def append_row(self, sheet: str, values: list[str]) -> None:
        await self._modify(
            lambda sheets: sheets.setdefault(sheet, []).append(list(values))
        )

    async def delete_row(self, sheet: str, index: int) -> None:
        await self._modify(
            lambda sheets: delete_at(sheets.setdefault(sheet, []), sheet, index)
        )

    async def update_cell(self, sheet: str, cell: str, value: str) -> None:
        await self._modify(
            lambda sheets: set_cell(sheets.setdefault(sheet, []), cell, value)
        )
