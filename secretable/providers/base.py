"""
Row Store — the narrow interface the vault needs from its backing store.

A row store is a set of named sheets, each an ordered list of rows of text
cells. Every call may fail with :class:`StoreError` and is never retried.
"""
import re
from abc import ABC, abstractmethod
from collections.abc import Iterable

from ..exceptions import RowIndexError, StoreError

_CELL_PATTERN = re.compile(r"^([A-Z]+)([1-9][0-9]*)$")


def parse_cell(cell: str) -> tuple[int, int]:
    """Convert an A1-style cell reference to zero-based (row, column).

    Raises:
        StoreError: If the reference is not of the form ``A1``.
    """
    match = _CELL_PATTERN.match(cell.strip().upper())
    if not match:
        raise StoreError(f"Invalid cell reference: {cell!r}")
    letters, digits = match.groups()
    column = 0
    for char in letters:
        column = column * 26 + (ord(char) - ord("A") + 1)
    return int(digits) - 1, column - 1


class RowStore(ABC):
    """Abstract backing store addressed by sheet name and row position."""

    async def setup(self, sheets: Iterable[str]) -> None:
        """Create the given sheets when they do not exist yet."""

    async def close(self) -> None:
        """Release any resources held by the store."""

    @abstractmethod
    async def read_rows(self, sheet: str) -> list[list[str]]:
        """Return every row of ``sheet``."""

    @abstractmethod
    async def append_row(self, sheet: str, values: list[str]) -> None:
        """Append one row to ``sheet``."""

    @abstractmethod
    async def delete_row(self, sheet: str, index: int) -> None:
        """Delete the row at zero-based ``index``, shifting later rows up.

        Raises:
            RowIndexError: If ``index`` is outside the sheet.
        """

    @abstractmethod
    async def update_cell(self, sheet: str, cell: str, value: str) -> None:
        """Overwrite one cell, given in A1 notation."""


def set_cell(rows: list[list[str]], cell: str, value: str) -> None:
    """Write ``value`` into ``rows`` at an A1 reference, growing as needed."""
    row, column = parse_cell(cell)
    while len(rows) <= row:
        rows.append([])
    target = rows[row]
    while len(target) <= column:
        target.append("")
    target[column] = value


def delete_at(rows: list[list[str]], sheet: str, index: int) -> None:
    """Remove ``rows[index]``, raising RowIndexError when out of range."""
    if index < 0 or index >= len(rows):
        raise RowIndexError(
            f"Row {index} out of range for sheet {sheet} ({len(rows)} rows)"
        )
    del rows[index]
