"""
CachedSecretStore — Periodically refreshed read cache over a row store.

Layout of the backing store:
- ``Secrets`` sheet: one row per secret, ``[description, username, secret]``
  where username and secret are base58 ECIES envelopes.
- ``Keys`` sheet: cell ``A1`` holds the wrapped private key record.

Reads are served from an immutable :class:`Snapshot` that is swapped
wholesale after each refresh. Writes go straight to the row store and become
visible with the next refresh.
"""
import asyncio
import logging
import threading
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel

from ..exceptions import StoreError

logger = logging.getLogger("secretable.vault")

SECRETS_SHEET = "Secrets"
KEYS_SHEET = "Keys"
KEY_CELL = "A1"
DEFAULT_REFRESH_INTERVAL = 10.0  # seconds


class SecretRecord(BaseModel):
    """One stored secret; only ``description`` is plaintext."""

    description: str
    username: str
    secret: str

    model_config = {"frozen": True}

    def to_row(self) -> list[str]:
        return [self.description, self.username, self.secret]


class Snapshot(BaseModel):
    """Immutable point-in-time copy of the backing store."""

    secrets: tuple[SecretRecord, ...] = ()
    key: Optional[str] = None
    refreshed_at: Optional[datetime] = None

    model_config = {"frozen": True}

    def find(self, query: str) -> list[tuple[int, SecretRecord]]:
        """Return (index, record) pairs whose description contains query.

        Matching is case-insensitive and the query is trimmed first; indices
        are positions in this snapshot.
        """
        needle = query.strip().lower()
        return [
            (index, record)
            for index, record in enumerate(self.secrets)
            if needle in record.description.lower()
        ]


def _build_snapshot(
    secret_rows: list[list[str]], key_rows: list[list[str]],
) -> Snapshot:
    secrets = tuple(
        SecretRecord(description=row[0], username=row[1], secret=row[2])
        for row in secret_rows
        if len(row) >= 3
    )
    key = None
    if key_rows and key_rows[0] and key_rows[0][0].strip():
        key = key_rows[0][0].strip()
    return Snapshot(
        secrets=secrets, key=key, refreshed_at=datetime.now(timezone.utc),
    )


class CachedSecretStore:
    """Eventually consistent view of the secrets and key sheets.

    Args:
        backend: A :class:`~secretable.providers.RowStore`.
        interval: Seconds between refresh cycles.
        ticker: Optional coroutine function awaited between cycles in place
            of sleeping ``interval`` seconds; tests use it to drive cycles.
    """

    def __init__(
        self,
        backend: Any,
        interval: float = DEFAULT_REFRESH_INTERVAL,
        ticker: Optional[Callable[[], Awaitable[Any]]] = None,
    ):
        self._backend = backend
        self._interval = interval
        self._ticker = ticker or self._sleep
        self._snapshot = Snapshot()
        self._swap_lock = threading.Lock()
        self._refresh_lock = asyncio.Lock()
        self._key_lock = asyncio.Lock()
        self._stopping = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._refresh_failures = 0

    @property
    def backend(self) -> Any:
        return self._backend

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def key_lock(self) -> asyncio.Lock:
        """Lock held by every custodian while it reads or replaces the key."""
        return self._key_lock

    @property
    def refresh_failures(self) -> int:
        """Number of refresh cycles that failed since creation."""
        return self._refresh_failures

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self) -> Snapshot:
        """Return the current snapshot without touching the network."""
        with self._swap_lock:
            return self._snapshot

    async def refresh(self) -> bool:
        """Fetch the full remote state and swap in a new snapshot.

        Returns:
            True on success; False if the fetch failed, in which case the
            previous snapshot stays in place.
        """
        async with self._refresh_lock:
            try:
                secret_rows = await self._backend.read_rows(SECRETS_SHEET)
                key_rows = await self._backend.read_rows(KEYS_SHEET)
            except StoreError as err:
                self._refresh_failures += 1
                logger.error("Unable to update tables: %s", err)
                return False
            snapshot = _build_snapshot(secret_rows, key_rows)
            with self._swap_lock:
                self._snapshot = snapshot
        logger.debug("Cache refreshed: %d secret(s)", len(snapshot.secrets))
        return True

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def append(self, record: SecretRecord) -> None:
        """Append a secret row to the backing store."""
        try:
            await self._backend.append_row(SECRETS_SHEET, record.to_row())
        except StoreError as err:
            logger.error("Unable to append secret: %s", err)
            raise

    async def delete(self, index: int) -> None:
        """Delete the secret row at ``index`` of the latest listing.

        Raises:
            RowIndexError: If the index is outside the current sheet.
        """
        try:
            await self._backend.delete_row(SECRETS_SHEET, index)
        except StoreError as err:
            logger.error("Unable to delete secret %d: %s", index, err)
            raise

    async def set_key(self, record: str) -> None:
        """Overwrite the wrapped key record."""
        try:
            await self._backend.update_cell(KEYS_SHEET, KEY_CELL, record)
        except StoreError as err:
            logger.error("Unable to store wrapped key: %s", err)
            raise

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Create missing sheets, load the first snapshot, start refreshing.

        Raises:
            StoreError: If the sheets cannot be created or first read fails.
        """
        if self.is_running:
            return
        await self._backend.setup((SECRETS_SHEET, KEYS_SHEET))
        if not await self.refresh():
            raise StoreError("Unable to load the initial snapshot")
        self._stopping.clear()
        self._task = asyncio.create_task(self._run(), name="secretable-refresh")

    async def stop(self, timeout: Optional[float] = None) -> None:
        """Stop scheduling refreshes.

        An in-flight refresh completes first; if ``timeout`` is given and
        expires, the task is cancelled instead. A task that already died is
        logged, not re-raised.
        """
        self._stopping.set()
        task, self._task = self._task, None
        if task is None:
            return
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout)
        except asyncio.TimeoutError:
            if not task.done():
                logger.warning("Refresh task did not stop in %ss, cancelling", timeout)
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
        except Exception as err:
            logger.error("Refresh task exited with an error: %s", err)

    async def close(self) -> None:
        try:
            await self.stop()
        finally:
            await self._backend.close()

    async def _sleep(self) -> None:
        await asyncio.sleep(self._interval)

    async def _next_cycle(self) -> bool:
        tick = asyncio.ensure_future(self._ticker())
        stop = asyncio.ensure_future(self._stopping.wait())
        done, pending = await asyncio.wait(
            {tick, stop}, return_when=asyncio.FIRST_COMPLETED,
        )
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        if tick in done and not tick.cancelled() and tick.exception() is not None:
            logger.error("Refresh ticker failed: %s", tick.exception())
        return not self._stopping.is_set()

    async def _run(self) -> None:
        while await self._next_cycle():
            try:
                await self.refresh()
            except Exception:
                # the loop outlives any single failed cycle
                self._refresh_failures += 1
                logger.exception("Refresh cycle failed")
