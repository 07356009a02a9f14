"""Shared fixtures for the vault tests."""
import asyncio
from typing import Optional

import pytest

from secretable.exceptions import StoreError
from secretable.providers import MemoryRowStore
from secretable.vault.config import VaultConfig
from secretable.vault.crypto import MIN_KDF_ITERATIONS
from secretable.vault.custodian import KeyCustodian, MasterPassword
from secretable.vault.store import CachedSecretStore


class FlakyRowStore(MemoryRowStore):
    """Memory store whose reads or key writes can be made to fail.

    ``read_error`` and ``key_write_error`` take any exception to raise in
    place of the default StoreError. With ``key_write_lands`` set, a failing
    key write is applied before the error is raised.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fail_reads = False
        self.read_error: Optional[BaseException] = None
        self.fail_key_writes = False
        self.key_write_error: Optional[BaseException] = None
        self.key_write_lands = False
        self.closed = False

    async def read_rows(self, sheet):
        if self.read_error is not None:
            raise self.read_error
        if self.fail_reads:
            raise StoreError("service unavailable")
        return await super().read_rows(sheet)

    async def update_cell(self, sheet, cell, value):
        error = self.key_write_error
        if error is None and self.fail_key_writes:
            error = StoreError("service unavailable")
        if error is None or self.key_write_lands:
            await super().update_cell(sheet, cell, value)
        if error is not None:
            raise error

    async def close(self):
        self.closed = True
        await super().close()


class ManualTicker:
    """Refresh ticker driven by the test instead of a timer."""

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()

    async def __call__(self) -> None:
        await self._queue.get()

    def fire(self) -> None:
        self._queue.put_nowait(None)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Yield to the event loop until predicate() is true."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "salt: abc123\n"
        "storage: memory\n"
        f"kdf_iterations: {MIN_KDF_ITERATIONS}\n"
    )
    return path


@pytest.fixture
def config(config_path, monkeypatch):
    """VaultConfig bound to a temp file, salt ``abc123``, fastest allowed KDF."""
    for name in VaultConfig.model_fields:
        monkeypatch.delenv(f"SECRETABLE_{name.upper()}", raising=False)
    return VaultConfig.load(config_path)


@pytest.fixture
def backend():
    return FlakyRowStore({"Secrets": [], "Keys": []})


@pytest.fixture
def store(backend):
    return CachedSecretStore(backend)


@pytest.fixture
def custodian(store, config):
    return KeyCustodian(store, config, MasterPassword())
