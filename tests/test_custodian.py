"""
Tests for KeyCustodian, MasterPassword and salt rotation.

Tests cover:
- First unlock reports a missing key, establish creates one
- Unlock with the right password yields the same key, wrong password fails
- Salt rotation with and without a password change
- Rollback to the previous salt when the key record cannot be written,
  including timeouts and cancellation
- unlock_or_establish() creating a single key under concurrent callers
- Refusing to rotate a salt that comes from the environment
- Locked and missing-key errors
"""
import asyncio
import logging

import pytest

from secretable.exceptions import (
    AuthenticationFailed,
    ConfigError,
    KeyNotFound,
    SaltRotationError,
    VaultLocked,
)
from secretable.vault.config import VaultConfig
from secretable.vault.crypto import public_key_bytes
from secretable.vault.custodian import KeyCustodian, MasterPassword


@pytest.fixture
def established(custodian):
    """Custodian with a key wrapped under ``correct horse`` and salt ``abc123``."""

    async def _establish():
        result = await custodian.unlock("correct horse")
        assert result == (None, False)
        key = await custodian.establish("correct horse")
        custodian.master_password.set("correct horse")
        return key

    return _establish


class TestMasterPassword:
    """Tests for the password slot."""

    def test_starts_locked(self):
        assert MasterPassword().locked

    def test_set_and_clear(self):
        slot = MasterPassword()
        slot.set("pw")
        assert slot.get() == "pw"
        assert not slot.locked
        slot.clear()
        assert slot.get() is None
        assert slot.locked

    def test_empty_value_rejected(self):
        with pytest.raises(ValueError):
            MasterPassword().set("")

    def test_initial_empty_value_is_locked(self):
        assert MasterPassword("").locked


class TestUnlock:
    """Tests for unlock() and establish()."""

    @pytest.mark.asyncio
    async def test_missing_key(self, custodian):
        result = await custodian.unlock("anything")
        assert result.private_key is None
        assert result.existed is False

    @pytest.mark.asyncio
    async def test_establish_then_unlock(self, custodian, store, established):
        key = await established()
        assert store.get().key is not None

        result = await custodian.unlock("correct horse")
        assert result.existed
        assert public_key_bytes(result.private_key.public_key()) == public_key_bytes(
            key.public_key()
        )

    @pytest.mark.asyncio
    async def test_wrong_password(self, custodian, established):
        await established()
        with pytest.raises(AuthenticationFailed):
            await custodian.unlock("wrong")

    @pytest.mark.asyncio
    async def test_concurrent_unlocks(self, custodian, established):
        key = await established()
        results = await asyncio.gather(
            *(custodian.unlock("correct horse") for _ in range(3))
        )
        expected = public_key_bytes(key.public_key())
        for result in results:
            assert public_key_bytes(result.private_key.public_key()) == expected

    @pytest.mark.asyncio
    async def test_unlock_or_establish_creates_once(self, custodian, store):
        created = await custodian.unlock_or_establish("correct horse")
        assert created.existed is False
        record = store.get().key

        again = await custodian.unlock_or_establish("correct horse")
        assert again.existed is True
        assert store.get().key == record
        assert public_key_bytes(again.private_key.public_key()) == public_key_bytes(
            created.private_key.public_key()
        )

    @pytest.mark.asyncio
    async def test_racing_custodians_establish_one_key(self, store, config):
        first = KeyCustodian(store, config, MasterPassword())
        second = KeyCustodian(store, config, MasterPassword())

        results = await asyncio.gather(
            first.unlock_or_establish("alpha"),
            second.unlock_or_establish("bravo"),
            return_exceptions=True,
        )

        winners = [
            (password, result)
            for password, result in zip(("alpha", "bravo"), results)
            if not isinstance(result, BaseException)
        ]
        failures = [r for r in results if isinstance(r, BaseException)]
        assert len(winners) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], AuthenticationFailed)
        password, result = winners[0]
        assert result.existed is False
        unlocked = await first.unlock(password)
        assert public_key_bytes(unlocked.private_key.public_key()) == public_key_bytes(
            result.private_key.public_key()
        )

    @pytest.mark.asyncio
    async def test_private_key_requires_password(self, custodian, established):
        await established()
        custodian.master_password.clear()
        with pytest.raises(VaultLocked):
            await custodian.private_key()

    @pytest.mark.asyncio
    async def test_private_key_requires_record(self, custodian):
        custodian.master_password.set("correct horse")
        with pytest.raises(KeyNotFound):
            await custodian.public_key()


class TestRotateSalt:
    """Tests for rotate_salt()."""

    @pytest.mark.asyncio
    async def test_rotation_keeps_key(self, custodian, config, config_path, established):
        key = await established()
        old_record = custodian._store.get().key

        salt = await custodian.rotate_salt()

        assert salt != "abc123"
        assert config.salt == salt
        assert VaultConfig.load(config_path).salt == salt
        assert custodian._store.get().key != old_record
        result = await custodian.unlock("correct horse")
        assert public_key_bytes(result.private_key.public_key()) == public_key_bytes(
            key.public_key()
        )

    @pytest.mark.asyncio
    async def test_rotation_to_given_salt(self, custodian, config, established):
        await established()
        assert await custodian.rotate_salt(new_salt="fresh-salt") == "fresh-salt"
        assert config.salt == "fresh-salt"

    @pytest.mark.asyncio
    async def test_rotation_with_new_password(self, custodian, established):
        await established()
        await custodian.rotate_salt(new_password="battery staple")
        assert custodian.master_password.get() == "battery staple"
        assert (await custodian.unlock("battery staple")).existed
        with pytest.raises(AuthenticationFailed):
            await custodian.unlock("correct horse")

    @pytest.mark.asyncio
    async def test_rollback_when_key_write_fails(
        self, custodian, config, config_path, backend, established,
    ):
        key = await established()
        record = custodian._store.get().key
        backend.fail_key_writes = True

        with pytest.raises(SaltRotationError):
            await custodian.rotate_salt()

        assert config.salt == "abc123"
        assert VaultConfig.load(config_path).salt == "abc123"
        assert custodian._store.get().key == record
        result = await custodian.unlock("correct horse")
        assert public_key_bytes(result.private_key.public_key()) == public_key_bytes(
            key.public_key()
        )

    @pytest.mark.asyncio
    async def test_salt_save_failure(self, custodian, config, store, established, monkeypatch):
        await established()
        record = store.get().key

        def fail_save(self):
            raise ConfigError("disk full")

        monkeypatch.setattr(VaultConfig, "save", fail_save)
        with pytest.raises(SaltRotationError):
            await custodian.rotate_salt()
        assert config.salt == "abc123"
        await store.refresh()
        assert store.get().key == record

    @pytest.mark.asyncio
    async def test_restore_failure_is_critical(
        self, custodian, config, backend, established, monkeypatch, caplog,
    ):
        await established()
        real_save = VaultConfig.save
        calls = []

        def save_once(self):
            calls.append(self.salt)
            if len(calls) > 1:
                raise ConfigError("disk full")
            real_save(self)

        monkeypatch.setattr(VaultConfig, "save", save_once)
        backend.fail_key_writes = True
        with caplog.at_level(logging.CRITICAL, logger="secretable.vault"):
            with pytest.raises(SaltRotationError) as excinfo:
                await custodian.rotate_salt()
        assert isinstance(excinfo.value.__cause__, ConfigError)
        assert len(calls) == 2
        assert "Unable to restore previous salt" in caplog.text

    @pytest.mark.asyncio
    async def test_locked(self, custodian, established):
        await established()
        custodian.master_password.clear()
        with pytest.raises(VaultLocked):
            await custodian.rotate_salt()

    @pytest.mark.asyncio
    async def test_no_key(self, custodian):
        custodian.master_password.set("correct horse")
        with pytest.raises(KeyNotFound):
            await custodian.rotate_salt()

    @pytest.mark.asyncio
    async def test_rollback_on_timeout(
        self, custodian, config, config_path, backend, established,
    ):
        key = await established()
        record = custodian._store.get().key
        backend.key_write_error = asyncio.TimeoutError()

        with pytest.raises(SaltRotationError):
            await custodian.rotate_salt()

        assert config.salt == "abc123"
        assert VaultConfig.load(config_path).salt == "abc123"
        assert custodian._store.get().key == record
        result = await custodian.unlock("correct horse")
        assert public_key_bytes(result.private_key.public_key()) == public_key_bytes(
            key.public_key()
        )

    @pytest.mark.asyncio
    async def test_rollback_on_cancellation(
        self, custodian, config, config_path, backend, established,
    ):
        await established()
        backend.key_write_error = asyncio.CancelledError()

        with pytest.raises(asyncio.CancelledError):
            await custodian.rotate_salt()

        assert config.salt == "abc123"
        assert VaultConfig.load(config_path).salt == "abc123"
        assert (await custodian.unlock("correct horse")).existed

    @pytest.mark.asyncio
    async def test_error_after_key_landed_keeps_new_salt(
        self, custodian, config, config_path, backend, established,
    ):
        key = await established()
        backend.key_write_error = asyncio.TimeoutError()
        backend.key_write_lands = True

        salt = await custodian.rotate_salt()

        assert salt != "abc123"
        assert VaultConfig.load(config_path).salt == salt
        backend.key_write_error = None
        result = await custodian.unlock("correct horse")
        assert public_key_bytes(result.private_key.public_key()) == public_key_bytes(
            key.public_key()
        )

    @pytest.mark.asyncio
    async def test_cancellation_after_key_landed_keeps_new_salt(
        self, custodian, config, config_path, backend, established,
    ):
        key = await established()
        backend.key_write_error = asyncio.CancelledError()
        backend.key_write_lands = True

        with pytest.raises(asyncio.CancelledError):
            await custodian.rotate_salt()

        assert config.salt != "abc123"
        assert VaultConfig.load(config_path).salt == config.salt
        result = await custodian.unlock("correct horse")
        assert public_key_bytes(result.private_key.public_key()) == public_key_bytes(
            key.public_key()
        )

    @pytest.mark.asyncio
    async def test_salt_from_environment_not_rotated(
        self, store, config_path, established, monkeypatch,
    ):
        await established()
        monkeypatch.setenv("SECRETABLE_SALT", "abc123")
        env_config = VaultConfig.load(config_path)
        custodian = KeyCustodian(store, env_config, MasterPassword("correct horse"))

        with pytest.raises(ConfigError):
            await custodian.rotate_salt()

        monkeypatch.delenv("SECRETABLE_SALT")
        assert VaultConfig.load(config_path).salt == "abc123"
        assert (await custodian.unlock("correct horse")).existed
