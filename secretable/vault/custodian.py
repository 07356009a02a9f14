"""
KeyCustodian — Master password custody and private key lifecycle.

The custodian owns the only path from a master password to the plaintext
private key:

    store.get().key ──unwrap(password, config.salt)──▶ private key

Its operations (unlock, establish, rotate) are serialised by the key lock of
the store, which every custodian over that store shares. The expensive PBKDF2
derivation runs in a worker thread so the event loop keeps serving other
requests.

Security Note:
    The master password lives only in a :class:`MasterPassword` slot in
    process memory. The plaintext private key is returned to the caller and
    never cached here.
"""
import asyncio
import logging
import threading
from typing import Any, NamedTuple, Optional

from cryptography.hazmat.primitives.asymmetric import ec

from .crypto import generate_private_key, unwrap_private_key, wrap_private_key
from .key_rotation import rotate_salt
from ..exceptions import KeyNotFound, VaultLocked

logger = logging.getLogger("secretable.vault")


class MasterPassword:
    """Lock-guarded slot holding the master password; empty means locked."""

    def __init__(self, value: Optional[str] = None):
        self._lock = threading.Lock()
        self._value = value or None

    @property
    def locked(self) -> bool:
        return self.get() is None

    def get(self) -> Optional[str]:
        with self._lock:
            return self._value

    def set(self, value: str) -> None:
        if not value:
            raise ValueError("Master password cannot be empty")
        with self._lock:
            self._value = value

    def clear(self) -> None:
        with self._lock:
            self._value = None


class UnlockResult(NamedTuple):
    private_key: Optional[ec.EllipticCurvePrivateKey]
    existed: bool


class KeyCustodian:
    """Derives, generates and re-wraps the vault private key.

    Args:
        store: CachedSecretStore holding the wrapped key record.
        config: VaultConfig providing ``salt``, ``kdf_iterations`` and ``save()``.
        password: Master password slot shared with the caller.
    """

    def __init__(self, store: Any, config: Any, password: MasterPassword):
        self._store = store
        self._config = config
        self._password = password
        # shared with every custodian over the same store
        self._lock = store.key_lock

    @property
    def master_password(self) -> MasterPassword:
        return self._password

    async def _unlock(self, password: str) -> UnlockResult:
        record = self._store.get().key
        if record is None:
            return UnlockResult(None, False)
        private_key = await asyncio.to_thread(
            unwrap_private_key,
            record,
            password,
            self._config.salt,
            self._config.kdf_iterations,
        )
        return UnlockResult(private_key, True)

    async def _establish(self, password: str) -> ec.EllipticCurvePrivateKey:
        logger.info("Generating new private key")
        private_key = generate_private_key()
        record = await asyncio.to_thread(
            wrap_private_key,
            private_key,
            password,
            self._config.salt,
            self._config.kdf_iterations,
        )
        await self._store.set_key(record)
        await self._store.refresh()
        return private_key

    async def unlock(self, password: str) -> UnlockResult:
        """Unwrap the stored private key with ``password``.

        Returns:
            ``UnlockResult(None, False)`` when no wrapped key exists yet,
            otherwise the private key with ``existed=True``.

        Raises:
            AuthenticationFailed: Wrong password or tampered record.
        """
        async with self._lock:
            return await self._unlock(password)

    async def establish(self, password: str) -> ec.EllipticCurvePrivateKey:
        """Generate a new key pair and store it wrapped under ``password``.

        Any previous record is overwritten; call only when :meth:`unlock`
        reported ``existed=False``, or use :meth:`unlock_or_establish`.
        """
        async with self._lock:
            return await self._establish(password)

    async def unlock_or_establish(self, password: str) -> UnlockResult:
        """Unlock the stored key, creating one first if none exists.

        The check and the creation happen under one lock, so of two callers
        racing on an empty store only the first creates a key; the second
        unlocks that key or fails with AuthenticationFailed.

        Returns:
            The private key, with ``existed=False`` if it was just created.
        """
        async with self._lock:
            result = await self._unlock(password)
            if result.existed:
                return result
            return UnlockResult(await self._establish(password), False)

    async def rotate_salt(
        self,
        new_salt: Optional[str] = None,
        new_password: Optional[str] = None,
    ) -> str:
        """Re-wrap the private key under a new salt and optional new password.

        Returns:
            The salt now in effect.

        Raises:
            VaultLocked: No master password is set.
            KeyNotFound: No wrapped key exists.
            AuthenticationFailed: The slot's password no longer unlocks the key.
            ConfigError: The salt comes from SECRETABLE_SALT.
            SaltRotationError: Persisting failed; the previous salt is kept.
        """
        async with self._lock:
            password = self._password.get()
            if password is None:
                raise VaultLocked("Master password is not set")
            result = await self._unlock(password)
            if not result.existed:
                raise KeyNotFound("Missing private key")
            salt = await rotate_salt(
                self._store,
                self._config,
                result.private_key,
                new_password or password,
                new_salt,
            )
            if new_password:
                self._password.set(new_password)
            await self._store.refresh()
            return salt

    async def private_key(self) -> ec.EllipticCurvePrivateKey:
        """Unlock with the password currently held in the slot.

        Raises:
            VaultLocked: No master password is set.
            KeyNotFound: No wrapped key exists.
            AuthenticationFailed: The password does not unlock the key.
        """
        password = self._password.get()
        if password is None:
            raise VaultLocked("Master password is not set")
        result = await self.unlock(password)
        if not result.existed:
            raise KeyNotFound("Missing private key")
        return result.private_key

    async def public_key(self) -> ec.EllipticCurvePublicKey:
        return (await self.private_key()).public_key()
