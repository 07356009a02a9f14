"""
SecretVault — Encrypted credential storage unlocked by a master password.

Provides the public API for the vault:
- ``set_master_password(password)`` — unlock, or create the key pair on first use
- ``add(description, username, secret)`` — encrypt and append a secret
- ``query(text)`` — find secrets by description and decrypt them
- ``delete(index)`` — remove a secret by its position in the latest listing
- ``change_password(new_password)`` — re-wrap the key under a new salt
- ``reset()`` — forget the master password
- ``open_vault(config)`` — factory wiring backend, cache and custodian

Security Note:
    Never log plaintext or ciphertext values. Only log operations, indices
    and counts. Decrypted values exist in process memory while the caller
    holds them.
"""
import string
import secrets
import logging
from typing import Any

from pydantic import BaseModel

from .custodian import KeyCustodian, MasterPassword
from .ecies import decrypt_text, encrypt_text
from .store import CachedSecretStore, SecretRecord
from ..exceptions import DecryptionError, StoreError
from ..providers import create_row_store

logger = logging.getLogger("secretable.vault")

_PASSWORD_CHARS = (
    string.ascii_lowercase
    + string.ascii_uppercase
    + string.digits
    + " !\"#$%&'()*+,-./:;<=>?@[\\]^_{|}~`"
)
_DEFAULT_PASSWORD_LENGTH = 16
_MAX_PASSWORD_LENGTH = 128


def generate_password(length: int = _DEFAULT_PASSWORD_LENGTH) -> str:
    """Generate a random password from letters, digits and punctuation.

    Lengths outside 1..128 fall back to 16.
    """
    if length <= 0 or length > _MAX_PASSWORD_LENGTH:
        length = _DEFAULT_PASSWORD_LENGTH
    return "".join(secrets.choice(_PASSWORD_CHARS) for _ in range(length))


class RevealedSecret(BaseModel):
    """A decrypted secret; ``index`` is its position in the listing."""

    index: int
    description: str
    username: str
    secret: str


class SecretVault:
    """Credential vault over a cached row store.

    Fields are encrypted with the vault public key, so adding a secret
    needs the master password only to recover that key; reading needs one
    unwrap per query and one ECIES decryption per field.
    """

    def __init__(self, store: CachedSecretStore, custodian: KeyCustodian):
        self._store = store
        self._custodian = custodian

    @property
    def store(self) -> CachedSecretStore:
        return self._store

    @property
    def custodian(self) -> KeyCustodian:
        return self._custodian

    @property
    def is_locked(self) -> bool:
        return self._custodian.master_password.locked

    # ------------------------------------------------------------------
    # Master password
    # ------------------------------------------------------------------

    async def set_master_password(self, password: str) -> bool:
        """Unlock the vault, generating the key pair if none exists yet.

        Returns:
            True if a new key pair was created.

        Raises:
            ValueError: If the password is empty.
            AuthenticationFailed: If the password does not unlock the key.
        """
        password = password.strip()
        if not password:
            raise ValueError("Master password cannot be empty")
        result = await self._custodian.unlock_or_establish(password)
        created = not result.existed
        self._custodian.master_password.set(password)
        logger.info("Master password set (new key: %s)", created)
        return created

    def reset(self) -> None:
        """Forget the master password; the vault is locked afterwards."""
        self._custodian.master_password.clear()
        logger.info("Master password cleared")

    async def change_password(self, new_password: str) -> str:
        """Re-wrap the private key under ``new_password`` and a fresh salt.

        Returns:
            The new salt.
        """
        new_password = new_password.strip()
        if not new_password:
            raise ValueError("Master password cannot be empty")
        return await self._custodian.rotate_salt(new_password=new_password)

    # ------------------------------------------------------------------
    # Secrets
    # ------------------------------------------------------------------

    async def add(self, description: str, username: str, secret: str) -> None:
        """Encrypt ``username`` and ``secret`` and append a new row.

        Raises:
            ValueError: If description is empty.
            VaultLocked: If no master password is set.
        """
        description = description.strip()
        if not description:
            raise ValueError("Secret description cannot be empty")
        public_key = await self._custodian.public_key()
        record = SecretRecord(
            description=description,
            username=encrypt_text(public_key, username),
            secret=encrypt_text(public_key, secret),
        )
        await self._store.append(record)
        logger.debug("Secret appended")

    async def query(self, text: str) -> list[RevealedSecret]:
        """Decrypt every secret whose description contains ``text``.

        Raises:
            VaultLocked: If no master password is set.
            DecryptionError: If any matching field fails to decrypt.
        """
        matches = self._store.get().find(text)
        if not matches:
            return []
        private_key = await self._custodian.private_key()
        revealed = []
        for index, record in matches:
            try:
                username = decrypt_text(private_key, record.username)
                secret = decrypt_text(private_key, record.secret)
            except DecryptionError as err:
                logger.error(
                    "Decrypt secret %d with private key: %s", index, err,
                )
                raise
            revealed.append(
                RevealedSecret(
                    index=index,
                    description=record.description,
                    username=username,
                    secret=secret,
                )
            )
        return revealed

    async def delete(self, index: int) -> None:
        """Delete the secret at ``index`` of the latest listing.

        Raises:
            RowIndexError: If the index is out of range.
        """
        await self._store.delete(index)
        logger.debug("Secret %d deleted", index)

    async def close(self) -> None:
        await self._store.close()


async def open_vault(config: Any) -> SecretVault:
    """Build and start a vault from a :class:`VaultConfig`.

    The refresh loop is running when this returns; call
    :meth:`SecretVault.close` on shutdown.
    """
    backend = create_row_store(config)
    store = CachedSecretStore(backend, interval=config.refresh_interval)
    try:
        await store.start()
    except StoreError:
        await backend.close()
        raise
    custodian = KeyCustodian(store, config, MasterPassword())
    logger.info(
        "Vault opened with %s storage: %d secret(s)",
        config.storage, len(store.get().secrets),
    )
    return SecretVault(store, custodian)
