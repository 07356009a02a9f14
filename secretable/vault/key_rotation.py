"""
Vault Salt Rotation — Re-wrap the private key under a new salt.

The salt and the wrapped key record must change together: a salt without a
matching record makes the private key unrecoverable. The new salt is
persisted first, then the new record. If the record write fails in any way,
including cancellation, the store is re-read: when the new record did land,
the new salt stands; otherwise the old salt is written back before the error
is reported.

Security Note:
    The plaintext private key exists in memory only for the duration of the
    re-wrap. Never log salts, passwords or records.
"""
import asyncio
import logging
from typing import Any, Optional

from cryptography.hazmat.primitives.asymmetric import ec

from .crypto import generate_salt, wrap_private_key
from ..exceptions import ConfigError, SaltRotationError

logger = logging.getLogger("secretable.vault")


async def _record_landed(store: Any, record: str) -> bool:
    """Re-read the store and report whether ``record`` is the stored key."""
    try:
        if not await store.refresh():
            return False
    except Exception as err:
        logger.error("Unable to re-read key store after failed write: %s", err)
        return False
    return store.get().key == record


async def rotate_salt(
    store: Any,
    config: Any,
    private_key: ec.EllipticCurvePrivateKey,
    password: str,
    new_salt: Optional[str] = None,
) -> str:
    """Re-wrap ``private_key`` under ``password`` and a new salt.

    Args:
        store: CachedSecretStore receiving the new wrapped key record.
        config: VaultConfig holding the current salt.
        private_key: The unlocked private key.
        password: Password for the new wrapping (current or new one).
        new_salt: Salt to rotate to; generated when omitted.

    Returns:
        The salt now in effect.

    Raises:
        ConfigError: If the salt is set through the environment; the file
            cannot hold a rotated salt in that case.
        SaltRotationError: If persisting the salt or the record failed. The
            salt on disk is the previous one whenever this is raised.
        asyncio.CancelledError: Re-raised once the salt on disk matches the
            stored record again.
    """
    if config.salt_from_env:
        raise ConfigError(
            "Salt is set by SECRETABLE_SALT; unset it before rotating the salt"
        )
    new_salt = new_salt or generate_salt()
    old_salt = config.salt
    record = await asyncio.to_thread(
        wrap_private_key, private_key, password, new_salt, config.kdf_iterations,
    )

    logger.info("Starting salt rotation")
    config.salt = new_salt
    try:
        config.save()
    except ConfigError as err:
        config.salt = old_salt
        logger.error("Unable to persist new salt: %s", err)
        raise SaltRotationError("Unable to persist new salt") from err

    try:
        await store.set_key(record)
    except BaseException as err:
        if await _record_landed(store, record):
            logger.warning(
                "Key store reported an error but holds the re-wrapped key: %r", err,
            )
            if not isinstance(err, Exception):
                raise
            logger.info("Salt rotation complete")
            return new_salt
        logger.error("Unable to store re-wrapped key, restoring previous salt")
        config.salt = old_salt
        try:
            config.save()
        except ConfigError as restore_err:
            logger.critical("Unable to restore previous salt: %s", restore_err)
            raise SaltRotationError(
                "Unable to store re-wrapped key or restore previous salt"
            ) from restore_err
        if not isinstance(err, Exception):
            raise
        raise SaltRotationError("Unable to store re-wrapped key") from err

    logger.info("Salt rotation complete")
    return new_salt
