"""
Vault Exceptions.

Every error raised by the vault derives from ``VaultError``. Cryptographic
library exceptions are translated where the library is called, so callers
never need to import ``cryptography`` to handle a failure.
"""


class VaultError(Exception):
    """Base class for all vault errors."""


class ConfigError(VaultError):
    """Configuration file could not be read, validated or written."""


class KeyDerivationError(VaultError):
    """Malformed input to the key derivation function."""


class AuthenticationFailed(VaultError):
    """The wrapped private key could not be opened.

    Raised both for a wrong master password and for a tampered or corrupted
    record; the two cases are indistinguishable by construction.
    """


class DecryptionError(VaultError):
    """A secret field could not be decrypted."""


class InvalidCiphertext(DecryptionError):
    """The envelope is structurally invalid (empty, truncated, misaligned)."""


class InvalidPublicKey(DecryptionError):
    """The ephemeral public key is not a valid point on the curve."""


class InvalidMAC(DecryptionError):
    """The envelope MAC does not verify."""


class PaddingIncorrect(DecryptionError):
    """Decrypted plaintext carries an impossible padding length."""


class KeyAgreementFailed(VaultError):
    """ECDH produced no usable shared secret."""


class VaultLocked(VaultError):
    """No master password has been set."""


class KeyNotFound(VaultError):
    """No wrapped private key exists in the store yet."""


class SaltRotationError(VaultError):
    """Salt rotation failed and the previous salt was restored."""


class StoreError(VaultError):
    """A call to the backing row store failed."""


class RowIndexError(StoreError, IndexError):
    """A row index is outside the current listing."""
