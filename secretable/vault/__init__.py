"""Secret Vault — Credentials encrypted under a master-password-wrapped key.

Security Note (Threat Model):
    The master password is held in process memory while the vault is
    unlocked, and the private key is unwrapped for each operation that needs
    it. A memory dump of the application process could expose both.
    This is an accepted limitation; the backing store operator only ever
    sees secret descriptions, base58 envelopes and the wrapped key.
"""

from .secret_vault import SecretVault, RevealedSecret, generate_password, open_vault
from .custodian import KeyCustodian, MasterPassword, UnlockResult
from .store import CachedSecretStore, SecretRecord, Snapshot
from .key_rotation import rotate_salt
from .config import VaultConfig, default_config_path

__all__ = [
    "SecretVault",
    "RevealedSecret",
    "generate_password",
    "open_vault",
    "KeyCustodian",
    "MasterPassword",
    "UnlockResult",
    "CachedSecretStore",
    "SecretRecord",
    "Snapshot",
    "rotate_salt",
    "VaultConfig",
    "default_config_path",
]
