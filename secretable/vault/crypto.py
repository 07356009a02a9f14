"""
Vault Crypto Core — Key derivation, private key wrapping and blob encoding.

Implements the symmetric half of the vault:
- Key derivation: PBKDF2-HMAC-SHA512(master_password, salt) → 32-byte wrapping key
- Key wrapping: AES-256-GCM(wrapping_key, PKCS#8 private key) → [nonce|payload+tag]
- Text encoding: base58 for every binary blob handed to the backing store

Security Note:
    Never log passwords, wrapping keys, plaintext or ciphertext values.
    Nonces are random 96-bit and drawn for every seal; collision probability
    is negligible because at most one record exists per wrapping key.
"""
import os
import secrets
import logging
from typing import Union

import base58
from cryptography.exceptions import InvalidTag, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..exceptions import AuthenticationFailed, KeyDerivationError

logger = logging.getLogger("secretable.vault")

NONCE_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16  # GCM tag
KEY_LENGTH = 32  # AES-256
SALT_SIZE = 32
KDF_ITERATIONS = 200_000
MIN_KDF_ITERATIONS = 100_000

CURVE = ec.SECP521R1


def _as_bytes(value: Union[str, bytes], name: str) -> bytes:
    if isinstance(value, str):
        value = value.encode("utf-8")
    if not isinstance(value, (bytes, bytearray)):
        raise KeyDerivationError(f"{name} must be str or bytes")
    if not value:
        raise KeyDerivationError(f"{name} cannot be empty")
    return bytes(value)


# ---------------------------------------------------------------------------
# Text encoding
# ---------------------------------------------------------------------------

def encode_blob(data: bytes) -> str:
    """Encode a binary blob as base58 text for cell storage."""
    return base58.b58encode(data).decode("ascii")


def decode_blob(text: str) -> bytes:
    """Decode base58 text produced by :func:`encode_blob`.

    Raises:
        ValueError: If text contains characters outside the base58 alphabet.
    """
    return base58.b58decode(text.strip())


def generate_salt(size: int = SALT_SIZE) -> str:
    """Generate a random salt and return it as base58 text."""
    return encode_blob(secrets.token_bytes(size))


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def derive_key(
    password: Union[str, bytes],
    salt: Union[str, bytes],
    iterations: int = KDF_ITERATIONS,
) -> bytes:
    """Derive a 32-byte wrapping key using PBKDF2-HMAC-SHA512.

    Text salts are used as their UTF-8 bytes, which is how the salt string
    from configuration enters the derivation.

    Args:
        password: Master password.
        salt: Salt from configuration.
        iterations: PBKDF2 iteration count (at least 100 000).

    Returns:
        32-byte derived key.

    Raises:
        KeyDerivationError: If password or salt is empty or iterations too low.
    """
    if iterations < MIN_KDF_ITERATIONS:
        raise KeyDerivationError(
            f"iterations must be at least {MIN_KDF_ITERATIONS}, got {iterations}"
        )
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA512(),
        length=KEY_LENGTH,
        salt=_as_bytes(salt, "salt"),
        iterations=iterations,
    )
    return kdf.derive(_as_bytes(password, "password"))


# ---------------------------------------------------------------------------
# Symmetric envelope (AES-256-GCM)
# ---------------------------------------------------------------------------

def seal(key: bytes, nonce: bytes, plaintext: bytes) -> bytes:
    """Encrypt and authenticate plaintext with AES-256-GCM.

    Returns:
        ciphertext with the 16-byte tag appended.
    """
    if len(nonce) != NONCE_SIZE:
        raise ValueError(f"nonce must be {NONCE_SIZE} bytes, got {len(nonce)}")
    return AESGCM(key).encrypt(nonce, plaintext, None)


def unseal(key: bytes, nonce: bytes, ciphertext: bytes) -> bytes:
    """Verify and decrypt an AES-256-GCM ciphertext.

    Raises:
        AuthenticationFailed: If the tag does not verify.
    """
    try:
        return AESGCM(key).decrypt(nonce, ciphertext, None)
    except InvalidTag as err:
        raise AuthenticationFailed("unable to unwrap private key") from err


# ---------------------------------------------------------------------------
# Elliptic-curve key pair
# ---------------------------------------------------------------------------

def generate_private_key() -> ec.EllipticCurvePrivateKey:
    """Generate a new P-521 private key."""
    return ec.generate_private_key(CURVE())


def dump_private_key(private_key: ec.EllipticCurvePrivateKey) -> bytes:
    """Serialize a private key as unencrypted PKCS#8 DER."""
    return private_key.private_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def load_private_key(der: bytes) -> ec.EllipticCurvePrivateKey:
    """Load a PKCS#8 DER private key, requiring an elliptic-curve key."""
    try:
        key = serialization.load_der_private_key(der, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as err:
        raise AuthenticationFailed("unable to unwrap private key") from err
    if not isinstance(key, ec.EllipticCurvePrivateKey):
        raise AuthenticationFailed("unable to unwrap private key")
    return key


def public_key_bytes(public_key: ec.EllipticCurvePublicKey) -> bytes:
    """Return the X9.62 uncompressed point encoding of a public key."""
    return public_key.public_bytes(
        encoding=serialization.Encoding.X962,
        format=serialization.PublicFormat.UncompressedPoint,
    )


# ---------------------------------------------------------------------------
# Wrapped key record
# ---------------------------------------------------------------------------

def wrap_private_key(
    private_key: ec.EllipticCurvePrivateKey,
    password: Union[str, bytes],
    salt: Union[str, bytes],
    iterations: int = KDF_ITERATIONS,
) -> str:
    """Wrap a private key under a password-derived key.

    Format: base58([nonce 12B][encrypted PKCS#8 + GCM tag 16B])

    Args:
        private_key: Key to protect.
        password: Master password.
        salt: Salt from configuration.
        iterations: PBKDF2 iteration count.

    Returns:
        Text-encoded wrapped key record.
    """
    key = derive_key(password, salt, iterations)
    nonce = os.urandom(NONCE_SIZE)
    ct = seal(key, nonce, dump_private_key(private_key))
    return encode_blob(nonce + ct)


def unwrap_private_key(
    record: str,
    password: Union[str, bytes],
    salt: Union[str, bytes],
    iterations: int = KDF_ITERATIONS,
) -> ec.EllipticCurvePrivateKey:
    """Recover the private key from a wrapped key record.

    Args:
        record: Text-encoded record produced by :func:`wrap_private_key`.
        password: Master password.
        salt: Salt from configuration.
        iterations: PBKDF2 iteration count.

    Returns:
        The unwrapped private key.

    Raises:
        AuthenticationFailed: Wrong password, wrong salt, or a corrupted record.
    """
    try:
        raw = decode_blob(record)
    except ValueError as err:
        raise AuthenticationFailed("unable to unwrap private key") from err
    if len(raw) < NONCE_SIZE + TAG_SIZE:
        raise AuthenticationFailed("unable to unwrap private key")
    key = derive_key(password, salt, iterations)
    der = unseal(key, raw[:NONCE_SIZE], raw[NONCE_SIZE:])
    return load_private_key(der)
