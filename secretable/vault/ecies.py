"""
Vault ECIES — Hybrid public-key encryption of individual secret fields.

Each field gets its own ephemeral key pair, so two envelopes of the same
plaintext are unlinkable and no symmetric key is ever used twice:

    shared_x = ECDH(ephemeral_private, recipient_public)
    enc_key | mac_key = SHA-512(shared_x)           (32B | 32B)
    body = AES-256-CBC(enc_key, iv, pad32(plaintext))
    mac  = HMAC-SHA512(mac_key, iv | body)

Envelope format:
    [eph_len 1B][ephemeral public key, X9.62 uncompressed][iv 16B][body][mac 64B]

The MAC is verified before any CBC decryption is attempted.

Security Note:
    Never log plaintext values. Errors deliberately carry no detail about
    which byte of an envelope was wrong.
"""
import os
import logging

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .crypto import decode_blob, encode_blob, public_key_bytes
from ..exceptions import (
    InvalidCiphertext,
    InvalidMAC,
    InvalidPublicKey,
    KeyAgreementFailed,
    PaddingIncorrect,
)

logger = logging.getLogger("secretable.vault")

IV_SIZE = 16  # AES block size
MAC_SIZE = 64  # HMAC-SHA512
PAD_BLOCK = 32
CIPHER_KEY_SIZE = 32


# ---------------------------------------------------------------------------
# Padding
# ---------------------------------------------------------------------------

def add_padding(data: bytes) -> bytes:
    """Pad data to a multiple of 32 bytes.

    Every padding byte holds the padding length, which is always in [1, 32].
    """
    length = PAD_BLOCK - len(data) % PAD_BLOCK
    return data + bytes([length]) * length


def remove_padding(data: bytes) -> bytes:
    """Strip padding added by :func:`add_padding`.

    Only the last byte is consulted.

    Raises:
        PaddingIncorrect: If the declared length is outside [1, 32].
    """
    if not data:
        raise PaddingIncorrect("padding incorrect")
    length = data[-1]
    if length < 1 or length > PAD_BLOCK or length > len(data):
        raise PaddingIncorrect("padding incorrect")
    return data[:-length]


# ---------------------------------------------------------------------------
# Key agreement
# ---------------------------------------------------------------------------

def _derive_keys(
    private_key: ec.EllipticCurvePrivateKey,
    public_key: ec.EllipticCurvePublicKey,
) -> tuple[bytes, bytes]:
    """Return (cipher_key, mac_key) for an ECDH pair."""
    try:
        shared = private_key.exchange(ec.ECDH(), public_key)
    except ValueError as err:
        raise KeyAgreementFailed("failed to generate encryption key") from err
    # big-endian x-coordinate without leading zero bytes
    shared = shared.lstrip(b"\x00")
    if not shared:
        raise KeyAgreementFailed("failed to generate encryption key")
    digest = hashes.Hash(hashes.SHA512())
    digest.update(shared)
    material = digest.finalize()
    return material[:CIPHER_KEY_SIZE], material[CIPHER_KEY_SIZE:]


def _mac(mac_key: bytes, data: bytes) -> hmac.HMAC:
    h = hmac.HMAC(mac_key, hashes.SHA512())
    h.update(data)
    return h


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------

def _encrypt_padded(public_key: ec.EllipticCurvePublicKey, padded: bytes) -> bytes:
    ephemeral = ec.generate_private_key(public_key.curve)
    cipher_key, mac_key = _derive_keys(ephemeral, public_key)

    iv = os.urandom(IV_SIZE)
    encryptor = Cipher(algorithms.AES(cipher_key), modes.CBC(iv)).encryptor()
    body = encryptor.update(padded) + encryptor.finalize()

    eph_pub = public_key_bytes(ephemeral.public_key())
    if len(eph_pub) > 0xFF:
        raise KeyAgreementFailed("ephemeral public key too long")
    tag = _mac(mac_key, iv + body).finalize()
    return bytes([len(eph_pub)]) + eph_pub + iv + body + tag


def encrypt(public_key: ec.EllipticCurvePublicKey, plaintext: bytes) -> bytes:
    """Encrypt plaintext for the holder of public_key.

    Args:
        public_key: Recipient public key (the vault's active key).
        plaintext: Bytes to encrypt, any length.

    Returns:
        Envelope bytes.

    Raises:
        KeyAgreementFailed: If ECDH fails; nothing is emitted in that case.
    """
    return _encrypt_padded(public_key, add_padding(plaintext))


def decrypt(private_key: ec.EllipticCurvePrivateKey, envelope: bytes) -> bytes:
    """Verify and decrypt an envelope produced by :func:`encrypt`.

    Args:
        private_key: The vault's unwrapped private key.
        envelope: Envelope bytes.

    Returns:
        Plaintext bytes.

    Raises:
        InvalidCiphertext: Envelope is empty, truncated or misaligned.
        InvalidPublicKey: Ephemeral key is not a point on the curve.
        InvalidMAC: MAC does not verify.
        PaddingIncorrect: Decrypted padding is impossible.
    """
    if not envelope:
        raise InvalidCiphertext("invalid ciphertext")
    eph_len = envelope[0]
    if len(envelope) < 1 + eph_len:
        raise InvalidCiphertext("invalid ciphertext")
    eph_pub = envelope[1:1 + eph_len]
    data = envelope[1 + eph_len:]
    if len(data) < MAC_SIZE + IV_SIZE:
        raise InvalidCiphertext("invalid ciphertext")

    try:
        ephemeral = ec.EllipticCurvePublicKey.from_encoded_point(
            private_key.curve, eph_pub,
        )
    except ValueError as err:
        raise InvalidPublicKey("invalid public key") from err

    cipher_key, mac_key = _derive_keys(private_key, ephemeral)

    tag_start = len(data) - MAC_SIZE
    try:
        _mac(mac_key, data[:tag_start]).verify(data[tag_start:])
    except InvalidSignature as err:
        raise InvalidMAC("invalid MAC") from err

    iv = data[:IV_SIZE]
    body = data[IV_SIZE:tag_start]
    if not body or len(body) % IV_SIZE:
        raise InvalidCiphertext("invalid ciphertext")
    decryptor = Cipher(algorithms.AES(cipher_key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(body) + decryptor.finalize()
    return remove_padding(padded)


def encrypt_text(public_key: ec.EllipticCurvePublicKey, text: str) -> str:
    """Encrypt a text field and return the base58 envelope."""
    return encode_blob(encrypt(public_key, text.encode("utf-8")))


def decrypt_text(private_key: ec.EllipticCurvePrivateKey, value: str) -> str:
    """Decrypt a base58 envelope produced by :func:`encrypt_text`."""
    try:
        envelope = decode_blob(value)
    except ValueError as err:
        raise InvalidCiphertext("invalid ciphertext") from err
    plaintext = decrypt(private_key, envelope)
    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as err:
        raise InvalidCiphertext("invalid ciphertext") from err
