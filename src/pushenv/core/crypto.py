"""
Passphrase key derivation and authenticated encryption of env payloads.

Blob wire format (what lands in the object store):
    <salt-hex>:<ciphertext>

where ciphertext is base64(nonce || AES-256-GCM output incl. tag). The
salt is carried next to the ciphertext, never inside it, and the split
point is the first colon.
"""

import base64
import binascii
import secrets
from typing import Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import AuthenticationError, InvalidCiphertextFormat


KDF_ITERS = 100_000
KEY_LEN = 32
SALT_LEN = 16
NONCE_LEN = 12
TAG_LEN = 16
BLOB_DELIMITER = ":"


def generate_salt() -> bytes:
    """Random salt for a new key entry."""
    return secrets.token_bytes(SALT_LEN)


def derive_key(passphrase: str, salt: bytes) -> bytes:
    """
    Derive a 32-byte key from a passphrase.

    Deterministic for the same (passphrase, salt) pair.

    Args:
        passphrase: Shared team passphrase
        salt: Salt stored with the key entry / blob

    Returns:
        Raw key bytes
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LEN,
        salt=salt,
        iterations=KDF_ITERS,
    )
    return kdf.derive(passphrase.encode("utf-8"))


def encrypt(plaintext: str, key: bytes) -> str:
    """
    Encrypt plaintext with AES-256-GCM.

    Args:
        plaintext: Content of the .env file
        key: 32-byte key

    Returns:
        base64 string of nonce + ciphertext + tag
    """
    if len(key) != KEY_LEN:
        raise AuthenticationError("Invalid key length.")

    nonce = secrets.token_bytes(NONCE_LEN)
    ct = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
    return base64.b64encode(nonce + ct).decode("ascii")


def decrypt(ciphertext: str, key: bytes) -> str:
    """
    Decrypt a payload produced by encrypt().

    Raises:
        InvalidCiphertextFormat: payload is not decodable at all
        AuthenticationError: wrong key or tampered payload
    """
    try:
        raw = base64.b64decode(ciphertext.strip(), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidCiphertextFormat("Encrypted payload is not valid base64.") from exc

    if len(raw) < NONCE_LEN + TAG_LEN:
        raise InvalidCiphertextFormat("Encrypted payload is truncated.")
    if len(key) != KEY_LEN:
        raise AuthenticationError()

    nonce, ct = raw[:NONCE_LEN], raw[NONCE_LEN:]
    try:
        plaintext = AESGCM(key).decrypt(nonce, ct, None)
    except InvalidTag as exc:
        raise AuthenticationError() from exc

    return plaintext.decode("utf-8")


def pack_blob(salt: bytes, ciphertext: str) -> str:
    """Join salt and ciphertext into the stored blob format."""
    return f"{salt.hex()}{BLOB_DELIMITER}{ciphertext}"


def unpack_blob(blob: str) -> Tuple[bytes, str]:
    """
    Split a stored blob into (salt, ciphertext).

    Only the first colon is significant; the ciphertext part is not checked
    for further colons.
    """
    if BLOB_DELIMITER not in blob:
        raise InvalidCiphertextFormat()

    salt_hex, ciphertext = blob.split(BLOB_DELIMITER, 1)
    try:
        salt = bytes.fromhex(salt_hex.strip())
    except ValueError as exc:
        raise InvalidCiphertextFormat("Invalid salt in encrypted data.") from exc

    return salt, ciphertext


def encode_key(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def decode_key(data: str) -> bytes:
    return base64.b64decode(data, validate=True)
