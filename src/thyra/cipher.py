"""
Content cipher — the envelope every encrypted upload travels in.

AES-256-CBC with PKCS7 padding and a fresh 16-byte IV per call. The
result is a self-describing JSON envelope:

    {"encrypted": "<b64>", "iv": "<b64>", "algorithm": "aes-256-cbc",
     "mac": "<b64>"}

``mac`` is HMAC-SHA256 over iv || ciphertext with a key derived from
the content key, checked before decryption so a flipped bit is caught
rather than decrypted into garbage. Envelopes written without a MAC
are still accepted, with padding as the only check.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import os
from typing import Union

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.hashes import SHA256
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from pydantic import ValidationError

from .errors import BadKey, InvalidKey, MalformedEnvelope
from .models import ENVELOPE_ALGORITHM, EncryptedEnvelope

KEY_SIZE = 32
IV_SIZE = 16
BLOCK_BITS = 128
MAC_INFO = b"thyra:envelope-mac"


def _check_key(key: bytes) -> None:
    if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_SIZE:
        size = len(key) if isinstance(key, (bytes, bytearray)) else type(key).__name__
        raise InvalidKey(f"AES-256 key must be {KEY_SIZE} bytes, got {size}")


def _mac_key(key: bytes) -> bytes:
    hkdf = HKDF(algorithm=SHA256(), length=32, salt=None, info=MAC_INFO)
    return hkdf.derive(bytes(key))


def _mac(key: bytes, iv: bytes, ciphertext: bytes) -> bytes:
    return hmac.new(_mac_key(key), iv + ciphertext, hashlib.sha256).digest()


def _b64decode(value: str, field: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError, TypeError) as exc:
        raise MalformedEnvelope(f"Envelope field '{field}' is not valid base64") from exc


def encrypt(content: bytes, key: bytes) -> EncryptedEnvelope:
    """Encrypt content into a new envelope.

    Args:
        content: Plaintext bytes (may be empty).
        key: 32-byte AES-256 key.

    Returns:
        EncryptedEnvelope with a fresh IV and MAC.

    Raises:
        InvalidKey: If the key is not 32 bytes.
    """
    _check_key(key)
    iv = os.urandom(IV_SIZE)

    padder = padding.PKCS7(BLOCK_BITS).padder()
    padded = padder.update(bytes(content)) + padder.finalize()

    encryptor = Cipher(algorithms.AES(bytes(key)), modes.CBC(iv)).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()

    return EncryptedEnvelope(
        ciphertext=base64.b64encode(ciphertext).decode("ascii"),
        iv=base64.b64encode(iv).decode("ascii"),
        algorithm=ENVELOPE_ALGORITHM,
        mac=base64.b64encode(_mac(key, iv, ciphertext)).decode("ascii"),
    )


def decrypt(envelope: EncryptedEnvelope, key: bytes) -> bytes:
    """Open an envelope.

    Args:
        envelope: Envelope produced by ``encrypt``.
        key: The 32-byte key it was sealed with.

    Returns:
        The original plaintext.

    Raises:
        InvalidKey: If the key is not 32 bytes.
        MalformedEnvelope: If fields are missing, not base64, or unsupported.
        BadKey: If the MAC or padding does not verify.
    """
    _check_key(key)
    if envelope.algorithm != ENVELOPE_ALGORITHM:
        raise MalformedEnvelope(f"Unsupported algorithm: {envelope.algorithm}")

    iv = _b64decode(envelope.iv, "iv")
    ciphertext = _b64decode(envelope.ciphertext, "encrypted")
    if len(iv) != IV_SIZE:
        raise MalformedEnvelope(f"IV must be {IV_SIZE} bytes, got {len(iv)}")

    if envelope.mac is not None:
        tag = _b64decode(envelope.mac, "mac")
        if not hmac.compare_digest(tag, _mac(key, iv, ciphertext)):
            raise BadKey("Envelope authentication failed (wrong key or tampered data)")

    if not ciphertext or len(ciphertext) % IV_SIZE:
        raise BadKey("Ciphertext length is not a whole number of blocks")

    decryptor = Cipher(algorithms.AES(bytes(key)), modes.CBC(iv)).decryptor()
    padded = decryptor.update(ciphertext) + decryptor.finalize()

    unpadder = padding.PKCS7(BLOCK_BITS).unpadder()
    try:
        return unpadder.update(padded) + unpadder.finalize()
    except ValueError as exc:
        raise BadKey("Invalid padding (wrong key or tampered data)") from exc


def envelope_to_bytes(envelope: EncryptedEnvelope) -> bytes:
    """Serialize an envelope to the JSON bytes stored on the network."""
    return json.dumps(envelope.to_wire()).encode("utf-8")


def envelope_from_bytes(raw: Union[bytes, str]) -> EncryptedEnvelope:
    """Parse stored JSON bytes back into an envelope.

    Raises:
        MalformedEnvelope: If the data is not a JSON envelope.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise MalformedEnvelope("Envelope is not valid JSON") from exc
    if not isinstance(data, dict):
        raise MalformedEnvelope("Envelope must be a JSON object")

    missing = [f for f in ("encrypted", "iv", "algorithm") if f not in data]
    if missing:
        raise MalformedEnvelope(f"Envelope missing fields: {', '.join(missing)}")

    try:
        return EncryptedEnvelope(
            ciphertext=data["encrypted"],
            iv=data["iv"],
            algorithm=data["algorithm"],
            mac=data.get("mac"),
        )
    except ValidationError as exc:
        raise MalformedEnvelope(f"Envelope fields have wrong types: {exc}") from exc
