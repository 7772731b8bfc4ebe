"""
Key policy — which key, if any, encrypts an upload.

    none    no key; content is stored as-is
    random  32 fresh random bytes; the share link is the only copy
    drive   the deployment-wide key, derived from the wallet at startup
    custom  caller-supplied material, rejected unless it is exactly
            32 bytes (raw, 64 hex chars, or base64)
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
import secrets
from typing import Optional, Union

from cryptography.hazmat.primitives.hashes import SHA256
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .errors import InvalidKey
from .models import EncryptionMode

logger = logging.getLogger("thyra.keys")

KEY_SIZE = 32
_HEX_KEY = re.compile(r"^[0-9a-fA-F]{64}$")
_B64_KEY = re.compile(r"^[A-Za-z0-9+/_-]+={0,2}$")

KeyMaterial = Union[bytes, bytearray, str]


def generate_key() -> bytes:
    """32 bytes from the OS CSPRNG."""
    return secrets.token_bytes(KEY_SIZE)


def coerce_key(material: Optional[KeyMaterial]) -> bytes:
    """Turn caller-supplied key material into a 32-byte key.

    Accepted forms: 32 raw bytes, a 64-character hex string, or a
    standard/URL-safe base64 string decoding to 32 bytes. Nothing is
    truncated or padded.

    Raises:
        InvalidKey: If the material is not one of the accepted forms.
    """
    if material is None:
        raise InvalidKey("No custom key supplied")

    if isinstance(material, (bytes, bytearray)):
        if len(material) == KEY_SIZE:
            return bytes(material)
        try:
            material = bytes(material).decode("ascii")
        except UnicodeDecodeError:
            raise InvalidKey(f"Custom key must be {KEY_SIZE} bytes, got {len(material)}")

    text = material.strip()
    if _HEX_KEY.match(text):
        return bytes.fromhex(text)

    if _B64_KEY.match(text):
        try:
            raw = base64.urlsafe_b64decode(
                text.replace("+", "-").replace("/", "_") + "=" * (-len(text) % 4)
            )
        except (binascii.Error, ValueError):
            raw = b""
        if len(raw) == KEY_SIZE:
            return raw

    raise InvalidKey(
        f"Custom key must be {KEY_SIZE} bytes as raw bytes, 64 hex characters, or base64"
    )


def resolve_key(
    mode: Union[EncryptionMode, str],
    custom_key: Optional[KeyMaterial] = None,
    drive_key: Optional[bytes] = None,
) -> tuple[Optional[bytes], bool]:
    """Pick the key for one upload.

    Args:
        mode: Encryption mode.
        custom_key: Material for ``custom`` mode.
        drive_key: The deployment key for ``drive`` mode.

    Returns:
        ``(key, should_encrypt)``; key is None when nothing is encrypted.

    Raises:
        InvalidKey: Unknown mode, unusable custom key, or no drive key.
    """
    try:
        mode = EncryptionMode(mode)
    except ValueError:
        raise InvalidKey(f"Unknown encryption mode: {mode!r}")

    if mode == EncryptionMode.NONE:
        return None, False
    if mode == EncryptionMode.RANDOM:
        return generate_key(), True
    if mode == EncryptionMode.DRIVE:
        if not drive_key or len(drive_key) != KEY_SIZE:
            raise InvalidKey("No drive key is available for this deployment")
        return drive_key, True
    return coerce_key(custom_key), True


def derive_drive_key(secret: bytes, drive_id: Optional[str]) -> bytes:
    """Derive the deployment-wide key from wallet secret material.

    The key is stable for a given wallet and drive, so content sealed
    with it stays readable across restarts.
    """
    info = f"thyra:drive-key:{drive_id or 'none'}".encode()
    hkdf = HKDF(algorithm=SHA256(), length=KEY_SIZE, salt=None, info=info)
    return hkdf.derive(secret)
