"""
Pydantic models for everything Thyra stores, signs, or hands back.

Persisted records (DriveState) keep the camelCase field names of the
on-disk JSON so existing deployments read back unchanged.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

ENVELOPE_ALGORITHM = "aes-256-cbc"


class EncryptionMode(str, Enum):
    """How an upload's encryption key is chosen."""

    NONE = "none"
    RANDOM = "random"
    DRIVE = "drive"
    CUSTOM = "custom"


class Tag(BaseModel):
    """A name/value pair attached to a storage record."""

    name: str
    value: str

    def as_pair(self) -> tuple[str, str]:
        return (self.name, self.value)


class EncryptedEnvelope(BaseModel):
    """Self-describing ciphertext: everything a decryptor needs but the key.

    ``ciphertext``, ``iv`` and ``mac`` are base64 strings. On the wire the
    ciphertext travels under the key ``encrypted``.
    """

    ciphertext: str
    iv: str
    algorithm: str = ENVELOPE_ALGORITHM
    mac: Optional[str] = None

    def to_wire(self) -> dict:
        """Return the JSON object stored on Arweave."""
        wire = {
            "encrypted": self.ciphertext,
            "iv": self.iv,
            "algorithm": self.algorithm,
        }
        if self.mac is not None:
            wire["mac"] = self.mac
        return wire


class UploadOptions(BaseModel):
    """Per-upload options.

    ``custom_key`` is raw key material (bytes, hex, or base64) and is
    only meaningful with ``EncryptionMode.CUSTOM``.
    """

    encryption: EncryptionMode = EncryptionMode.RANDOM
    custom_key: Optional[bytes | str] = None
    content_type: str = "application/octet-stream"
    filename: Optional[str] = None

    @model_validator(mode="after")
    def custom_key_matches_mode(self) -> "UploadOptions":
        """A custom key is required for, and only for, custom mode."""
        if self.encryption == EncryptionMode.CUSTOM and not self.custom_key:
            raise ValueError("encryption 'custom' requires custom_key")
        if self.encryption != EncryptionMode.CUSTOM and self.custom_key:
            raise ValueError("custom_key is only valid with encryption 'custom'")
        return self


class UploadResult(BaseModel):
    """Outcome of a single upload.

    ``encryption_key`` exists only so the caller can build a share link.
    It is excluded from every dump and must never be written next to
    ``id``.
    """

    id: str
    url: str
    encrypted: bool
    size: int
    encryption_key: Optional[bytes] = Field(default=None, exclude=True, repr=False)


class DriveState(BaseModel):
    """Identifiers of the deployment's drive and root folder."""

    model_config = ConfigDict(populate_by_name=True)

    drive_id: str = Field(alias="driveId")
    root_folder_id: str = Field(alias="rootFolderId")
    drive_tx_id: str = Field(alias="driveTxId")
    root_folder_tx_id: str = Field(alias="rootFolderTxId")
    created_at: int = Field(
        alias="createdAt",
        default_factory=lambda: int(datetime.now(timezone.utc).timestamp() * 1000),
        description="Epoch milliseconds",
    )
    unix_time: Optional[int] = Field(default=None, alias="unixTime")

    def to_file(self) -> dict:
        """Serialize with the on-disk camelCase names."""
        return self.model_dump(by_alias=True, exclude_none=True)


class UploadRecord(BaseModel):
    """One row of the upload log."""

    id: str
    url: str
    share_url: Optional[str] = None
    timestamp: int
    encrypted: bool
    size: int
    note: Optional[str] = None
