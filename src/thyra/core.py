"""
Thyra core — initialization and the upload path.

``ThyraCore.initialize`` does all startup work in one explicit step and
returns a ThyraContext: the wallet, the drive (if any), the drive key,
and the network plumbing. Everything after that reads from the context
instead of from files.

Upload path:

    options.encryption ──> resolve_key ──> encrypt (or pass through)
        ──> tags (+ ArFS file tags when a drive exists)
        ──> StorageTransactionBuilder.submit ──> UploadResult
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Union

from . import cipher
from .config import ThyraConfig
from .drive import DriveTree, file_tags
from .keys import derive_drive_key, resolve_key
from .models import DriveState, EncryptionMode, Tag, UploadOptions, UploadResult
from .network import ArweaveClient
from .share import build_share_link
from .transactions import StorageTransactionBuilder
from .wallet import Wallet

logger = logging.getLogger("thyra.core")

LARGE_UPLOAD_BYTES = 100 * 1024


@dataclass(frozen=True)
class ThyraContext:
    """Everything an upload needs, resolved once at startup. Read-only."""

    config: ThyraConfig
    wallet: Wallet
    client: ArweaveClient
    builder: StorageTransactionBuilder
    drive: Optional[DriveState]
    drive_key: bytes


class ThyraCore:
    """Uploads content to Arweave on behalf of one deployment.

    Args:
        context: Result of ``ThyraCore.initialize`` (or a hand-built one).
    """

    def __init__(self, context: ThyraContext) -> None:
        self.context = context

    @classmethod
    def initialize(
        cls,
        config: ThyraConfig,
        client: Optional[ArweaveClient] = None,
        wallet: Optional[Wallet] = None,
    ) -> "ThyraCore":
        """Load or create the wallet, bootstrap the drive, derive the drive key.

        Args:
            config: Resolved configuration.
            client: Network client; built from config if omitted.
            wallet: Pre-loaded wallet; loaded from ``config.wallet_path`` if omitted.

        Returns:
            A ready ThyraCore.
        """
        client = client or ArweaveClient(
            config.gateway_url, config.upload_url, timeout=config.timeout
        )
        wallet = wallet or Wallet.load_or_create(config.wallet_path)
        builder = StorageTransactionBuilder(wallet, client)

        tree = DriveTree(
            builder,
            config.drive_state_path,
            app_name=config.app_name,
            app_version=config.app_version,
            drive_name=config.drive_name,
            lock_timeout=config.lock_timeout,
            lock_stale_after=config.lock_stale_after,
        )
        drive = tree.bootstrap()
        drive_key = derive_drive_key(wallet.private_exponent, drive.drive_id if drive else None)

        context = ThyraContext(
            config=config,
            wallet=wallet,
            client=client,
            builder=builder,
            drive=drive,
            drive_key=drive_key,
        )
        logger.info(
            "Thyra core initialized — wallet %s, drive %s",
            wallet.address,
            drive.drive_id if drive else "none",
        )
        return cls(context)

    @property
    def wallet_address(self) -> str:
        return self.context.wallet.address

    def export_wallet(self, path) -> str:
        """Write the wallet JWK to ``path``; returns the absolute path."""
        return str(self.context.wallet.export(path))

    def upload_content(
        self,
        content: Union[bytes, str],
        options: Optional[UploadOptions] = None,
    ) -> UploadResult:
        """Encrypt (per options) and store one piece of content.

        Args:
            content: Bytes, or text to be UTF-8 encoded.
            options: Encryption mode, content type, filename.

        Returns:
            UploadResult; ``encryption_key`` is set when encrypted.

        Raises:
            InvalidKey: The options name an unusable key.
            SubmissionFailed: The bundler rejected the record.
        """
        options = options or UploadOptions()
        data = content.encode("utf-8") if isinstance(content, str) else bytes(content)

        key, should_encrypt = resolve_key(
            options.encryption, options.custom_key, self.context.drive_key
        )
        if should_encrypt:
            payload = cipher.envelope_to_bytes(cipher.encrypt(data, key))
        else:
            payload = data

        if len(data) > LARGE_UPLOAD_BYTES:
            logger.warning("Large upload: %d bytes", len(data))

        result = self.context.builder.submit(payload, options.content_type, self.upload_tags(options))
        tx_id = result["id"]
        logger.info(
            "Uploaded %s (%d bytes, encryption=%s)",
            tx_id,
            len(payload),
            options.encryption.value,
        )
        return UploadResult(
            id=tx_id,
            url=self.context.client.data_url(tx_id),
            encrypted=options.encryption != EncryptionMode.NONE,
            size=len(payload),
            encryption_key=key,
        )

    def upload_tags(self, options: UploadOptions) -> list[Tag]:
        """Tags for one upload, in submission order."""
        tags = [
            Tag(name="Content-Type", value=options.content_type),
            Tag(name="App-Name", value=self.context.config.app_name),
        ]
        if options.filename:
            tags.append(Tag(name="Original-Filename", value=options.filename))
        if self.context.drive is not None:
            tags.extend(file_tags(self.context.drive))
        return tags

    def share_link(self, server_origin: str, result: UploadResult) -> Optional[str]:
        """Capability URL for an encrypted upload, or None if unencrypted."""
        if not result.encrypted or not result.encryption_key:
            return None
        return build_share_link(server_origin, result.id, result.encryption_key)
