"""
Storage transaction builder — payload + tags in, permanent id out.

Each submission is signed with the deployment wallet and carries a
fresh random anchor, so identical content uploaded twice becomes two
independent records while signing itself stays deterministic.
"""

from __future__ import annotations

import logging
import os
from typing import Optional, Protocol, Sequence

from .dataitem import ANCHOR_LENGTH, DataItem, create_data_item
from .models import Tag
from .wallet import Wallet

logger = logging.getLogger("thyra.transactions")


class DataItemTransport(Protocol):
    """Anything that can accept a serialized data item (see ArweaveClient)."""

    def post_data_item(self, raw: bytes) -> dict: ...


def with_content_type(tags: Sequence[Tag], content_type: str) -> list[Tag]:
    """Return tags with a Content-Type tag, adding one only if absent."""
    tags = list(tags)
    if not any(t.name.lower() == "content-type" for t in tags):
        tags.insert(0, Tag(name="Content-Type", value=content_type))
    return tags


class StorageTransactionBuilder:
    """Packages bytes and tags into signed data items and submits them.

    Args:
        wallet: Signer for every record.
        transport: Bundler client; ``post_data_item`` must raise
            SubmissionFailed on rejection.
    """

    def __init__(self, wallet: Wallet, transport: DataItemTransport) -> None:
        self.wallet = wallet
        self.transport = transport

    def build(
        self,
        payload: bytes,
        content_type: str,
        tags: Sequence[Tag] = (),
        anchor: Optional[bytes] = None,
    ) -> DataItem:
        """Create and sign a data item without sending it.

        Args:
            payload: Record body.
            content_type: MIME type, added as a tag if the tags lack one.
            tags: Ordered tags; order is preserved byte-for-byte.
            anchor: 32-byte anchor; a fresh random one if omitted.

        Returns:
            The signed DataItem.
        """
        return create_data_item(
            payload,
            self.wallet,
            tags=with_content_type(tags, content_type),
            anchor=anchor if anchor is not None else os.urandom(ANCHOR_LENGTH),
        )

    def submit(self, payload: bytes, content_type: str, tags: Sequence[Tag] = ()) -> dict:
        """Sign and submit a record in one network round-trip.

        Returns:
            ``{"id": <record id>}``.

        Raises:
            SubmissionFailed: If the bundler rejects the item (not retried).
        """
        item = self.build(payload, content_type, tags)
        raw = item.to_bytes()
        logger.debug(
            "Submitting data item %s (%d bytes, %d tags)", item.id, len(raw), len(item.tags)
        )
        receipt = self.transport.post_data_item(raw)
        if receipt.get("id") != item.id:
            logger.warning("Bundler returned id %s for data item %s", receipt.get("id"), item.id)
        return {"id": receipt.get("id", item.id)}
