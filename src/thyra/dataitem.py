"""
ANS-104 data items — the signed records Thyra submits to a bundler.

Binary layout (signature type 1, Arweave RSA-4096):

    signature type   2 bytes, little endian
    signature        512 bytes
    owner            512 bytes (RSA modulus)
    target           1 byte flag (+ 32 bytes if present)
    anchor           1 byte flag (+ 32 bytes if present)
    tag count        8 bytes, little endian
    tag bytes        8 bytes, little endian
    tags             Avro-encoded array of {name: bytes, value: bytes}
    data             the payload

The signature covers the SHA-384 "deep hash" of the item's fields; the
item id is base64url(sha256(signature)).
"""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence, Union

from .models import Tag
from .wallet import OWNER_LENGTH, Wallet, b64url_encode, owner_to_address, verify_signature

SIGNATURE_TYPE_ARWEAVE = 1
SIGNATURE_LENGTH = 512
ANCHOR_LENGTH = 32
TARGET_LENGTH = 32
MAX_TAGS = 128


class DataItemError(ValueError):
    """Raised for data items that cannot be built or parsed."""


# ---------------------------------------------------------------------------
# Avro tag codec
# ---------------------------------------------------------------------------


def _zigzag_varint(n: int) -> bytes:
    z = (n << 1) ^ (n >> 63)
    out = bytearray()
    while True:
        byte = z & 0x7F
        z >>= 7
        if z:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _read_zigzag_varint(buf: bytes, pos: int) -> tuple[int, int]:
    shift = 0
    z = 0
    while True:
        if pos >= len(buf):
            raise DataItemError("Truncated Avro long")
        byte = buf[pos]
        pos += 1
        z |= (byte & 0x7F) << shift
        if not byte & 0x80:
            break
        shift += 7
    return (z >> 1) ^ -(z & 1), pos


def _avro_bytes(data: bytes) -> bytes:
    return _zigzag_varint(len(data)) + data


def serialize_tags(tags: Sequence[Tag]) -> bytes:
    """Avro-encode tags; an empty list encodes to zero bytes."""
    if not tags:
        return b""
    out = bytearray(_zigzag_varint(len(tags)))
    for tag in tags:
        out += _avro_bytes(tag.name.encode("utf-8"))
        out += _avro_bytes(tag.value.encode("utf-8"))
    out += _zigzag_varint(0)
    return bytes(out)


def deserialize_tags(buf: bytes) -> list[Tag]:
    """Decode Avro tag bytes produced by ``serialize_tags``."""
    tags: list[Tag] = []
    pos = 0
    while pos < len(buf):
        count, pos = _read_zigzag_varint(buf, pos)
        if count == 0:
            break
        if count < 0:
            # Negative block count: absolute count followed by block size.
            count = -count
            _, pos = _read_zigzag_varint(buf, pos)
        for _ in range(count):
            pair = []
            for _ in range(2):
                length, pos = _read_zigzag_varint(buf, pos)
                if length < 0 or pos + length > len(buf):
                    raise DataItemError("Truncated Avro bytes")
                pair.append(buf[pos:pos + length].decode("utf-8"))
                pos += length
            tags.append(Tag(name=pair[0], value=pair[1]))
    return tags


# ---------------------------------------------------------------------------
# Deep hash
# ---------------------------------------------------------------------------

DeepHashChunk = Union[bytes, Sequence["DeepHashChunk"]]


def _sha384(data: bytes) -> bytes:
    return hashlib.sha384(data).digest()


def deep_hash(chunk: DeepHashChunk) -> bytes:
    """Arweave deep hash (SHA-384) of a blob or nested list of blobs."""
    if isinstance(chunk, (bytes, bytearray)):
        tag = b"blob" + str(len(chunk)).encode("ascii")
        return _sha384(_sha384(tag) + _sha384(bytes(chunk)))

    items = list(chunk)
    acc = _sha384(b"list" + str(len(items)).encode("ascii"))
    for item in items:
        acc = _sha384(acc + deep_hash(item))
    return acc


# ---------------------------------------------------------------------------
# Data item
# ---------------------------------------------------------------------------


@dataclass
class DataItem:
    """An ANS-104 data item, signed or not."""

    owner: bytes
    data: bytes
    tags: list[Tag] = field(default_factory=list)
    anchor: Optional[bytes] = None
    target: Optional[bytes] = None
    signature: bytes = b""
    signature_type: int = SIGNATURE_TYPE_ARWEAVE

    def __post_init__(self) -> None:
        if len(self.owner) != OWNER_LENGTH:
            raise DataItemError(f"Owner must be {OWNER_LENGTH} bytes")
        if self.anchor is not None and len(self.anchor) != ANCHOR_LENGTH:
            raise DataItemError(f"Anchor must be {ANCHOR_LENGTH} bytes")
        if self.target is not None and len(self.target) != TARGET_LENGTH:
            raise DataItemError(f"Target must be {TARGET_LENGTH} bytes")
        if len(self.tags) > MAX_TAGS:
            raise DataItemError(f"At most {MAX_TAGS} tags are allowed")

    @property
    def is_signed(self) -> bool:
        return len(self.signature) == SIGNATURE_LENGTH

    @property
    def id(self) -> str:
        """Permanent record id: base64url(sha256(signature))."""
        if not self.is_signed:
            raise DataItemError("Data item is not signed")
        return b64url_encode(hashlib.sha256(self.signature).digest())

    @property
    def owner_address(self) -> str:
        return owner_to_address(self.owner)

    def signature_data(self) -> bytes:
        """The message that gets signed."""
        return deep_hash([
            b"dataitem",
            b"1",
            str(self.signature_type).encode("ascii"),
            self.owner,
            self.target or b"",
            self.anchor or b"",
            serialize_tags(self.tags),
            self.data,
        ])

    def sign(self, wallet: Wallet) -> "DataItem":
        """Sign in place with ``wallet`` and return self."""
        if wallet.owner != self.owner:
            raise DataItemError("Wallet does not own this data item")
        self.signature = wallet.sign(self.signature_data())
        return self

    def verify(self) -> bool:
        """Check the signature against the owner."""
        if not self.is_signed:
            return False
        return verify_signature(self.owner, self.signature_data(), self.signature)

    def to_bytes(self) -> bytes:
        """Serialize to the binary form POSTed to a bundler."""
        if not self.is_signed:
            raise DataItemError("Sign the data item before serializing it")
        tag_bytes = serialize_tags(self.tags)
        out = bytearray()
        out += struct.pack("<H", self.signature_type)
        out += self.signature
        out += self.owner
        out += (b"\x01" + self.target) if self.target else b"\x00"
        out += (b"\x01" + self.anchor) if self.anchor else b"\x00"
        out += struct.pack("<Q", len(self.tags))
        out += struct.pack("<Q", len(tag_bytes))
        out += tag_bytes
        out += self.data
        return bytes(out)


def create_data_item(
    data: bytes,
    wallet: Wallet,
    tags: Iterable[Tag] = (),
    anchor: Optional[bytes] = None,
    target: Optional[bytes] = None,
) -> DataItem:
    """Build and sign a data item.

    Signing is deterministic: the same wallet, data, tags and anchor
    always give the same signature and id.
    """
    item = DataItem(
        owner=wallet.owner,
        data=bytes(data),
        tags=list(tags),
        anchor=anchor,
        target=target,
    )
    return item.sign(wallet)


def parse_data_item(raw: bytes) -> DataItem:
    """Parse the binary form back into a DataItem.

    Raises:
        DataItemError: If the bytes are not a well-formed Arweave data item.
    """
    try:
        pos = 0
        (sig_type,) = struct.unpack_from("<H", raw, pos)
        pos += 2
        if sig_type != SIGNATURE_TYPE_ARWEAVE:
            raise DataItemError(f"Unsupported signature type {sig_type}")
        signature = raw[pos:pos + SIGNATURE_LENGTH]
        pos += SIGNATURE_LENGTH
        owner = raw[pos:pos + OWNER_LENGTH]
        pos += OWNER_LENGTH

        target = None
        if raw[pos] == 1:
            target = raw[pos + 1:pos + 1 + TARGET_LENGTH]
            pos += TARGET_LENGTH
        pos += 1

        anchor = None
        if raw[pos] == 1:
            anchor = raw[pos + 1:pos + 1 + ANCHOR_LENGTH]
            pos += ANCHOR_LENGTH
        pos += 1

        tag_count, tag_len = struct.unpack_from("<QQ", raw, pos)
        pos += 16
        tag_bytes = raw[pos:pos + tag_len]
        if len(tag_bytes) != tag_len:
            raise DataItemError("Truncated tags")
        pos += tag_len
    except (struct.error, IndexError) as exc:
        raise DataItemError("Truncated data item") from exc

    tags = deserialize_tags(tag_bytes)
    if len(tags) != tag_count:
        raise DataItemError(f"Tag count mismatch: header {tag_count}, decoded {len(tags)}")

    return DataItem(
        owner=owner,
        data=raw[pos:],
        tags=tags,
        anchor=anchor,
        target=target,
        signature=signature,
        signature_type=sig_type,
    )
