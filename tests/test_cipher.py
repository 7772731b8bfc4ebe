"""Tests for the content cipher envelope."""

from __future__ import annotations

import base64
import json
import os

import pytest

from thyra import cipher
from thyra.errors import BadKey, InvalidKey, MalformedEnvelope
from thyra.models import EncryptedEnvelope


@pytest.fixture
def key() -> bytes:
    return os.urandom(32)


def _flip(b64: str, index: int = 0) -> str:
    raw = bytearray(base64.b64decode(b64))
    raw[index] ^= 0x01
    return base64.b64encode(bytes(raw)).decode("ascii")


class TestEncrypt:
    """Tests for sealing content."""

    @pytest.mark.parametrize("content", [b"", b"x", b"Hello Arweave!", bytes(range(256)) * 4])
    def test_round_trip(self, key: bytes, content: bytes) -> None:
        envelope = cipher.encrypt(content, key)
        assert cipher.decrypt(envelope, key) == content

    def test_envelope_fields(self, key: bytes) -> None:
        envelope = cipher.encrypt(b"data", key)
        assert envelope.algorithm == "aes-256-cbc"
        assert len(base64.b64decode(envelope.iv)) == 16
        assert len(base64.b64decode(envelope.ciphertext)) % 16 == 0
        assert envelope.mac is not None

    def test_fresh_iv_per_call(self, key: bytes) -> None:
        """Same content and key never produce the same IV or ciphertext."""
        first = cipher.encrypt(b"same", key)
        second = cipher.encrypt(b"same", key)
        assert first.iv != second.iv
        assert first.ciphertext != second.ciphertext

    @pytest.mark.parametrize("size", [0, 16, 31, 33, 64])
    def test_rejects_wrong_key_size(self, size: int) -> None:
        with pytest.raises(InvalidKey):
            cipher.encrypt(b"data", os.urandom(size))


class TestDecrypt:
    """Tests for opening envelopes."""

    def test_wrong_key_is_bad_key(self, key: bytes) -> None:
        envelope = cipher.encrypt(b"secret", key)
        with pytest.raises(BadKey):
            cipher.decrypt(envelope, os.urandom(32))

    def test_tampered_ciphertext_detected(self, key: bytes) -> None:
        envelope = cipher.encrypt(b"secret message, long enough", key)
        tampered = envelope.model_copy(update={"ciphertext": _flip(envelope.ciphertext, 3)})
        with pytest.raises(BadKey):
            cipher.decrypt(tampered, key)

    def test_tampered_iv_detected(self, key: bytes) -> None:
        envelope = cipher.encrypt(b"secret", key)
        tampered = envelope.model_copy(update={"iv": _flip(envelope.iv)})
        with pytest.raises(BadKey):
            cipher.decrypt(tampered, key)

    def test_envelope_without_mac_still_opens(self, key: bytes) -> None:
        envelope = cipher.encrypt(b"legacy", key).model_copy(update={"mac": None})
        assert cipher.decrypt(envelope, key) == b"legacy"

    def test_unsupported_algorithm(self, key: bytes) -> None:
        envelope = cipher.encrypt(b"x", key).model_copy(update={"algorithm": "aes-128-gcm"})
        with pytest.raises(MalformedEnvelope):
            cipher.decrypt(envelope, key)

    def test_non_base64_field(self, key: bytes) -> None:
        envelope = cipher.encrypt(b"x", key).model_copy(update={"iv": "not base64!"})
        with pytest.raises(MalformedEnvelope):
            cipher.decrypt(envelope, key)

    def test_short_iv(self, key: bytes) -> None:
        envelope = EncryptedEnvelope(
            ciphertext=base64.b64encode(b"\x00" * 16).decode(),
            iv=base64.b64encode(b"\x00" * 8).decode(),
        )
        with pytest.raises(MalformedEnvelope):
            cipher.decrypt(envelope, key)


class TestWireFormat:
    """Tests for the JSON envelope stored on the network."""

    def test_wire_keys(self, key: bytes) -> None:
        data = json.loads(cipher.envelope_to_bytes(cipher.encrypt(b"x", key)))
        assert set(data) == {"encrypted", "iv", "algorithm", "mac"}
        assert data["algorithm"] == "aes-256-cbc"

    def test_parse_back(self, key: bytes) -> None:
        raw = cipher.envelope_to_bytes(cipher.encrypt(b"payload", key))
        assert cipher.decrypt(cipher.envelope_from_bytes(raw), key) == b"payload"

    def test_parse_envelope_without_mac(self, key: bytes) -> None:
        sealed = cipher.encrypt(b"payload", key)
        raw = json.dumps({"encrypted": sealed.ciphertext, "iv": sealed.iv, "algorithm": "aes-256-cbc"})
        envelope = cipher.envelope_from_bytes(raw)
        assert envelope.mac is None
        assert cipher.decrypt(envelope, key) == b"payload"

    @pytest.mark.parametrize("raw", [b"not json", b"[1, 2]", b'{"iv": "AAAA"}', b"\xff\xfe"])
    def test_malformed(self, raw: bytes) -> None:
        with pytest.raises(MalformedEnvelope):
            cipher.envelope_from_bytes(raw)
