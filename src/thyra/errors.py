"""
Error taxonomy for Thyra.

Three families, each telling the caller who is at fault:

    CipherError     -- bad key material or a damaged envelope (local)
    NetworkError    -- the bundler or gateway said no (remote)
    ShareLinkError  -- the link someone pasted is broken (user)

Nothing in this package retries on its own. ``retryable`` says whether
trying again could help; ``user_error`` says whether the fix lies with
whoever supplied the input.
"""

from __future__ import annotations

from typing import Optional


class ThyraError(Exception):
    """Base class for every error raised by Thyra."""

    code = "THYRA_ERROR"
    user_error = False
    retryable = False


# ---------------------------------------------------------------------------
# Cipher / key policy
# ---------------------------------------------------------------------------


class CipherError(ThyraError):
    """Encryption or decryption could not be performed."""

    code = "CIPHER_ERROR"
    user_error = True


class InvalidKey(CipherError):
    """Key material cannot be used as a 32-byte AES-256 key."""

    code = "INVALID_KEY"


class BadKey(CipherError):
    """Decryption failed verification: wrong key or tampered envelope."""

    code = "BAD_KEY"


class MalformedEnvelope(CipherError):
    """Envelope fields are missing, not base64, or not understood."""

    code = "MALFORMED_ENVELOPE"


# ---------------------------------------------------------------------------
# Network
# ---------------------------------------------------------------------------


class NetworkError(ThyraError):
    """The storage network rejected or failed a request."""

    code = "NETWORK_ERROR"


class SubmissionFailed(NetworkError):
    """The bundler did not accept a data item.

    Args:
        status_code: HTTP status returned, or None if no response arrived.
        body: Response body (or transport error text).
    """

    code = "UPLOAD_FAILED"
    retryable = True

    def __init__(self, status_code: Optional[int], body: str = "") -> None:
        self.status_code = status_code
        self.body = body
        if status_code is None:
            super().__init__(f"Submission failed: {body}")
        else:
            super().__init__(f"HTTP {status_code}: {body}")


class ContentNotFound(NetworkError):
    """The gateway has no content for the requested id."""

    code = "CONTENT_NOT_FOUND"

    def __init__(self, tx_id: str, status_code: Optional[int] = None) -> None:
        self.tx_id = tx_id
        self.status_code = status_code
        detail = f"HTTP {status_code}" if status_code is not None else "unreachable"
        super().__init__(f"Content not found on Arweave ({detail}): {tx_id}")


# ---------------------------------------------------------------------------
# Share links
# ---------------------------------------------------------------------------


class ShareLinkError(ThyraError):
    """A share link is malformed. Check that the whole link was copied."""

    code = "INVALID_LINK"
    user_error = True


class MissingKey(ShareLinkError):
    """The link has no ``#decrypt=<key>`` fragment."""

    code = "MISSING_KEY"


class InvalidKeyEncoding(ShareLinkError):
    """The key in the fragment is not valid base64."""

    code = "INVALID_KEY_ENCODING"


class InvalidKeyLength(ShareLinkError):
    """The key in the fragment does not decode to 32 bytes."""

    code = "INVALID_KEY_LENGTH"

    def __init__(self, length: int) -> None:
        self.length = length
        super().__init__(f"Invalid key length: expected 32 bytes, got {length} bytes")


# ---------------------------------------------------------------------------
# HTTP API
# ---------------------------------------------------------------------------


class BadRequest(ThyraError):
    """A request to the HTTP API was malformed."""

    code = "BAD_REQUEST"
    user_error = True


class ApiError(ThyraError):
    """The Thyra HTTP API answered with ``success: false``.

    Args:
        status_code: HTTP status of the response.
        code: The ``error`` field of the response body.
        message: The ``message`` field, or the raw body.
    """

    def __init__(self, status_code: int, code: str, message: str) -> None:
        self.status_code = status_code
        self.code = code
        self.user_error = 400 <= status_code < 500
        super().__init__(f"{code}: {message}" if message else code)
