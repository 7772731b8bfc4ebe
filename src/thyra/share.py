"""
Share links — capability URLs whose fragment carries the key.

    https://thyra.example/share/<id>#decrypt=<url-encoded base64 key>

Browsers and HTTP clients never send the fragment, so the server that
serves /share/<id> learns the id and nothing else. Opening a link runs
the same procedure wherever it happens (the bundled decrypt page, or
``open_share_link`` here):

    1. take the key from ``#decrypt=``            (MissingKey)
    2. URL-decode, strip whitespace, check base64 (InvalidKeyEncoding)
    3. require exactly 32 bytes                   (InvalidKeyLength)
    4. fetch the record from the gateway          (ContentNotFound)
    5. parse the envelope and decrypt             (MalformedEnvelope, BadKey)
    6. classify the plaintext as text or binary

Steps 1-3 never touch the network.
"""

from __future__ import annotations

import base64
import binascii
import json
import re
from dataclasses import dataclass
from typing import Protocol
from urllib.parse import quote, unquote, urlsplit

from . import cipher
from .errors import InvalidKeyEncoding, InvalidKeyLength, MissingKey, ShareLinkError

FRAGMENT_PREFIX = "decrypt="
SHARE_PATH = "/share/"
KEY_SIZE = 32
SNIFF_BYTES = 100
_BASE64 = re.compile(r"^[A-Za-z0-9+/]*={0,2}$")
_TEXT_CONTROLS = {9, 10, 13}


class ContentSource(Protocol):
    """Anything that can fetch a record's bytes by id (see ArweaveClient)."""

    def fetch(self, tx_id: str) -> bytes: ...


@dataclass
class DecryptedContent:
    """Plaintext recovered from a share link."""

    tx_id: str
    data: bytes
    is_text: bool

    @property
    def suggested_filename(self) -> str:
        name = f"decrypted_{self.tx_id}"
        return name + ".txt" if self.is_text else name

    @property
    def content_type(self) -> str:
        return "text/plain" if self.is_text else "application/octet-stream"


# ---------------------------------------------------------------------------
# Server side
# ---------------------------------------------------------------------------


def encode_key(key: bytes) -> str:
    """Base64 then percent-encode a key for the fragment."""
    return quote(base64.b64encode(key).decode("ascii"), safe="")


def build_share_link(server_origin: str, tx_id: str, key: bytes) -> str:
    """Capability URL for an encrypted record."""
    return f"{server_origin.rstrip('/')}{SHARE_PATH}{tx_id}#{FRAGMENT_PREFIX}{encode_key(key)}"


def strip_fragment(link: str) -> str:
    """The link without its ``#...`` part, safe to store or log."""
    return link.split("#", 1)[0]


def server_request_path(link: str) -> str:
    """Exactly what an HTTP request for this link carries: path and query."""
    parts = urlsplit(link)
    return parts.path + (f"?{parts.query}" if parts.query else "")


# ---------------------------------------------------------------------------
# Client side
# ---------------------------------------------------------------------------


def tx_id_from_link(link: str) -> str:
    """Record id from the ``/share/<id>`` path.

    Raises:
        ShareLinkError: If the path is not a share path.
    """
    path = urlsplit(link).path
    idx = path.find(SHARE_PATH)
    tx_id = path[idx + len(SHARE_PATH):].strip("/") if idx >= 0 else ""
    if not tx_id or "/" in tx_id:
        raise ShareLinkError(f"Not a share link: {strip_fragment(link)}")
    return tx_id


def key_from_fragment(fragment: str) -> bytes:
    """Steps 1-3: recover the 32-byte key from a URL fragment.

    Args:
        fragment: The fragment, with or without the leading ``#``.

    Raises:
        MissingKey: No ``decrypt=`` parameter, or an empty one.
        InvalidKeyEncoding: The parameter is not base64.
        InvalidKeyLength: The key is not 32 bytes.
    """
    fragment = fragment.lstrip("#")
    if not fragment.startswith(FRAGMENT_PREFIX):
        raise MissingKey(
            "Missing or invalid decryption key in URL. Expected format: #decrypt=<base64-key>"
        )
    param = fragment[len(FRAGMENT_PREFIX):].split("&", 1)[0]
    if not param:
        raise MissingKey("No decryption key found in URL fragment")

    clean = re.sub(r"\s", "", unquote(param))
    if not _BASE64.match(clean) or len(clean) % 4:
        raise InvalidKeyEncoding("Invalid base64 key format")
    try:
        key = base64.b64decode(clean, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidKeyEncoding("Invalid base64 key format") from exc

    if len(key) != KEY_SIZE:
        raise InvalidKeyLength(len(key))
    return key


def key_from_link(link: str) -> bytes:
    """Steps 1-3 applied to a whole link."""
    return key_from_fragment(urlsplit(link).fragment)


def is_probably_text(data: bytes) -> bool:
    """Text unless the first 100 bytes hold NUL or a non-whitespace control."""
    for byte in data[:SNIFF_BYTES]:
        if byte == 0 or (byte < 32 and byte not in _TEXT_CONTROLS):
            return False
    return True


def open_share_link(link: str, source: ContentSource) -> DecryptedContent:
    """Run the full client-side procedure for a share link.

    The key is extracted and validated before any request is made,
    and only the record id is sent to ``source``.
    """
    key = key_from_link(link)
    tx_id = tx_id_from_link(link)

    raw = source.fetch(tx_id)
    envelope = cipher.envelope_from_bytes(raw)
    data = cipher.decrypt(envelope, key)
    return DecryptedContent(tx_id=tx_id, data=data, is_text=is_probably_text(data))


# ---------------------------------------------------------------------------
# Decrypt page
# ---------------------------------------------------------------------------

_SHARE_PAGE = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>Decrypting Content...</title>
  <style>
    body { font-family: Arial, sans-serif; text-align: center; padding: 50px; background: #f5f5f5; }
    .container { max-width: 600px; margin: 0 auto; background: white; padding: 30px; border-radius: 10px; box-shadow: 0 2px 10px rgba(0,0,0,0.1); }
    .spinner { border: 4px solid #f3f3f3; border-top: 4px solid #3498db; border-radius: 50%; width: 40px; height: 40px; animation: spin 1s linear infinite; margin: 20px auto; }
    @keyframes spin { 0% { transform: rotate(0deg); } 100% { transform: rotate(360deg); } }
    .error { color: #e74c3c; margin: 20px; padding: 15px; background: #fdf2f2; border-radius: 5px; }
    .success { color: #27ae60; margin: 20px; padding: 15px; background: #f2fdf2; border-radius: 5px; }
  </style>
</head>
<body>
  <div class="container">
    <h1>Decrypting Content</h1>
    <div class="spinner" id="spinner"></div>
    <div id="status">Please wait while we decrypt your content...</div>
  </div>
  <script>
    const TX_ID = __TX_ID__;
    const GATEWAY = __GATEWAY__;

    function b64ToBytes(s) {
      return new Uint8Array(atob(s).split('').map(c => c.charCodeAt(0)));
    }

    function setStatus(html) { document.getElementById('status').innerHTML = html; }

    async function decryptAndDownload() {
      try {
        const fragment = window.location.hash.substring(1);
        if (!fragment.startsWith('decrypt=')) {
          throw new Error('Missing or invalid decryption key in URL. Expected format: #decrypt=<base64-key>');
        }
        const keyParam = fragment.substring('decrypt='.length).split('&')[0];
        if (!keyParam) { throw new Error('No decryption key found in URL fragment'); }

        const cleanKey = decodeURIComponent(keyParam).replace(/\\s/g, '');
        if (!/^[A-Za-z0-9+/]*={0,2}$/.test(cleanKey) || cleanKey.length % 4) {
          throw new Error('Invalid base64 key format');
        }
        const keyBytes = b64ToBytes(cleanKey);
        if (keyBytes.length !== 32) {
          throw new Error('Invalid key length: expected 32 bytes, got ' + keyBytes.length + ' bytes');
        }

        setStatus('Fetching encrypted content from Arweave...');
        const response = await fetch(GATEWAY + '/' + TX_ID);
        if (!response.ok) { throw new Error('Content not found on Arweave (HTTP ' + response.status + ')'); }
        const envelope = await response.json();

        setStatus('Decrypting content...');
        const cryptoKey = await crypto.subtle.importKey('raw', keyBytes, { name: 'AES-CBC' }, false, ['decrypt']);
        const plain = new Uint8Array(await crypto.subtle.decrypt(
          { name: 'AES-CBC', iv: b64ToBytes(envelope.iv) }, cryptoKey, b64ToBytes(envelope.encrypted)
        ));

        let isText = true;
        for (let i = 0; i < Math.min(100, plain.length); i++) {
          if (plain[i] === 0 || (plain[i] < 32 && ![9, 10, 13].includes(plain[i]))) { isText = false; break; }
        }

        let filename = 'decrypted_' + TX_ID;
        let blob;
        if (isText) {
          blob = new Blob([new TextDecoder().decode(plain)], { type: 'text/plain' });
          filename += '.txt';
        } else {
          blob = new Blob([plain], { type: 'application/octet-stream' });
        }

        const url = URL.createObjectURL(blob);
        const a = document.createElement('a');
        a.href = url;
        a.download = filename;
        document.body.appendChild(a);
        a.click();
        document.body.removeChild(a);
        URL.revokeObjectURL(url);

        document.getElementById('spinner').style.display = 'none';
        setStatus('<div class="success">Content decrypted and downloaded!</div>');
      } catch (error) {
        document.getElementById('spinner').style.display = 'none';
        const div = document.createElement('div');
        div.className = 'error';
        div.textContent = 'Error: ' + error.message;
        const status = document.getElementById('status');
        status.innerHTML = '';
        status.appendChild(div);
      }
    }

    window.onload = decryptAndDownload;
  </script>
</body>
</html>
"""


def render_share_page(tx_id: str, gateway_url: str) -> str:
    """The static decrypt page for one record.

    Only the id and gateway are embedded; the key stays in the
    visitor's address bar.
    """
    def js_string(value: str) -> str:
        # JSON string, with "<" escaped so it cannot close the script tag.
        return json.dumps(value).replace("<", "\\u003c")

    return (
        _SHARE_PAGE
        .replace("__TX_ID__", js_string(tx_id))
        .replace("__GATEWAY__", js_string(gateway_url.rstrip("/")))
    )
