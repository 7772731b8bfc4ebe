"""
Arweave network client — one POST to store, one GET to fetch.

Submission goes to an ANS-104 bundler (default: upload.ardrive.io);
retrieval goes to a gateway (default: arweave.net). Neither call is
retried here, and the timeout is whatever the caller configured.
"""

from __future__ import annotations

import logging
from typing import Optional

import requests

from .errors import ContentNotFound, SubmissionFailed

logger = logging.getLogger("thyra.network")


class ArweaveClient:
    """HTTP access to a bundler and a gateway.

    Args:
        gateway_url: Base URL records are read from (``<gateway>/<id>``).
        upload_url: Bundler endpoint accepting raw data items.
        timeout: Seconds per request, or None to wait indefinitely.
        session: Optional ``requests.Session`` to reuse connections.
    """

    def __init__(
        self,
        gateway_url: str,
        upload_url: str,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.gateway_url = gateway_url.rstrip("/")
        self.upload_url = upload_url
        self.timeout = timeout
        self._http = session or requests

    def data_url(self, tx_id: str) -> str:
        """Canonical retrieval URL for a record."""
        return f"{self.gateway_url}/{tx_id}"

    def post_data_item(self, raw: bytes) -> dict:
        """Submit a signed data item.

        Args:
            raw: Serialized data item.

        Returns:
            The bundler's JSON receipt, which carries ``id``.

        Raises:
            SubmissionFailed: On transport errors or a non-2xx status.
        """
        try:
            resp = self._http.post(
                self.upload_url,
                data=raw,
                headers={
                    "Content-Type": "application/octet-stream",
                    "Accept": "application/json",
                },
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise SubmissionFailed(None, str(exc)) from exc

        if not resp.ok:
            raise SubmissionFailed(resp.status_code, resp.text)

        try:
            receipt = resp.json()
        except ValueError as exc:
            raise SubmissionFailed(resp.status_code, f"Unreadable receipt: {resp.text[:200]}") from exc
        if not isinstance(receipt, dict) or "id" not in receipt:
            raise SubmissionFailed(resp.status_code, f"Receipt has no id: {resp.text[:200]}")

        logger.debug("Bundler accepted %d bytes as %s", len(raw), receipt["id"])
        return receipt

    def fetch(self, tx_id: str) -> bytes:
        """Download the raw bytes of a record.

        Raises:
            ContentNotFound: On transport errors or a non-2xx status.
        """
        url = self.data_url(tx_id)
        try:
            resp = self._http.get(url, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.warning("Fetch of %s failed: %s", url, exc)
            raise ContentNotFound(tx_id) from exc

        if not resp.ok:
            raise ContentNotFound(tx_id, resp.status_code)
        return resp.content
