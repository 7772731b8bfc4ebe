"""
Client for a running Thyra HTTP API.

Used by the CLI's ``upload``, ``message`` and ``list`` commands so they
talk to the same server (and upload log) as every other caller.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

import requests

from .errors import ApiError

logger = logging.getLogger("thyra.client")

DEFAULT_SERVER_URL = "http://localhost:3000"


class ThyraClient:
    """Thin wrapper over the Thyra REST endpoints.

    Args:
        base_url: Server origin, e.g. ``http://localhost:3000``.
        api_key: Sent as ``X-API-Key`` when set.
        timeout: Request timeout in seconds.
        session: Optional requests session (injected in tests).
    """

    def __init__(
        self,
        base_url: str = DEFAULT_SERVER_URL,
        api_key: Optional[str] = None,
        timeout: float = 120.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._http = session or requests

    def _call(self, method: str, endpoint: str, **kwargs: Any) -> dict:
        """Make one API call.

        Returns:
            Parsed JSON body.

        Raises:
            ApiError: On transport failure or any non-2xx response.
        """
        headers = kwargs.pop("headers", {})
        if self.api_key:
            headers["X-API-Key"] = self.api_key
        url = f"{self.base_url}{endpoint}"
        logger.debug("%s %s", method, url)
        try:
            resp = self._http.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise ApiError(503, "SERVER_UNREACHABLE", f"{self.base_url}: {exc}") from exc

        try:
            body = resp.json()
        except ValueError:
            body = {}
        if resp.status_code >= 400 or body.get("success") is False:
            raise ApiError(
                resp.status_code,
                body.get("error", f"HTTP_{resp.status_code}"),
                body.get("message", resp.text[:200]),
            )
        return body

    def upload_message(
        self,
        message: str,
        encryption: str = "random",
        custom_key: Optional[str] = None,
        note: Optional[str] = None,
        store: bool = True,
    ) -> dict:
        payload: dict[str, Any] = {"message": message, "encryption": encryption, "store": store}
        if custom_key:
            payload["customKey"] = custom_key
        if note:
            payload["note"] = note
        return self._call("POST", "/api/upload", json=payload)

    def upload_file(
        self,
        path: Path,
        encryption: str = "random",
        custom_key: Optional[str] = None,
        note: Optional[str] = None,
        content_type: str = "application/octet-stream",
    ) -> dict:
        """Upload a file as multipart/form-data."""
        path = Path(path)
        fields = {"encryption": encryption}
        if custom_key:
            fields["customKey"] = custom_key
        if note:
            fields["note"] = note
        with path.open("rb") as fh:
            return self._call(
                "POST",
                "/api/upload",
                files={"file": (path.name, fh, content_type)},
                data=fields,
            )

    def list_uploads(
        self,
        since: Optional[int] = None,
        id: Optional[str] = None,
        note: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[dict]:
        params = {k: v for k, v in {"since": since, "id": id, "note": note, "limit": limit}.items() if v is not None}
        return self._call("GET", "/api/uploads", params=params).get("uploads", [])

    def wallet_address(self) -> str:
        return self._call("GET", "/api/wallet/address")["address"]

    def export_wallet(self, path: Optional[str] = None) -> dict:
        return self._call("POST", "/api/wallet/export", json={"path": path} if path else {})

    def health(self) -> dict:
        return self._call("GET", "/api/health")
