"""
Thyra HTTP API.

Python stdlib http.server, one thread per request; multipart bodies are
parsed with python-multipart. Routes:

    POST /api/upload          store a message or file
    GET  /api/uploads         list the upload log (if enabled)
    GET  /api/wallet/address  the signing wallet's address
    POST /api/wallet/export   write the wallet JWK to a path
    GET  /api/health          liveness, no auth
    GET  /docs                HTML API summary
    GET  /share/<id>          the client-side decrypt page

When an API key is configured every /api/* route except /api/health
requires it, as ``X-API-Key`` or ``Authorization: Bearer``.

Usage:
    thyra server --port 3000 --api-key secret
"""

from __future__ import annotations

import hmac
import json
import logging
import re
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any, Optional
from urllib.parse import parse_qs, urlsplit

from pydantic import ValidationError
from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import MultipartParser, parse_options_header

from .config import ThyraConfig
from .core import ThyraCore
from .errors import (
    BadRequest,
    CipherError,
    ContentNotFound,
    ShareLinkError,
    SubmissionFailed,
    ThyraError,
)
from .models import EncryptionMode, UploadOptions, UploadRecord
from .share import render_share_page
from .uploads import UploadLog

logger = logging.getLogger("thyra.server")

MAX_BODY_BYTES = 64 * 1024 * 1024
TX_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{43}$")


@dataclass
class Request:
    """A parsed HTTP request, independent of the socket it came from."""

    method: str
    path: str
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    def header(self, name: str, default: str = "") -> str:
        return self.headers.get(name.lower(), default)

    @property
    def route(self) -> str:
        return urlsplit(self.path).path

    @property
    def query(self) -> dict[str, str]:
        return {k: v[0] for k, v in parse_qs(urlsplit(self.path).query).items()}


@dataclass
class Response:
    status: int
    body: bytes
    content_type: str = "application/json"

    @classmethod
    def json(cls, data: dict, status: int = 200) -> "Response":
        return cls(status, json.dumps(data, indent=2, default=str).encode("utf-8"))

    @classmethod
    def error(cls, status: int, code: str, message: str) -> "Response":
        return cls.json({"success": False, "error": code, "message": message}, status)

    @classmethod
    def html(cls, page: str, status: int = 200) -> "Response":
        return cls(status, page.encode("utf-8"), "text/html; charset=utf-8")


def status_for(exc: ThyraError) -> int:
    """HTTP status for a Thyra error."""
    if isinstance(exc, (BadRequest, CipherError, ShareLinkError)):
        return 400
    if isinstance(exc, ContentNotFound):
        return 404
    if isinstance(exc, SubmissionFailed):
        return 502
    return 500


def _parse_multipart(content_type: str, body: bytes) -> tuple[Optional[bytes], str, Optional[str], dict]:
    """Split a multipart/form-data body into (file bytes, mimetype, filename, fields)."""
    _, params = parse_options_header(content_type)
    boundary = params.get(b"boundary")
    if not boundary:
        raise BadRequest("Multipart body has no boundary")

    parts: list[dict] = []
    header_field = bytearray()
    header_value = bytearray()

    def on_part_begin() -> None:
        parts.append({"headers": {}, "data": bytearray()})

    def on_part_data(data: bytes, start: int, end: int) -> None:
        parts[-1]["data"] += data[start:end]

    def on_header_field(data: bytes, start: int, end: int) -> None:
        header_field.extend(data[start:end])

    def on_header_value(data: bytes, start: int, end: int) -> None:
        header_value.extend(data[start:end])

    def on_header_end() -> None:
        parts[-1]["headers"][bytes(header_field).lower()] = bytes(header_value)
        header_field.clear()
        header_value.clear()

    parser = MultipartParser(boundary, {
        "on_part_begin": on_part_begin,
        "on_part_data": on_part_data,
        "on_header_field": on_header_field,
        "on_header_value": on_header_value,
        "on_header_end": on_header_end,
    })
    try:
        parser.write(body)
        parser.finalize()
    except MultipartParseError as exc:
        raise BadRequest("Malformed multipart body") from exc

    content: Optional[bytes] = None
    mimetype = "application/octet-stream"
    filename: Optional[str] = None
    fields: dict[str, str] = {}
    for part in parts:
        _, disposition = parse_options_header(part["headers"].get(b"content-disposition", b""))
        name = disposition.get(b"name", b"").decode("utf-8", errors="replace")
        if b"filename" in disposition and content is None:
            content = bytes(part["data"])
            filename = disposition[b"filename"].decode("utf-8", errors="replace")
            part_type = part["headers"].get(b"content-type", b"").decode("latin-1").split(";")[0].strip()
            mimetype = part_type or "application/octet-stream"
        elif name:
            fields[name] = part["data"].decode("utf-8", errors="replace")
    return content, mimetype, filename, fields


class ThyraApp:
    """Routes requests to the core. Holds no per-request state.

    Args:
        config: Resolved configuration.
        core: Initialized core.
        upload_log: Upload log (may be disabled).
    """

    def __init__(self, config: ThyraConfig, core: ThyraCore, upload_log: UploadLog) -> None:
        self.config = config
        self.core = core
        self.upload_log = upload_log
        self.started_at = time.monotonic()

    # -- dispatch -----------------------------------------------------------

    def dispatch(self, request: Request) -> Response:
        """Authenticate, route, and map errors for one request."""
        route = request.route
        if route.startswith("/api/") and not route.startswith("/api/health"):
            denied = self._check_api_key(request)
            if denied:
                return denied

        handler = self._route(request.method, route)
        if handler is None:
            return Response.error(404, "NOT_FOUND", f"No route for {request.method} {route}")
        try:
            return handler(request)
        except ThyraError as exc:
            status = status_for(exc)
            log = logger.warning if exc.user_error else logger.error
            log("%s %s failed: %s", request.method, route, exc)
            return Response.error(status, exc.code, str(exc))
        except Exception as exc:
            logger.exception("Unhandled error on %s %s", request.method, route)
            return Response.error(500, "INTERNAL_ERROR", str(exc))

    def _route(self, method: str, route: str):
        if route.startswith("/share/") and method == "GET":
            return self.share_page
        return {
            ("POST", "/api/upload"): self.upload,
            ("GET", "/api/uploads"): self.list_uploads,
            ("GET", "/api/wallet/address"): self.wallet_address,
            ("POST", "/api/wallet/export"): self.wallet_export,
            ("GET", "/api/health"): self.health,
            ("GET", "/docs"): self.docs,
        }.get((method, route))

    def _check_api_key(self, request: Request) -> Optional[Response]:
        if not self.config.api_key:
            return None
        provided = request.header("x-api-key")
        if not provided:
            auth = request.header("authorization")
            if auth.startswith("Bearer "):
                provided = auth[len("Bearer "):]
        if not provided or not hmac.compare_digest(provided.encode(), self.config.api_key.encode()):
            return Response.error(401, "UNAUTHORIZED", "Valid API key required")
        return None

    # -- routes -------------------------------------------------------------

    def upload(self, request: Request) -> Response:
        content, content_type, filename, fields = self._read_upload(request)
        if not content:
            return Response.error(400, "MISSING_CONTENT", "No content provided")

        mode = fields.get("encryption") or EncryptionMode.RANDOM.value
        try:
            options = UploadOptions(
                encryption=mode,
                custom_key=fields.get("customKey") if mode == EncryptionMode.CUSTOM.value else None,
                content_type=content_type,
                filename=filename,
            )
        except ValidationError as exc:
            raise BadRequest(f"Invalid upload options: {exc.errors()[0]['msg']}") from exc

        result = self.core.upload_content(content, options)
        share_url = self.core.share_link(self._origin(request), result)

        upload_id = str(fields.get("id") or uuid.uuid4())
        timestamp = int(time.time() * 1000)
        store = str(fields.get("store", "true")).lower() != "false"
        if self.upload_log.enabled and store:
            self.upload_log.save(UploadRecord(
                id=upload_id,
                url=result.url,
                share_url=share_url,
                timestamp=timestamp,
                encrypted=result.encrypted,
                size=result.size,
                note=fields.get("note") or None,
            ))

        return Response.json({
            "success": True,
            "id": result.id,
            "uploadId": upload_id,
            "url": result.url,
            "shareUrl": share_url,
            "timestamp": timestamp,
            "encrypted": result.encrypted,
            "size": result.size,
        })

    def _read_upload(self, request: Request) -> tuple[Optional[bytes], str, Optional[str], dict]:
        """Extract content and fields from multipart, JSON, or raw bodies."""
        content_type = request.header("content-type")
        if content_type.startswith("multipart/form-data"):
            return _parse_multipart(content_type, request.body)

        if content_type.startswith("application/json"):
            try:
                data = json.loads(request.body or b"{}")
            except (json.JSONDecodeError, UnicodeDecodeError) as exc:
                raise BadRequest("Body is not valid JSON") from exc
            if not isinstance(data, dict):
                raise BadRequest("JSON body must be an object")
            message = data.get("message")
            content = message.encode("utf-8") if isinstance(message, str) else None
            fields = {k: data[k] for k in ("encryption", "customKey", "id", "note", "store") if k in data}
            return content, "text/plain", None, fields

        return request.body, content_type.split(";")[0].strip() or "text/plain", None, {}

    def _origin(self, request: Request) -> str:
        if self.config.public_url:
            return self.config.public_url.rstrip("/")
        proto = request.header("x-forwarded-proto") or "http"
        host = request.header("host") or f"localhost:{self.config.port}"
        return f"{proto}://{host}"

    def list_uploads(self, request: Request) -> Response:
        if not self.upload_log.enabled:
            return Response.error(404, "DATABASE_DISABLED", "Database mode not enabled")
        q = request.query
        try:
            records = self.upload_log.list_uploads(
                since=int(q["since"]) if q.get("since") else None,
                id=q.get("id"),
                note=q.get("note"),
                limit=int(q["limit"]) if q.get("limit") else None,
            )
        except ValueError as exc:
            raise BadRequest(f"Invalid query: {exc}") from exc
        return Response.json({"success": True, "uploads": [r.model_dump() for r in records]})

    def wallet_address(self, request: Request) -> Response:
        return Response.json({"success": True, "address": self.core.wallet_address})

    def wallet_export(self, request: Request) -> Response:
        data: dict[str, Any] = {}
        if request.body:
            try:
                data = json.loads(request.body)
            except (json.JSONDecodeError, UnicodeDecodeError) as exc:
                raise BadRequest("Body is not valid JSON") from exc
        target = Path(data.get("path") or self.config.home / "wallet-backup.json")
        try:
            exported = self.core.export_wallet(target)
        except OSError as exc:
            return Response.error(500, "EXPORT_FAILED", str(exc))
        return Response.json({
            "success": True,
            "walletPath": exported,
            "address": self.core.wallet_address,
        })

    def health(self, request: Request) -> Response:
        return Response.json({
            "success": True,
            "status": "healthy",
            "uptime": int(time.monotonic() - self.started_at),
            "initialized": True,
            "database": self.upload_log.enabled,
            "drive": self.core.context.drive.drive_id if self.core.context.drive else None,
            "environment": self.config.environment,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    def share_page(self, request: Request) -> Response:
        tx_id = request.route[len("/share/"):]
        if not TX_ID_PATTERN.match(tx_id):
            return Response.error(404, "NOT_FOUND", "Unknown share id")
        return Response.html(render_share_page(tx_id, self.config.gateway_url))

    def docs(self, request: Request) -> Response:
        return Response.html(_DOCS_HTML)


class ThyraHandler(BaseHTTPRequestHandler):
    """Adapts http.server requests to ThyraApp.dispatch."""

    app: ThyraApp

    def _handle(self, method: str) -> None:
        try:
            length = int(self.headers.get("Content-Length") or 0)
        except ValueError:
            length = -1
        if length < 0:
            self.close_connection = True
            self._send(Response.error(400, "BAD_REQUEST", "Invalid Content-Length"))
            return
        if length > MAX_BODY_BYTES:
            self._send(Response.error(413, "PAYLOAD_TOO_LARGE", f"Body exceeds {MAX_BODY_BYTES} bytes"))
            return
        body = self.rfile.read(length) if length else b""
        headers = {k.lower(): v for k, v in self.headers.items()}
        self._send(self.app.dispatch(Request(method, self.path, headers, body)))

    def do_GET(self):
        self._handle("GET")

    def do_POST(self):
        self._handle("POST")

    def do_OPTIONS(self):
        # CORS preflight
        self.send_response(204)
        self.send_header("Access-Control-Allow-Origin", "*")
        self.send_header("Access-Control-Allow-Methods", "GET, POST, OPTIONS")
        self.send_header("Access-Control-Allow-Headers", "Content-Type, X-API-Key, Authorization")
        self.send_header("Access-Control-Max-Age", "600")
        self.send_header("Content-Length", "0")
        self.end_headers()

    def _send(self, response: Response) -> None:
        self.send_response(response.status)
        self.send_header("Content-Type", response.content_type)
        self.send_header("Content-Length", str(len(response.body)))
        self.send_header("Access-Control-Allow-Origin", "*")
        self.end_headers()
        self.wfile.write(response.body)

    def log_message(self, format, *args):
        logger.debug("API: %s", format % args)


def create_server(config: ThyraConfig, app: ThyraApp) -> ThreadingHTTPServer:
    """Bind the API server without starting it."""
    handler = type("BoundThyraHandler", (ThyraHandler,), {"app": app})
    return ThreadingHTTPServer((config.host, config.port), handler)


def run_server(config: ThyraConfig) -> None:
    """Initialize Thyra and serve until interrupted."""
    logger.info(
        "Using config: port=%d apiKey=%s database=%s logLevel=%s",
        config.port,
        config.masked_api_key,
        config.db_enabled,
        config.log_level,
    )
    core = ThyraCore.initialize(config)
    upload_log = UploadLog(config.db_path, enabled=config.db_enabled)
    upload_log.initialize()

    server = create_server(config, ThyraApp(config, core, upload_log))
    logger.info("Thyra API server running on port %d", server.server_address[1])
    logger.info("API docs available at http://localhost:%d/docs", server.server_address[1])
    if config.api_key:
        logger.info("API key authentication enabled")
    else:
        logger.info("No API key configured, public access")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Shutting down")
    finally:
        server.server_close()


_DOCS_HTML = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>Thyra API Documentation</title>
  <style>
    body { font-family: Arial, sans-serif; max-width: 800px; margin: 0 auto; padding: 20px; line-height: 1.6; }
    pre { background: #f4f4f4; padding: 10px; border-radius: 5px; overflow-x: auto; }
    .endpoint { margin-bottom: 30px; border: 1px solid #ddd; padding: 15px; border-radius: 5px; }
    .method { font-weight: bold; color: white; padding: 2px 8px; border-radius: 3px; }
    .post { background: #28a745; }
    .get { background: #007bff; }
  </style>
</head>
<body>
  <h1>Thyra Storage API</h1>
  <p>Store messages and files on Arweave with optional encryption.</p>
  <div class="endpoint">
    <h2><span class="method post">POST</span> /api/upload</h2>
    <p>Upload a message (JSON), a file (multipart), or a raw body.
       <code>encryption</code>: none, random (default), drive, custom.</p>
    <pre>
curl -X POST http://localhost:3000/api/upload \\
  -H "Content-Type: application/json" \\
  -d '{"message": "Hello World!"}'

curl -X POST http://localhost:3000/api/upload -F "file=@example.txt"
    </pre>
  </div>
  <div class="endpoint"><h2><span class="method get">GET</span> /api/uploads</h2>
    <p>List recent uploads (requires the upload log). Filters: since, id, note, limit.</p></div>
  <div class="endpoint"><h2><span class="method get">GET</span> /api/wallet/address</h2>
    <p>The server wallet address.</p></div>
  <div class="endpoint"><h2><span class="method post">POST</span> /api/wallet/export</h2>
    <p>Write the wallet JWK to <code>{"path": ...}</code>.</p></div>
  <div class="endpoint"><h2><span class="method get">GET</span> /api/health</h2>
    <p>Server health.</p></div>
  <div class="endpoint"><h2><span class="method get">GET</span> /share/:id</h2>
    <p>Decrypt and download in the browser; the key stays in the URL fragment.</p></div>
</body>
</html>
"""
