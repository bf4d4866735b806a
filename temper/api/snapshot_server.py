############################################################
#
# temper - GPU Thermal and Power Control Daemon
#
# snapshot_server.py: Authenticated HTTP endpoint serving the
#                     latest metrics document
#
############################################################

"""HTTP server for the cached unified metrics document.

The control loop publishes a fresh document every tick; requests are served
from the cached bytes on a uvicorn thread so a slow client never stalls
publication.
"""

import json
import secrets
import threading
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, Response

from temper.core.document import EMPTY_DOCUMENT
from temper.logging_config import get_logger

logger = get_logger(__name__)

KEY_HEADER = "X-Temper-Key"


class UnauthorizedError(Exception):
    """Raised when a request lacks the configured shared secret."""


def _serialize(document: Dict[str, Any]) -> bytes:
    return json.dumps(document, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def extract_credentials(request: Request) -> List[str]:
    """Collect candidate secrets from X-Temper-Key and a Bearer Authorization header."""
    candidates = []
    key = request.headers.get(KEY_HEADER, "").strip()
    if key:
        candidates.append(key)

    authorization = request.headers.get("authorization", "")
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        candidates.append(token.strip())
    return candidates


class MetricsSnapshotServer:
    """Serves the most recently published metrics document as JSON."""

    def __init__(self, host: str = "0.0.0.0", port: int = 3001, secret: Optional[str] = None):
        self.host = host
        self.port = port
        self._secret = secret or None
        self._lock = threading.Lock()
        self._payload = _serialize(EMPTY_DOCUMENT)
        self._server: Optional[uvicorn.Server] = None
        self._thread: Optional[threading.Thread] = None
        self.app = self._create_app()

    # ---- Publishing ----

    def publish(self, document: Dict[str, Any]) -> None:
        payload = _serialize(document)
        with self._lock:
            self._payload = payload

    def get_cached_payload(self) -> bytes:
        with self._lock:
            return self._payload

    def get_cached_document(self) -> Dict[str, Any]:
        return json.loads(self.get_cached_payload())

    # ---- HTTP ----

    def _verify(self, request: Request) -> None:
        if self._secret is None:
            return
        expected = self._secret.encode("utf-8")
        # Either header may carry the secret; check every candidate
        matched = [
            secrets.compare_digest(candidate.encode("utf-8"), expected)
            for candidate in extract_credentials(request)
        ]
        if not any(matched):
            raise UnauthorizedError("Invalid or missing key")

    def _create_app(self) -> FastAPI:
        app = FastAPI(title="temper metrics", docs_url=None, redoc_url=None, openapi_url=None)

        @app.exception_handler(UnauthorizedError)
        async def unauthorized_handler(request: Request, exc: UnauthorizedError):
            logger.debug(
                "snapshot_request_unauthorized",
                path=request.url.path,
                client=request.client.host if request.client else None,
            )
            return JSONResponse(
                status_code=401,
                content={"error": "unauthorized", "message": str(exc)},
                headers={"Connection": "close"},
            )

        @app.get("/{path:path}")
        async def snapshot(path: str, _: None = Depends(self._verify)):
            return Response(
                content=self.get_cached_payload(),
                media_type="application/json",
                headers={"Access-Control-Allow-Origin": "*"},
            )

        return app

    # ---- Lifecycle ----

    def start(self) -> None:
        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_config=None,
            access_log=False,
        )
        self._server = uvicorn.Server(config)
        self._thread = threading.Thread(
            target=self._server.run,
            name="snapshot-server",
            daemon=True,
        )
        self._thread.start()
        logger.info(
            "snapshot_server_started",
            host=self.host,
            port=self.port,
            auth="enabled" if self._secret else "disabled",
        )

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        if self._server is not None:
            self._server.should_exit = True
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        self._server = None
        logger.info("snapshot_server_stopped")
