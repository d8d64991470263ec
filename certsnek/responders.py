"""
Delivery of HTTP-01 challenge responses.

A responder makes a (token, authorization) pair servable at
``/.well-known/acme-challenge/{token}`` before returning from ``fulfill``.
The coordinator only ever talks to the ChallengeResponder interface, so the
delivery mechanism can be swapped without touching it.
"""

import os
import socket
import logging
import threading
import http.server
from typing import Any, Callable, Dict, Optional

import requests

from .models import ChallengeData

logger = logging.getLogger(__name__)

ACME_CHALLENGE_PATH = "/.well-known/acme-challenge/"

# Type aliases
ASGIApp = Callable[[Dict[str, Any], Callable, Callable], Any]


class ChallengeResponder:
    """Makes challenge responses servable."""

    def fulfill(self, data: ChallengeData) -> None:
        """Make ``data.authorization`` servable for ``data.token``."""
        raise NotImplementedError

    def cleanup(self, data: ChallengeData) -> None:
        """Stop serving ``data``. Optional."""


class CallbackResponder(ChallengeResponder):
    """Adapts a plain function taking ChallengeData."""

    def __init__(self, callback: Callable[[ChallengeData], Any]):
        self.callback = callback

    def fulfill(self, data: ChallengeData) -> None:
        self.callback(data)


def as_responder(responder) -> ChallengeResponder:
    if isinstance(responder, ChallengeResponder):
        return responder
    if callable(responder):
        return CallbackResponder(responder)
    raise TypeError(f"Not a challenge responder: {responder!r}")


def token_from_path(path: str) -> Optional[str]:
    """Extract the token from a challenge path, or None for any other path."""
    if not path.startswith(ACME_CHALLENGE_PATH):
        return None
    token = path[len(ACME_CHALLENGE_PATH):]
    if not token or "/" in token:
        return None
    return token


class TokenStore:
    """Thread-safe token to authorization mapping."""

    def __init__(self):
        self._lock = threading.Lock()
        self._responses: Dict[str, str] = {}

    def register(self, token: str, authorization: str) -> None:
        with self._lock:
            self._responses[token] = authorization

    def remove(self, token: str) -> None:
        with self._lock:
            self._responses.pop(token, None)

    def get(self, token: str) -> Optional[str]:
        with self._lock:
            return self._responses.get(token)

    def tokens(self):
        with self._lock:
            return list(self._responses)

    def __contains__(self, token: str) -> bool:
        return self.get(token) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._responses)


class StoreResponder(ChallengeResponder):
    """Registers responses in a TokenStore served by the host's HTTP layer."""

    def __init__(self, store: Optional[TokenStore] = None):
        self.store = store if store is not None else TokenStore()

    def fulfill(self, data: ChallengeData) -> None:
        self.store.register(data.token, data.authorization)
        logger.info(f"Prepared HTTP challenge response for token: {data.token}")

    def cleanup(self, data: ChallengeData) -> None:
        self.store.remove(data.token)


class ChallengeMiddleware:
    """
    ASGI middleware answering HTTP-01 requests for registered tokens.

    Every other request, including challenge paths with unknown tokens, is
    passed through to the wrapped application. Without an application those
    requests get a 404.
    """

    def __init__(self, app: Optional[ASGIApp], store: TokenStore):
        self.app = app
        self.store = store

    async def __call__(self, scope, receive, send):
        if scope["type"] == "http" and scope.get("method") in ("GET", "HEAD"):
            token = token_from_path(scope.get("path", ""))
            authorization = self.store.get(token) if token else None
            if authorization is not None:
                body = authorization.encode("utf-8")
                await send({
                    "type": "http.response.start",
                    "status": 200,
                    "headers": [
                        (b"content-type", b"text/plain"),
                        (b"content-length", str(len(body)).encode("latin-1")),
                    ],
                })
                await send({
                    "type": "http.response.body",
                    "body": body if scope["method"] == "GET" else b"",
                })
                return

        if self.app is not None:
            await self.app(scope, receive, send)
            return

        if scope["type"] == "http":
            await send({
                "type": "http.response.start",
                "status": 404,
                "headers": [(b"content-type", b"text/plain")],
            })
            await send({"type": "http.response.body", "body": b"Not Found"})


class ACMEChallengeHandler(http.server.BaseHTTPRequestHandler):
    """Request handler serving the tokens of a TokenStore."""

    store: TokenStore = None

    def _respond(self, include_body: bool):
        token = token_from_path(self.path)
        authorization = self.store.get(token) if token else None
        if authorization is not None:
            body = authorization.encode('utf-8')
            self.send_response(200)
            self.send_header('Content-Type', 'text/plain')
            self.send_header('Content-Length', str(len(body)))
            self.end_headers()
            if include_body:
                self.wfile.write(body)
            return

        self.send_response(404)
        self.send_header('Content-Length', '9')
        self.end_headers()
        if include_body:
            self.wfile.write(b'Not Found')

    def do_GET(self):
        self._respond(include_body=True)

    def do_HEAD(self):
        self._respond(include_body=False)

    def log_message(self, format, *args):
        logger.debug(f"challenge server: {format % args}")


class StandaloneResponder(StoreResponder):
    """
    Serves challenge responses from a built-in HTTP server.

    The server runs on a daemon thread and is started on the first
    ``fulfill``. Use as a context manager to make sure it is shut down.
    """

    def __init__(self, port: int = 80, address: str = '', store: Optional[TokenStore] = None,
                 self_check: bool = True):
        super().__init__(store)
        self.port = port
        self.address = address
        self.self_check = self_check
        self.http_server = None
        self.http_server_thread = None

    def start(self) -> None:
        """Start the HTTP server for ACME challenges."""
        if self.http_server_thread and self.http_server_thread.is_alive():
            return

        handler = type("BoundACMEChallengeHandler", (ACMEChallengeHandler,), {"store": self.store})
        try:
            self.http_server = http.server.ThreadingHTTPServer((self.address, self.port), handler)
        except OSError as e:
            logger.error(f"Failed to start HTTP challenge server on port {self.port}: {e}")
            logger.error("The CA validates HTTP-01 challenges on port 80; stop any other service using it "
                         "or forward /.well-known/acme-challenge/ to this responder")
            raise
        self.port = self.http_server.server_address[1]
        self.http_server_thread = threading.Thread(target=self.http_server.serve_forever)
        self.http_server_thread.daemon = True
        self.http_server_thread.start()
        logger.info(f"HTTP challenge server started on port {self.port}")

    def stop(self) -> None:
        """Stop the HTTP server."""
        if self.http_server:
            self.http_server.shutdown()
            self.http_server.server_close()
            self.http_server = None
            self.http_server_thread = None
            logger.info("HTTP challenge server stopped")

    def fulfill(self, data: ChallengeData) -> None:
        super().fulfill(data)
        self.start()
        if self.self_check:
            self.verify(data)

    def verify(self, data: ChallengeData) -> bool:
        """Check that the response is reachable locally. Only logs on failure."""
        url = f"http://localhost:{self.port}{data.path}"
        try:
            response = requests.get(url, timeout=2)
        except requests.exceptions.RequestException as e:
            logger.warning(f"Could not verify local challenge response: {e}")
            return False
        if response.status_code == 200 and response.text == data.authorization:
            logger.info(f"Successfully verified local challenge response for {data.token}")
            return True
        logger.warning(f"Local challenge verification failed: HTTP {response.status_code}")
        return False

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.stop()


def port_available(port: int = 80) -> bool:
    """Check whether the port can be bound."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.bind(('', port))
        return True
    except OSError:
        return False
    finally:
        sock.close()


class WebrootResponder(ChallengeResponder):
    """Writes challenge files below the document root of an existing web server."""

    def __init__(self, webroot: str):
        self.webroot = webroot

    def _path(self, data: ChallengeData) -> str:
        return os.path.join(self.webroot, ".well-known", "acme-challenge", data.token)

    def fulfill(self, data: ChallengeData) -> None:
        path = self._path(data)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, 'w') as f:
            f.write(data.authorization)
        logger.info(f"Wrote HTTP challenge response to {path}")

    def cleanup(self, data: ChallengeData) -> None:
        try:
            os.remove(self._path(data))
        except FileNotFoundError:
            pass
