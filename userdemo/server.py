"""HTTP application setup: CORS handling, the liveness check and serving."""

from __future__ import annotations

import logging
import signal
import sys
import threading
from dataclasses import dataclass
from socketserver import ThreadingMixIn
from typing import Callable, Iterable, Sequence
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server

from flask import Flask, Response, g, request

from userdemo.config import ServerConfig

log = logging.getLogger(__name__)

SHUTDOWN_TIMEOUT = 5.0
TEXT_PLAIN = "text/plain; charset=utf-8"
NOSNIFF = {"X-Content-Type-Options": "nosniff"}


@dataclass(frozen=True)
class CorsConfig:
    """Cross-origin rules applied to every response; use dataclasses.replace to tweak."""

    allowed_origins: Sequence[str]
    allowed_methods: Sequence[str] = ("GET", "POST", "OPTIONS")
    allowed_headers: Sequence[str] = ("Accept", "Authorization", "Content-Type")
    exposed_headers: Sequence[str] = ("Link",)
    allow_credentials: bool = True
    max_age: int = 300

    def __post_init__(self) -> None:
        for name in (
            "allowed_origins",
            "allowed_methods",
            "allowed_headers",
            "exposed_headers",
        ):
            object.__setattr__(self, name, tuple(getattr(self, name)))


def _canonical(header: str) -> str:
    return "-".join(part[:1].upper() + part[1:].lower() for part in header.split("-"))


def _parse_header_list(value: str) -> list[str]:
    return [_canonical(item.strip()) for item in value.split(",") if item.strip()]


class _CorsPolicy:
    """Decides which CORS headers a request earns."""

    def __init__(self, config: CorsConfig) -> None:
        origins = [origin.lower() for origin in config.allowed_origins]
        self.all_origins = not origins or "*" in origins
        self.exact_origins = {origin for origin in origins if "*" not in origin}
        self.wildcard_origins = [
            tuple(origin.split("*", 1))
            for origin in origins
            if "*" in origin and origin != "*"
        ]
        self.methods = {method.upper() for method in config.allowed_methods}
        self.all_headers = "*" in config.allowed_headers
        self.headers = {_canonical(header) for header in config.allowed_headers}
        self.headers.add("Origin")
        self.exposed = ", ".join(_canonical(h) for h in config.exposed_headers)
        self.credentials = config.allow_credentials
        self.max_age = config.max_age

    def origin_allowed(self, origin: str) -> bool:
        if self.all_origins:
            return True
        origin = origin.lower()
        if origin in self.exact_origins:
            return True
        return any(
            len(origin) >= len(prefix) + len(suffix)
            and origin.startswith(prefix)
            and origin.endswith(suffix)
            for prefix, suffix in self.wildcard_origins
        )

    def method_allowed(self, method: str) -> bool:
        if not self.methods:
            return False
        method = method.upper()
        return method == "OPTIONS" or method in self.methods

    def headers_allowed(self, headers: Iterable[str]) -> bool:
        return self.all_headers or all(header in self.headers for header in headers)

    def _allow_origin(self, origin: str) -> str:
        return "*" if self.all_origins else origin

    def preflight(self, origin: str, method: str, requested: str) -> dict[str, str]:
        headers = _parse_header_list(requested)
        if (
            not origin
            or not self.origin_allowed(origin)
            or not self.method_allowed(method)
            or not self.headers_allowed(headers)
        ):
            return {}
        result = {
            "Access-Control-Allow-Origin": self._allow_origin(origin),
            "Access-Control-Allow-Methods": method.upper(),
        }
        if headers:
            result["Access-Control-Allow-Headers"] = ", ".join(headers)
        if self.credentials:
            result["Access-Control-Allow-Credentials"] = "true"
        if self.max_age > 0:
            result["Access-Control-Max-Age"] = str(self.max_age)
        return result

    def actual(self, origin: str, method: str) -> dict[str, str]:
        if (
            not origin
            or not self.origin_allowed(origin)
            or not self.method_allowed(method)
        ):
            return {}
        result = {"Access-Control-Allow-Origin": self._allow_origin(origin)}
        if self.exposed:
            result["Access-Control-Expose-Headers"] = self.exposed
        if self.credentials:
            result["Access-Control-Allow-Credentials"] = "true"
        return result


def _check_liveness() -> Response:
    return Response("ok!", content_type=TEXT_PLAIN, headers=NOSNIFF)


def create_app(cors: CorsConfig, register_routes: Callable[[Flask], None]) -> Flask:
    """Build the application with CORS, the liveness check and the given routes."""
    app = Flask(__name__)
    policy = _CorsPolicy(cors)

    @app.before_request
    def _handle_preflight():
        requested_method = request.headers.get("Access-Control-Request-Method")
        if request.method != "OPTIONS" or not requested_method:
            return None
        g.cors_preflight = True
        response = Response(status=200)
        for vary in (
            "Origin",
            "Access-Control-Request-Method",
            "Access-Control-Request-Headers",
        ):
            response.headers.add("Vary", vary)
        granted = policy.preflight(
            request.headers.get("Origin", ""),
            requested_method,
            request.headers.get("Access-Control-Request-Headers", ""),
        )
        for name, value in granted.items():
            response.headers[name] = value
        return response

    @app.after_request
    def _handle_actual(response: Response) -> Response:
        if g.get("cors_preflight"):
            return response
        response.headers.add("Vary", "Origin")
        granted = policy.actual(request.headers.get("Origin", ""), request.method)
        for name, value in granted.items():
            response.headers[name] = value
        return response

    app.add_url_rule("/_/healthz", "liveness", _check_liveness, methods=["GET"])
    register_routes(app)
    return app


class _ThreadingServer(ThreadingMixIn, WSGIServer):
    daemon_threads = True


class _QuietHandler(WSGIRequestHandler):
    def log_message(self, format: str, *args) -> None:  # noqa: A002
        log.debug(format, *args)


def _split_address(address: str) -> tuple[str, int]:
    host, separator, port = address.rpartition(":")
    if not separator:
        raise ValueError(f"missing port in address {address!r}")
    host = host.strip("[]") or "0.0.0.0"
    if not port:
        return host, 80
    try:
        return host, int(port)
    except ValueError as exc:
        raise ValueError(f"invalid port in address {address!r}") from exc


def _stop(server: WSGIServer, serving: threading.Thread) -> None:
    closer = threading.Thread(target=server.shutdown, daemon=True)
    closer.start()
    closer.join(SHUTDOWN_TIMEOUT)
    if closer.is_alive():
        log.error(
            "Could not shut down server correctly: still running after %s seconds",
            SHUTDOWN_TIMEOUT,
        )
        sys.exit(1)
    serving.join(SHUTDOWN_TIMEOUT)
    server.server_close()


def start(app: Flask, config: ServerConfig) -> None:
    """Serve ``app`` on the configured address until SIGINT or SIGTERM arrives."""
    host, port = _split_address(config.server_addr)
    server = make_server(
        host, port, app, server_class=_ThreadingServer, handler_class=_QuietHandler
    )

    received: list[int] = []
    stop = threading.Event()

    def _on_signal(signum, _frame) -> None:
        received.append(signum)
        stop.set()

    previous = {
        sig: signal.signal(sig, _on_signal) for sig in (signal.SIGINT, signal.SIGTERM)
    }
    serving = threading.Thread(target=server.serve_forever, name="http-server", daemon=True)
    serving.start()
    try:
        log.info("Started api gateway on %s", config.server_addr)
        while not stop.wait(0.2):
            pass
        signum = received[0]
        log.info("%s", signal.strsignal(signum) or signal.Signals(signum).name)
        log.info("Stopping API server.")
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)
        _stop(server, serving)