import dataclasses
import signal
import socket
import threading
import time
import urllib.request

import pytest

from userdemo.config import ServerConfig
from userdemo.server import CorsConfig, create_app, start


def _extra_routes(app):
    app.add_url_rule("/thing", "thing", lambda: "thing", methods=["GET", "POST"])


def _client(origins=("*",), **changes):
    cors = dataclasses.replace(CorsConfig(origins), **changes)
    return create_app(cors, _extra_routes).test_client()


def test_liveness_check():
    response = _client().get("/_/healthz")
    assert response.status_code == 200
    assert response.data == b"ok!"
    assert response.headers["Content-Type"] == "text/plain; charset=utf-8"
    assert response.headers["X-Content-Type-Options"] == "nosniff"


def test_registered_routes_are_served():
    response = _client().get("/thing")
    assert response.data == b"thing"


def test_actual_request_with_any_origin():
    response = _client().get("/thing", headers={"Origin": "https://app.example.com"})
    assert response.headers["Access-Control-Allow-Origin"] == "*"
    assert response.headers["Access-Control-Allow-Credentials"] == "true"
    assert response.headers["Access-Control-Expose-Headers"] == "Link"
    assert "Origin" in response.headers.getlist("Vary")


def test_no_origin_gets_no_cors_headers():
    response = _client().get("/thing")
    assert "Access-Control-Allow-Origin" not in response.headers
    assert "Origin" in response.headers.getlist("Vary")


def test_specific_origin_is_echoed():
    origin = "https://a.example.com"
    response = _client([origin]).get("/thing", headers={"Origin": origin})
    assert response.headers["Access-Control-Allow-Origin"] == origin


def test_unlisted_origin_is_refused():
    client = _client(["https://a.example.com"])
    response = client.get("/thing", headers={"Origin": "https://b.example.com"})
    assert "Access-Control-Allow-Origin" not in response.headers
    assert response.data == b"thing"


def test_wildcard_origin():
    client = _client(["https://*.example.com"])
    good = client.get("/thing", headers={"Origin": "https://app.example.com"})
    bad = client.get("/thing", headers={"Origin": "https://app.example.org"})
    assert good.headers["Access-Control-Allow-Origin"] == "https://app.example.com"
    assert "Access-Control-Allow-Origin" not in bad.headers


def test_preflight_allowed():
    response = _client().options(
        "/thing",
        headers={
            "Origin": "https://app.example.com",
            "Access-Control-Request-Method": "post",
            "Access-Control-Request-Headers": "content-type",
        },
    )
    assert response.status_code == 200
    assert response.headers["Access-Control-Allow-Origin"] == "*"
    assert response.headers["Access-Control-Allow-Methods"] == "POST"
    assert response.headers["Access-Control-Allow-Headers"] == "Content-Type"
    assert response.headers["Access-Control-Max-Age"] == "300"
    assert response.headers["Access-Control-Allow-Credentials"] == "true"
    assert "Access-Control-Request-Method" in response.headers.getlist("Vary")


def test_preflight_refuses_unlisted_method():
    response = _client().options(
        "/thing",
        headers={
            "Origin": "https://app.example.com",
            "Access-Control-Request-Method": "PUT",
        },
    )
    assert response.status_code == 200
    assert "Access-Control-Allow-Origin" not in response.headers


def test_preflight_refuses_unlisted_header():
    response = _client().options(
        "/thing",
        headers={
            "Origin": "https://app.example.com",
            "Access-Control-Request-Method": "GET",
            "Access-Control-Request-Headers": "X-Custom-Header",
        },
    )
    assert "Access-Control-Allow-Origin" not in response.headers


def test_option_changes_max_age():
    response = _client(max_age=0).options(
        "/thing",
        headers={
            "Origin": "https://app.example.com",
            "Access-Control-Request-Method": "GET",
        },
    )
    assert response.headers["Access-Control-Allow-Origin"] == "*"
    assert "Access-Control-Max-Age" not in response.headers


def test_start_rejects_address_without_port():
    app = create_app(CorsConfig(["*"]), _extra_routes)
    with pytest.raises(ValueError):
        start(app, ServerConfig(server_addr="nonsense"))


def _free_port():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def test_start_serves_until_interrupted():
    port = _free_port()
    app = create_app(CorsConfig(["*"]), _extra_routes)
    previous = signal.getsignal(signal.SIGINT)
    seen = {}

    def probe():
        try:
            deadline = time.monotonic() + 10
            while time.monotonic() < deadline:
                try:
                    url = f"http://127.0.0.1:{port}/_/healthz"
                    with urllib.request.urlopen(url, timeout=1) as response:
                        seen["body"] = response.read()
                        seen["status"] = response.status
                    break
                except OSError:
                    time.sleep(0.05)
        finally:
            signal.raise_signal(signal.SIGINT)

    thread = threading.Thread(target=probe)
    thread.start()
    returned = start(app, ServerConfig(server_addr=f"127.0.0.1:{port}"))
    thread.join(5)
    assert returned is None
    assert seen["status"] == 200
    assert seen["body"] == b"ok!"
    assert signal.getsignal(signal.SIGINT) is previous