import json
import socket
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from unittest import mock
from wsgiref.util import setup_testing_defaults

import pytest

from reviewproxy.handler import Handler
from reviewproxy.state import StackStatus, StateManager

DOMAIN = "review.example.com"


def _environ(host, path="/", query=""):
    environ = {"HTTP_HOST": host, "PATH_INFO": path, "QUERY_STRING": query, "REMOTE_ADDR": "192.0.2.1"}
    setup_testing_defaults(environ)
    return environ


def _call(handler, environ):
    captured = {}

    def start_response(status, headers):
        captured["status"] = status
        captured["headers"] = dict(headers)

    body = b"".join(handler(environ, start_response))
    return int(captured["status"].split()[0]), captured["headers"], body.decode("utf-8")


def _never_called(*args):
    raise AssertionError("should not be called")


@pytest.fixture
def state():
    manager = StateManager(300)
    yield manager
    for name in ("pr-42", "pr-99"):
        manager.remove(name)


def test_unknown_subdomain_image_not_found(state):
    handler = Handler(DOMAIN, state, lambda sub: "", _never_called)
    code, headers, body = _call(handler, _environ("pr-99.review.example.com"))
    assert code == 404
    assert "pr-99" in body
    assert headers["Content-Type"] == "text/html; charset=utf-8"
    assert state.state_of("pr-99").status is StackStatus.NOT_FOUND


def test_unknown_subdomain_image_exists(state):
    started = []
    handler = Handler(DOMAIN, state, lambda sub: "sha256:abc123", lambda sub, digest: started.append((sub, digest)))
    code, _, body = _call(handler, _environ("pr-42.review.example.com"))
    assert code == 200
    assert "refresh" in body
    assert started == [("pr-42", "sha256:abc123")]
    assert state.state_of("pr-42").status is StackStatus.STARTING


def test_starting(state):
    state.mark_starting("pr-42")
    handler = Handler(DOMAIN, state, _never_called, _never_called)
    code, _, body = _call(handler, _environ("pr-42.review.example.com"))
    assert code == 200
    assert "refresh" in body


def test_stopping_shows_preparing_page(state):
    state.mark_running("pr-42", "sha256:abc123")
    state.mark_stopping("pr-42")
    handler = Handler(DOMAIN, state, _never_called, _never_called)
    code, _, body = _call(handler, _environ("pr-42.review.example.com"))
    assert code == 200
    assert "Preparing pr-42" in body


def test_bad_host(state):
    handler = Handler(DOMAIN, state, _never_called, _never_called)
    code, headers, body = _call(handler, _environ("other.example.com"))
    assert code == 400
    assert body == "Invalid host\n"
    assert headers["X-Content-Type-Options"] == "nosniff"


def test_known_not_found_skips_registry(state):
    state.mark_not_found("pr-99")
    handler = Handler(DOMAIN, state, _never_called, _never_called)
    code, _, body = _call(handler, _environ("pr-99.review.example.com"))
    assert code == 404
    assert "does not exist" in body


def test_registry_failure_is_internal_error(state):
    def failing(sub):
        raise RuntimeError("boom")

    handler = Handler(DOMAIN, state, failing, _never_called)
    code, _, body = _call(handler, _environ("pr-42.review.example.com"))
    assert code == 500
    assert body == "Internal error\n"
    assert state.state_of("pr-42").status is StackStatus.UNKNOWN


class _Echo(BaseHTTPRequestHandler):
    def do_GET(self):
        payload = json.dumps(
            {
                "path": self.path,
                "host": self.headers.get("Host"),
                "forwarded": self.headers.get("X-Forwarded-For"),
            }
        ).encode()
        self.send_response(200)
        self.send_header("Content-Type", "application/json")
        self.send_header("X-Upstream", "yes")
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)

    def log_message(self, format, *args):
        pass


@pytest.fixture
def upstream():
    server = ThreadingHTTPServer(("127.0.0.1", 0), _Echo)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server.server_address[1]
    server.shutdown()
    server.server_close()


def test_running_proxies_to_container(state, upstream):
    state.mark_running("pr-42", "sha256:abc123")
    handler = Handler(DOMAIN, state, _never_called, _never_called, "web", 3000)
    seen = []
    real_connect = socket.create_connection

    def redirect(address, *args, **kwargs):
        seen.append(address)
        return real_connect(("127.0.0.1", upstream), *args, **kwargs)

    with mock.patch("socket.create_connection", side_effect=redirect):
        code, headers, body = _call(
            handler, _environ("pr-42.review.example.com", "/api/items", "page=2")
        )

    assert code == 200
    assert seen == [("review-pr-42-web-1", 3000)]
    assert headers["X-Upstream"] == "yes"
    echoed = json.loads(body)
    assert echoed["path"] == "/api/items?page=2"
    assert echoed["host"] == "pr-42.review.example.com"
    assert echoed["forwarded"] == "192.0.2.1"


def test_running_proxy_error_shows_preparing(state):
    state.mark_running("pr-42", "sha256:abc123")
    handler = Handler(DOMAIN, state, _never_called, _never_called)
    with mock.patch("socket.create_connection", side_effect=ConnectionRefusedError("refused")):
        code, headers, body = _call(handler, _environ("pr-42.review.example.com"))
    assert code == 502
    assert "refresh" in body
    assert "pr-42" in body
    assert headers["Content-Type"] == "text/html; charset=utf-8"


def test_running_touch_updates_last_request(state):
    state.mark_running("pr-42", "sha256:abc123")
    before = state.state_of("pr-42").last_request
    handler = Handler(DOMAIN, state, _never_called, _never_called)
    with mock.patch("socket.create_connection", side_effect=ConnectionRefusedError("refused")):
        _call(handler, _environ("pr-42.review.example.com"))
    after = state.state_of("pr-42")
    assert after.last_request >= before
    assert after.status is StackStatus.RUNNING