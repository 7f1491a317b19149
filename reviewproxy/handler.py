"""WSGI application that routes review subdomains to their stacks."""

from __future__ import annotations

import http.client
import logging
import threading
from http import HTTPStatus
from typing import Callable, Iterable
from urllib.parse import quote

from .compose import project_name
from .pages import render_not_found_page, render_preparing_page
from .state import StackStatus, StateManager
from .subdomain import SubdomainError, extract_subdomain

log = logging.getLogger(__name__)

_HOP_BY_HOP = frozenset({
    "connection", "keep-alive", "proxy-connection", "proxy-authenticate",
    "proxy-authorization", "te", "trailer", "transfer-encoding", "upgrade",
})


def _in_background(target: Callable[..., None], *args: object) -> None:
    threading.Thread(target=target, args=args, daemon=True).start()


def _respond(start_response: Callable, status: HTTPStatus, body: str,
             content_type: str = "text/html; charset=utf-8") -> list[bytes]:
    data = body.encode("utf-8")
    start_response(f"{status.value} {status.phrase}",
                   [("Content-Type", content_type), ("Content-Length", str(len(data)))])
    return [data]


def _error(start_response: Callable, status: HTTPStatus, message: str) -> list[bytes]:
    return _respond(start_response, status, message + "\n", "text/plain; charset=utf-8")


def _forward_headers(environ: dict) -> dict[str, str]:
    headers = {
        key[5:].replace("_", "-").title(): value
        for key, value in environ.items()
        if key.startswith("HTTP_") and key[5:].replace("_", "-").lower() not in _HOP_BY_HOP
    }
    for key, name in (("CONTENT_TYPE", "Content-Type"), ("CONTENT_LENGTH", "Content-Length")):
        if environ.get(key):
            headers[name] = environ[key]
    remote = environ.get("REMOTE_ADDR")
    if remote:
        previous = headers.get("X-Forwarded-For")
        headers["X-Forwarded-For"] = f"{previous}, {remote}" if previous else remote
    return headers


class Handler:
    """Serves the preparing, not-found and proxied responses for review subdomains."""

    def __init__(self, domain: str, state: StateManager,
                 registry_check: Callable[[str], str],
                 start_stack: Callable[[str, str], None],
                 target_service: str = "app", target_port: int = 8080) -> None:
        self.domain = domain
        self.state = state
        self.registry_check = registry_check
        self.start_stack = start_stack
        self.target_service = target_service
        self.target_port = target_port

    def __call__(self, environ: dict, start_response: Callable) -> Iterable[bytes]:
        host = environ.get("HTTP_HOST") or environ.get("SERVER_NAME", "")
        try:
            subdomain = extract_subdomain(host, self.domain)
        except SubdomainError:
            return _error(start_response, HTTPStatus.BAD_REQUEST, "Invalid host")

        state = self.state.state_of(subdomain)
        if state.status is StackStatus.RUNNING:
            self.state.touch(subdomain)
            if self.state.needs_digest_check(subdomain):
                _in_background(self._check_and_update, subdomain, state.digest)
            return self._proxy(environ, start_response, subdomain)
        if state.status in (StackStatus.STARTING, StackStatus.STOPPING):
            # A stopping stack is treated like a starting one; it restarts after teardown.
            return _respond(start_response, HTTPStatus.OK, render_preparing_page(subdomain))
        if state.status is StackStatus.NOT_FOUND:
            if self.state.needs_not_found_recheck(subdomain):
                _in_background(self._recheck_not_found, subdomain)
            return _respond(start_response, HTTPStatus.NOT_FOUND, render_not_found_page(subdomain))
        return self._handle_unknown(start_response, subdomain)

    def _proxy(self, environ: dict, start_response: Callable, subdomain: str) -> list[bytes]:
        host = f"{project_name(subdomain)}-{self.target_service}-1"
        method = environ.get("REQUEST_METHOD", "GET")
        target = quote(environ.get("SCRIPT_NAME", "") + environ.get("PATH_INFO", "")) or "/"
        if environ.get("QUERY_STRING"):
            target += "?" + environ["QUERY_STRING"]
        try:
            length = int(environ.get("CONTENT_LENGTH") or 0)
        except ValueError:
            length = 0
        body = environ["wsgi.input"].read(length) if length > 0 else None
        connection = http.client.HTTPConnection(host, self.target_port)
        try:
            connection.request(method, target, body=body, headers=_forward_headers(environ))
            response = connection.getresponse()
            payload = response.read()
        except (OSError, http.client.HTTPException) as exc:
            log.warning("proxy error for %s: %s", subdomain, exc)
            # The container may not be ready even though the stack is running.
            return _respond(start_response, HTTPStatus.BAD_GATEWAY, render_preparing_page(subdomain))
        finally:
            connection.close()

        headers = [(k, v) for k, v in response.getheaders() if k.lower() not in _HOP_BY_HOP]
        if method != "HEAD" and not any(k.lower() == "content-length" for k, _ in headers):
            headers.append(("Content-Length", str(len(payload))))
        start_response(f"{response.status} {response.reason}", headers)
        return [payload]

    def _handle_unknown(self, start_response: Callable, subdomain: str) -> list[bytes]:
        log.info("[%s] first request, checking registry for image", subdomain)
        try:
            digest = self.registry_check(subdomain)
        except Exception as exc:
            log.error("[%s] registry check failed: %s", subdomain, exc)
            return _error(start_response, HTTPStatus.INTERNAL_SERVER_ERROR, "Internal error")
        if not digest:
            log.info("[%s] image not found in registry", subdomain)
            self.state.mark_not_found(subdomain)
            return _respond(start_response, HTTPStatus.NOT_FOUND, render_not_found_page(subdomain))
        log.info("[%s] image found in registry (digest: %s), starting stack", subdomain, digest)
        self.state.mark_starting(subdomain)
        self.start_stack(subdomain, digest)
        return _respond(start_response, HTTPStatus.OK, render_preparing_page(subdomain))

    def _check_and_update(self, subdomain: str, current_digest: str) -> None:
        log.info("[%s] checking registry for image updates (current digest: %s)",
                 subdomain, current_digest)
        try:
            digest = self.registry_check(subdomain)
        except Exception as exc:
            log.error("[%s] background digest check failed: %s", subdomain, exc)
            return
        if digest and digest != current_digest:
            log.info("[%s] image updated: %s -> %s", subdomain, current_digest, digest)
            self.state.update_digest(subdomain, digest)
        else:
            log.info("[%s] image unchanged (digest: %s)", subdomain, current_digest)
            self.state.update_digest(subdomain, current_digest)

    def _recheck_not_found(self, subdomain: str) -> None:
        log.info("[%s] rechecking registry for previously missing image", subdomain)
        try:
            digest = self.registry_check(subdomain)
        except Exception as exc:
            log.error("[%s] recheck failed: %s", subdomain, exc)
            return
        if digest:
            log.info("[%s] image now available (digest: %s), starting stack", subdomain, digest)
            self.state.mark_starting(subdomain)
            self.start_stack(subdomain, digest)
        else:
            log.info("[%s] image still not found", subdomain)
            self.state.mark_not_found(subdomain)