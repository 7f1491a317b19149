"""Command-line entry point that runs the review proxy server."""

from __future__ import annotations

import argparse
import logging
import threading
from socketserver import ThreadingMixIn
from typing import Callable, Optional, Sequence
from wsgiref.simple_server import WSGIServer, make_server

from .compose import PLACEHOLDER, ComposeError, ComposeManager, list_running_stacks
from .config import ConfigError, load_config
from .handler import Handler
from .registry import RegistryClient, RegistryError, parse_image_ref, parse_template_image_ref
from .state import StateManager

log = logging.getLogger("reviewproxy")

DEFAULT_CONFIG = "/etc/review-proxy/config.yaml"
LISTEN_PORT = 80


class _ThreadingWSGIServer(ThreadingMixIn, WSGIServer):
    daemon_threads = True


def build_registry_check(image_pattern: str, client: RegistryClient) -> Callable[[str], str]:
    """Return a function giving the image digest for a subdomain, or ``""``."""

    def registry_check(subdomain: str) -> str:
        return client.check_tag(parse_image_ref(image_pattern.replace(PLACEHOLDER, subdomain)))

    return registry_check


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the proxy; returns the process exit status."""
    parser = argparse.ArgumentParser(prog="review-proxy")
    parser.add_argument("--config", default=DEFAULT_CONFIG, help="path to config file")
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")

    try:
        cfg = load_config(args.config)
    except ConfigError as exc:
        log.error("failed to load config: %s", exc)
        return 1
    try:
        image_pattern = parse_template_image_ref(cfg.compose_template)
    except RegistryError as exc:
        log.error("failed to parse compose template: %s", exc)
        return 1
    log.info("Image pattern: %s", image_pattern)

    compose = ComposeManager(cfg.compose_template)
    state = StateManager(cfg.idle_timeout)

    def run_stack(subdomain: str, digest: str) -> None:
        log.info("Starting stack for %s", subdomain)
        try:
            compose.start_stack(subdomain)
        except ComposeError as exc:
            log.error("Failed to start stack for %s: %s", subdomain, exc)
            state.remove(subdomain)
            return
        log.info("Stack running for %s", subdomain)
        state.mark_running(subdomain, digest)

    def start_stack(subdomain: str, digest: str) -> None:
        threading.Thread(target=run_stack, args=(subdomain, digest), daemon=True).start()

    def on_idle(subdomain: str) -> None:
        log.info("Idle timeout for %s, stopping stack", subdomain)
        state.mark_stopping(subdomain)
        try:
            compose.stop_stack(subdomain)
        except ComposeError as exc:
            log.error("Failed to stop stack for %s: %s", subdomain, exc)
        state.remove(subdomain)
        log.info("Stack removed for %s", subdomain)

    state.on_idle = on_idle

    try:
        for subdomain in list_running_stacks():
            log.info("Re-adopting existing stack: %s", subdomain)
            # The digest is unknown; it is checked on the next request.
            state.mark_running(subdomain, "")
    except ComposeError as exc:
        log.warning("Warning: could not list existing stacks: %s", exc)

    handler = Handler(
        cfg.domain,
        state,
        build_registry_check(image_pattern, RegistryClient()),
        start_stack,
        cfg.target_service,
        cfg.target_port,
    )

    log.info("Review proxy listening on :%d for *.%s", LISTEN_PORT, cfg.domain)
    try:
        with make_server("", LISTEN_PORT, handler, server_class=_ThreadingWSGIServer) as server:
            server.serve_forever()
    except OSError as exc:
        log.error("server error: %s", exc)
        return 1
    except KeyboardInterrupt:
        pass
    return 0