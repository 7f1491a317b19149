"""Rendering of compose templates and control of review stacks via docker compose."""

from __future__ import annotations

import json
import os
import subprocess
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Sequence

PROJECT_PREFIX = "review-"
PLACEHOLDER = "${SUBDOMAIN}"


class ComposeError(Exception):
    """Raised when a template cannot be rendered or docker compose fails."""


@contextmanager
def render_template(template_path: str | Path, subdomain: str) -> Iterator[str]:
    """Write the template with the subdomain filled in to a temporary file.

    Yields the file's path; the file is removed when the context exits.
    """
    try:
        text = Path(template_path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ComposeError(f"reading template: {exc}") from exc

    rendered = text.replace(PLACEHOLDER, subdomain)

    try:
        handle = tempfile.NamedTemporaryFile(
            mode="w",
            encoding="utf-8",
            prefix=f"compose-{subdomain}-",
            suffix=".yml",
            delete=False,
        )
    except OSError as exc:
        raise ComposeError(f"creating temp file: {exc}") from exc

    path = handle.name
    try:
        with handle:
            handle.write(rendered)
    except OSError as exc:
        _remove_quietly(path)
        raise ComposeError(f"writing rendered template: {exc}") from exc

    try:
        yield path
    finally:
        _remove_quietly(path)


def _remove_quietly(path: str) -> None:
    try:
        os.remove(path)
    except OSError:
        pass


def project_name(subdomain: str) -> str:
    """Return the compose project name used for a subdomain."""
    return PROJECT_PREFIX + subdomain


def _run(args: Sequence[str], what: str) -> None:
    try:
        subprocess.run(list(args), check=True)
    except (OSError, subprocess.CalledProcessError) as exc:
        raise ComposeError(f"{what}: {exc}") from exc


@dataclass
class ComposeManager:
    """Starts, stops and refreshes review stacks from one compose template."""

    template_path: str

    def start_stack(self, subdomain: str) -> None:
        with render_template(self.template_path, subdomain) as compose_path:
            _run(
                ["docker", "compose", "-p", project_name(subdomain),
                 "-f", compose_path, "up", "-d", "--wait"],
                "compose up failed",
            )

    def stop_stack(self, subdomain: str) -> None:
        _run(
            ["docker", "compose", "-p", project_name(subdomain),
             "down", "--remove-orphans", "--volumes"],
            "compose down failed",
        )

    def pull_and_restart(self, subdomain: str) -> None:
        with render_template(self.template_path, subdomain) as compose_path:
            base = ["docker", "compose", "-p", project_name(subdomain), "-f", compose_path]
            _run([*base, "pull"], "pull failed")
            _run([*base, "up", "-d"], "compose up failed")


def list_running_stacks() -> list[str]:
    """Return the subdomains of all running review compose projects."""
    args = ["docker", "compose", "ls", "--format", "json", "--filter", "name=" + PROJECT_PREFIX]
    try:
        result = subprocess.run(args, stdout=subprocess.PIPE, check=True, text=True)
    except (OSError, subprocess.CalledProcessError) as exc:
        raise ComposeError(f"listing compose projects: {exc}") from exc

    try:
        projects = json.loads(result.stdout)
    except json.JSONDecodeError as exc:
        raise ComposeError(f"parsing compose ls output: {exc}") from exc
    if projects is None:
        return []
    if not isinstance(projects, list):
        raise ComposeError("parsing compose ls output: expected a list")

    subdomains = []
    for project in projects:
        if not isinstance(project, dict):
            raise ComposeError("parsing compose ls output: expected objects")
        name = project.get("Name") or ""
        sub = name.removeprefix(PROJECT_PREFIX)
        if sub:
            subdomains.append(sub)
    return subdomains