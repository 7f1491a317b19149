"""Image reference parsing and tag lookups against an OCI/Docker registry."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import requests

from .compose import PLACEHOLDER

log = logging.getLogger(__name__)

MANIFEST_ACCEPT = ", ".join(
    [
        "application/vnd.oci.image.index.v1+json",
        "application/vnd.docker.distribution.manifest.list.v2+json",
        "application/vnd.docker.distribution.manifest.v2+json",
        "application/vnd.oci.image.manifest.v1+json",
    ]
)


class RegistryError(Exception):
    """Raised when an image reference is invalid or the registry misbehaves."""


@dataclass(frozen=True)
class ImageRef:
    """An image split into registry host, repository and tag."""

    registry: str
    repo: str
    tag: str = "latest"

    def __str__(self) -> str:
        return f"{self.registry}/{self.repo}:{self.tag}"


def parse_image_ref(image: str) -> ImageRef:
    """Split ``registry/repo[:tag]`` into its parts; the tag defaults to ``latest``."""
    tag = "latest"
    head, sep, rest = image.rpartition(":")
    # A colon followed by a slash belongs to a registry port, not a tag.
    if sep and "/" not in rest:
        tag = rest
        image = head

    registry, sep, repo = image.partition("/")
    if not sep:
        raise RegistryError(f'cannot parse image reference "{image}": no registry prefix')
    return ImageRef(registry=registry, repo=repo, tag=tag)


def parse_www_authenticate(header: str) -> dict[str, str]:
    """Parse the parameters of a ``Bearer realm="...",service="..."`` challenge."""
    header = header.removeprefix("Bearer ").removeprefix("bearer ")
    params: dict[str, str] = {}
    for part in header.split(","):
        key, sep, value = part.strip().partition("=")
        if sep:
            params[key] = value.strip('"')
    return params


class RegistryClient:
    """Checks whether image tags exist, handling bearer-token challenges."""

    def __init__(self, session: Optional[requests.Session] = None) -> None:
        self.session = requests.Session() if session is None else session

    def check_tag(self, ref: ImageRef) -> str:
        """Return the digest of ``ref`` if the tag exists, or ``""`` if it does not."""
        manifest_url = f"https://{ref.registry}/v2/{ref.repo}/manifests/{ref.tag}"
        log.info("registry: checking %s (url: %s)", ref, manifest_url)

        response = self._head(manifest_url)
        if response.status_code == 401:
            try:
                token = self._fetch_token(response)
            except RegistryError as exc:
                log.warning("registry: %s failed to obtain token: %s", ref, exc)
                return ""
            response = self._head(manifest_url, token)

        if response.status_code == 404:
            log.info("registry: %s not found (404)", ref)
            return ""
        if response.status_code == 401:
            log.warning("registry: %s unauthorized even after token exchange (401)", ref)
            return ""
        if response.status_code != 200:
            raise RegistryError(f"registry returned status {response.status_code} for {ref}")

        digest = response.headers.get("Docker-Content-Digest", "")
        log.info("registry: %s exists (digest: %s)", ref, digest)
        return digest

    def _head(self, url: str, token: str = "") -> requests.Response:
        headers = {"Accept": MANIFEST_ACCEPT}
        if token:
            headers["Authorization"] = "Bearer " + token
        try:
            return self.session.head(url, headers=headers, allow_redirects=True)
        except requests.RequestException as exc:
            raise RegistryError(f"registry request failed: {exc}") from exc

    def _fetch_token(self, response: requests.Response) -> str:
        challenge = response.headers.get("Www-Authenticate", "")
        if not challenge:
            raise RegistryError("no Www-Authenticate header in 401 response")

        params = parse_www_authenticate(challenge)
        realm = params.get("realm", "")
        if not realm:
            raise RegistryError(f"no realm in Www-Authenticate header: {challenge}")

        token_url = realm
        sep = "?"
        service = params.get("service", "")
        if service:
            token_url += f"{sep}service={service}"
            sep = "&"
        scope = params.get("scope", "")
        if scope:
            token_url += f"{sep}scope={scope}"

        log.info("registry: fetching token from %s", token_url)
        try:
            token_response = self.session.get(token_url)
        except requests.RequestException as exc:
            raise RegistryError(f"token request failed: {exc}") from exc

        if token_response.status_code != 200:
            raise RegistryError(f"token endpoint returned status {token_response.status_code}")

        try:
            body = token_response.json()
        except ValueError as exc:
            raise RegistryError(f"decoding token response: {exc}") from exc
        if not isinstance(body, dict):
            raise RegistryError("decoding token response: expected an object")

        token = body.get("token") or body.get("access_token") or ""
        if not isinstance(token, str):
            raise RegistryError("decoding token response: token must be a string")
        if not token:
            raise RegistryError("empty token in response")
        return token


def parse_template_image_ref(template_path: str | Path) -> str:
    """Return the first ``image:`` value of the template that holds the placeholder."""
    try:
        text = Path(template_path).read_text(encoding="utf-8")
    except OSError as exc:
        raise RegistryError(f"reading template: {exc}") from exc

    for line in text.split("\n"):
        line = line.strip()
        if line.startswith("image:") and PLACEHOLDER in line:
            return line.removeprefix("image:").strip().strip("\"'")

    raise RegistryError(f"no image with {PLACEHOLDER} placeholder found in template")