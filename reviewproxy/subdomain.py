"""Extraction of the review subdomain from an HTTP Host header."""


class SubdomainError(ValueError):
    """Raised when a host does not carry a subdomain of the served domain."""


def extract_subdomain(host: str, domain: str) -> str:
    """Return the part of ``host`` in front of ``.domain``, ignoring a port."""
    head, sep, _ = host.rpartition(":")
    # Only strip what looks like a port, not part of an IPv6 address.
    if sep and ":" not in head:
        host = head

    suffix = "." + domain
    if not host.endswith(suffix):
        raise SubdomainError(f'host "{host}" does not match domain "{domain}"')

    subdomain = host[: -len(suffix)]
    if not subdomain:
        raise SubdomainError(f'no subdomain in host "{host}"')
    return subdomain