"""HTML pages shown while an environment is prepared or missing."""

from html import escape

_FONT_STACK = '-apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, sans-serif'

_COMMON_RULES: dict[str, dict[str, str]] = {
    "body": {
        "font-family": _FONT_STACK,
        "display": "flex",
        "justify-content": "center",
        "align-items": "center",
        "min-height": "100vh",
        "margin": "0",
        "background": "#f5f5f5",
        "color": "#333",
    },
    ".container": {"text-align": "center", "padding": "2rem"},
    "h1": {"font-size": "1.5rem", "font-weight": "500"},
    "p": {"color": "#666"},
}

_SPINNER_RULES: dict[str, dict[str, str]] = {
    ".spinner": {
        "width": "40px",
        "height": "40px",
        "border": "4px solid #e0e0e0",
        "border-top-color": "#333",
        "border-radius": "50%",
        "animation": "spin 0.8s linear infinite",
        "margin": "0 auto 1.5rem",
    },
}

_SPIN_KEYFRAMES = "@keyframes spin { to { transform: rotate(360deg); } }"

_CODE_RULES: dict[str, dict[str, str]] = {
    "code": {
        "background": "#e8e8e8",
        "padding": "0.2rem 0.5rem",
        "border-radius": "3px",
        "font-size": "0.9rem",
    },
}


def _stylesheet(*rule_sets: dict[str, dict[str, str]], extra: str = "") -> str:
    lines = []
    for rules in rule_sets:
        for selector, declarations in rules.items():
            body = " ".join(f"{prop}: {value};" for prop, value in declarations.items())
            lines.append(f"{selector} {{ {body} }}")
    if extra:
        lines.append(extra)
    return "\n".join(lines)


def _page(title: str, css: str, body: str, *, meta: str = "") -> str:
    head = ['<meta charset="utf-8">']
    if meta:
        head.append(meta)
    head.append(f"<title>{title}</title>")
    head.append(f"<style>\n{css}\n</style>")
    return (
        "<!DOCTYPE html>\n<html>\n<head>\n"
        + "\n".join(head)
        + "\n</head>\n<body>\n"
        + f'<div class="container">\n{body}\n</div>\n'
        + "</body>\n</html>"
    )


def render_preparing_page(subdomain: str) -> str:
    """Return the self-refreshing page shown while a stack starts."""
    name = escape(subdomain)
    css = _stylesheet(_COMMON_RULES, _SPINNER_RULES, extra=_SPIN_KEYFRAMES)
    body = "\n".join(
        [
            '<div class="spinner"></div>',
            "<h1>Preparing environment</h1>",
            f"<p>Setting up <strong>{name}</strong>. "
            "This page will refresh automatically.</p>",
        ]
    )
    return _page(
        f"Preparing {name}",
        css,
        body,
        meta='<meta http-equiv="refresh" content="3">',
    )


def render_not_found_page(subdomain: str) -> str:
    """Return the page shown when no image exists for the subdomain."""
    name = escape(subdomain)
    css = _stylesheet(_COMMON_RULES, _CODE_RULES)
    body = "\n".join(
        [
            "<h1>Image does not exist</h1>",
            f"<p>No Docker image was found for <code>{name}</code>.</p>",
            "<p>Make sure your CI pipeline has built and pushed the image "
            "for this branch.</p>",
        ]
    )
    return _page(f"Not Found - {name}", css, body)