"""On-demand reverse proxy for per-branch docker compose review environments."""

__version__ = "0.1.0"

__all__ = ["__version__"]