"""FilmDex: collection membership and ordering for a personal film library."""

from __future__ import annotations

from app.main import app, create_app

__version__ = "1.0.0"

__all__ = ["__version__", "app", "create_app"]
