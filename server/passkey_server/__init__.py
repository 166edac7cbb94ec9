"""Passkey server package exposing the Flask application and ceremony core."""
from __future__ import annotations

from importlib import import_module
from typing import Any, TYPE_CHECKING

__all__ = ["app", "main"]


if TYPE_CHECKING:  # pragma: no cover - import only for static analysis.
    from .app import app as _app  # noqa: F401
    from .app import main as _main  # noqa: F401

    app = _app
    main = _main


def __getattr__(name: str) -> Any:
    """Lazily import the Flask application.

    The ceremony core (stores, orchestrator, verifier) has no Flask
    dependency at import time; only asking for ``app`` or ``main`` loads the
    route modules.
    """

    if name in __all__:
        module = import_module(".app", __name__)
        return getattr(module, name)

    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__() -> list[str]:
    """Ensure ``dir(passkey_server)`` exposes lazily imported names."""

    return sorted(set(globals()) | set(__all__))
