"""Application entry point for the passkey server."""
from __future__ import annotations

import os

from . import routes  # noqa: F401  # registers the route decorators
from .config import app
from .services import init_app


def main() -> None:
    init_app(app)
    # Browsers only allow WebAuthn on localhost without TLS.
    app.run(
        host=os.environ.get("PASSKEY_SERVER_HOST", "localhost"),
        port=int(os.environ.get("PASSKEY_SERVER_PORT", "3000")),
        debug=bool(os.environ.get("PASSKEY_SERVER_DEBUG")),
    )


__all__ = ["app", "main"]


if __name__ == "__main__":  # pragma: no cover - convenience script entry point.
    main()
