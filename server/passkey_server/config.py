"""Configuration and application setup for the passkey server."""
from __future__ import annotations

import os
from typing import Optional

from flask import Flask, has_request_context, request

from .challenges import CHALLENGE_TTL
from .sessions import SESSION_TTL, STEP_UP_TTL
from .sweeper import DEFAULT_SWEEP_INTERVAL
from .verifier import RelyingParty

app = Flask(__name__)


def _env_flag(name: str) -> Optional[bool]:
    """Return ``True`` or ``False`` when the named env var is explicitly set."""

    raw_value = os.environ.get(name)
    if raw_value is None:
        return None

    normalised = raw_value.strip().lower()
    if normalised in {"", "0", "false", "off", "no"}:
        return False
    return True


def _env_float(name: str, default: float) -> float:
    raw_value = os.environ.get(name)
    if raw_value is None or not raw_value.strip():
        return default
    try:
        value = float(raw_value)
    except ValueError:
        app.logger.warning("Ignoring non-numeric %s=%r.", name, raw_value)
        return default
    return value if value > 0 else default


_DEFAULT_RP_NAME = os.environ.get("PASSKEY_SERVER_RP_NAME", "Passkey Login Demo")
_DEFAULT_RP_ID = os.environ.get("PASSKEY_SERVER_RP_ID")
_DEFAULT_ORIGIN = os.environ.get("PASSKEY_SERVER_ORIGIN")
_FALLBACK_ORIGIN = "http://localhost:3000"

app.config.setdefault("PASSKEY_SERVER_RP_NAME", _DEFAULT_RP_NAME)
app.config.setdefault("PASSKEY_SERVER_RP_ID", _DEFAULT_RP_ID)
app.config.setdefault("PASSKEY_SERVER_ORIGIN", _DEFAULT_ORIGIN)
app.config.setdefault("PASSKEY_SERVER_SECURE_COOKIES", _env_flag("PASSKEY_SERVER_SECURE_COOKIES"))
# The sweeper is on unless explicitly disabled.
app.config.setdefault("PASSKEY_SERVER_BACKGROUND_SWEEP", _env_flag("PASSKEY_SERVER_BACKGROUND_SWEEP") is not False)
app.config.setdefault(
    "PASSKEY_SERVER_SWEEP_INTERVAL",
    _env_float("PASSKEY_SERVER_SWEEP_INTERVAL", DEFAULT_SWEEP_INTERVAL),
)
app.config.setdefault("CHALLENGE_TTL", CHALLENGE_TTL)
app.config.setdefault("STEP_UP_TTL", STEP_UP_TTL)
app.config.setdefault("SESSION_TTL", SESSION_TTL)


def determine_rp_id(explicit_id: Optional[str] = None) -> str:
    """Resolve the relying party identifier for the current request."""

    if explicit_id:
        return explicit_id

    configured_id = app.config.get("PASSKEY_SERVER_RP_ID")
    if isinstance(configured_id, str) and configured_id.strip():
        return configured_id.strip()

    if has_request_context():
        host = request.host.strip().lower()
        if host.startswith("["):
            host = host[1:].split("]", 1)[0]
        else:
            host = host.split(":", 1)[0]
        if host in {"", "127.0.0.1", "::1"}:
            return "localhost"
        return host

    return "localhost"


def determine_origin(explicit_origin: Optional[str] = None) -> str:
    """Resolve the origin ceremonies are expected to come from."""

    if explicit_origin:
        return explicit_origin.rstrip("/")

    configured_origin = app.config.get("PASSKEY_SERVER_ORIGIN")
    if isinstance(configured_origin, str) and configured_origin.strip():
        return configured_origin.strip().rstrip("/")

    if has_request_context():
        return f"{request.scheme}://{request.host}"

    return _FALLBACK_ORIGIN


def build_relying_party(
    *,
    rp_id: Optional[str] = None,
    rp_name: Optional[str] = None,
    origin: Optional[str] = None,
) -> RelyingParty:
    """Create the :class:`RelyingParty` for the active request."""

    return RelyingParty(
        id=determine_rp_id(rp_id),
        name=rp_name or app.config.get("PASSKEY_SERVER_RP_NAME") or "Passkey Login Demo",
        origin=determine_origin(origin),
    )


def use_secure_cookies() -> bool:
    """Cookies are ``secure`` everywhere except local deployments unless overridden."""

    configured = app.config.get("PASSKEY_SERVER_SECURE_COOKIES")
    if configured is not None:
        return bool(configured)
    return determine_rp_id() != "localhost"


__all__ = [
    "app",
    "build_relying_party",
    "determine_origin",
    "determine_rp_id",
    "use_secure_cookies",
]
