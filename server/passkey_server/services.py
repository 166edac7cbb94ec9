"""Process-wide construction of the ceremony stores and orchestrator.

The stores are built once and injected into :class:`CeremonyOrchestrator`.
Swapping an in-memory store for a persistent one only touches this module.
"""
from __future__ import annotations

import threading
from typing import Optional

from flask import Flask

from .ceremonies import CeremonyOrchestrator
from .challenges import InMemoryChallengeStore
from .registry import InMemoryCredentialRegistry
from .sessions import InMemorySessionManager
from .sweeper import start_sweeper, stop_sweeper
from .verifier import CeremonyVerifier, Fido2Verifier, RelyingParty

__all__ = [
    "EXTENSION_KEY",
    "build_orchestrator",
    "get_orchestrator",
    "init_app",
]

EXTENSION_KEY = "passkey_ceremonies"

_init_lock = threading.Lock()


def build_orchestrator(app: Flask, verifier: Optional[CeremonyVerifier] = None) -> CeremonyOrchestrator:
    rp_name = app.config.get("PASSKEY_SERVER_RP_NAME") or "Passkey Login Demo"
    return CeremonyOrchestrator(
        challenges=InMemoryChallengeStore(ttl=app.config["CHALLENGE_TTL"]),
        registry=InMemoryCredentialRegistry(),
        sessions=InMemorySessionManager(
            session_ttl=app.config["SESSION_TTL"],
            step_up_ttl=app.config["STEP_UP_TTL"],
        ),
        verifier=verifier or Fido2Verifier(rp_name=rp_name),
        rp=RelyingParty(
            id=app.config.get("PASSKEY_SERVER_RP_ID") or "localhost",
            name=rp_name,
            origin=app.config.get("PASSKEY_SERVER_ORIGIN") or "http://localhost:3000",
        ),
    )


def init_app(app: Flask, orchestrator: Optional[CeremonyOrchestrator] = None) -> CeremonyOrchestrator:
    """Attach an orchestrator to ``app``, replacing any previous one."""

    orchestrator = orchestrator or build_orchestrator(app)
    app.extensions[EXTENSION_KEY] = orchestrator

    if app.config.get("PASSKEY_SERVER_BACKGROUND_SWEEP"):
        # A replaced orchestrator brings new stores; sweep those instead.
        stop_sweeper()
        start_sweeper(
            (orchestrator.challenges, orchestrator.sessions),
            app.logger,
            interval=app.config["PASSKEY_SERVER_SWEEP_INTERVAL"],
        )
    return orchestrator


def get_orchestrator(app: Flask) -> CeremonyOrchestrator:
    orchestrator = app.extensions.get(EXTENSION_KEY)
    if orchestrator is None:
        with _init_lock:
            orchestrator = app.extensions.get(EXTENSION_KEY) or init_app(app)
    return orchestrator
