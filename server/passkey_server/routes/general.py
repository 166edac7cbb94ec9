"""General application routes."""
from __future__ import annotations

from flask import jsonify

from ..config import app
from ..encoding import credential_summary
from ..errors import CeremonyError, NotAuthenticated
from ..services import get_orchestrator
from .ceremonies import (
    SESSION_ID_COOKIE,
    SESSION_TOKEN_COOKIE,
    STEP_UP_ID_COOKIE,
    clear_carrier_cookie,
    session_token_from_request,
)


@app.errorhandler(CeremonyError)
def handle_ceremony_error(exc: CeremonyError):
    # Only the code and category leave the server; the detail stays in the log.
    app.logger.info("Ceremony request rejected (%s): %s", exc.code, exc)
    return jsonify(exc.to_dict()), exc.status


@app.route("/api/user", methods=["GET"])
def current_user():
    try:
        user = get_orchestrator(app).current_user(session_token_from_request())
    except NotAuthenticated:
        return jsonify({"authenticated": False}), 401

    return jsonify({
        "authenticated": True,
        "username": user.username,
        "credentials": [credential_summary(credential) for credential in user.credentials],
    })


@app.route("/api/logout", methods=["POST"])
def logout():
    get_orchestrator(app).logout(session_token_from_request())
    response = jsonify({"success": True})
    for name in (SESSION_TOKEN_COOKIE, SESSION_ID_COOKIE, STEP_UP_ID_COOKIE):
        clear_carrier_cookie(response, name)
    return response


@app.route("/api/health", methods=["GET"])
def health():
    return jsonify({"status": "ok"})
