"""Routes for the registration, authentication and step-up ceremonies."""
from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from flask import Response, jsonify, request

from ..config import app, build_relying_party, use_secure_cookies
from ..errors import ValidationError
from ..services import get_orchestrator

SESSION_ID_COOKIE = "sessionId"
STEP_UP_ID_COOKIE = "stepUpId"
SESSION_TOKEN_COOKIE = "sessionToken"


def _json_body() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    if not isinstance(payload, Mapping):
        raise ValidationError("request body must be a JSON object")
    return dict(payload)


def _username_from_body() -> str:
    username = _json_body().get("username")
    if not isinstance(username, str) or not username.strip():
        raise ValidationError("username is required")
    return username


def set_carrier_cookie(response: Response, name: str, value: str, max_age: float) -> None:
    response.set_cookie(
        name,
        value,
        max_age=int(max_age),
        httponly=True,
        secure=use_secure_cookies(),
        samesite="Lax",
        path="/",
    )


def clear_carrier_cookie(response: Response, name: str) -> None:
    response.delete_cookie(name, path="/", httponly=True, secure=use_secure_cookies(), samesite="Lax")


def session_token_from_request() -> Optional[str]:
    return request.cookies.get(SESSION_TOKEN_COOKIE)


def _options_response(options, cookie_name: str) -> Response:
    response = jsonify(options.to_dict())
    set_carrier_cookie(response, cookie_name, options.ceremony_id, options.expires_in)
    return response


def _session_response(outcome) -> Response:
    response = jsonify({"verified": True, "username": outcome.user.username})
    clear_carrier_cookie(response, SESSION_ID_COOKIE)
    orchestrator = get_orchestrator(app)
    set_carrier_cookie(
        response,
        SESSION_TOKEN_COOKIE,
        outcome.session_token,
        orchestrator.sessions.session_ttl,
    )
    return response


@app.route("/api/register/begin", methods=["POST"])
def register_begin():
    username = _username_from_body()
    options = get_orchestrator(app).begin_registration(username, rp=build_relying_party())
    app.logger.info("Registration ceremony started for %s.", username)
    return _options_response(options, SESSION_ID_COOKIE)


@app.route("/api/register/complete", methods=["POST"])
def register_complete():
    outcome = get_orchestrator(app).finish_registration(
        request.cookies.get(SESSION_ID_COOKIE),
        _json_body(),
        rp=build_relying_party(),
    )
    app.logger.info("Registered %s.", outcome.user.username)
    return _session_response(outcome)


@app.route("/api/authenticate/begin", methods=["POST"])
def authenticate_begin():
    username = _username_from_body()
    options = get_orchestrator(app).begin_authentication(username, rp=build_relying_party())
    return _options_response(options, SESSION_ID_COOKIE)


@app.route("/api/authenticate/complete", methods=["POST"])
def authenticate_complete():
    outcome = get_orchestrator(app).finish_authentication(
        request.cookies.get(SESSION_ID_COOKIE),
        _json_body(),
        rp=build_relying_party(),
    )
    app.logger.info("Authenticated %s.", outcome.user.username)
    return _session_response(outcome)


@app.route("/api/stepup/begin", methods=["POST"])
def step_up_begin():
    options = get_orchestrator(app).begin_step_up(session_token_from_request(), rp=build_relying_party())
    return _options_response(options, STEP_UP_ID_COOKIE)


@app.route("/api/stepup/complete", methods=["POST"])
def step_up_complete():
    outcome = get_orchestrator(app).finish_step_up(
        session_token_from_request(),
        request.cookies.get(STEP_UP_ID_COOKIE),
        _json_body(),
        rp=build_relying_party(),
    )
    app.logger.info("Sensitive operation approved for %s.", outcome.user.username)
    response = jsonify({"verified": True, "approved": outcome.approved})
    clear_carrier_cookie(response, STEP_UP_ID_COOKIE)
    return response
