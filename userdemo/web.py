"""HTTP routes of the application and the user endpoints."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Sequence

from flask import Flask, Response, request

from userdemo.controller import UserController
from userdemo.repository import User
from userdemo.server import NOSNIFF, TEXT_PLAIN

log = logging.getLogger(__name__)

PUBLIC_PREFIX = "/api/public"
USERS_PATH = PUBLIC_PREFIX + "/v1/users"

_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


def _encode(value: Any) -> str:
    text = json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    for char, escape in _ESCAPES.items():
        text = text.replace(char, escape)
    return text + "\n"


def _json_response(value: Any, status: int) -> Response:
    return Response(_encode(value), status=status, content_type="application/json")


def _error(message: str, status: int) -> Response:
    return Response(
        message + "\n", status=status, content_type=TEXT_PLAIN, headers=NOSNIFF
    )


def _user_json(user: User) -> dict[str, Any]:
    return {"ID": user.id, "Name": user.name, "Email": user.email}


def _decode_payload(raw: bytes) -> tuple[str, str]:
    """Read ``name`` and ``email`` from the first JSON value of the body."""
    text = raw.decode("utf-8", errors="replace").lstrip(" \t\r\n")
    if not text:
        raise ValueError("empty request body")
    payload, _ = json.JSONDecoder().raw_decode(text)
    fields = {"name": "", "email": ""}
    if payload is None:
        return fields["name"], fields["email"]
    if not isinstance(payload, dict):
        raise ValueError("request body is not an object")
    for key, value in payload.items():
        field = key.lower()
        if field not in fields or value is None:
            continue
        if not isinstance(value, str):
            raise ValueError(f"field {key!r} is not a string")
        fields[field] = value
    return fields["name"], fields["email"]


class UserHandler:
    """Request handlers for the user endpoints."""

    def __init__(self, controller: UserController) -> None:
        self.controller = controller

    def get_users(self) -> Response:
        try:
            users = self.controller.get_users()
        except Exception:
            log.exception("fetching users failed")
            return _error("Failed to fetch users", 500)
        # An empty result is sent as null, not as an empty list.
        body = [_user_json(user) for user in users] if users else None
        return _json_response(body, 200)

    def create_user(self) -> Response:
        try:
            name, email = _decode_payload(request.get_data())
        except ValueError:
            return _error("Invalid request", 400)
        try:
            user = self.controller.create_user(name, email)
        except Exception:
            log.exception("creating a user failed")
            return _error("Failed to create user", 500)
        return _json_response(_user_json(user), 201)


def _healthz() -> Response:
    return Response("ok", content_type=TEXT_PLAIN)


@dataclass
class Router:
    """The application's routes and the origins allowed to call them."""

    user_controller: UserController
    cors_origins: Sequence[str] = ("*",)

    def register(self, app: Flask) -> None:
        app.add_url_rule("/healthz", "healthz", _healthz, methods=["GET"])
        handler = UserHandler(self.user_controller)
        app.add_url_rule(USERS_PATH, "get_users", handler.get_users, methods=["GET"])
        app.add_url_rule(
            USERS_PATH, "create_user", handler.create_user, methods=["POST"]
        )