from __future__ import annotations

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


class ActionError(Exception):
    """A rule violation reported to the client as ``{"success": false}``."""

    status_code = 400

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class LoginRequired(ActionError):
    status_code = 401

    def __init__(self, message: str = "Login required.") -> None:
        super().__init__(message)


class Forbidden(ActionError):
    status_code = 403


class NotFound(ActionError):
    status_code = 404


class Conflict(ActionError):
    status_code = 409


async def action_error_handler(request: Request, exc: ActionError) -> JSONResponse:
    return JSONResponse({"success": False, "error": exc.message}, status_code=exc.status_code)


def ok(data: object = None, *, message: str | None = None, status_code: int = 200) -> JSONResponse:
    """Wrap a successful action result in the standard envelope."""
    payload: dict[str, object] = {"success": True, "data": jsonable_encoder(data)}
    if message:
        payload["message"] = message
    return JSONResponse(payload, status_code=status_code)
