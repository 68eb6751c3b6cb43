"""Structured API errors.

Services raise ``HTTPException`` with a dict ``detail`` so the app-level
handler can expose ``{code, message, details}`` to the client.
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException


def api_error(status_code: int, code: str, message: str, **extra: Any) -> HTTPException:
    detail = {"code": code, "message": message}
    detail.update(extra)
    return HTTPException(status_code=status_code, detail=detail)


def not_found(code: str, message: str, **extra: Any) -> HTTPException:
    return api_error(404, code, message, **extra)


def forbidden(code: str, message: str, **extra: Any) -> HTTPException:
    return api_error(403, code, message, **extra)


def conflict(code: str, message: str, **extra: Any) -> HTTPException:
    return api_error(409, code, message, **extra)
