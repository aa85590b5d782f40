"""JSON error bodies shared by the PayPal routers."""

from __future__ import annotations

from typing import Any

from fastapi.responses import JSONResponse


def error_response(status_code: int, error: str, details: Any = None, **extra: Any) -> JSONResponse:
    content: dict[str, Any] = {"error": error}
    if details is not None:
        content["details"] = details
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content)


def method_not_allowed(allowed: str = "POST") -> JSONResponse:
    return JSONResponse(
        status_code=405,
        content={"error": "Method not allowed"},
        headers={"Allow": allowed},
    )
