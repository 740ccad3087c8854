"""Response envelope helpers.

Every endpoint answers with the same shape:

    {"success": true, "data": {...}, "timestamp": "..."}
    {"success": false, "error": {"code": "...", "message": "...", "details": ...}, "timestamp": "..."}
"""

from datetime import UTC, datetime
from typing import Any

from fastapi.responses import JSONResponse


def _timestamp() -> str:
    return datetime.now(UTC).isoformat()


def success_response(data: Any) -> dict[str, Any]:
    return {"success": True, "data": data, "timestamp": _timestamp()}


def error_response(
    status_code: int, code: str, message: str, details: Any = None
) -> JSONResponse:
    error: dict[str, Any] = {"code": code, "message": message}
    if details is not None:
        error["details"] = details
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error, "timestamp": _timestamp()},
    )
