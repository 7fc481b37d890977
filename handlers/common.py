# ==============================================================
# handlers/common.py — shared request/response helpers
# ==============================================================
import json
from fastapi import Request
from fastapi.responses import JSONResponse


async def read_json_body(request: Request) -> dict | None:
    """Parse the request body as a JSON object; None if it is not one."""
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return payload if isinstance(payload, dict) else None


def error_response(status_code: int, error: str, message: str | None = None, **extra) -> JSONResponse:
    body = {"error": error}
    if message:
        body["message"] = message
    body.update(extra)
    return JSONResponse(body, status_code=status_code)
