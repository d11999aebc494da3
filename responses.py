from typing import Any

from fastapi.responses import JSONResponse


def ok(message: str, data: Any = None) -> dict:
    return {"success": True, "message": message, "data": data}


def error_response(status_code: int, message: str, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": message, "data": None},
        headers=headers,
    )
