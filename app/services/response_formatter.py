"""Uniform JSON envelope: {success, message, data?, error?}."""
from typing import Any, Optional

from fastapi.responses import JSONResponse
from pydantic import BaseModel


def _serialize(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(by_alias=True)
    if isinstance(data, (list, tuple)):
        return [_serialize(item) for item in data]
    return data


def success_response(message: str, data: Any = None, status_code: int = 200, **extra) -> JSONResponse:
    content = {"success": True, "message": message}
    content.update(extra)
    if data is not None:
        content["data"] = _serialize(data)
    return JSONResponse(status_code=status_code, content=content)


def error_response(message: str, status_code: int, error: Optional[str] = None) -> JSONResponse:
    content = {"success": False, "message": message}
    if error is not None:
        content["error"] = error
    return JSONResponse(status_code=status_code, content=content)
