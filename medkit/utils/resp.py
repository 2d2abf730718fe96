# FILE: medkit/utils/resp.py
from __future__ import annotations

from typing import Any, Optional
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder

from medkit.schemas.common import ApiResponse, ApiError


def ok(data: Any = None, status_code: int = 200) -> JSONResponse:
    payload = ApiResponse(status=True, data=data)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(payload))


def err(msg: str, status_code: int = 400, code: Optional[str] = None) -> JSONResponse:
    payload = ApiResponse(status=False, error=ApiError(msg=msg, code=code))
    return JSONResponse(status_code=status_code, content=jsonable_encoder(payload))
