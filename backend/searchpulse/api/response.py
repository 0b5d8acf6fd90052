import uuid

from fastapi import Request


def _meta(request: Request, **extra: object) -> dict:
    request_id = getattr(request.state, "request_id", None) or str(uuid.uuid4())
    return {"request_id": request_id, **extra}


def envelope(request: Request, data: dict | list | None, error: dict | None = None, **meta: object) -> dict:
    return {"data": data, "meta": _meta(request, **meta), "error": error}


def exception_envelope(request: Request, status_code: int, message: str, code: str, details: dict | None = None) -> dict:
    return {
        "data": None,
        "meta": _meta(request, status_code=status_code),
        "error": {"code": code, "message": message, "details": details or {}},
    }
