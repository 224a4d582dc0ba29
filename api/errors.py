"""
領域異常 -> HTTP 回應

所有 endpoint 都用同一張對照表，回應格式：
    {"detail": {"error": "<ErrorKind>", "message": "..."}}
"""
from fastapi import HTTPException

from core.exceptions import (
    NexusGambleException,
    ValidationError,
    NotFoundError,
    InsufficientCreditsError,
    PhaseError,
    StorageUnavailableError,
)

STATUS_CODES = {
    ValidationError: 400,
    InsufficientCreditsError: 400,
    NotFoundError: 404,
    PhaseError: 409,
    StorageUnavailableError: 503,
}


def error_detail(kind: str, message: str) -> dict:
    return {"error": kind, "message": message}


def to_http_exception(exc: NexusGambleException) -> HTTPException:
    """
    把領域異常轉成 HTTPException

    子類別（例如 NoSelectionError）沿用父類別的狀態碼，但保留自己的 error_kind
    """
    status_code = 500
    for exc_type, code in STATUS_CODES.items():
        if isinstance(exc, exc_type):
            status_code = code
            break
    return HTTPException(
        status_code=status_code,
        detail=error_detail(exc.error_kind, str(exc))
    )


def storage_unavailable(exc: Exception) -> HTTPException:
    return to_http_exception(StorageUnavailableError(f"Storage unavailable: {exc.__class__.__name__}"))


def internal_error() -> HTTPException:
    return HTTPException(status_code=500, detail=error_detail("InternalError", "Internal error"))
