from typing import NoReturn

from fastapi import HTTPException, Request, Security
from fastapi.security.api_key import APIKeyHeader

from ..core.config import get_settings
from ..services.errors import (
    AccountNotFound,
    DuplicateAccounts,
    InvalidAccountState,
    JobConflict,
    JobNotFound,
    JobServiceError,
)
from ..services.processor import JobProcessor
from ..services.registry import ActiveJobRegistry

settings = get_settings()
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def verify_api_key(api_key: str | None = Security(api_key_header)) -> None:
    """
    Simple header-based API key authentication.

    - In dev, if API_AUTH_KEY is not set, auth is skipped.
    - Otherwise, require X-API-Key == API_AUTH_KEY.
    """
    expected = settings.API_AUTH_KEY

    if settings.ENV == "dev" and not expected:
        return

    if not expected:
        # outside dev a missing key is a misconfiguration
        raise HTTPException(status_code=401, detail="API key not configured")

    if api_key != expected:
        raise HTTPException(status_code=401, detail="Invalid API key")


def get_processor(request: Request) -> JobProcessor:
    return request.app.state.processor


def get_registry(request: Request) -> ActiveJobRegistry:
    return request.app.state.processor.registry


def raise_http(exc: JobServiceError) -> NoReturn:
    """Translate a job service exception into the matching HTTP error."""
    if isinstance(exc, (JobNotFound, AccountNotFound)):
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    if isinstance(exc, (JobConflict, DuplicateAccounts)):
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    if isinstance(exc, InvalidAccountState):
        detail = {"message": str(exc), "account_ids": exc.account_ids}
        raise HTTPException(status_code=400, detail=detail) from exc
    raise HTTPException(status_code=400, detail=str(exc)) from exc
