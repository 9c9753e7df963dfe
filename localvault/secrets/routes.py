"""
Secret Store Routes.

FastAPI routes exposing a SecretStore over HTTP, shaped after the Key Vault
secrets REST API.

Author: LocalVault Team
Date: 2026-10-19
"""

import logging
import time
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, FastAPI, Path, Query, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.middleware.base import BaseHTTPMiddleware

from localvault.core.logging_config import correlation_scope, log_with_context

from .exceptions import (
    BackendUnavailableError,
    InvalidSecretNameError,
    InvalidStateError,
    NotFoundError,
    OperationFailedError,
    PollTimeoutError,
    VaultError,
)
from .memory_backend import InMemoryVaultBackend
from .models import DeletedSecret, SecretProperties, SecretPropertiesUpdate, SecretVersion
from .poller import OperationHandle, PollResponse
from .store import SecretStore


logger = logging.getLogger(__name__)

# Exception to HTTP status code mapping
EXCEPTION_STATUS_CODES = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    InvalidStateError: status.HTTP_409_CONFLICT,
    InvalidSecretNameError: status.HTTP_400_BAD_REQUEST,
    PollTimeoutError: status.HTTP_504_GATEWAY_TIMEOUT,
    OperationFailedError: status.HTTP_500_INTERNAL_SERVER_ERROR,
    BackendUnavailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


class SetSecretRequest(BaseModel):
    """Request to set (create or add a version to) a secret."""

    value: str
    properties: Optional[SecretProperties] = None


class SecretListResult(BaseModel):
    """List of secret properties."""
    value: List[SecretProperties]


class DeletedSecretListResult(BaseModel):
    """List of soft-deleted secrets."""
    value: List[DeletedSecret]


class OperationResult(BaseModel):
    """Status of a long-running operation."""

    token: str
    kind: Optional[str] = None
    secret_name: Optional[str] = Field(default=None, alias="secretName")
    status: str
    value: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


# Global store instance
_store: Optional[SecretStore] = None


def get_store() -> SecretStore:
    """Get or create the default in-memory secret store.

    Returns:
        SecretStore instance
    """
    global _store
    if _store is None:
        _store = SecretStore(InMemoryVaultBackend())
    return _store


def get_status_code_for_exception(exc: Exception) -> int:
    """
    Get HTTP status code for exception type.

    Args:
        exc: Exception instance

    Returns:
        HTTP status code
    """
    for exception_type, status_code in EXCEPTION_STATUS_CODES.items():
        if isinstance(exc, exception_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def vault_exception_handler(request: Request, exc: VaultError) -> JSONResponse:
    """Render a VaultError as an error body."""
    return JSONResponse(
        status_code=get_status_code_for_exception(exc),
        content={"error": {"code": exc.error_code, "message": exc.message}},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register VaultError handling on an application."""
    app.add_exception_handler(VaultError, vault_exception_handler)


CORRELATION_HEADER = "x-correlation-id"


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Run each request under a correlation id and echo it in the response."""

    async def dispatch(self, request: Request, call_next):
        incoming = request.headers.get(CORRELATION_HEADER)
        start_time = time.monotonic()
        with correlation_scope(incoming) as corr_id:
            response = await call_next(request)
            log_with_context(
                logger, logging.INFO,
                f"{request.method} {request.url.path} - {response.status_code}",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round((time.monotonic() - start_time) * 1000, 2),
            )
        response.headers[CORRELATION_HEADER] = corr_id
        return response


def _operation_result(token: str, response: PollResponse,
                      handle: Optional[OperationHandle] = None) -> OperationResult:
    value = None
    if isinstance(response.value, BaseModel):
        value = response.value.model_dump(by_alias=True, mode="json")
    return OperationResult(
        token=token,
        kind=handle.kind if handle else None,
        secret_name=handle.secret_name if handle else None,
        status=response.status.value,
        value=value,
        error=response.error,
    )


def create_router(store: Optional[SecretStore] = None) -> APIRouter:
    """Create FastAPI router for secret endpoints.

    Args:
        store: Store to expose (defaults to the global in-memory store)

    Returns:
        Configured APIRouter
    """
    router = APIRouter()

    def _store() -> SecretStore:
        return store if store is not None else get_store()

    @router.get("/secrets", response_model=SecretListResult, tags=["Secrets"])
    async def list_secrets(
        max_results: Optional[int] = Query(None, alias="maxresults", ge=1)
    ) -> SecretListResult:
        """List current properties of all active secrets (no values)."""
        items: List[SecretProperties] = []
        async for properties in _store().list_secret_properties():
            items.append(properties)
            if max_results and len(items) >= max_results:
                break
        return SecretListResult(value=items)

    @router.put("/secrets/{secret_name}", response_model=SecretVersion, tags=["Secrets"])
    async def set_secret(
        request: SetSecretRequest,
        secret_name: str = Path(..., description="Secret name"),
    ) -> SecretVersion:
        """Set a secret, creating a new version."""
        return await _store().set_secret(secret_name, request.value, request.properties)

    @router.get("/secrets/{secret_name}", response_model=SecretVersion, tags=["Secrets"])
    async def get_secret(secret_name: str = Path(..., description="Secret name")) -> SecretVersion:
        """Get the current version of a secret."""
        return await _store().get_secret(secret_name)

    @router.get(
        "/secrets/{secret_name}/versions",
        response_model=SecretListResult,
        tags=["Secrets"],
    )
    async def list_secret_versions(
        secret_name: str = Path(..., description="Secret name")
    ) -> SecretListResult:
        """List properties of every version of a secret."""
        items = [p async for p in _store().list_secret_versions(secret_name)]
        return SecretListResult(value=items)

    @router.get(
        "/secrets/{secret_name}/{version}",
        response_model=SecretVersion,
        tags=["Secrets"],
    )
    async def get_secret_version(
        secret_name: str = Path(..., description="Secret name"),
        version: str = Path(..., description="Secret version"),
    ) -> SecretVersion:
        """Get a specific version of a secret."""
        return await _store().get_secret(secret_name, version)

    @router.patch(
        "/secrets/{secret_name}/{version}",
        response_model=SecretProperties,
        tags=["Secrets"],
    )
    async def update_secret_properties(
        request: SecretPropertiesUpdate,
        secret_name: str = Path(..., description="Secret name"),
        version: str = Path(..., description="Secret version"),
    ) -> SecretProperties:
        """Update properties of a version; values cannot be changed here."""
        return await _store().update_properties(secret_name, version, request)

    @router.delete(
        "/secrets/{secret_name}",
        response_model=OperationResult,
        status_code=status.HTTP_202_ACCEPTED,
        tags=["Secrets"],
    )
    async def delete_secret(secret_name: str = Path(..., description="Secret name")) -> OperationResult:
        """Start deleting a secret; poll /operations/{token} for completion."""
        handle = await _store().begin_delete(secret_name)
        response = await _store().poll_operation(handle)
        return _operation_result(handle.token, response, handle)

    @router.get("/operations/{token}", response_model=OperationResult, tags=["Operations"])
    async def get_operation(token: str = Path(..., description="Operation token")) -> OperationResult:
        """Get the status of a long-running operation."""
        response = await _store().poll_operation(token)
        return _operation_result(token, response)

    @router.get("/deletedsecrets", response_model=DeletedSecretListResult, tags=["Deleted Secrets"])
    async def list_deleted_secrets() -> DeletedSecretListResult:
        """List soft-deleted secrets."""
        items = [d async for d in _store().list_deleted_secrets()]
        return DeletedSecretListResult(value=items)

    @router.get(
        "/deletedsecrets/{secret_name}",
        response_model=DeletedSecret,
        tags=["Deleted Secrets"],
    )
    async def get_deleted_secret(secret_name: str = Path(..., description="Secret name")) -> DeletedSecret:
        """Get a soft-deleted secret."""
        return await _store().get_deleted_secret(secret_name)

    @router.post(
        "/deletedsecrets/{secret_name}/recover",
        response_model=OperationResult,
        status_code=status.HTTP_202_ACCEPTED,
        tags=["Deleted Secrets"],
    )
    async def recover_deleted_secret(
        secret_name: str = Path(..., description="Secret name")
    ) -> OperationResult:
        """Start recovering a soft-deleted secret."""
        handle = await _store().begin_recover(secret_name)
        response = await _store().poll_operation(handle)
        return _operation_result(handle.token, response, handle)

    @router.delete(
        "/deletedsecrets/{secret_name}",
        status_code=status.HTTP_204_NO_CONTENT,
        tags=["Deleted Secrets"],
    )
    async def purge_deleted_secret(secret_name: str = Path(..., description="Secret name")) -> Response:
        """Permanently delete a soft-deleted secret."""
        await _store().purge(secret_name)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @router.get("/health", tags=["Health"])
    async def health() -> Dict[str, Any]:
        """Report backend health."""
        backend = _store().backend
        if isinstance(backend, InMemoryVaultBackend):
            return await backend.health()
        return {"status": "healthy"}

    return router
