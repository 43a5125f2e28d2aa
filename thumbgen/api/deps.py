"""
Request-scoped dependencies: caller identity, idempotency key, orchestrator wiring.
"""
from contextlib import contextmanager
from functools import lru_cache
from typing import Iterator

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from thumbgen.core.config import settings
from thumbgen.db.session import SessionLocal, get_db
from thumbgen.services.circuit_breaker import get_circuit_breaker
from thumbgen.services.generation.errors import RequestInProgressError
from thumbgen.services.generation.orchestrator import GenerationOrchestrator
from thumbgen.services.idempotency import IdempotencyStore
from thumbgen.services.image_generation import GenerationBackend
from thumbgen.services.image_generation.providers.gemini import GeminiImageBackend
from thumbgen.storage.local import LocalStorage


def get_account_id(request: Request) -> str:
    """Account id set by the auth gateway in front of the API."""
    account_id = (request.headers.get(settings.account_id_header) or "").strip()
    if not account_id:
        raise HTTPException(status_code=401, detail="unauthorized")
    return account_id


def get_request_key(request: Request) -> str | None:
    key = (request.headers.get(settings.idempotency_key_header) or "").strip()
    if not key:
        return None
    if len(key) > 255:
        raise HTTPException(status_code=400, detail="Idempotency key too long")
    return key


def require_admin(x_admin_key: str | None = Header(default=None)) -> None:
    if settings.admin_api_key and x_admin_key != settings.admin_api_key:
        raise HTTPException(status_code=401, detail="unauthorized")


@lru_cache
def get_storage() -> LocalStorage:
    return LocalStorage()


@lru_cache
def get_backend() -> GenerationBackend:
    return GeminiImageBackend.from_settings(settings)


@lru_cache
def get_edit_backend() -> GenerationBackend:
    return GeminiImageBackend.from_settings(settings, edit=True)


@lru_cache
def get_inflight_store() -> IdempotencyStore:
    return IdempotencyStore()


def get_orchestrator(
    db: Session = Depends(get_db),
    storage: LocalStorage = Depends(get_storage),
    backend: GenerationBackend = Depends(get_backend),
    edit_backend: GenerationBackend = Depends(get_edit_backend),
) -> GenerationOrchestrator:
    return GenerationOrchestrator(
        db,
        SessionLocal,
        backend,
        storage,
        settings,
        edit_backend=edit_backend,
        breaker=get_circuit_breaker(),
    )


@contextmanager
def inflight_lock(store: IdempotencyStore, scope: str, account_id: str, request_key: str | None) -> Iterator[None]:
    """Reject a concurrent duplicate while the first request with the same key is running."""
    if request_key is None:
        yield
        return
    lock_key = f"{scope}:{account_id}:{request_key}"
    if not store.check_and_set(lock_key):
        raise RequestInProgressError("A request with this idempotency key is already in progress")
    try:
        yield
    finally:
        store.release(lock_key)
