"""
Shared fixtures: a fresh SQLite database per test, in-memory asset storage and a
scripted image backend. Environment is set before any thumbgen import so that
settings and the module-level engine never point at real services.
"""
import io
import os
import tempfile
import threading

_TMP = tempfile.mkdtemp(prefix="thumbgen-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP}/app.db"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"
os.environ["CELERY_BROKER_URL"] = "memory://"
os.environ["CELERY_RESULT_BACKEND"] = "cache+memory://"
os.environ["ASSET_URL_SECRET"] = "test-asset-url-secret-0123456789"
os.environ["CB_STORAGE"] = "memory"
os.environ["STORAGE_BASE_PATH"] = os.path.join(_TMP, "files")
os.environ["ADMIN_API_KEY"] = "test-admin-key"

import pytest
from PIL import Image
from sqlalchemy.orm import sessionmaker

from thumbgen.core.config import settings
from thumbgen.db.init_db import create_all
from thumbgen.db.session import build_engine
from thumbgen.models.account import CreditAccount
from thumbgen.services.generation.orchestrator import GenerationOrchestrator
from thumbgen.services.image_generation import (
    GenerationBackend,
    ImageGenerationRequest,
    ImageGenerationResponse,
)
from thumbgen.storage.base import Storage, StorageError


def png_bytes(width: int = 960, height: int = 540, color=(200, 40, 40)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, "PNG")
    return buf.getvalue()


class MemoryStorage(Storage):
    """Dict-backed storage; `fail_put` decides per path whether a write fails."""

    def __init__(self, fail_put=None, fail_read: bool = False) -> None:
        self.objects: dict[str, bytes] = {}
        self.fail_put = fail_put
        self.fail_read = fail_read
        self._lock = threading.Lock()

    def put(self, path: str, content: bytes, content_type: str) -> str:
        if self.fail_put is not None and self.fail_put(path):
            raise StorageError(f"write refused: {path}")
        with self._lock:
            self.objects[path] = content
        return path

    def get_signed_url(self, path: str, ttl_seconds: int) -> str:
        return f"https://assets.test/{path}?ttl={ttl_seconds}"

    def read(self, path: str) -> bytes:
        if self.fail_read or path not in self.objects:
            raise StorageError(f"missing: {path}")
        return self.objects[path]

    def delete(self, path: str) -> None:
        with self._lock:
            self.objects.pop(path, None)


class ScriptedBackend(GenerationBackend):
    """Plays back `script` in call order: an exception is raised, anything else returns an image."""

    def __init__(self, script=None, image: bytes | None = None) -> None:
        super().__init__({})
        self.script = list(script or [])
        self.image = image or png_bytes()
        self.calls: list[ImageGenerationRequest] = []
        self._lock = threading.Lock()

    def is_available(self) -> bool:
        return True

    def generate(self, request: ImageGenerationRequest) -> ImageGenerationResponse:
        with self._lock:
            self.calls.append(request)
            step = self.script.pop(0) if self.script else None
        if isinstance(step, BaseException):
            raise step
        return ImageGenerationResponse(
            image_content=self.image,
            mime_type="image/png",
            model="test-model",
            provider="test",
        )


@pytest.fixture
def test_settings():
    return settings.model_copy(
        update={
            "image_generation_retry_max_attempts": 1,
            "image_generation_retry_backoff_seconds": 0.0,
            "max_generation_workers": 4,
            "max_variations": 4,
            "resolution_credits_1k": 1,
            "resolution_credits_2k": 2,
            "resolution_credits_4k": 4,
            "edit_credit_cost": 2,
        }
    )


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_account(session_factory):
    def _make(account_id: str = "acct-1", credits: int = 10) -> str:
        session = session_factory()
        try:
            session.add(CreditAccount(id=account_id, credits_total=credits, credits_remaining=credits))
            session.commit()
        finally:
            session.close()
        return account_id

    return _make


@pytest.fixture
def balance(session_factory):
    """Current credits_remaining read through a fresh session."""

    def _balance(account_id: str) -> int | None:
        session = session_factory()
        try:
            account = session.get(CreditAccount, account_id)
            return account.credits_remaining if account else None
        finally:
            session.close()

    return _balance


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def make_orchestrator(session_factory, storage, test_settings):
    sessions = []

    def _make(backend: GenerationBackend, **kwargs) -> GenerationOrchestrator:
        session = session_factory()
        sessions.append(session)
        kwargs.setdefault("sleep", lambda _: None)
        return GenerationOrchestrator(
            session,
            session_factory,
            backend,
            kwargs.pop("storage", storage),
            kwargs.pop("settings", test_settings),
            **kwargs,
        )

    yield _make
    for session in sessions:
        session.close()
