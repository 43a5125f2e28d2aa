"""
One generation task: backend call, asset upload, renditions, artifact finalize.

pending -> generating -> (uploading -> finalizing -> done) | failed

run() never raises; every failure comes back as a TaskFailure. Tasks of one batch
run on separate threads, each with its own DB session.
"""
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

import pybreaker
from sqlalchemy.orm import Session

from thumbgen.services.artifacts.service import ArtifactService, ArtifactStoreError
from thumbgen.services.generation.outcomes import (
    FailureReason,
    Outcome,
    TaskFailure,
    TaskState,
    TaskSuccess,
)
from thumbgen.services.image_generation import (
    GenerationBackend,
    GenerationTimeout,
    ImageGenerationError,
    ImageGenerationRequest,
    generate_with_retry,
)
from thumbgen.storage.base import Storage, StorageError
from thumbgen.utils.metrics import (
    active_tasks,
    generation_task_duration_seconds,
    generation_tasks_total,
    rendition_failures_total,
)
from thumbgen.utils.renditions import make_renditions

logger = logging.getLogger(__name__)


@dataclass
class GenerationTask:
    artifact_id: str
    account_id: str
    request: ImageGenerationRequest


def asset_path(account_id: str, artifact_id: str, mime_type: str) -> str:
    ext = "jpg" if ("jpeg" in mime_type or "jpg" in mime_type) else "png"
    return f"{account_id}/{artifact_id}/thumbnail.{ext}"


def rendition_path(account_id: str, artifact_id: str, width: int) -> str:
    return f"{account_id}/{artifact_id}/thumbnail-{width}w.jpg"


class GenerationTaskRunner:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        backend: GenerationBackend,
        storage: Storage,
        settings: Any,
        breaker: pybreaker.CircuitBreaker | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.session_factory = session_factory
        self.backend = backend
        self.storage = storage
        self.settings = settings
        self.breaker = breaker
        self._sleep = sleep

    def run(self, task: GenerationTask) -> Outcome:
        active_tasks.inc()
        started = time.monotonic()
        try:
            outcome = self._run(task)
        except Exception as e:
            logger.exception(
                "generation_task_unexpected_error",
                extra={"artifact_id": task.artifact_id, "account_id": task.account_id, "error": str(e)},
            )
            outcome = TaskFailure(task.artifact_id, FailureReason.GENERATION_ERROR, str(e))
        finally:
            active_tasks.dec()
            generation_task_duration_seconds.observe(time.monotonic() - started)

        if isinstance(outcome, TaskSuccess):
            generation_tasks_total.labels(outcome="done").inc()
            self._transition(task, TaskState.DONE)
        else:
            generation_tasks_total.labels(outcome=outcome.reason.value).inc()
            self._transition(task, TaskState.FAILED, failure_reason=outcome.reason.value, error=outcome.detail)
        return outcome

    def _transition(self, task: GenerationTask, state: TaskState, **extra: Any) -> None:
        logger.info(
            "generation_task_state",
            extra={"artifact_id": task.artifact_id, "account_id": task.account_id, "state": state.value, **extra},
        )

    def _run(self, task: GenerationTask) -> Outcome:
        self._transition(task, TaskState.GENERATING)
        try:
            response = generate_with_retry(
                self.backend, task.request, self.settings, breaker=self.breaker, sleep=self._sleep
            )
        except GenerationTimeout as e:
            return TaskFailure(task.artifact_id, FailureReason.TIMEOUT, str(e) or "Generation timed out")
        except ImageGenerationError as e:
            return TaskFailure(task.artifact_id, FailureReason.GENERATION_ERROR, str(e))

        self._transition(task, TaskState.UPLOADING)
        path = asset_path(task.account_id, task.artifact_id, response.mime_type)
        try:
            self.storage.put(path, response.image_content, response.mime_type)
            url = self.storage.get_signed_url(path, self.settings.asset_url_ttl_seconds)
        except StorageError as e:
            self.storage.delete(path)
            return TaskFailure(task.artifact_id, FailureReason.STORAGE_ERROR, str(e))

        self._transition(task, TaskState.FINALIZING)
        renditions = self._store_renditions(task, response.image_content)
        db = self.session_factory()
        try:
            renditions = self._finalize(ArtifactService(db), task, path, url, renditions)
        except ArtifactStoreError as e:
            self._discard_files(task, path, renditions)
            return TaskFailure(task.artifact_id, FailureReason.DATABASE_ERROR, str(e))
        finally:
            db.close()

        return TaskSuccess(task.artifact_id, path, url, renditions)

    def _finalize(
        self,
        artifacts: ArtifactService,
        task: GenerationTask,
        path: str,
        url: str,
        renditions: dict[int, str],
    ) -> dict[int, str]:
        """Finalize the row; returns the renditions that ended up recorded on it.

        Only a write that carried rendition columns is retried, once, with the
        primary asset alone. Renditions dropped that way are deleted from storage.
        """
        try:
            artifacts.finalize(task.artifact_id, task.account_id, path, url, renditions)
            return renditions
        except ArtifactStoreError as e:
            if not renditions:
                raise
            logger.warning(
                "artifact_finalize_retry_minimal",
                extra={"artifact_id": task.artifact_id, "account_id": task.account_id, "error": str(e)},
            )
        artifacts.finalize(task.artifact_id, task.account_id, path, url)
        self._discard_renditions(task, renditions)
        return {}

    def _store_renditions(self, task: GenerationTask, image_bytes: bytes) -> dict[int, str]:
        urls: dict[int, str] = {}
        produced = make_renditions(
            image_bytes,
            self.settings.rendition_widths_list,
            self.settings.rendition_jpeg_quality,
        )
        for width in self.settings.rendition_widths_list:
            rendition = produced.get(width)
            if rendition is None:
                rendition_failures_total.labels(width=str(width)).inc()
                continue
            path = rendition_path(task.account_id, task.artifact_id, width)
            try:
                self.storage.put(path, rendition.content, rendition.content_type)
                urls[width] = self.storage.get_signed_url(path, self.settings.asset_url_ttl_seconds)
            except StorageError as e:
                rendition_failures_total.labels(width=str(width)).inc()
                logger.warning(
                    "rendition_upload_failed",
                    extra={"artifact_id": task.artifact_id, "width": width, "error": str(e)},
                )
        return urls

    def _discard_files(self, task: GenerationTask, path: str, renditions: dict[int, str]) -> None:
        self.storage.delete(path)
        self._discard_renditions(task, renditions)

    def _discard_renditions(self, task: GenerationTask, renditions: dict[int, str]) -> None:
        for width in renditions:
            self.storage.delete(rendition_path(task.account_id, task.artifact_id, width))
