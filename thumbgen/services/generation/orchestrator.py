"""
Credit-metered generation: reserve, fan out N tasks, fan in, compensate, respond.

Two reservation timings, chosen by reservation_timing():
  N == 1  pay after a successful generation (a lone failure never touches the ledger)
  N > 1   pre-pay unit_cost * N, then refund unit_cost * failed in one compensation

The request key is the reservation token of the outer request. A retry with the
same key replays the recorded result instead of generating again.
"""
import logging
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

import pybreaker
from sqlalchemy.orm import Session

from thumbgen.schemas.generation import GenerateRequest
from thumbgen.services.artifacts.service import ArtifactService, ArtifactStoreError
from thumbgen.services.compensations.service import CompensationService
from thumbgen.services.credits.guard import IdempotencyGuard
from thumbgen.services.credits.ledger import CreditLedger, LedgerFailure, LedgerKind, LedgerResult
from thumbgen.services.credits.pricing import get_edit_cost, get_unit_cost
from thumbgen.services.generation.errors import (
    ArtifactNotFoundError,
    DatabaseFaultError,
    GenerationError,
    GenerationFailedError,
    InsufficientCreditsError,
    InvalidRequestError,
    RefundFailureWarning,
)
from thumbgen.services.generation.outcomes import (
    FailureReason,
    Outcome,
    TaskFailure,
    TaskSuccess,
    partition,
)
from thumbgen.services.generation.task_runner import (
    GenerationTask,
    GenerationTaskRunner,
    rendition_path,
)
from thumbgen.services.image_generation import GenerationBackend, ImageGenerationRequest, ReferenceAsset
from thumbgen.services.prompts.builder import (
    PromptInput,
    build_edit_prompt,
    build_generation_prompt,
    sanitize_edit_prompt,
)
from thumbgen.services.references import ReferenceLoader
from thumbgen.storage.base import Storage, StorageError
from thumbgen.utils.metrics import batch_size, generation_requests_total, refund_failures_total

logger = logging.getLogger(__name__)


class ReservationTiming(str, Enum):
    POSTPAY = "postpay"
    PREPAY = "prepay"


def reservation_timing(variations: int) -> ReservationTiming:
    """Single outputs are charged after success; batches are charged up front."""
    if variations < 1:
        raise ValueError("variations must be >= 1")
    if variations == 1:
        return ReservationTiming.POSTPAY
    return ReservationTiming.PREPAY


@dataclass
class ItemResult:
    succeeded: bool
    artifact_id: str | None
    asset_url: str | None = None
    failure_reason: FailureReason | None = None
    renditions: dict[int, str] = field(default_factory=dict)


@dataclass
class GenerationResult:
    request_key: str
    timing: ReservationTiming
    items: list[ItemResult]
    credits_used: int
    credits_remaining: int | None
    refund_failure_warning: RefundFailureWarning | None = None
    replayed: bool = False

    @property
    def total_requested(self) -> int:
        return len(self.items)

    @property
    def total_succeeded(self) -> int:
        return sum(1 for item in self.items if item.succeeded)

    @property
    def total_failed(self) -> int:
        return self.total_requested - self.total_succeeded


@dataclass
class EditResult:
    artifact_id: str
    source_artifact_id: str
    asset_url: str
    credits_used: int
    credits_remaining: int | None
    replayed: bool = False


class GenerationOrchestrator:
    def __init__(
        self,
        db: Session,
        session_factory: Callable[[], Session],
        backend: GenerationBackend,
        storage: Storage,
        settings: Any,
        *,
        edit_backend: GenerationBackend | None = None,
        breaker: pybreaker.CircuitBreaker | None = None,
        reference_loader: ReferenceLoader | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings
        self.storage = storage
        self.guard = IdempotencyGuard(CreditLedger(db))
        self.artifacts = ArtifactService(db)
        self.compensations = CompensationService(db)
        self.references = reference_loader or ReferenceLoader()
        self.runner = GenerationTaskRunner(session_factory, backend, storage, settings, breaker, sleep)
        self.edit_runner = GenerationTaskRunner(
            session_factory, edit_backend or backend, storage, settings, breaker, sleep
        )

    # ------------------------------------------------------------------
    # generate
    # ------------------------------------------------------------------

    def generate(self, account_id: str, request: GenerateRequest, request_key: str | None = None) -> GenerationResult:
        aspect_ratio = self._validate(request)
        variations = request.variations
        request_key = self._reservation_token(account_id, request_key)
        unit_cost = get_unit_cost(request.quality_class)
        total_cost = unit_cost * variations
        timing = reservation_timing(variations)

        batch_size.observe(variations)
        generation_requests_total.labels(operation="generate", timing=timing.value).inc()
        logger.info(
            "generation_requested",
            extra={
                "account_id": account_id,
                "request_id": request_key,
                "variations": variations,
                "timing": timing.value,
                "amount": total_cost,
            },
        )

        reservation: LedgerResult | None = None
        if timing is ReservationTiming.POSTPAY:
            recorded = self.guard.lookup(account_id, request_key)
            if recorded is not None:
                return self._replay_single(account_id, request_key, recorded.artifact_id, unit_cost)

        # References are fetched before any credits move.
        image_request = self._build_generation_request(request, aspect_ratio)

        if timing is ReservationTiming.PREPAY:
            reservation = self.guard.reserve(
                account_id,
                total_cost,
                request_key,
                kind=LedgerKind.GENERATION,
                reason=f"Generated {variations} {request.quality_class.value} thumbnail variation(s): {request.title[:50]}",
            )
            if not reservation.succeeded:
                raise self._rejection_error(reservation, total_cost)
            if reservation.duplicate:
                return self._replay_batch(account_id, request_key, variations, unit_cost)

        try:
            artifact_ids = self.artifacts.create_placeholders(
                account_id, variations, self._placeholder_fields(request, aspect_ratio), request_key
            )
        except ArtifactStoreError as e:
            logger.error(
                "artifact_placeholders_failed",
                extra={"account_id": account_id, "request_id": request_key, "error": str(e)},
            )
            warning = None
            if reservation is not None:
                warning, _ = self._refund(
                    account_id, total_cost, request_key, "Refund for failed thumbnail record creation"
                )
            raise DatabaseFaultError("Failed to create thumbnail records", refund_failure_warning=warning) from e

        tasks = [GenerationTask(artifact_id, account_id, image_request) for artifact_id in artifact_ids]
        outcomes = self._fan_out(self.runner, tasks)
        succeeded, failed = partition(outcomes)
        self._remove_failed(account_id, request_key, failed)

        logger.info(
            "generation_batch_settled",
            extra={
                "account_id": account_id,
                "request_id": request_key,
                "succeeded": len(succeeded),
                "failed": len(failed),
            },
        )

        if timing is ReservationTiming.POSTPAY:
            return self._charge_single(account_id, request, request_key, unit_cost, outcomes[0])

        credits_remaining = reservation.remaining_balance
        warning = None
        if failed:
            warning, refund = self._refund(
                account_id,
                unit_cost * len(failed),
                request_key,
                f"Refund for {len(failed)} failed thumbnail generation(s)",
            )
            if refund.succeeded:
                credits_remaining = refund.remaining_balance

        return GenerationResult(
            request_key=request_key,
            timing=timing,
            items=[self._item(outcome) for outcome in outcomes],
            credits_used=unit_cost * len(succeeded),
            credits_remaining=credits_remaining,
            refund_failure_warning=warning,
        )

    def _charge_single(
        self,
        account_id: str,
        request: GenerateRequest,
        request_key: str,
        unit_cost: int,
        outcome: Outcome,
    ) -> GenerationResult:
        if isinstance(outcome, TaskFailure):
            message = "Generation timed out" if outcome.reason is FailureReason.TIMEOUT else "Failed to generate thumbnail"
            raise GenerationFailedError(outcome.reason, message)

        charge = self.guard.reserve(
            account_id,
            unit_cost,
            request_key,
            kind=LedgerKind.GENERATION,
            reason=f"Generated {request.quality_class.value} thumbnail: {request.title[:50]}",
            artifact_id=outcome.artifact_id,
        )
        if charge.applied:
            return GenerationResult(
                request_key=request_key,
                timing=ReservationTiming.POSTPAY,
                items=[self._item(outcome)],
                credits_used=unit_cost,
                credits_remaining=charge.remaining_balance,
            )

        # Not charged by this attempt: the output must not outlive it.
        self._discard(account_id, outcome)
        if charge.duplicate:
            recorded = self.guard.lookup(account_id, request_key)
            return self._replay_single(account_id, request_key, recorded.artifact_id if recorded else None, unit_cost)
        raise self._rejection_error(charge, unit_cost)

    # ------------------------------------------------------------------
    # edit
    # ------------------------------------------------------------------

    def edit(
        self,
        account_id: str,
        artifact_id: str,
        edit_prompt: str,
        reference_images: list[str] | None = None,
        request_key: str | None = None,
    ) -> EditResult:
        if len(edit_prompt or "") > self.settings.edit_prompt_max_length:
            raise InvalidRequestError(
                f"Edit prompt must be {self.settings.edit_prompt_max_length} characters or less"
            )
        prompt = sanitize_edit_prompt(edit_prompt)
        if not prompt:
            raise InvalidRequestError("Thumbnail ID and edit prompt are required")
        reference_images = reference_images or []
        if len(reference_images) >= self.settings.reference_max_count:
            raise InvalidRequestError(f"At most {self.settings.reference_max_count - 1} reference images are allowed")

        source = self.artifacts.get(account_id, artifact_id)
        if source is None or not source.is_finalized():
            raise ArtifactNotFoundError("Thumbnail not found or access denied")

        request_key = self._reservation_token(account_id, request_key)
        cost = get_edit_cost()
        generation_requests_total.labels(operation="edit", timing=ReservationTiming.PREPAY.value).inc()
        extra_assets = self.references.load_all(reference_images)

        reservation = self.guard.reserve(
            account_id, cost, request_key, kind=LedgerKind.EDIT, reason=f"Editing thumbnail: {prompt[:50]}"
        )
        if not reservation.succeeded:
            raise self._rejection_error(reservation, cost)
        if reservation.duplicate:
            return self._replay_edit(account_id, request_key, source.id, cost)

        try:
            source_bytes = self.storage.read(source.asset_path)
        except StorageError as e:
            warning, _ = self._refund(account_id, cost, request_key, "Refund for failed thumbnail edit: source unavailable")
            raise GenerationFailedError(
                FailureReason.STORAGE_ERROR,
                "Failed to fetch original thumbnail image",
                refund_failure_warning=warning,
            ) from e

        source_mime = "image/jpeg" if source.asset_path.endswith((".jpg", ".jpeg")) else "image/png"
        image_request = ImageGenerationRequest(
            prompt=build_edit_prompt(prompt),
            reference_assets=[ReferenceAsset(source_bytes, source_mime)] + extra_assets,
            quality_class=source.quality_class,
            aspect_ratio=source.aspect_ratio,
        )
        fields = {
            "title": source.title,
            "style": source.style,
            "palette": source.palette,
            "emotion": source.emotion,
            "aspect_ratio": source.aspect_ratio,
            "quality_class": source.quality_class,
            "source_artifact_id": source.id,
            "edit_prompt": prompt,
        }
        try:
            [new_id] = self.artifacts.create_placeholders(account_id, 1, fields, request_key)
        except ArtifactStoreError as e:
            warning, _ = self._refund(account_id, cost, request_key, "Refund for failed thumbnail edit: record creation failed")
            raise DatabaseFaultError("Failed to create new thumbnail version", refund_failure_warning=warning) from e

        outcome = self._fan_out(self.edit_runner, [GenerationTask(new_id, account_id, image_request)])[0]
        if isinstance(outcome, TaskFailure):
            self._remove_failed(account_id, request_key, [outcome])
            warning, _ = self._refund(
                account_id, cost, request_key, f"Refund for failed thumbnail edit: {outcome.reason.value}"
            )
            message = "Generation timed out" if outcome.reason is FailureReason.TIMEOUT else "Failed to edit thumbnail"
            raise GenerationFailedError(outcome.reason, message, refund_failure_warning=warning)

        logger.info(
            "thumbnail_edited",
            extra={"account_id": account_id, "artifact_id": new_id, "source_artifact_id": source.id, "request_id": request_key},
        )
        return EditResult(
            artifact_id=new_id,
            source_artifact_id=source.id,
            asset_url=outcome.asset_url,
            credits_used=cost,
            credits_remaining=reservation.remaining_balance,
        )

    # ------------------------------------------------------------------
    # fan-out / fan-in
    # ------------------------------------------------------------------

    def _fan_out(self, runner: GenerationTaskRunner, tasks: list[GenerationTask]) -> list[Outcome]:
        """Run every task to completion; outcomes are returned in task order."""
        workers = max(1, min(len(tasks), self.settings.max_generation_workers))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="generation") as pool:
            futures = [pool.submit(runner.run, task) for task in tasks]
            wait(futures)
        outcomes: list[Outcome] = []
        for task, future in zip(tasks, futures):
            try:
                outcomes.append(future.result())
            except Exception as e:
                logger.exception("generation_task_crashed", extra={"artifact_id": task.artifact_id, "error": str(e)})
                outcomes.append(TaskFailure(task.artifact_id, FailureReason.GENERATION_ERROR, str(e)))
        return outcomes

    def _remove_failed(self, account_id: str, request_key: str, failed: list[TaskFailure]) -> None:
        if not failed:
            return
        try:
            self.artifacts.remove(account_id, [f.artifact_id for f in failed])
        except ArtifactStoreError as e:
            # Left pending; the stale-placeholder sweep deletes them later.
            logger.error(
                "artifact_remove_failed",
                extra={
                    "account_id": account_id,
                    "request_id": request_key,
                    "artifact_ids": [f.artifact_id for f in failed],
                    "error": str(e),
                },
            )

    def _discard(self, account_id: str, outcome: TaskSuccess) -> None:
        try:
            self.artifacts.remove(account_id, [outcome.artifact_id])
        except ArtifactStoreError as e:
            logger.error(
                "artifact_remove_failed",
                extra={"account_id": account_id, "artifact_id": outcome.artifact_id, "error": str(e)},
            )
        self.storage.delete(outcome.asset_path)
        for width in outcome.renditions:
            self.storage.delete(rendition_path(account_id, outcome.artifact_id, width))

    # ------------------------------------------------------------------
    # compensation
    # ------------------------------------------------------------------

    def _refund(
        self, account_id: str, amount: int, reservation_token: str, reason: str
    ) -> tuple[RefundFailureWarning | None, LedgerResult]:
        """One compensation with a fresh token. A failure is reported, recorded and never raised."""
        result = self.guard.compensate(account_id, amount, reservation_token, self.guard.new_token(), reason)
        if result.succeeded:
            return None, result

        failure = (result.failure_reason or LedgerFailure.DATABASE_ERROR).value
        refund_failures_total.inc()
        logger.error(
            "credit_refund_failed",
            extra={
                "account_id": account_id,
                "amount": amount,
                "request_id": reservation_token,
                "failure_reason": failure,
                "reason": reason,
            },
        )
        self.compensations.record_refund_failure(account_id, amount, reason, reservation_token, failure)
        return RefundFailureWarning(amount=amount, reason=failure, request_id=reservation_token), result

    def _reservation_token(self, account_id: str, request_key: str | None) -> str:
        """Caller keys are scoped to the account; without one every request is a new attempt."""
        if not request_key:
            return self.guard.new_token()
        return f"{account_id}:{request_key}"

    @staticmethod
    def _rejection_error(result: LedgerResult, required: int) -> GenerationError:
        reason = result.failure_reason
        if reason is LedgerFailure.INSUFFICIENT:
            return InsufficientCreditsError(required, result.remaining_balance)
        if reason is LedgerFailure.ACCOUNT_NOT_FOUND:
            return InsufficientCreditsError(required, 0)
        if reason is LedgerFailure.TOKEN_CONFLICT:
            return InvalidRequestError("Idempotency key already used")
        return DatabaseFaultError("Failed to deduct credits")

    # ------------------------------------------------------------------
    # replay
    # ------------------------------------------------------------------

    def _replay_single(
        self, account_id: str, request_key: str, artifact_id: str | None, unit_cost: int
    ) -> GenerationResult:
        artifact = self.artifacts.get(account_id, artifact_id) if artifact_id else None
        if artifact is None or not artifact.is_finalized():
            raise ArtifactNotFoundError("No thumbnail recorded for this request")
        logger.info(
            "generation_replayed",
            extra={"account_id": account_id, "request_id": request_key, "artifact_id": artifact.id},
        )
        return GenerationResult(
            request_key=request_key,
            timing=ReservationTiming.POSTPAY,
            items=[
                ItemResult(
                    succeeded=True,
                    artifact_id=artifact.id,
                    asset_url=artifact.asset_url,
                    renditions=self._stored_renditions(artifact),
                )
            ],
            credits_used=unit_cost,
            credits_remaining=self.guard.current_balance(account_id),
            replayed=True,
        )

    def _replay_batch(self, account_id: str, request_key: str, variations: int, unit_cost: int) -> GenerationResult:
        """Current state of the original attempt. Removed outputs are reported as failed."""
        items = [
            ItemResult(succeeded=True, artifact_id=row.id, asset_url=row.asset_url)
            if row.is_finalized()
            else ItemResult(succeeded=False, artifact_id=row.id)
            for row in self.artifacts.list_for_request(account_id, request_key)
        ]
        while len(items) < variations:
            items.append(ItemResult(succeeded=False, artifact_id=None))
        succeeded = sum(1 for item in items if item.succeeded)
        logger.info(
            "generation_replayed",
            extra={"account_id": account_id, "request_id": request_key, "succeeded": succeeded},
        )
        return GenerationResult(
            request_key=request_key,
            timing=ReservationTiming.PREPAY,
            items=items,
            credits_used=unit_cost * succeeded,
            credits_remaining=self.guard.current_balance(account_id),
            replayed=True,
        )

    def _replay_edit(self, account_id: str, request_key: str, source_artifact_id: str, cost: int) -> EditResult:
        for row in self.artifacts.list_for_request(account_id, request_key):
            if row.is_finalized() and row.source_artifact_id == source_artifact_id:
                return EditResult(
                    artifact_id=row.id,
                    source_artifact_id=source_artifact_id,
                    asset_url=row.asset_url,
                    credits_used=cost,
                    credits_remaining=self.guard.current_balance(account_id),
                    replayed=True,
                )
        raise ArtifactNotFoundError("No edited thumbnail recorded for this request")

    # ------------------------------------------------------------------
    # request assembly
    # ------------------------------------------------------------------

    def _validate(self, request: GenerateRequest) -> str:
        max_variations = self.settings.max_variations
        if request.variations < 1 or request.variations > max_variations:
            raise InvalidRequestError(f"Variations must be between 1 and {max_variations}")
        aspect_ratio = (request.aspect_ratio or self.settings.default_aspect_ratio).strip()
        if aspect_ratio not in self.settings.allowed_aspect_ratios_set:
            raise InvalidRequestError(f"Aspect ratio {aspect_ratio} is not supported")
        reference_count = len(request.reference_images) + sum(len(g) for g in request.character_groups())
        if reference_count > self.settings.reference_max_count:
            raise InvalidRequestError(f"At most {self.settings.reference_max_count} reference images are allowed")
        return aspect_ratio

    def _build_generation_request(self, request: GenerateRequest, aspect_ratio: str) -> ImageGenerationRequest:
        style_assets = self.references.load_all(request.reference_images)
        character_assets = [self.references.load_all(group) for group in request.character_groups()]
        character_assets = [group for group in character_assets if group]
        prompt = build_generation_prompt(
            PromptInput(
                title=request.title,
                style=request.style,
                custom_style=request.custom_style,
                palette=request.palette,
                emotion=request.emotion,
                pose=request.pose,
                thumbnail_text=request.thumbnail_text,
                aspect_ratio=aspect_ratio,
                quality_class=request.quality_class.value,
                style_reference_count=len(style_assets),
                character_image_counts=[len(group) for group in character_assets],
            )
        )
        assets: list[ReferenceAsset] = list(style_assets)
        for group in character_assets:
            assets.extend(group)
        return ImageGenerationRequest(
            prompt=prompt,
            reference_assets=assets,
            quality_class=request.quality_class.value,
            aspect_ratio=aspect_ratio,
        )

    @staticmethod
    def _placeholder_fields(request: GenerateRequest, aspect_ratio: str) -> dict[str, Any]:
        return {
            "title": request.title,
            "style": request.style,
            "palette": request.palette,
            "emotion": request.emotion,
            "aspect_ratio": aspect_ratio,
            "quality_class": request.quality_class.value,
            "pose": request.pose,
            "custom_style": request.custom_style,
            "thumbnail_text": request.thumbnail_text,
        }

    @staticmethod
    def _item(outcome: Outcome) -> ItemResult:
        if isinstance(outcome, TaskSuccess):
            return ItemResult(
                succeeded=True,
                artifact_id=outcome.artifact_id,
                asset_url=outcome.asset_url,
                renditions=dict(outcome.renditions),
            )
        return ItemResult(succeeded=False, artifact_id=outcome.artifact_id, failure_reason=outcome.reason)

    @staticmethod
    def _stored_renditions(artifact) -> dict[int, str]:
        out = {}
        if artifact.rendition_400w_url:
            out[400] = artifact.rendition_400w_url
        if artifact.rendition_800w_url:
            out[800] = artifact.rendition_800w_url
        return out
