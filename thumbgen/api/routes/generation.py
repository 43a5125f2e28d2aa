from fastapi import APIRouter, Depends

from thumbgen.api.deps import (
    get_account_id,
    get_inflight_store,
    get_orchestrator,
    get_request_key,
    inflight_lock,
)
from thumbgen.schemas.generation import (
    BatchGenerateResponse,
    BatchItemOut,
    EditRequest,
    EditResponse,
    GenerateRequest,
    RefundFailureWarningOut,
    SingleGenerateResponse,
)
from thumbgen.services.generation.orchestrator import GenerationOrchestrator, ReservationTiming
from thumbgen.services.idempotency import IdempotencyStore


router = APIRouter(tags=["generation"])


@router.post("/generate", response_model=SingleGenerateResponse | BatchGenerateResponse)
def generate(
    payload: GenerateRequest,
    account_id: str = Depends(get_account_id),
    request_key: str | None = Depends(get_request_key),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
    inflight: IdempotencyStore = Depends(get_inflight_store),
) -> SingleGenerateResponse | BatchGenerateResponse:
    with inflight_lock(inflight, "generate", account_id, request_key):
        result = orchestrator.generate(account_id, payload, request_key)

    if result.timing is ReservationTiming.POSTPAY:
        item = result.items[0]
        return SingleGenerateResponse(
            artifact_id=item.artifact_id,
            asset_url=item.asset_url,
            rendition_400w_url=item.renditions.get(400),
            rendition_800w_url=item.renditions.get(800),
            credits_used=result.credits_used,
            credits_remaining=result.credits_remaining,
        )

    warning = result.refund_failure_warning
    return BatchGenerateResponse(
        results=[
            BatchItemOut(
                succeeded=item.succeeded,
                artifact_id=item.artifact_id,
                asset_url=item.asset_url,
                failure_reason=item.failure_reason.value if item.failure_reason else None,
            )
            for item in result.items
        ],
        credits_used=result.credits_used,
        credits_remaining=result.credits_remaining,
        total_requested=result.total_requested,
        total_succeeded=result.total_succeeded,
        total_failed=result.total_failed,
        refund_failure_warning=RefundFailureWarningOut(**warning.to_dict()) if warning else None,
    )


@router.post("/edit", response_model=EditResponse)
def edit(
    payload: EditRequest,
    account_id: str = Depends(get_account_id),
    request_key: str | None = Depends(get_request_key),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
    inflight: IdempotencyStore = Depends(get_inflight_store),
) -> EditResponse:
    with inflight_lock(inflight, "edit", account_id, request_key):
        result = orchestrator.edit(
            account_id,
            payload.artifact_id,
            payload.edit_prompt,
            payload.reference_images,
            request_key,
        )
    return EditResponse(
        artifact_id=result.artifact_id,
        source_artifact_id=result.source_artifact_id,
        asset_url=result.asset_url,
        credits_used=result.credits_used,
        credits_remaining=result.credits_remaining,
    )
