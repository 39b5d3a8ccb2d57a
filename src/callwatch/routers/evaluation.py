from fastapi import APIRouter, Depends

from callwatch.dependencies import get_orchestrator
from callwatch.schemas.evaluation import CallMetadata, EvaluationRequest, EvaluationResult
from callwatch.services.orchestrator import EvaluationOrchestrator

router = APIRouter(prefix="/api/v1", tags=["evaluation"])


@router.post("/evaluate", response_model=EvaluationResult)
async def evaluate_transcript(
    body: EvaluationRequest,
    orchestrator: EvaluationOrchestrator = Depends(get_orchestrator),
) -> EvaluationResult:
    """Evaluate the transcript so far for the given call.

    An empty transcript is valid: metadata-driven rules still apply.
    """
    return await orchestrator.evaluate(body.metadata, body.transcript, body.use_llm)


@router.post("/sessions")
async def start_call_session(
    metadata: CallMetadata,
    orchestrator: EvaluationOrchestrator = Depends(get_orchestrator),
) -> dict:
    """Open a call session; resets conversation state for the call."""
    call_id = await orchestrator.start_session(metadata)
    return {"call_id": call_id}


@router.post("/sessions/{call_id}/end")
async def end_call_session(
    call_id: str,
    orchestrator: EvaluationOrchestrator = Depends(get_orchestrator),
) -> dict:
    await orchestrator.end_session(call_id)
    return {"ok": True}


@router.post("/evaluator/reset")
async def reset_evaluator(
    call_id: str | None = None,
    orchestrator: EvaluationOrchestrator = Depends(get_orchestrator),
) -> dict:
    """Clear conversation state without opening or closing a session."""
    await orchestrator.reset_evaluator(call_id)
    return {"ok": True}


@router.get("/health")
async def health_check(
    orchestrator: EvaluationOrchestrator = Depends(get_orchestrator),
) -> dict:
    return {
        "status": "ok",
        "rules_enabled": len(orchestrator.catalog.enabled()),
        "llm_available": orchestrator.llm_status().available,
    }
