from fastapi import APIRouter, Depends

from callwatch.dependencies import get_orchestrator
from callwatch.schemas.evaluation import LlmStatus, ModelSelection
from callwatch.services.orchestrator import EvaluationOrchestrator

router = APIRouter(prefix="/api/v1/llm", tags=["llm"])


@router.get("/status", response_model=LlmStatus)
async def llm_status(
    orchestrator: EvaluationOrchestrator = Depends(get_orchestrator),
) -> LlmStatus:
    """Last known availability; does not contact the provider."""
    return orchestrator.llm_status()


@router.post("/check", response_model=LlmStatus)
async def check_llm(
    orchestrator: EvaluationOrchestrator = Depends(get_orchestrator),
) -> LlmStatus:
    """Probe the provider and refresh availability."""
    return await orchestrator.check_llm()


@router.put("/model", response_model=LlmStatus)
async def set_llm_model(
    body: ModelSelection,
    orchestrator: EvaluationOrchestrator = Depends(get_orchestrator),
) -> LlmStatus:
    return await orchestrator.set_llm_model(body.model)
