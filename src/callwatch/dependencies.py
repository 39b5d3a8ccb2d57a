from fastapi import HTTPException, Request

from callwatch.services.orchestrator import EvaluationOrchestrator
from callwatch.services.persistence import AlertStore


def get_orchestrator(request: Request) -> EvaluationOrchestrator:
    """Retrieve the EvaluationOrchestrator singleton from app state."""
    return request.app.state.orchestrator


def get_alert_store(request: Request) -> AlertStore:
    """Retrieve the AlertStore singleton from app state."""
    store = getattr(request.app.state, "alert_store", None)
    if store is None:
        raise HTTPException(status_code=503, detail="Alert store is not configured")
    return store
