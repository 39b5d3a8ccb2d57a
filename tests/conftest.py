from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from callwatch.config import Settings
from callwatch.schemas.evaluation import CallMetadata
from callwatch.services.conversation import ConversationState
from callwatch.services.deterministic import DeterministicEvaluator
from callwatch.services.hosted import HostedEvaluator
from callwatch.services.llm import OllamaClient
from callwatch.services.orchestrator import EvaluationOrchestrator
from callwatch.services.persistence import AlertStore
from callwatch.services.rule_catalog import RuleCatalog

MODEL = "llama3.2:1b"


def make_metadata(**overrides) -> CallMetadata:
    fields = {
        "call_id": "call-1",
        "agent_id": "agent-7",
        "agent_name": "Jordan",
        "call_start_time": "2026-01-16T15:00:00Z",
        "caller_timezone": "America/Chicago",
        "customer_phone": "+15555550100",
        "is_dnc_listed": False,
        "has_prior_consent": False,
        "is_prerecorded": False,
        "call_type": "outbound_sales",
    }
    fields.update(overrides)
    return CallMetadata(**fields)


@pytest.fixture
def mock_settings() -> Settings:
    return Settings(
        llm_base_url="http://localhost:11434",
        llm_model_name=MODEL,
        llm_timeout=5.0,
        llm_check_on_startup=False,
        database_path=":memory:",
    )


@pytest.fixture
def catalog() -> RuleCatalog:
    return RuleCatalog.default()


@pytest.fixture
def deterministic(catalog: RuleCatalog) -> DeterministicEvaluator:
    return DeterministicEvaluator(catalog)


@pytest.fixture
def state() -> ConversationState:
    return ConversationState()


@pytest.fixture
def metadata() -> CallMetadata:
    return make_metadata()


@pytest.fixture
def mock_client() -> MagicMock:
    """OllamaClient stand-in; tests set list_models / pull_model / generate."""
    client = MagicMock(spec=OllamaClient)
    client.base_url = "http://localhost:11434"
    client.list_models = AsyncMock(return_value=[MODEL])
    client.pull_model = AsyncMock(return_value=None)
    client.generate = AsyncMock()
    return client


@pytest.fixture
def hosted(mock_client: MagicMock) -> HostedEvaluator:
    return HostedEvaluator(mock_client, MODEL)


@pytest.fixture
def store():
    alert_store = AlertStore(":memory:")
    yield alert_store
    alert_store.close()


@pytest.fixture
def orchestrator(
    catalog: RuleCatalog, hosted: HostedEvaluator, store: AlertStore
) -> EvaluationOrchestrator:
    return EvaluationOrchestrator(catalog, hosted, store=store)


@pytest.fixture
def test_app(orchestrator: EvaluationOrchestrator, store: AlertStore):
    """FastAPI app with the real routers and in-memory collaborators."""
    from fastapi import FastAPI
    from callwatch.routers import alerts, evaluation, llm, rules

    app = FastAPI()
    app.state.orchestrator = orchestrator
    app.state.alert_store = store
    app.include_router(evaluation.router)
    app.include_router(rules.router)
    app.include_router(llm.router)
    app.include_router(alerts.router)
    return app


@pytest.fixture
def client(test_app):
    with TestClient(test_app) as test_client:
        yield test_client
