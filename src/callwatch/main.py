import logging
from contextlib import asynccontextmanager

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from callwatch.config import settings
from callwatch.exceptions import CallwatchError
from callwatch.routers import alerts, evaluation, llm, rules
from callwatch.services.hosted import HostedEvaluator
from callwatch.services.llm import OllamaClient
from callwatch.services.orchestrator import EvaluationOrchestrator
from callwatch.services.persistence import AlertStore
from callwatch.services.rule_catalog import RuleCatalog

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load the rule catalog and open the alert store on startup."""
    logger.info("Starting callwatch service ...")

    # ConfigurationError here is fatal: the service must not start without rules.
    catalog = RuleCatalog.from_settings(settings)
    llm_client = OllamaClient(settings)
    alert_store = AlertStore(settings.database_path)
    try:
        hosted = HostedEvaluator(llm_client, settings.llm_model_name)
        app.state.alert_store = alert_store
        app.state.orchestrator = EvaluationOrchestrator(
            catalog,
            hosted,
            store=alert_store,
            session_lock_timeout=settings.session_lock_timeout,
            session_idle_timeout=settings.session_idle_timeout,
        )
        if settings.llm_check_on_startup:
            await app.state.orchestrator.check_llm()

        logger.info(
            "callwatch ready: %d rules enabled (catalog v%s)",
            len(catalog.enabled()),
            catalog.version,
        )
        yield
    finally:
        logger.info("Shutting down callwatch service ...")
        await llm_client.close()
        alert_store.close()


app = FastAPI(
    title="callwatch",
    description="Real-time TCPA compliance evaluation for live calls",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(evaluation.router)
app.include_router(rules.router)
app.include_router(llm.router)
app.include_router(alerts.router)


@app.exception_handler(CallwatchError)
async def callwatch_error_handler(request: Request, exc: CallwatchError):
    return JSONResponse(status_code=500, content={"detail": str(exc)})
