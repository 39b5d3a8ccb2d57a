"""Evaluation orchestrator: the entrypoint the application talks to.

Flow for one ``evaluate()`` call:
  look up the call session -> hold its lock for the whole call
  -> use_llm and hosted model available ? LlmEvaluator : RulesEvaluator
  -> LlmEvaluator failure -> log + RulesEvaluator in the same call
  -> EvaluationResult with elapsed time and the path actually taken

Each call session owns its own ``ConversationState`` and ``asyncio.Lock``,
so evaluations for different calls never contend.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol

from callwatch.exceptions import (
    EvaluationError,
    ProviderProtocolError,
    ProviderUnavailable,
)
from callwatch.schemas.evaluation import (
    Alert,
    CallMetadata,
    EvaluationOutput,
    EvaluationResult,
    LlmStatus,
    Suggestion,
)
from callwatch.services.conversation import ConversationState
from callwatch.services.deterministic import (
    MAX_SUGGESTIONS,
    DeterministicEvaluator,
    new_alert_id,
)
from callwatch.services.hosted import HostedEvaluator
from callwatch.services.persistence import AlertStore
from callwatch.services.rule_catalog import RuleCatalog

logger = logging.getLogger(__name__)


@dataclass
class CallSession:
    call_id: str
    state: ConversationState = field(default_factory=ConversationState)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    last_used: float = 0.0


class Evaluator(Protocol):
    llm_backed: bool

    async def evaluate(
        self, metadata: CallMetadata, transcript: str, session: CallSession
    ) -> EvaluationOutput: ...


class RulesEvaluator:
    """Deterministic path; the only writer of a session's conversation state."""

    llm_backed = False

    def __init__(self, evaluator: DeterministicEvaluator) -> None:
        self._evaluator = evaluator

    async def evaluate(
        self, metadata: CallMetadata, transcript: str, session: CallSession
    ) -> EvaluationOutput:
        return self._evaluator.evaluate(metadata, transcript, session.state)


class LlmEvaluator:
    """Hosted path; normalizes the model's reply into the shared output schema."""

    llm_backed = True

    def __init__(self, hosted: HostedEvaluator, catalog: RuleCatalog) -> None:
        self._hosted = hosted
        self._catalog = catalog

    async def evaluate(
        self, metadata: CallMetadata, transcript: str, session: CallSession
    ) -> EvaluationOutput:
        reply = await self._hosted.evaluate(
            metadata.model_dump_json(indent=2),
            transcript,
            self._catalog.render_for_prompt(),
        )
        alerts = [
            Alert(id=new_alert_id(), **a.model_dump()) for a in reply.alerts
        ]
        suggestions = [
            Suggestion(text=s.text, confidence=s.confidence)
            for s in reply.suggested_next_lines
        ]
        return EvaluationOutput(
            alerts=alerts, suggested_next_lines=suggestions[:MAX_SUGGESTIONS]
        )


class EvaluationOrchestrator:
    def __init__(
        self,
        catalog: RuleCatalog,
        hosted: HostedEvaluator,
        *,
        store: AlertStore | None = None,
        session_lock_timeout: float = 10.0,
        session_idle_timeout: float | None = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._catalog = catalog
        self._hosted = hosted
        self._store = store
        self._lock_timeout = session_lock_timeout
        self._idle_timeout = session_idle_timeout
        self._clock = clock
        self._rules = RulesEvaluator(DeterministicEvaluator(catalog))
        self._llm = LlmEvaluator(hosted, catalog)
        self._sessions: dict[str, CallSession] = {}

    @property
    def catalog(self) -> RuleCatalog:
        return self._catalog

    @property
    def store(self) -> AlertStore | None:
        return self._store

    def rules_prompt(self) -> str:
        return self._catalog.render_for_prompt()

    # ------------------------------------------------------------------ #
    #  Evaluation
    # ------------------------------------------------------------------ #

    async def evaluate(
        self,
        metadata: CallMetadata,
        transcript: str,
        use_llm: bool,
    ) -> EvaluationResult:
        session = self._session(metadata.call_id)
        start = time.perf_counter()

        try:
            await asyncio.wait_for(session.lock.acquire(), timeout=self._lock_timeout)
        except asyncio.TimeoutError as e:
            raise EvaluationError(
                f"Timed out waiting for session lock of call {metadata.call_id}"
            ) from e

        try:
            evaluator: Evaluator = (
                self._llm if use_llm and self._hosted.available else self._rules
            )
            try:
                output = await evaluator.evaluate(metadata, transcript, session)
            except (ProviderUnavailable, ProviderProtocolError) as e:
                logger.warning(
                    "LLM evaluation failed: %s. Falling back to rules-only.", e
                )
                evaluator = self._rules
                output = await evaluator.evaluate(metadata, transcript, session)
        finally:
            session.lock.release()

        elapsed_ms = int((time.perf_counter() - start) * 1000)
        return EvaluationResult(
            alerts=output.alerts,
            suggested_next_lines=output.suggested_next_lines,
            evaluation_time_ms=elapsed_ms,
            llm_used=evaluator.llm_backed,
        )

    # ------------------------------------------------------------------ #
    #  Session boundaries
    # ------------------------------------------------------------------ #

    async def start_session(self, metadata: CallMetadata) -> str:
        """Reset the call's conversation state and record the session open."""
        session = self._session(metadata.call_id)
        async with session.lock:
            session.state.reset()
        if self._store is not None:
            self._store.start_call_session(metadata)
        logger.info("Started call session: %s", metadata.call_id)
        return metadata.call_id

    async def end_session(self, call_id: str) -> None:
        """Record the session close and discard its conversation state."""
        session = self._sessions.pop(call_id, None)
        if session is not None:
            async with session.lock:
                session.state.reset()
        if self._store is not None:
            self._store.end_call_session(call_id)
        logger.info("Ended call session: %s", call_id)

    async def reset_evaluator(self, call_id: str | None = None) -> None:
        """Clear conversation state without a session event.

        Resets one call when *call_id* is given, otherwise every live session.
        """
        if call_id is not None:
            targets = [self._sessions[call_id]] if call_id in self._sessions else []
        else:
            targets = list(self._sessions.values())
        for session in targets:
            async with session.lock:
                session.state.reset()
        logger.info(
            "Evaluator state reset for %s",
            call_id if call_id is not None else f"{len(targets)} session(s)",
        )

    def session_state(self, call_id: str) -> ConversationState | None:
        session = self._sessions.get(call_id)
        return session.state if session is not None else None

    def _session(self, call_id: str) -> CallSession:
        now = self._clock()
        self._evict_idle(now)
        session = self._sessions.get(call_id)
        if session is None:
            session = CallSession(call_id=call_id)
            self._sessions[call_id] = session
        session.last_used = now
        return session

    def _evict_idle(self, now: float) -> None:
        """Drop sessions untouched for ``session_idle_timeout`` seconds.

        A session whose lock is held is never evicted.
        """
        if self._idle_timeout is None:
            return
        for call_id, session in list(self._sessions.items()):
            if now - session.last_used > self._idle_timeout and not session.lock.locked():
                del self._sessions[call_id]
                logger.info("Evicted idle call session: %s", call_id)

    # ------------------------------------------------------------------ #
    #  Hosted model management
    # ------------------------------------------------------------------ #

    def llm_status(self) -> LlmStatus:
        return self._hosted.status()

    async def check_llm(self) -> LlmStatus:
        status = await self._hosted.check_availability()
        logger.info("LLM availability: %s (%s)", status.available, status.model)
        return status

    async def set_llm_model(self, name: str) -> LlmStatus:
        await self._hosted.set_model(name)
        return await self.check_llm()
