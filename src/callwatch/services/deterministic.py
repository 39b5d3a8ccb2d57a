"""Deterministic rule evaluator (fallback path).

Scans the full transcript on every call; ``ConversationState`` makes repeated
evaluation of a growing transcript idempotent per rule.

Per enabled rule, in catalog order:
  already fired -> skip
  metadata rule -> metadata check table, transcript ignored
  otherwise     -> first trigger phrase, else first regex pattern
                -> side effect from RULE_EFFECTS decides whether to alert
"""

import logging
import uuid
from collections.abc import Callable

from callwatch.schemas.evaluation import (
    Alert,
    CallMetadata,
    EvaluationOutput,
    Evidence,
    Suggestion,
)
from callwatch.schemas.rules import Rule
from callwatch.services.conversation import ConversationState, effect_for
from callwatch.services.rule_catalog import MatchSpan, RuleCatalog

logger = logging.getLogger(__name__)

TRIGGER_CONFIDENCE = 90
PATTERN_CONFIDENCE = 85
METADATA_CONFIDENCE = 95
RULE_SUGGESTION_CONFIDENCE = 85
CONTEXT_SUGGESTION_CONFIDENCE = 80

TRIGGER_LOOKAHEAD = 30
PATTERN_LOOKAHEAD = 20

MAX_SUGGESTIONS = 3
CONTEXT_MIN_TRANSCRIPT_CHARS = 100

IDENTIFY_YOURSELF = (
    "Identify yourself and your company: "
    "'Hi, my name is [Name] calling from [Company Name].'"
)
STATE_SALES_PURPOSE = (
    "Disclose the sales purpose: 'I'm calling today with a special offer for you.'"
)


def new_alert_id() -> str:
    return str(uuid.uuid4())


# ------------------------------------------------------------------ #
#  Metadata-driven rules
# ------------------------------------------------------------------ #

# Returns the evidence quote when the rule is violated, else None.
MetadataCheck = Callable[[CallMetadata, ConversationState], str | None]


def _check_calling_time(metadata: CallMetadata, state: ConversationState) -> str | None:
    # TODO: implement the 8am-9pm window once product confirms whether
    # caller_timezone or the customer_phone area code is authoritative.
    return None


def _check_dnc_listed(metadata: CallMetadata, state: ConversationState) -> str | None:
    if metadata.is_dnc_listed and not metadata.has_prior_consent:
        return "Number is on National DNC Registry (metadata flag)"
    return None


def _check_prerecorded(metadata: CallMetadata, state: ConversationState) -> str | None:
    if metadata.is_prerecorded and not metadata.has_prior_consent:
        return "Using prerecorded/artificial voice without consent (metadata flag)"
    return None


METADATA_CHECKS: dict[str, MetadataCheck] = {
    "TIME-001": _check_calling_time,
    "DNC-003": _check_dnc_listed,
    "PREC-001": _check_prerecorded,
}


# ------------------------------------------------------------------ #
#  Evaluator
# ------------------------------------------------------------------ #


class DeterministicEvaluator:
    """Literal phrase / regex matcher over a fixed catalog."""

    def __init__(self, catalog: RuleCatalog) -> None:
        self._catalog = catalog

    @property
    def catalog(self) -> RuleCatalog:
        return self._catalog

    def evaluate(
        self,
        metadata: CallMetadata,
        transcript: str,
        state: ConversationState,
    ) -> EvaluationOutput:
        """Evaluate *transcript* and update *state* in place.

        Apart from the mutation of *state* this is a pure function of its
        inputs. The caller is responsible for serializing calls that share a
        state object.
        """
        alerts: list[Alert] = []
        suggestions: list[Suggestion] = []

        for rule in self._catalog.enabled():
            if state.has_fired(rule.id):
                continue

            alert = self._check_rule(metadata, transcript, rule, state)
            if alert is None:
                continue

            state.record_alert(rule.id)
            alerts.append(alert)
            if rule.remediation:
                suggestions.append(
                    Suggestion(text=rule.remediation, confidence=RULE_SUGGESTION_CONFIDENCE)
                )

        if (
            metadata.call_type == "outbound_sales"
            and len(transcript) > CONTEXT_MIN_TRANSCRIPT_CHARS
        ):
            if not state.seller_identified:
                suggestions.append(
                    Suggestion(text=IDENTIFY_YOURSELF, confidence=CONTEXT_SUGGESTION_CONFIDENCE)
                )
            if not state.sales_purpose_stated:
                suggestions.append(
                    Suggestion(text=STATE_SALES_PURPOSE, confidence=CONTEXT_SUGGESTION_CONFIDENCE)
                )

        if alerts:
            logger.info(
                "Call %s: %d new alert(s) %s",
                metadata.call_id,
                len(alerts),
                [a.rule_id for a in alerts],
            )

        return EvaluationOutput(
            alerts=alerts,
            suggested_next_lines=suggestions[:MAX_SUGGESTIONS],
        )

    def _check_rule(
        self,
        metadata: CallMetadata,
        transcript: str,
        rule: Rule,
        state: ConversationState,
    ) -> Alert | None:
        if rule.requires_metadata:
            check = METADATA_CHECKS.get(rule.id)
            if check is None:
                return None
            quote = check(metadata, state)
            if quote is None:
                return None
            return _build_alert(
                rule,
                Evidence(quote=quote, start_char=0, end_char=0),
                METADATA_CONFIDENCE,
            )

        span = self._catalog.matcher(rule.id).find(transcript)
        if span is None:
            return None

        if not effect_for(rule.id).apply(state):
            return None

        if span.via == "trigger":
            evidence = _evidence(transcript, span, TRIGGER_LOOKAHEAD)
            confidence = TRIGGER_CONFIDENCE
        else:
            evidence = _evidence(transcript, span, PATTERN_LOOKAHEAD)
            confidence = PATTERN_CONFIDENCE
        return _build_alert(rule, evidence, confidence)


def _evidence(transcript: str, span: MatchSpan, lookahead: int) -> Evidence:
    """Quote the match plus *lookahead* characters, clipped and trimmed."""
    context_end = min(span.end + lookahead, len(transcript))
    return Evidence(
        quote=transcript[span.start : context_end].strip(),
        start_char=span.start,
        end_char=span.end,
    )


def _build_alert(rule: Rule, evidence: Evidence, confidence: int) -> Alert:
    return Alert(
        id=new_alert_id(),
        rule_id=rule.id,
        title=rule.title,
        severity=rule.severity.value,
        confidence=confidence,
        evidence=evidence,
        rationale=rule.rationale,
        remediation=rule.remediation,
    )
