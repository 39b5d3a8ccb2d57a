import pytest

from callwatch.schemas.evaluation import CallMetadata
from callwatch.services.conversation import ConversationState
from callwatch.services.deterministic import (
    IDENTIFY_YOURSELF,
    METADATA_CONFIDENCE,
    PATTERN_CONFIDENCE,
    STATE_SALES_PURPOSE,
    TRIGGER_CONFIDENCE,
    DeterministicEvaluator,
)
from callwatch.services.rule_catalog import RuleCatalog
from conftest import make_metadata

# 119 characters, no rule matches
NEUTRAL_TRANSCRIPT = (
    "Customer: Hello? Agent: Hi there, how are you doing today? "
    "I hope the weather is nice where you live right now, friend."
)


def _ids(output) -> list[str]:
    return [a.rule_id for a in output.alerts]


class TestTranscriptRules:
    def test_dnc_listed_and_verbal_request(
        self, deterministic: DeterministicEvaluator, state: ConversationState
    ):
        metadata = make_metadata(is_dnc_listed=True, has_prior_consent=False)
        output = deterministic.evaluate(metadata, "Hello, don't call me again", state)

        assert _ids(output) == ["DNC-001", "DNC-003"]
        dnc, listed = output.alerts
        assert dnc.confidence == TRIGGER_CONFIDENCE
        assert dnc.severity == "high"
        assert dnc.evidence.quote == "don't call me again"
        assert (dnc.evidence.start_char, dnc.evidence.end_char) == (7, 20)
        assert listed.confidence == METADATA_CONFIDENCE
        assert (listed.evidence.start_char, listed.evidence.end_char) == (0, 0)
        assert dnc.id != listed.id

    def test_pattern_match(
        self, deterministic: DeterministicEvaluator, metadata: CallMetadata, state: ConversationState
    ):
        transcript = "Customer: Please cease contact with me immediately."
        output = deterministic.evaluate(metadata, transcript, state)

        assert _ids(output) == ["DNC-001"]
        alert = output.alerts[0]
        assert alert.confidence == PATTERN_CONFIDENCE
        assert (alert.evidence.start_char, alert.evidence.end_char) == (17, 30)
        assert alert.evidence.quote == "cease contact with me immediately"
        assert state.dnc_requested

    def test_evidence_quote_clipped_and_trimmed(
        self, deterministic: DeterministicEvaluator, metadata: CallMetadata, state: ConversationState
    ):
        output = deterministic.evaluate(metadata, "Customer: stop calling me   ", state)
        assert output.alerts[0].evidence.quote == "stop calling me"

    def test_evidence_offsets_index_original_transcript(
        self, deterministic: DeterministicEvaluator, metadata: CallMetadata, state: ConversationState
    ):
        transcript = "Customer: PLEASE REMOVE ME FROM YOUR LIST now."
        alert = deterministic.evaluate(metadata, transcript, state).alerts[0]
        assert transcript[alert.evidence.start_char : alert.evidence.end_char] == "REMOVE ME FROM YOUR LIST"

    def test_evidence_survives_text_that_grows_when_lowercased(
        self, deterministic: DeterministicEvaluator, metadata: CallMetadata, state: ConversationState
    ):
        # "İ".lower() is two characters long
        transcript = "İİİ Customer: don't call me again"
        alert = deterministic.evaluate(metadata, transcript, state).alerts[0]

        assert alert.rule_id == "DNC-001"
        assert alert.evidence.quote == "don't call me again"
        assert (alert.evidence.start_char, alert.evidence.end_char) == (14, 27)
        assert transcript[14:27] == "don't call me"

    def test_consent_revocation(
        self, deterministic: DeterministicEvaluator, metadata: CallMetadata, state: ConversationState
    ):
        output = deterministic.evaluate(metadata, "Customer: I never agreed to any of this.", state)
        assert _ids(output) == ["CONS-001"]
        assert state.consent_revoked

    def test_no_match_no_alerts(
        self, deterministic: DeterministicEvaluator, metadata: CallMetadata, state: ConversationState
    ):
        output = deterministic.evaluate(metadata, "Customer: Hello?", state)
        assert output.alerts == []
        assert output.suggested_next_lines == []


class TestDncGate:
    def test_continuation_before_dnc_request_is_silent(
        self, deterministic: DeterministicEvaluator, metadata: CallMetadata, state: ConversationState
    ):
        transcript = "Agent: before you go, let me mention our plan."
        output = deterministic.evaluate(metadata, transcript, state)

        assert output.alerts == []
        assert not state.dnc_requested
        assert not state.has_fired("DNC-002")

    def test_continuation_after_dnc_request_alerts(
        self, deterministic: DeterministicEvaluator, metadata: CallMetadata, state: ConversationState
    ):
        transcript = "Agent: before you go, let me mention our plan."
        deterministic.evaluate(metadata, transcript, state)

        output = deterministic.evaluate(
            metadata, transcript + " Customer: stop calling me.", state
        )
        assert _ids(output) == ["DNC-001", "DNC-002"]
        assert state.has_fired("DNC-002")


class TestIdempotence:
    def test_growing_transcript_does_not_realert(
        self, deterministic: DeterministicEvaluator, metadata: CallMetadata, state: ConversationState
    ):
        first = deterministic.evaluate(metadata, "Customer: don't call me.", state)
        second = deterministic.evaluate(
            metadata, "Customer: don't call me. Agent: Understood. Customer: stop calling me!", state
        )
        assert _ids(first) == ["DNC-001"]
        assert second.alerts == []

    def test_metadata_rule_fires_once(
        self, deterministic: DeterministicEvaluator, state: ConversationState
    ):
        metadata = make_metadata(is_dnc_listed=True)
        assert _ids(deterministic.evaluate(metadata, "Hello?", state)) == ["DNC-003"]
        assert deterministic.evaluate(metadata, "Hello? Hi.", state).alerts == []

    def test_reset_allows_refire(
        self, deterministic: DeterministicEvaluator, metadata: CallMetadata, state: ConversationState
    ):
        deterministic.evaluate(metadata, "Customer: don't call me.", state)
        state.reset()
        output = deterministic.evaluate(metadata, "Customer: don't call me.", state)
        assert _ids(output) == ["DNC-001"]


class TestMetadataRules:
    @pytest.mark.parametrize(
        "overrides, expected",
        [
            ({"is_dnc_listed": True}, ["DNC-003"]),
            ({"is_dnc_listed": True, "has_prior_consent": True}, []),
            ({"is_prerecorded": True}, ["PREC-001"]),
            ({"is_prerecorded": True, "has_prior_consent": True}, []),
            ({"is_dnc_listed": True, "is_prerecorded": True}, ["DNC-003", "PREC-001"]),
        ],
    )
    def test_metadata_flags(
        self,
        deterministic: DeterministicEvaluator,
        state: ConversationState,
        overrides: dict,
        expected: list[str],
    ):
        output = deterministic.evaluate(make_metadata(**overrides), "Hello?", state)
        assert _ids(output) == expected

    def test_metadata_evidence_text(
        self, deterministic: DeterministicEvaluator, state: ConversationState
    ):
        output = deterministic.evaluate(make_metadata(is_prerecorded=True), "Hello?", state)
        assert output.alerts[0].evidence.quote == (
            "Using prerecorded/artificial voice without consent (metadata flag)"
        )

    def test_calling_time_never_alerts(
        self, deterministic: DeterministicEvaluator, state: ConversationState
    ):
        metadata = make_metadata(call_start_time="2026-01-16T03:00:00Z")
        output = deterministic.evaluate(metadata, "Hello?", state)
        assert "TIME-001" not in _ids(output)


class TestSuggestions:
    def test_capped_at_three_in_catalog_order(
        self, deterministic: DeterministicEvaluator, catalog: RuleCatalog, state: ConversationState
    ):
        metadata = make_metadata(is_dnc_listed=True, is_prerecorded=True)
        output = deterministic.evaluate(
            metadata, "Customer: don't call me, I want to opt out.", state
        )

        assert _ids(output) == ["DNC-001", "DNC-003", "CONS-001", "PREC-001"]
        assert [s.text for s in output.suggested_next_lines] == [
            catalog.by_id("DNC-001").remediation,
            catalog.by_id("DNC-003").remediation,
            catalog.by_id("CONS-001").remediation,
        ]

    def test_contextual_disclosure_suggestions(
        self, deterministic: DeterministicEvaluator, metadata: CallMetadata, state: ConversationState
    ):
        assert len(NEUTRAL_TRANSCRIPT) > 100
        output = deterministic.evaluate(metadata, NEUTRAL_TRANSCRIPT, state)

        assert output.alerts == []
        assert [s.text for s in output.suggested_next_lines] == [
            IDENTIFY_YOURSELF,
            STATE_SALES_PURPOSE,
        ]
        assert all(s.confidence == 80 for s in output.suggested_next_lines)

    def test_contextual_suggestions_stop_after_disclosure(
        self, deterministic: DeterministicEvaluator, metadata: CallMetadata, state: ConversationState
    ):
        deterministic.evaluate(metadata, NEUTRAL_TRANSCRIPT, state)
        transcript = (
            NEUTRAL_TRANSCRIPT
            + " Agent: My name is Pat with Acme Corp and I'm calling with a special offer."
        )
        output = deterministic.evaluate(metadata, transcript, state)

        assert output.alerts == []
        assert output.suggested_next_lines == []

    def test_short_transcript_has_no_contextual_suggestions(
        self, deterministic: DeterministicEvaluator, metadata: CallMetadata, state: ConversationState
    ):
        output = deterministic.evaluate(metadata, "Customer: Hello?", state)
        assert output.suggested_next_lines == []

    def test_inbound_calls_have_no_contextual_suggestions(
        self, deterministic: DeterministicEvaluator, state: ConversationState
    ):
        output = deterministic.evaluate(
            make_metadata(call_type="inbound_service"), NEUTRAL_TRANSCRIPT, state
        )
        assert output.suggested_next_lines == []

    def test_seller_and_purpose_disclosed(
        self, deterministic: DeterministicEvaluator, metadata: CallMetadata, state: ConversationState
    ):
        transcript = "Hi, my name is Pat with Acme Corp. I'm calling today with a special offer."
        output = deterministic.evaluate(metadata, transcript, state)

        assert state.seller_identified
        assert state.sales_purpose_stated
        assert output.alerts == []
        texts = [s.text for s in output.suggested_next_lines]
        assert IDENTIFY_YOURSELF not in texts
        assert STATE_SALES_PURPOSE not in texts
