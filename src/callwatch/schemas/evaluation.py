from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

SeverityLabel = Literal["low", "medium", "high"]


class CallMetadata(BaseModel):
    call_id: str
    agent_id: str
    agent_name: str
    call_start_time: str
    caller_timezone: str | None = None
    customer_phone: str | None = None
    is_dnc_listed: bool = False
    has_prior_consent: bool = False
    is_prerecorded: bool = False
    call_type: str = "outbound_sales"


class Evidence(BaseModel):
    quote: str
    start_char: int = Field(ge=0)
    end_char: int = Field(ge=0)


class Alert(BaseModel):
    id: str
    rule_id: str
    title: str
    severity: SeverityLabel
    confidence: int = Field(ge=0, le=100)
    evidence: Evidence
    rationale: str
    remediation: str


class Suggestion(BaseModel):
    text: str
    confidence: int = Field(ge=0, le=100)


class EvaluationOutput(BaseModel):
    """What either evaluation path produces for one transcript snapshot."""

    alerts: list[Alert] = Field(default_factory=list)
    suggested_next_lines: list[Suggestion] = Field(default_factory=list)


class EvaluationResult(EvaluationOutput):
    """Primary entrypoint output, annotated with timing and the path taken."""

    evaluation_time_ms: int = Field(ge=0)
    llm_used: bool


class EvaluationRequest(BaseModel):
    metadata: CallMetadata
    transcript: str
    use_llm: bool = False


# ------------------------------------------------------------------ #
#  Hosted model wire contract
# ------------------------------------------------------------------ #


class LlmAlert(BaseModel):
    """Alert as emitted by the hosted model; the orchestrator assigns ids."""

    model_config = ConfigDict(strict=True, extra="forbid")

    rule_id: str
    title: str
    severity: SeverityLabel
    confidence: int = Field(ge=0, le=100)
    evidence: Evidence
    rationale: str
    remediation: str


class LlmSuggestion(BaseModel):
    model_config = ConfigDict(strict=True, extra="forbid")

    text: str
    confidence: int = Field(ge=0, le=100)


class LlmResponse(BaseModel):
    model_config = ConfigDict(strict=True, extra="forbid")

    alerts: list[LlmAlert]
    suggested_next_lines: list[LlmSuggestion]


class LlmStatus(BaseModel):
    available: bool
    model: str
    endpoint: str


class ModelSelection(BaseModel):
    model: str = Field(min_length=1)
