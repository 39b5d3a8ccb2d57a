from pydantic import BaseModel, Field

from callwatch.schemas.evaluation import Alert, CallMetadata


class StoredAlert(BaseModel):
    """Alert row with the call context it was raised in."""

    id: str
    call_id: str
    agent_id: str
    agent_name: str
    rule_id: str
    title: str
    severity: str
    confidence: int
    quote: str
    start_char: int
    end_char: int
    rationale: str
    remediation: str
    created_at: str


class AlertsBySeverity(BaseModel):
    high: int = 0
    medium: int = 0
    low: int = 0


class RuleAlertCount(BaseModel):
    rule_id: str
    count: int


class AgentAlertCount(BaseModel):
    agent_id: str
    agent_name: str
    count: int


class DailyAlertCount(BaseModel):
    date: str
    count: int


class AnalyticsData(BaseModel):
    total_calls: int = 0
    total_alerts: int = 0
    alerts_by_severity: AlertsBySeverity = Field(default_factory=AlertsBySeverity)
    alerts_by_rule: list[RuleAlertCount] = Field(default_factory=list)
    alerts_by_agent: list[AgentAlertCount] = Field(default_factory=list)
    daily_trend: list[DailyAlertCount] = Field(default_factory=list)


class AlertRecordRequest(BaseModel):
    alert: Alert
    metadata: CallMetadata
