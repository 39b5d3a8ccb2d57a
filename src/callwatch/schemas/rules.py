from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class RuleCategory(str, Enum):
    CALLING_TIME = "calling_time"
    DO_NOT_CALL = "do_not_call"
    DISCLOSURE = "disclosure"
    CONSENT = "consent"
    IDENTIFICATION = "identification"
    RECORDING_DISCLOSURE = "recording_disclosure"
    PRERECORDED = "prerecorded"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Rule(BaseModel):
    """A single compliance rule. Immutable once loaded."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    title: str
    category: RuleCategory
    description: str = ""
    severity: Severity
    # Scan order matters: the first hit wins.
    triggers: tuple[str, ...] = ()
    regex_patterns: tuple[str, ...] = ()
    requires_metadata: bool = False
    metadata_field: str | None = None
    rationale: str = ""
    remediation: str = ""
    legal_citation: str = ""
    enabled: bool = True
    optional: bool = False


class RuleSet(BaseModel):
    """On-disk representation of a rule catalog."""

    version: str
    last_updated: str = ""
    disclaimer: str = ""
    rules: list[Rule] = Field(default_factory=list)
