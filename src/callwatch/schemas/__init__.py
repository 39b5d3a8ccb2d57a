"""callwatch schemas."""

from callwatch.schemas.evaluation import (
    Alert,
    CallMetadata,
    EvaluationOutput,
    EvaluationResult,
    Evidence,
    Suggestion,
)
from callwatch.schemas.rules import Rule, RuleCategory, RuleSet, Severity

__all__ = [
    "Alert",
    "CallMetadata",
    "EvaluationOutput",
    "EvaluationResult",
    "Evidence",
    "Rule",
    "RuleCategory",
    "RuleSet",
    "Severity",
    "Suggestion",
]
