from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import PlainTextResponse

from callwatch.dependencies import get_orchestrator
from callwatch.schemas.rules import Rule, RuleCategory, RuleSet
from callwatch.services.orchestrator import EvaluationOrchestrator

router = APIRouter(prefix="/api/v1", tags=["rules"])


@router.get("/rules", response_model=RuleSet)
async def list_rules(
    category: RuleCategory | None = None,
    orchestrator: EvaluationOrchestrator = Depends(get_orchestrator),
) -> RuleSet:
    catalog = orchestrator.catalog
    ruleset = catalog.to_ruleset()
    if category is not None:
        ruleset.rules = list(catalog.by_category(category))
    return ruleset


@router.get("/rules/prompt", response_class=PlainTextResponse)
async def rules_prompt(
    orchestrator: EvaluationOrchestrator = Depends(get_orchestrator),
) -> str:
    """The catalog text embedded in the hosted evaluator's system prompt."""
    return orchestrator.rules_prompt()


@router.get("/rules/{rule_id}", response_model=Rule)
async def get_rule(
    rule_id: str,
    orchestrator: EvaluationOrchestrator = Depends(get_orchestrator),
) -> Rule:
    rule = orchestrator.catalog.by_id(rule_id)
    if rule is None:
        raise HTTPException(status_code=404, detail=f"Unknown rule: {rule_id}")
    return rule
