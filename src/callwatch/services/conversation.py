"""Per-call conversation state and the rule side-effect table.

A ``ConversationState`` remembers what has already happened on a call so the
deterministic evaluator does not re-alert on a growing transcript and can
gate rules on earlier events (e.g. DNC-002 only after DNC-001).
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum


class Flag(str, Enum):
    DNC_REQUESTED = "dnc_requested"
    CONSENT_REVOKED = "consent_revoked"
    SELLER_IDENTIFIED = "seller_identified"
    SALES_PURPOSE_STATED = "sales_purpose_stated"
    PRODUCT_DESCRIBED = "product_described"
    CALLBACK_PROVIDED = "callback_provided"
    RECORDING_DISCLOSED = "recording_disclosed"


@dataclass
class ConversationState:
    """Cross-turn facts for one call.

    Only the deterministic evaluator writes to this object, through the
    ``RULE_EFFECTS`` table and :meth:`record_alert`.
    """

    dnc_requested: bool = False
    consent_revoked: bool = False
    # Disclosures already made by the agent
    seller_identified: bool = False
    sales_purpose_stated: bool = False
    product_described: bool = False
    callback_provided: bool = False
    recording_disclosed: bool = False
    fired_rule_ids: set[str] = field(default_factory=set)

    def reset(self) -> None:
        for f in fields(self):
            if f.name == "fired_rule_ids":
                self.fired_rule_ids.clear()
            else:
                setattr(self, f.name, False)

    def is_set(self, flag: Flag) -> bool:
        return getattr(self, flag.value)

    def has_fired(self, rule_id: str) -> bool:
        return rule_id in self.fired_rule_ids

    def mark(self, flag: Flag) -> None:
        setattr(self, flag.value, True)

    def record_alert(self, rule_id: str) -> None:
        self.fired_rule_ids.add(rule_id)


# ------------------------------------------------------------------ #
#  Side effects applied after a rule matches
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class NoOp:
    """Alert with no state change."""

    def apply(self, state: ConversationState) -> bool:
        return True


@dataclass(frozen=True)
class SetFlag:
    """Record a fact; ``alert=False`` makes the rule a pure presence detector."""

    flag: Flag
    alert: bool = True

    def apply(self, state: ConversationState) -> bool:
        state.mark(self.flag)
        return self.alert


@dataclass(frozen=True)
class GateOn:
    """Alert only once *flag* is already set; otherwise leave the rule eligible."""

    flag: Flag

    def apply(self, state: ConversationState) -> bool:
        return state.is_set(self.flag)


RuleEffect = NoOp | SetFlag | GateOn

RULE_EFFECTS: dict[str, RuleEffect] = {
    "DNC-001": SetFlag(Flag.DNC_REQUESTED),
    "DNC-002": GateOn(Flag.DNC_REQUESTED),
    "CONS-001": SetFlag(Flag.CONSENT_REVOKED),
    "DISC-001": SetFlag(Flag.SELLER_IDENTIFIED, alert=False),
    "DISC-002": SetFlag(Flag.SALES_PURPOSE_STATED, alert=False),
    "DISC-003": SetFlag(Flag.PRODUCT_DESCRIBED, alert=False),
    "IDENT-001": SetFlag(Flag.CALLBACK_PROVIDED, alert=False),
    "REC-001": SetFlag(Flag.RECORDING_DISCLOSED, alert=False),
}

_NO_EFFECT = NoOp()


def effect_for(rule_id: str) -> RuleEffect:
    return RULE_EFFECTS.get(rule_id, _NO_EFFECT)
