"""TCPA / TSR rule catalog.

Holds the ordered rule definitions the evaluators work from. Catalog order is
the scan order for trigger and pattern matching, so it is preserved by every
accessor. Trigger phrases and regexes are compiled once per catalog instance
into an id-keyed matcher table of case-insensitive patterns. Matching runs on
the original transcript, so offsets always index the text the caller sent.

The catalog is immutable for the lifetime of the process; changing rules
means building a new ``RuleCatalog``.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from pydantic import ValidationError

from callwatch.config import Settings
from callwatch.exceptions import ConfigurationError
from callwatch.schemas.rules import Rule, RuleCategory, RuleSet, Severity

logger = logging.getLogger(__name__)

DEFAULT_VERSION = "1.0.0"
DEFAULT_LAST_UPDATED = "2026-01-16"
DEFAULT_DISCLAIMER = (
    "This tool provides compliance risk signals only. It is NOT legal advice. "
    "Compliance requirements depend on jurisdiction and require legal counsel review. "
    "Always consult with qualified legal professionals for compliance decisions."
)


# ------------------------------------------------------------------ #
#  Built-in rule set
# ------------------------------------------------------------------ #

_BUILTIN_RULES: tuple[Rule, ...] = (
    Rule(
        id="TIME-001",
        title="Calling Time Violation",
        category=RuleCategory.CALLING_TIME,
        description="Telemarketing calls made outside 8am-9pm in the consumer's local time",
        severity=Severity.HIGH,
        requires_metadata=True,
        metadata_field="call_time_local",
        rationale=(
            "The TCPA prohibits telemarketing calls before 8am or after 9pm in the "
            "consumer's local time zone. Violations can result in $500-$1,500 per call."
        ),
        remediation=(
            "Verify time zone before calling. If outside hours, apologize and offer "
            "to call back during appropriate hours."
        ),
        legal_citation="47 U.S.C. § 227(c)(5); 47 C.F.R. § 64.1200(c)(1)",
    ),
    Rule(
        id="DNC-001",
        title="Customer Requested No Further Calls",
        category=RuleCategory.DO_NOT_CALL,
        description="Customer explicitly requests to stop receiving calls",
        severity=Severity.HIGH,
        triggers=(
            "don't call me",
            "do not call me",
            "stop calling me",
            "remove me from your list",
            "take me off your list",
            "put me on do not call",
            "add me to do not call",
            "no more calls",
            "never call again",
            "stop contacting me",
        ),
        regex_patterns=(
            r"(don'?t|do\s*not|stop|quit|cease)\s+(call|contact|ring|phone)",
            r"(remove|take)\s+(me|my\s+number)\s+(from|off)",
            r"(put|add)\s+(me|my\s+number)\s+(on|to)\s+(the\s+)?(do\s*not\s*call|dnc)",
        ),
        rationale=(
            "Under TCPA, consumers can revoke consent by any reasonable means at any time. "
            "Continuing to call after a DNC request is a violation."
        ),
        remediation=(
            "Understood. I'll add you to our Do Not Call list effective immediately. "
            "You won't receive any more marketing calls from us. Is there anything else "
            "I can help you with today?"
        ),
        legal_citation="47 U.S.C. § 227(c); 47 C.F.R. § 64.1200(d)",
    ),
    Rule(
        id="DNC-002",
        title="Agent Continued After DNC Request",
        category=RuleCategory.DO_NOT_CALL,
        description="Agent attempted to continue sales pitch after customer requested DNC",
        severity=Severity.HIGH,
        triggers=(
            "before you go",
            "just one more thing",
            "let me just tell you",
            "you might want to hear",
            "are you sure",
            "but wait",
        ),
        regex_patterns=(
            r"(before\s+you\s+go|just\s+one\s+more|let\s+me\s+just)",
            r"(are\s+you\s+sure|but\s+wait|hear\s+me\s+out)",
        ),
        rationale=(
            "After a DNC request, any attempt to continue selling significantly "
            "increases violation risk and demonstrates willful non-compliance."
        ),
        remediation=(
            "Do not continue selling. Acknowledge the request, confirm DNC placement, "
            "and end the call professionally."
        ),
        legal_citation="47 C.F.R. § 64.1200(d)(3)",
    ),
    Rule(
        id="DNC-003",
        title="National DNC List - No Consent Evidence",
        category=RuleCategory.DO_NOT_CALL,
        description="Number is on National DNC list and call is marketing without consent evidence",
        severity=Severity.HIGH,
        requires_metadata=True,
        metadata_field="is_dnc_listed",
        rationale=(
            "Calling numbers on the National DNC Registry without prior express consent "
            "or an established business relationship is a TCPA violation."
        ),
        remediation=(
            "If calling a DNC-listed number, ensure you have documented consent or "
            "an existing business relationship. If unsure, end the marketing call."
        ),
        legal_citation="47 C.F.R. § 64.1200(c)(2)",
    ),
    Rule(
        id="DISC-001",
        title="Missing Seller Identity Disclosure",
        category=RuleCategory.DISCLOSURE,
        description="Agent did not promptly identify the seller/company name",
        severity=Severity.MEDIUM,
        regex_patterns=(
            r"(calling\s+(from|on\s+behalf\s+of)|this\s+is|my\s+name\s+is.*?(with|from))",
        ),
        rationale=(
            "FTC Telemarketing Sales Rule requires prompt disclosure of the seller's "
            "identity at the beginning of outbound sales calls."
        ),
        remediation="Hi, my name is [Name] calling from [Company Name].",
        legal_citation="16 C.F.R. § 310.4(d)(1)",
    ),
    Rule(
        id="DISC-002",
        title="Missing Sales Call Nature Disclosure",
        category=RuleCategory.DISCLOSURE,
        description="Agent did not disclose that the call is a sales call",
        severity=Severity.MEDIUM,
        regex_patterns=(r"(sales|marketing|promotion|offer|special\s+deal|opportunity)",),
        rationale=(
            "The TSR requires disclosure that the call is for sales purposes "
            "before making the sales pitch."
        ),
        remediation="I'm calling today with a special offer for you...",
        legal_citation="16 C.F.R. § 310.4(d)(2)",
    ),
    Rule(
        id="DISC-003",
        title="Missing Product/Service Description",
        category=RuleCategory.DISCLOSURE,
        description="Agent proceeded with pitch without describing what is being sold",
        severity=Severity.LOW,
        rationale=(
            "Consumers should understand what product or service is being offered "
            "early in the call."
        ),
        remediation="The reason for my call is to tell you about our [product/service]...",
        legal_citation="16 C.F.R. § 310.4(d)(3)",
    ),
    Rule(
        id="CONS-001",
        title="Consent Revocation Detected",
        category=RuleCategory.CONSENT,
        description="Consumer appears to be revoking consent by reasonable means",
        severity=Severity.HIGH,
        triggers=(
            "i withdraw my consent",
            "i revoke my consent",
            "i take back my consent",
            "i no longer consent",
            "i didn't agree to this",
            "i never agreed",
            "i want to opt out",
            "opt me out",
            "unsubscribe me",
        ),
        regex_patterns=(
            r"(withdraw|revoke|take\s+back|cancel)\s+(my\s+)?(consent|permission|authorization)",
            r"(opt|unsubscribe)\s+(me\s+)?out",
            r"(never|didn'?t)\s+(agree|consent|authorize)",
        ),
        rationale=(
            "Under TCPA, consumers can revoke consent by any reasonable means. "
            "Non-standard wording still constitutes valid revocation."
        ),
        remediation=(
            "I understand you'd like to revoke your consent. I'll process that right away "
            "and you'll be removed from our calling list."
        ),
        legal_citation="47 C.F.R. § 64.1200(a)(7)(ii)",
    ),
    Rule(
        id="IDENT-001",
        title="Missing Callback Number",
        category=RuleCategory.IDENTIFICATION,
        description="Agent did not provide callback number/address for consumer contact",
        severity=Severity.LOW,
        regex_patterns=(
            r"(call\s+(us\s+)?back\s+at|reach\s+us\s+at|our\s+number\s+is|contact\s+us\s+at)",
        ),
        rationale=(
            "Telemarketers must provide a means for consumers to reach the business, "
            "typically a callback number."
        ),
        remediation="If you have any questions, you can reach us at [phone number].",
        legal_citation="16 C.F.R. § 310.4(d)(7)",
    ),
    Rule(
        id="PREC-001",
        title="Prerecorded Voice Without Consent",
        category=RuleCategory.PRERECORDED,
        description=(
            "Call using prerecorded/artificial voice without required prior express written consent"
        ),
        severity=Severity.HIGH,
        requires_metadata=True,
        metadata_field="is_prerecorded",
        rationale=(
            "TCPA requires prior express written consent for prerecorded telemarketing "
            "calls to cell phones."
        ),
        remediation=(
            "Ensure written consent is obtained and documented before using "
            "prerecorded messages for marketing."
        ),
        legal_citation="47 U.S.C. § 227(b)(1)(A)",
    ),
    Rule(
        id="REC-001",
        title="Missing Recording Disclosure",
        category=RuleCategory.RECORDING_DISCLOSURE,
        description="Call is being recorded without disclosure (jurisdiction-dependent)",
        severity=Severity.MEDIUM,
        regex_patterns=(
            r"(this\s+call\s+(is|may\s+be)\s+(being\s+)?recorded|call\s+recording"
            r"|for\s+quality\s+(and\s+training\s+)?purposes)",
        ),
        rationale=(
            "Some states require two-party consent for call recording. "
            "This rule is jurisdiction-dependent and should be reviewed with counsel."
        ),
        remediation=(
            "This call may be recorded for quality and training purposes. "
            "By continuing, you consent to this recording."
        ),
        legal_citation="State-specific wiretapping/recording consent laws",
        optional=True,
    ),
)


# ------------------------------------------------------------------ #
#  Matchers
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class MatchSpan:
    """Location of the first hit for a rule, in transcript character offsets."""

    start: int
    end: int
    via: Literal["trigger", "pattern"]


@dataclass(frozen=True)
class RuleMatcher:
    """Pre-processed triggers and patterns for one rule."""

    triggers: tuple[re.Pattern[str], ...]
    patterns: tuple[re.Pattern[str], ...]

    def find(self, transcript: str) -> MatchSpan | None:
        """Return the first trigger hit, else the first pattern hit."""
        for trigger in self.triggers:
            m = trigger.search(transcript)
            if m is not None:
                return MatchSpan(start=m.start(), end=m.end(), via="trigger")
        for pattern in self.patterns:
            m = pattern.search(transcript)
            if m is not None:
                return MatchSpan(start=m.start(), end=m.end(), via="pattern")
        return None


def _compile_matcher(rule: Rule) -> RuleMatcher:
    patterns: list[re.Pattern[str]] = []
    for raw in rule.regex_patterns:
        try:
            patterns.append(re.compile(raw, re.IGNORECASE))
        except re.error as e:
            raise ConfigurationError(
                f"Rule {rule.id} has an invalid pattern {raw!r}: {e}"
            ) from e
    return RuleMatcher(
        triggers=tuple(
            re.compile(re.escape(t), re.IGNORECASE) for t in rule.triggers if t
        ),
        patterns=tuple(patterns),
    )


# ------------------------------------------------------------------ #
#  Catalog
# ------------------------------------------------------------------ #


class RuleCatalog:
    """Ordered, read-only collection of compliance rules."""

    def __init__(
        self,
        rules: list[Rule] | tuple[Rule, ...],
        *,
        version: str = DEFAULT_VERSION,
        last_updated: str = DEFAULT_LAST_UPDATED,
        disclaimer: str = DEFAULT_DISCLAIMER,
    ) -> None:
        if not rules:
            raise ConfigurationError("Rule catalog is empty")

        seen: set[str] = set()
        for rule in rules:
            if rule.id in seen:
                raise ConfigurationError(f"Duplicate rule id in catalog: {rule.id}")
            seen.add(rule.id)

        self._rules: tuple[Rule, ...] = tuple(rules)
        self._index: dict[str, Rule] = {r.id: r for r in self._rules}
        self._matchers: dict[str, RuleMatcher] = {
            r.id: _compile_matcher(r) for r in self._rules
        }
        self.version = version
        self.last_updated = last_updated
        self.disclaimer = disclaimer
        self._prompt_text = self._render()

    # -- construction --------------------------------------------------------

    @classmethod
    def default(cls) -> RuleCatalog:
        """The embedded TCPA rule set."""
        return cls(_BUILTIN_RULES)

    @classmethod
    def load(cls, path: Path) -> RuleCatalog:
        """Load a catalog from a JSON rule set file."""
        try:
            raw = path.read_text("utf-8")
        except OSError as e:
            raise ConfigurationError(f"Cannot read rule catalog {path}: {e}") from e

        try:
            ruleset = RuleSet.model_validate_json(raw)
        except ValidationError as e:
            raise ConfigurationError(f"Malformed rule catalog {path}: {e}") from e

        catalog = cls(
            ruleset.rules,
            version=ruleset.version,
            last_updated=ruleset.last_updated,
            disclaimer=ruleset.disclaimer or DEFAULT_DISCLAIMER,
        )
        logger.info(
            "Loaded rule catalog v%s from %s (%d rules, %d enabled)",
            catalog.version,
            path,
            len(catalog.all()),
            len(catalog.enabled()),
        )
        return catalog

    @classmethod
    def from_settings(cls, settings: Settings) -> RuleCatalog:
        if settings.rules_file is not None:
            return cls.load(settings.rules_file)
        return cls.default()

    # -- queries -------------------------------------------------------------

    def all(self) -> tuple[Rule, ...]:
        return self._rules

    def enabled(self) -> tuple[Rule, ...]:
        return tuple(r for r in self._rules if r.enabled)

    def by_category(self, category: RuleCategory) -> tuple[Rule, ...]:
        return tuple(r for r in self._rules if r.category == category)

    def by_id(self, rule_id: str) -> Rule | None:
        return self._index.get(rule_id)

    def matcher(self, rule_id: str) -> RuleMatcher:
        return self._matchers[rule_id]

    def to_ruleset(self) -> RuleSet:
        return RuleSet(
            version=self.version,
            last_updated=self.last_updated,
            disclaimer=self.disclaimer,
            rules=list(self._rules),
        )

    # -- prompt rendering ----------------------------------------------------

    def render_for_prompt(self) -> str:
        """Text block describing every enabled rule, embedded in the LLM system prompt.

        Stable for a given catalog so prompts are reproducible across calls.
        """
        return self._prompt_text

    def _render(self) -> str:
        lines = [f"# TCPA Compliance Rules v{self.version}", ""]
        for rule in self.enabled():
            lines.append(f"## {rule.id} - {rule.title}")
            lines.append(f"- Category: {rule.category.value}")
            lines.append(f"- Severity: {rule.severity.value}")
            lines.append(f"- Description: {rule.description}")
            lines.append(f"- Why it matters: {rule.rationale}")
            lines.append(f'- Recommended fix: "{rule.remediation}"')
            lines.append(f"- Legal reference: {rule.legal_citation}")
            if rule.triggers:
                lines.append(
                    f"- Trigger phrases: {json.dumps(list(rule.triggers), ensure_ascii=False)}"
                )
            lines.append("")
        return "\n".join(lines) + "\n"
