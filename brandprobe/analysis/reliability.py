"""Factual-reliability (hallucination risk) scoring of engine answers."""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Literal

from pydantic import BaseModel, Field, ValidationError

from ..errors import AnalysisError
from .llm import AnalysisLLM

logger = logging.getLogger(__name__)

Level = Literal["high", "medium", "low"]
IssueType = Literal[
    "unverifiable_claim",
    "inconsistent_data",
    "missing_citation",
    "vague_statement",
    "outdated_info",
]

HIGH_RISK_THRESHOLD = 70
MEDIUM_RISK_THRESHOLD = 40

SYSTEM_PROMPT = (
    "You are a professional fact-checker who detects hallucinated content in "
    "AI-generated answers. Respond with a JSON object only."
)


class ReliabilityIssue(BaseModel):
    type: IssueType
    severity: Level = "medium"
    description: str
    excerpt: str = ""


class ReliabilityAssessment(BaseModel):
    """Risk score 0 (trustworthy) to 100 (highly suspect)."""

    score: int = Field(default=50, ge=0, le=100)
    confidence: Level = "low"
    issues: list[ReliabilityIssue] = Field(default_factory=list)
    summary: str = ""
    degraded: bool = False

    @classmethod
    def neutral(cls, reason: str = "Reliability analysis unavailable.") -> ReliabilityAssessment:
        return cls(score=50, confidence="low", issues=[], summary=reason, degraded=True)


def build_prompt(query: str, response: str, citations: Sequence[str]) -> str:
    if citations:
        sources = "\n".join(f"{i}. {url}" for i, url in enumerate(citations, start=1))
    else:
        sources = "(no citations)"
    return f"""Assess how trustworthy the following AI answer is.

User query:
{query}

AI answer:
{response[:15000]}

Cited sources:
{sources}

Look for: unverifiable claims (figures, rankings or statistics without a source),
inconsistent data, missing citations for important claims, vague statements
that avoid concrete facts, and outdated information.

Reply with JSON:
{{
  "score": 0-100 (0 = fully trustworthy, 100 = highly suspect),
  "confidence": "high" | "medium" | "low",
  "issues": [
    {{"type": "unverifiable_claim" | "inconsistent_data" | "missing_citation" | "vague_statement" | "outdated_info",
      "severity": "high" | "medium" | "low",
      "description": "...",
      "excerpt": "quoted fragment of the answer"}}
  ],
  "summary": "one or two sentences"
}}"""


async def assess_reliability(
    llm: AnalysisLLM | None,
    query: str,
    response: str,
    citations: Sequence[str] = (),
) -> ReliabilityAssessment:
    """Score one answer; falls back to a neutral assessment on any failure."""
    if llm is None or not llm.enabled:
        return ReliabilityAssessment.neutral("Reliability analysis disabled.")
    try:
        data = await llm.complete_json(SYSTEM_PROMPT, build_prompt(query, response, citations))
        if "hallucinationScore" in data and "score" not in data:
            data["score"] = data.pop("hallucinationScore")
        if isinstance(data.get("score"), float):
            data["score"] = round(data["score"])
        return ReliabilityAssessment.model_validate(data)
    except (AnalysisError, ValidationError) as e:
        logger.warning("Reliability analysis failed, using neutral default: %s", e)
        return ReliabilityAssessment.neutral()


@dataclass
class ReliabilitySummary:
    average_score: float = 0.0
    high_risk_count: int = 0
    medium_risk_count: int = 0
    low_risk_count: int = 0
    total_issues: int = 0
    issues_by_type: dict[str, int] = field(default_factory=dict)


def summarize_reliability(assessments: Sequence[ReliabilityAssessment]) -> ReliabilitySummary:
    if not assessments:
        return ReliabilitySummary()

    scores = [a.score for a in assessments]
    issue_types = Counter(issue.type for a in assessments for issue in a.issues)
    return ReliabilitySummary(
        average_score=round(sum(scores) / len(scores), 1),
        high_risk_count=sum(1 for s in scores if s >= HIGH_RISK_THRESHOLD),
        medium_risk_count=sum(1 for s in scores if MEDIUM_RISK_THRESHOLD <= s < HIGH_RISK_THRESHOLD),
        low_risk_count=sum(1 for s in scores if s < MEDIUM_RISK_THRESHOLD),
        total_issues=sum(issue_types.values()),
        issues_by_type=dict(issue_types),
    )
