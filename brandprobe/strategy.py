"""
Rule-based strategic follow-ups derived from a completed session.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from . import db
from .models import ActionItem, BrandMention, CitationSource, EngineResponse

logger = logging.getLogger(__name__)

VIDEO_RATIO_THRESHOLD = 0.1
REVIEW_RATIO_THRESHOLD = 0.2
COVERAGE_THRESHOLD = 0.5
TRUST_SCORE_THRESHOLD = 60
RELIABILITY_RISK_THRESHOLD = 60


class ActionType(str, Enum):
    VIDEO_CONTENT_GAP = "video_content_gap"
    THIRD_PARTY_REVIEW_GAP = "third_party_review_gap"
    CONTENT_STRUCTURE = "content_structure"
    TRUST_SIGNAL_GAP = "trust_signal_gap"


@dataclass
class SessionFindings:
    """Aggregated rows of one session, reduced to what the rules need."""

    brand_name: str
    competitors: Sequence[str]
    response_count: int = 0
    source_types: list[str] = field(default_factory=list)
    reliability_scores: list[int] = field(default_factory=list)
    brand_mentions: list[BrandMention] = field(default_factory=list)
    competitor_mentions: list[BrandMention] = field(default_factory=list)

    @classmethod
    def collect(
        cls,
        brand_name: str,
        competitors: Sequence[str],
        responses: Sequence[EngineResponse],
        mentions: Sequence[BrandMention],
        citations: Sequence[CitationSource],
    ) -> SessionFindings:
        brand_key = brand_name.lower()
        competitor_keys = {c.lower() for c in competitors}
        return cls(
            brand_name=brand_name,
            competitors=competitors,
            response_count=len(responses),
            source_types=[c.source_type for c in citations],
            reliability_scores=[
                r.reliability_score for r in responses if r.reliability_score is not None
            ],
            brand_mentions=[m for m in mentions if m.brand_name.lower() == brand_key],
            competitor_mentions=[m for m in mentions if m.brand_name.lower() in competitor_keys],
        )

    def source_ratio(self, *types: str) -> float:
        if not self.source_types:
            return 0.0
        return sum(1 for t in self.source_types if t in types) / len(self.source_types)

    @property
    def coverage(self) -> float:
        if self.response_count == 0:
            return 0.0
        return len({m.response_id for m in self.brand_mentions}) / self.response_count

    @property
    def average_reliability_risk(self) -> float | None:
        if not self.reliability_scores:
            return None
        return sum(self.reliability_scores) / len(self.reliability_scores)

    def trust_score(self) -> float:
        """0-100 blend of sentiment (50%), strong recommendations (30%) and top-3 ranks (20%)."""
        mentions = self.brand_mentions
        if not mentions:
            return 0.0
        avg_sentiment = sum(m.sentiment_score for m in mentions) / len(mentions) / 100
        strong = sum(1 for m in mentions if m.recommendation_strength == "strong_positive")
        top_ranked = sum(1 for m in mentions if m.rank_position is not None and m.rank_position <= 3)
        return max(
            0.0,
            avg_sentiment * 50 + strong / len(mentions) * 30 + top_ranked / len(mentions) * 20,
        )

    def outranked_by(self) -> list[str]:
        """Competitors whose average rank beats the brand's."""
        brand_ranks = [m.rank_position for m in self.brand_mentions if m.rank_position is not None]
        if not brand_ranks:
            return []
        brand_avg = sum(brand_ranks) / len(brand_ranks)

        ranks: dict[str, list[int]] = {}
        for m in self.competitor_mentions:
            if m.rank_position is not None:
                ranks.setdefault(m.brand_name, []).append(m.rank_position)
        return sorted(name for name, r in ranks.items() if sum(r) / len(r) < brand_avg)


def _video_gap(findings: SessionFindings) -> dict[str, Any] | None:
    ratio = findings.source_ratio("video")
    if ratio >= VIDEO_RATIO_THRESHOLD:
        return None
    return {
        "action_type": ActionType.VIDEO_CONTENT_GAP.value,
        "priority": "high" if ratio == 0 else "medium",
        "title": f"Publish video content for {findings.brand_name}",
        "description": (
            f"Only {ratio:.0%} of cited sources are videos. Produce review and tutorial "
            "videos targeting the tracked keywords so answer engines have video sources to cite."
        ),
        "evidence": {"video_ratio": round(ratio, 3), "total_sources": len(findings.source_types)},
    }


def _review_gap(findings: SessionFindings) -> dict[str, Any] | None:
    ratio = findings.source_ratio("media", "forum")
    if ratio >= REVIEW_RATIO_THRESHOLD:
        return None
    return {
        "action_type": ActionType.THIRD_PARTY_REVIEW_GAP.value,
        "priority": "high",
        "title": "Earn third-party reviews and forum coverage",
        "description": (
            f"Media and forum sources make up {ratio:.0%} of citations. Pitch independent "
            "reviews and seed community discussion on the forums engines cite."
        ),
        "evidence": {
            "review_ratio": round(ratio, 3),
            "total_sources": len(findings.source_types),
            "competitors": list(findings.competitors),
        },
    }


def _structure_gap(findings: SessionFindings) -> dict[str, Any] | None:
    if not findings.brand_mentions:
        return None
    coverage = findings.coverage
    outranked_by = findings.outranked_by()
    if coverage >= COVERAGE_THRESHOLD and not outranked_by:
        return None
    return {
        "action_type": ActionType.CONTENT_STRUCTURE.value,
        "priority": "high" if outranked_by else "medium",
        "title": "Restructure brand content for answer extraction",
        "description": (
            f"{findings.brand_name} appears in {coverage:.0%} of answers"
            + (f" and is out-ranked by {', '.join(outranked_by)}" if outranked_by else "")
            + ". Add comparison tables, FAQ sections and structured data to key pages."
        ),
        "evidence": {"coverage": round(coverage, 3), "outranked_by": outranked_by},
    }


def _trust_gap(findings: SessionFindings) -> dict[str, Any] | None:
    trust = findings.trust_score()
    risk = findings.average_reliability_risk
    sarcastic = sum(1 for m in findings.brand_mentions if m.is_sarcastic)
    risky = risk is not None and risk >= RELIABILITY_RISK_THRESHOLD
    if trust >= TRUST_SCORE_THRESHOLD and not risky and not sarcastic:
        return None
    return {
        "action_type": ActionType.TRUST_SIGNAL_GAP.value,
        "priority": "high" if trust < TRUST_SCORE_THRESHOLD / 2 or sarcastic else "medium",
        "title": "90-day trust signal plan",
        "description": (
            f"Trust score is {trust:.0f}/100. Collect verified reviews, publish certifications "
            "and expert endorsements, and correct inaccurate claims engines repeat about the brand."
        ),
        "evidence": {
            "trust_score": round(trust, 1),
            "average_reliability_risk": round(risk, 1) if risk is not None else None,
            "sarcastic_mentions": sarcastic,
        },
    }


RULES = (_video_gap, _review_gap, _structure_gap, _trust_gap)


def build_action_items(findings: SessionFindings) -> list[dict[str, Any]]:
    return [item for rule in RULES if (item := rule(findings)) is not None]


async def generate_action_items(
    session_id: str, brand_name: str, competitors: Sequence[str] = ()
) -> list[ActionItem]:
    """Derive and persist action items for a completed session."""
    async with db.get_session() as session:
        responses = await db.get_session_responses(session, session_id)
        mentions = await db.get_session_mentions(session, session_id)
        citations = await db.get_session_citations(session, session_id)

        findings = SessionFindings.collect(brand_name, competitors, responses, mentions, citations)
        items = build_action_items(findings)
        rows = await db.add_action_items(session, session_id, items) if items else []

    logger.info("Generated %d action items for session %s", len(rows), session_id)
    return rows
