"""Per-response analysis stages, each isolated from the others."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from .. import db
from ..errors import AnalysisError
from .citations import citation_rows
from .llm import AnalysisLLM
from .mentions import BrandMentionResult, MentionHeuristic, analyze_brand_mentions
from .reliability import ReliabilityAssessment, assess_reliability

logger = logging.getLogger(__name__)


@dataclass
class AnalysisOutcome:
    """What the pipeline managed to produce for one response."""

    citations_saved: int = 0
    reliability: ReliabilityAssessment | None = None
    mentions: list[BrandMentionResult] = field(default_factory=list)
    mentions_degraded: bool = False
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors


class AnalysisPipeline:
    """Citations, reliability and mentions for a persisted engine response."""

    def __init__(
        self,
        llm: AnalysisLLM | None = None,
        *,
        heuristic: MentionHeuristic | None = None,
    ) -> None:
        self.llm = llm
        self.heuristic = heuristic or MentionHeuristic()

    async def process(
        self,
        *,
        response_id: str,
        query_text: str,
        content: str,
        citations: Sequence[str],
        brand: str,
        competitors: Sequence[str] = (),
    ) -> AnalysisOutcome:
        outcome = AnalysisOutcome()

        try:
            outcome.citations_saved = await self._save_citations(response_id, citations, brand)
        except Exception as e:
            self._record(outcome, "citations", response_id, e)

        try:
            outcome.reliability = await self._score_reliability(
                response_id, query_text, content, citations
            )
        except Exception as e:
            self._record(outcome, "reliability", response_id, e)

        try:
            outcome.mentions, outcome.mentions_degraded = await self._extract_mentions(
                response_id, query_text, content, brand, competitors
            )
        except Exception as e:
            self._record(outcome, "mentions", response_id, e)

        return outcome

    async def _save_citations(self, response_id: str, citations: Sequence[str], brand: str) -> int:
        rows = citation_rows(citations, brand)
        if not rows:
            return 0
        async with db.get_session() as session:
            await db.add_citation_sources(session, response_id, rows)
        return len(rows)

    async def _score_reliability(
        self, response_id: str, query_text: str, content: str, citations: Sequence[str]
    ) -> ReliabilityAssessment:
        assessment = await assess_reliability(self.llm, query_text, content, citations)
        async with db.get_session() as session:
            await db.update_response_reliability(
                session,
                response_id,
                score=assessment.score,
                confidence=assessment.confidence,
                issues=[issue.model_dump() for issue in assessment.issues],
                summary=assessment.summary,
            )
        return assessment

    async def _extract_mentions(
        self,
        response_id: str,
        query_text: str,
        content: str,
        brand: str,
        competitors: Sequence[str],
    ) -> tuple[list[BrandMentionResult], bool]:
        degraded = False
        if self.llm is not None and self.llm.enabled:
            try:
                results = await analyze_brand_mentions(
                    self.llm, query_text, content, brand, competitors
                )
            except AnalysisError as e:
                logger.warning("Brand analysis failed for response %s, using keywords: %s", response_id, e)
                results = self.heuristic.detect(content, brand, competitors)
                degraded = True
        else:
            results = self.heuristic.detect(content, brand, competitors)
            degraded = True

        mentioned = [r for r in results if r.mentioned]
        if mentioned:
            async with db.get_session() as session:
                await db.add_brand_mentions(
                    session, response_id, [r.to_row(degraded=degraded) for r in mentioned]
                )
        return mentioned, degraded

    def _record(self, outcome: AnalysisOutcome, stage: str, response_id: str, error: Exception) -> None:
        outcome.errors[stage] = str(error)
        logger.warning("Analysis stage %s failed for response %s: %s", stage, response_id, error)
