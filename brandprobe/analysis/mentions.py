"""Brand-mention extraction: LLM analysis with a keyword heuristic fallback."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from ..errors import AnalysisError
from .llm import AnalysisLLM

logger = logging.getLogger(__name__)

RecommendationStrength = Literal[
    "strong_positive", "positive", "neutral", "negative", "strong_negative"
]
MentionContext = Literal["comparison", "review", "qa", "purchase_advice", "tutorial", "other"]

CONTEXT_RADIUS = 50
HEURISTIC_NOTE = "LLM analysis unavailable; keyword matching used"

SYSTEM_PROMPT = (
    "You are a brand reputation analyst. Identify how each listed brand is "
    "presented in an AI-generated answer. Respond with a JSON object only."
)


class BrandMentionResult(BaseModel):
    """Per-brand signal; sentiment runs from -100 (hostile) to 100 (glowing)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    brand_name: str
    mentioned: bool = True
    sentiment_score: int = Field(default=0, ge=-100, le=100)
    rank_position: int | None = Field(default=None, ge=1)
    is_sarcastic: bool = False
    recommendation_strength: RecommendationStrength | None = None
    mention_context: MentionContext | None = None
    context: str = ""
    llm_analysis: str | None = None

    @field_validator("sentiment_score", mode="before")
    @classmethod
    def _scale_sentiment(cls, value: Any) -> Any:
        # Models sometimes answer on a -1..1 scale.
        if isinstance(value, float) and -1.0 <= value <= 1.0:
            value = value * 100
        if isinstance(value, (int, float)):
            return max(-100, min(100, round(value)))
        return value

    def to_row(self, *, degraded: bool = False) -> dict[str, Any]:
        return {
            "brand_name": self.brand_name,
            "sentiment_score": self.sentiment_score,
            "rank_position": self.rank_position,
            "is_sarcastic": self.is_sarcastic,
            "recommendation_strength": self.recommendation_strength,
            "mention_context": self.mention_context,
            "context": self.context,
            "llm_analysis": self.llm_analysis,
            "degraded": degraded,
        }


def _brands(brand: str, competitors: Sequence[str]) -> list[str]:
    seen: set[str] = set()
    brands: list[str] = []
    for name in [brand, *competitors]:
        name = name.strip()
        if name and name.lower() not in seen:
            seen.add(name.lower())
            brands.append(name)
    return brands


def build_prompt(query: str, response: str, brands: Sequence[str]) -> str:
    brand_list = "\n".join(f"- {b}" for b in brands)
    return f"""User query:
{query}

AI answer:
\"\"\"
{response[:15000]}
\"\"\"

Brands to analyse:
{brand_list}

For EVERY listed brand return an entry in "brands":
{{
  "brands": [
    {{
      "brandName": "exact name from the list",
      "mentioned": true | false,
      "sentimentScore": -100 to 100,
      "rankPosition": 1-based order in which the answer recommends it, or null,
      "isSarcastic": true | false,
      "recommendationStrength": "strong_positive" | "positive" | "neutral" | "negative" | "strong_negative",
      "mentionContext": "comparison" | "review" | "qa" | "purchase_advice" | "tutorial" | "other",
      "context": "50-100 character excerpt around the mention",
      "llmAnalysis": "one sentence explaining the assessment"
    }}
  ]
}}"""


async def analyze_brand_mentions(
    llm: AnalysisLLM,
    query: str,
    response: str,
    brand: str,
    competitors: Sequence[str] = (),
) -> list[BrandMentionResult]:
    """LLM-backed analysis of every brand; raises AnalysisError on failure.

    Brands the model leaves out are reported as not mentioned.
    """
    brands = _brands(brand, competitors)
    data = await llm.complete_json(SYSTEM_PROMPT, build_prompt(query, response, brands))

    entries = data.get("brands")
    if not isinstance(entries, list):
        raise AnalysisError("Brand analysis response has no 'brands' list")
    try:
        results = [BrandMentionResult.model_validate(entry) for entry in entries]
    except ValidationError as e:
        raise AnalysisError(f"Brand analysis response failed validation: {e}") from e

    reported = {r.brand_name.lower() for r in results}
    for name in brands:
        if name.lower() not in reported:
            results.append(BrandMentionResult(brand_name=name, mentioned=False))
    return results


def _keyword_pattern(word: str) -> re.Pattern[str]:
    # Latin words need word boundaries ("sure" must not match "ensure").
    if word.isascii():
        return re.compile(rf"\b{re.escape(word)}\b", re.IGNORECASE)
    return re.compile(re.escape(word))


class MentionHeuristic:
    """Cheap keyword/regex mention detector used when the LLM is unavailable."""

    POSITIVE_WORDS = ("好", "推薦", "優秀", "棒", "讚", "excellent", "great", "good", "recommend")
    NEGATIVE_WORDS = ("爛", "差", "不推", "雷", "bad", "poor", "terrible", "avoid")
    SARCASM_MARKERS = (
        "呵呵",
        "笑死",
        "真香",
        "反串",
        "酸",
        "諷刺",
        "lol",
        "yeah right",
        "sure",
        "totally",
    )
    SENTIMENT_STEP = 30

    def __init__(self) -> None:
        self._positive = [_keyword_pattern(w) for w in self.POSITIVE_WORDS]
        self._negative = [_keyword_pattern(w) for w in self.NEGATIVE_WORDS]
        self._sarcasm = [_keyword_pattern(w) for w in self.SARCASM_MARKERS]

    def sentiment(self, text: str) -> int:
        score = self.SENTIMENT_STEP * sum(1 for p in self._positive if p.search(text))
        score -= self.SENTIMENT_STEP * sum(1 for p in self._negative if p.search(text))
        return max(-100, min(100, score))

    def is_sarcastic(self, text: str) -> bool:
        return any(p.search(text) for p in self._sarcasm)

    def detect(
        self, text: str, brand: str, competitors: Sequence[str] = ()
    ) -> list[BrandMentionResult]:
        found: list[tuple[int, str, str]] = []
        for name in _brands(brand, competitors):
            match = re.search(re.escape(name), text, re.IGNORECASE)
            if match is None:
                continue
            start = max(0, match.start() - CONTEXT_RADIUS)
            end = min(len(text), match.end() + CONTEXT_RADIUS)
            found.append((match.start(), name, text[start:end]))

        found.sort(key=lambda item: item[0])
        return [
            BrandMentionResult(
                brand_name=name,
                mentioned=True,
                sentiment_score=self.sentiment(context),
                rank_position=rank,
                is_sarcastic=self.is_sarcastic(context),
                context=context,
                llm_analysis=HEURISTIC_NOTE,
            )
            for rank, (_, name, context) in enumerate(found, start=1)
        ]


_default_heuristic = MentionHeuristic()


def detect_mentions_heuristic(
    text: str, brand: str, competitors: Sequence[str] = ()
) -> list[BrandMentionResult]:
    return _default_heuristic.detect(text, brand, competitors)
