"""Best-effort post-response analysis."""

from .citations import classify_source_type, citation_rows
from .llm import AnalysisLLM
from .mentions import BrandMentionResult, MentionHeuristic, analyze_brand_mentions, detect_mentions_heuristic
from .pipeline import AnalysisOutcome, AnalysisPipeline
from .reliability import ReliabilityAssessment, assess_reliability, summarize_reliability

__all__ = [
    "AnalysisLLM",
    "AnalysisOutcome",
    "AnalysisPipeline",
    "BrandMentionResult",
    "MentionHeuristic",
    "ReliabilityAssessment",
    "analyze_brand_mentions",
    "assess_reliability",
    "citation_rows",
    "classify_source_type",
    "detect_mentions_heuristic",
    "summarize_reliability",
]
