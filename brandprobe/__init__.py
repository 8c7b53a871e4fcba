"""
Brand Visibility Batch Execution

This package drives brand-visibility probes against generative answer
engines (ChatGPT, Perplexity, Gemini), streams live progress and stores
results with PostgreSQL-backed session state.
"""

__version__ = "0.1.0"

# Configuration
from brandprobe.config import Settings

# Execution
from brandprobe.dispatcher import Dispatcher, DispatchSummary, SessionContext
from brandprobe.errors import (
    BrandProbeError,
    ConfigurationError,
    PermanentProviderError,
    SessionNotFoundError,
    SessionStateError,
    SessionTimeoutError,
    TransientProviderError,
)
from brandprobe.lifecycle import SessionLifecycleManager, SessionOutcome

# Core models
from brandprobe.models import (
    ActionItem,
    AnalysisSession,
    BrandMention,
    CitationSource,
    EngineResponse,
    ExecutionLog,
    Project,
    QueryTask,
    TargetEngine,
)

# Progress
from brandprobe.progress import ProgressBroadcaster
from brandprobe.rate_limit import RateLimitPolicy, RetryController
from brandprobe.work import WorkList

__all__ = [
    # Version
    "__version__",
    # Models
    "Project",
    "QueryTask",
    "TargetEngine",
    "AnalysisSession",
    "EngineResponse",
    "BrandMention",
    "CitationSource",
    "ExecutionLog",
    "ActionItem",
    # Config
    "Settings",
    # Errors
    "BrandProbeError",
    "ConfigurationError",
    "SessionNotFoundError",
    "SessionStateError",
    "SessionTimeoutError",
    "TransientProviderError",
    "PermanentProviderError",
    # Execution
    "SessionLifecycleManager",
    "SessionOutcome",
    "Dispatcher",
    "DispatchSummary",
    "SessionContext",
    "RateLimitPolicy",
    "RetryController",
    "WorkList",
    # Progress
    "ProgressBroadcaster",
]
