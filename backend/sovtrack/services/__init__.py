"""
Pipeline Services
"""

from .exceptions import (
    PipelineError,
    UpstreamUnavailable,
    MalformedReply,
    ValidationFailure,
    FatalPrerequisiteMissing,
    AnalysisCancelled,
    InvalidStageTransition,
)
from .session import AnalysisContext, CancellationToken, new_session_id
from .domain_profiler import DomainProfile, DomainProfiler, display_name_from_domain, normalize_domain
from .category_extractor import CategoryExtractor
from .competitor_extractor import CompetitorExtraction, CompetitorExtractor
from .prompt_generator import GeneratedPrompt, PromptGenerator
from .response_generator import GeneratedResponse, ResponseBatch, ResponseFailure, ResponseGenerator
from .mention_extractor import MentionExtractor
from .sov_calculator import ShareOfVoiceCalculator, ShareOfVoiceResult, compute_share_of_voice
from .sync_manager import SyncManager, SyncOutcome, SyncReport
from .pipeline import AnalysisPipeline, AnalysisResult

__all__ = [
    # Errors
    "PipelineError",
    "UpstreamUnavailable",
    "MalformedReply",
    "ValidationFailure",
    "FatalPrerequisiteMissing",
    "AnalysisCancelled",
    "InvalidStageTransition",
    # Session scoping
    "AnalysisContext",
    "CancellationToken",
    "new_session_id",
    # Stages
    "DomainProfile",
    "DomainProfiler",
    "display_name_from_domain",
    "normalize_domain",
    "CategoryExtractor",
    "CompetitorExtraction",
    "CompetitorExtractor",
    "GeneratedPrompt",
    "PromptGenerator",
    "GeneratedResponse",
    "ResponseBatch",
    "ResponseFailure",
    "ResponseGenerator",
    "MentionExtractor",
    "ShareOfVoiceCalculator",
    "ShareOfVoiceResult",
    "compute_share_of_voice",
    "SyncManager",
    "SyncOutcome",
    "SyncReport",
    # Orchestration
    "AnalysisPipeline",
    "AnalysisResult",
]
