"""
Pydantic Schemas for run requests and read-side summaries
"""

from .analysis import (
    AnalysisRequest,
    CompetitorUpdate,
    MentionSummary,
    ShareOfVoiceSummary,
    AnalysisSummary,
)

__all__ = [
    "AnalysisRequest",
    "CompetitorUpdate",
    "MentionSummary",
    "ShareOfVoiceSummary",
    "AnalysisSummary",
]
