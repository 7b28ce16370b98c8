"""
Database Models for sovtrack
"""

from .database import (
    Base,
    # Enums
    AnalysisStatus,
    AnalysisStage,
    STAGE_ORDER,
    # Models
    Brand,
    Category,
    CompetitorSeed,
    Prompt,
    AIResponse,
    Mention,
    ShareOfVoiceRecord,
    AnalysisSnapshot,
)

__all__ = [
    "Base",
    "AnalysisStatus",
    "AnalysisStage",
    "STAGE_ORDER",
    "Brand",
    "Category",
    "CompetitorSeed",
    "Prompt",
    "AIResponse",
    "Mention",
    "ShareOfVoiceRecord",
    "AnalysisSnapshot",
]
