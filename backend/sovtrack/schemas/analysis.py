"""
Analysis Schemas
Run requests and read-side summaries
"""

from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from sovtrack.services.domain_profiler import normalize_domain


class AnalysisRequest(BaseModel):
    """Request to run a full analysis for a domain"""
    domain: str = Field(..., min_length=3, max_length=255)
    user_id: str = Field(..., min_length=1, max_length=255)
    brand_name: Optional[str] = Field(None, max_length=255)
    isolated: bool = False  # one Brand per session, records preserved
    is_local_brand: bool = False
    website_content: Optional[str] = None

    @field_validator("domain")
    @classmethod
    def clean_domain(cls, v: str) -> str:
        domain = normalize_domain(v)
        if "." not in domain:
            raise ValueError("Domain must include a top-level domain, e.g. example.com")
        return domain

    @field_validator("brand_name")
    @classmethod
    def clean_brand_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None


class CompetitorUpdate(BaseModel):
    """Replace a brand's competitor list"""
    competitors: List[str] = []
    recalculate: bool = False

    @field_validator("competitors")
    @classmethod
    def clean_competitors(cls, v: List[str]) -> List[str]:
        cleaned = []
        for name in v:
            name = name.strip()
            if name and name not in cleaned:
                cleaned.append(name)
        return cleaned


class MentionSummary(BaseModel):
    """A company found in a response"""
    id: UUID
    response_id: UUID
    company_name: str
    is_own_brand: bool
    match_type: Optional[str]
    confidence: float
    analysis_session_id: Optional[str]

    class Config:
        from_attributes = True


class ShareOfVoiceSummary(BaseModel):
    """Stored share-of-voice record"""
    id: UUID
    brand_id: UUID
    analysis_session_id: Optional[str]
    brand_name: Optional[str]
    competitors: List[str] = []
    total_mentions: int
    target_mentions: int
    total_responses: int
    mention_counts: Dict[str, int] = {}
    share_of_voice: Dict[str, float] = {}
    brand_share: float
    ai_visibility_score: float
    created_at: datetime

    class Config:
        from_attributes = True


class AnalysisSummary(BaseModel):
    """Outcome of one pipeline run"""
    analysis_id: str
    status: str
    current_stage: str
    domain: str
    brand_name: Optional[str]
    categories: List[str] = []
    competitors: List[str] = []
    prompt_count: int = 0
    response_count: int = 0
    failed_responses: int = 0
    share_of_voice: Optional[ShareOfVoiceSummary] = None
    analysis_time_ms: Optional[int] = None

    @classmethod
    def from_result(cls, data: Dict) -> "AnalysisSummary":
        """Build from AnalysisResult.as_dict(); the SOV row is an ORM object"""
        data = dict(data)
        record = data.pop("share_of_voice", None)
        summary = ShareOfVoiceSummary.model_validate(record) if record is not None else None
        return cls(share_of_voice=summary, **data)
