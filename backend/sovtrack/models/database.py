"""
sovtrack Database Models
SQLAlchemy ORM, used document-style: JSON columns and id references resolved
by separate lookups. Generic Uuid/JSON types keep the schema portable between
PostgreSQL and SQLite.
"""

from datetime import datetime
from enum import Enum as PyEnum
from uuid import uuid4

from sqlalchemy import (
    Column, String, Text, Integer, Float, Boolean, DateTime,
    ForeignKey, Enum, JSON, Index, UniqueConstraint, CheckConstraint, Uuid
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


# ============================================================================
# ENUMS
# ============================================================================

class AnalysisStatus(str, PyEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class AnalysisStage(str, PyEnum):
    """Pipeline progress for one brand + session, in order"""
    NOT_STARTED = "not_started"
    PROFILING_DONE = "profiling_done"
    CATEGORIES_READY = "categories_ready"
    COMPETITORS_READY = "competitors_ready"
    PROMPTS_READY = "prompts_ready"
    RESPONSES_READY = "responses_ready"
    MENTIONS_EXTRACTED = "mentions_extracted"
    SOV_CALCULATED = "sov_calculated"


STAGE_ORDER = list(AnalysisStage)


# ============================================================================
# BRAND, CATEGORIES & COMPETITORS
# ============================================================================

class Brand(Base):
    """A tracked brand; one per owner, or one per session for isolated runs"""
    __tablename__ = "brands"

    id = Column(Uuid, primary_key=True, default=uuid4)
    owner_user_id = Column(String(255), nullable=False, index=True)

    domain = Column(String(255), nullable=False)
    brand_name = Column(String(255), nullable=False)
    description = Column(Text)

    # Ordered, unique, case-sensitive as entered
    competitors = Column(JSON, default=list)

    is_admin_analysis = Column(Boolean, default=False)
    is_local_brand = Column(Boolean, default=False)
    location = Column(String(255))

    # Set for isolated brands only
    analysis_session_id = Column(String(100), index=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index('idx_brand_owner_admin', 'owner_user_id', 'is_admin_analysis'),
    )


class Category(Base):
    """Short business category label owned by a brand"""
    __tablename__ = "categories"

    id = Column(Uuid, primary_key=True, default=uuid4)
    brand_id = Column(Uuid, ForeignKey("brands.id", ondelete="CASCADE"), nullable=False)

    category_name = Column(String(255), nullable=False)
    analysis_session_id = Column(String(100))

    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('brand_id', 'category_name', name='uq_category_brand_name'),
    )


class CompetitorSeed(Base):
    """Lightweight record of a competitor accepted during extraction"""
    __tablename__ = "competitor_seeds"

    id = Column(Uuid, primary_key=True, default=uuid4)
    brand_id = Column(Uuid, ForeignKey("brands.id", ondelete="CASCADE"), nullable=False)

    competitor_name = Column(String(255), nullable=False)
    mention_count = Column(Integer, default=1)
    sentiment = Column(String(20), default="neutral")

    analysis_session_id = Column(String(100))
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index('idx_seed_brand', 'brand_id'),
    )


# ============================================================================
# PROMPTS & RESPONSES
# ============================================================================

class Prompt(Base):
    """A user-style question generated for one category"""
    __tablename__ = "prompts"

    id = Column(Uuid, primary_key=True, default=uuid4)
    category_id = Column(Uuid, ForeignKey("categories.id", ondelete="CASCADE"), nullable=False)
    brand_id = Column(Uuid, ForeignKey("brands.id", ondelete="CASCADE"), nullable=False)

    prompt_text = Column(Text, nullable=False)
    created_by = Column(String(255))
    analysis_session_id = Column(String(100))

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index('idx_prompt_brand_session', 'brand_id', 'analysis_session_id'),
    )


class AIResponse(Base):
    """Raw completion text for one prompt in one session"""
    __tablename__ = "ai_responses"

    id = Column(Uuid, primary_key=True, default=uuid4)
    prompt_id = Column(Uuid, ForeignKey("prompts.id", ondelete="CASCADE"), nullable=False)
    brand_id = Column(Uuid, ForeignKey("brands.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(255))

    response_text = Column(Text, nullable=False)
    analysis_session_id = Column(String(100), nullable=False)

    # Execution metadata
    model_name = Column(String(100))
    prompt_tokens = Column(Integer, default=0)
    completion_tokens = Column(Integer, default=0)
    total_tokens = Column(Integer, default=0)
    latency_ms = Column(Integer)

    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index('idx_response_session', 'analysis_session_id'),
        Index('idx_response_prompt', 'prompt_id'),
    )


class Mention(Base):
    """A company found in a response; one row per company per response"""
    __tablename__ = "mentions"

    id = Column(Uuid, primary_key=True, default=uuid4)
    prompt_id = Column(Uuid, ForeignKey("prompts.id", ondelete="CASCADE"))
    response_id = Column(Uuid, ForeignKey("ai_responses.id", ondelete="CASCADE"), nullable=False)
    category_id = Column(Uuid, ForeignKey("categories.id", ondelete="SET NULL"))
    brand_id = Column(Uuid, ForeignKey("brands.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(255))

    company_name = Column(String(255), nullable=False)
    is_own_brand = Column(Boolean, default=False)

    # Match quality
    mentioned_text = Column(String(500))
    match_type = Column(String(20), default="exact")  # "exact", "alias", "fuzzy"
    confidence = Column(Float, default=1.0)
    context_snippet = Column(Text)

    analysis_session_id = Column(String(100))
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index('idx_mention_response_session', 'response_id', 'analysis_session_id'),
        Index('idx_mention_brand_session', 'brand_id', 'analysis_session_id'),
        CheckConstraint('confidence >= 0 AND confidence <= 1', name='ck_mention_confidence'),
    )


# ============================================================================
# SHARE OF VOICE & SNAPSHOTS
# ============================================================================

class ShareOfVoiceRecord(Base):
    """Aggregated share of voice for a brand in one session"""
    __tablename__ = "share_of_voice"

    id = Column(Uuid, primary_key=True, default=uuid4)
    brand_id = Column(Uuid, ForeignKey("brands.id", ondelete="CASCADE"), nullable=False)
    category_id = Column(Uuid, ForeignKey("categories.id", ondelete="SET NULL"))  # legacy per-category mode
    user_id = Column(String(255))
    analysis_session_id = Column(String(100))  # null for legacy/global runs

    domain = Column(String(255))
    brand_name = Column(String(255))
    competitors = Column(JSON, default=list)

    total_mentions = Column(Integer, default=0)
    target_mentions = Column(Integer, default=0)  # brand's own count
    total_responses = Column(Integer, default=0)

    mention_counts = Column(JSON, default=dict)   # {company: int}
    share_of_voice = Column(JSON, default=dict)   # {company: percent}

    brand_share = Column(Float, default=0.0)
    ai_visibility_score = Column(Float, default=0.0)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index('idx_sov_brand_session', 'brand_id', 'analysis_session_id'),
        Index('idx_sov_session_created', 'analysis_session_id', 'created_at'),
    )


class AnalysisSnapshot(Base):
    """Progress and results of one analysis run"""
    __tablename__ = "analysis_snapshots"

    id = Column(Uuid, primary_key=True, default=uuid4)
    analysis_id = Column(String(100), unique=True, nullable=False)  # the session id
    owner_user_id = Column(String(255), nullable=False, index=True)

    domain = Column(String(255), nullable=False)
    brand_name = Column(String(255))
    brand_information = Column(Text)

    status = Column(Enum(AnalysisStatus), default=AnalysisStatus.PENDING, nullable=False)
    current_stage = Column(Enum(AnalysisStage), default=AnalysisStage.NOT_STARTED, nullable=False)
    error_message = Column(Text)

    brand_id = Column(Uuid, ForeignKey("brands.id", ondelete="SET NULL"))
    categories = Column(JSON, default=list)
    competitors = Column(JSON, default=list)
    prompts = Column(JSON, default=list)  # [{id, category_id, prompt_text}]

    # Results
    share_of_voice = Column(JSON, default=dict)
    mention_counts = Column(JSON, default=dict)
    total_mentions = Column(Integer, default=0)
    brand_share = Column(Float, default=0.0)
    ai_visibility_score = Column(Float, default=0.0)

    started_at = Column(DateTime)
    completed_at = Column(DateTime)
    analysis_time_ms = Column(Integer)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index('idx_snapshot_brand', 'brand_id'),
    )
