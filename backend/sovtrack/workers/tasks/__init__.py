"""
Celery Tasks
"""

from .analysis_tasks import run_brand_analysis, rerun_analysis_session, sync_brand_competitors

__all__ = [
    "run_brand_analysis",
    "rerun_analysis_session",
    "sync_brand_competitors",
]
