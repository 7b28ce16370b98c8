"""
Pipeline error taxonomy
"""

from typing import Any, Dict, Optional


class PipelineError(Exception):
    """Base exception for pipeline errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class UpstreamUnavailable(PipelineError):
    """The model call itself failed (network, auth, quota)"""

    def __init__(self, message: str, stage: str, cause: Optional[Exception] = None):
        super().__init__(message, {"stage": stage})
        self.stage = stage
        self.cause = cause


class MalformedReply(PipelineError):
    """The model reply could not be decoded into the expected shape"""


class ValidationFailure(PipelineError):
    """A structurally invalid item reached a stage"""


class FatalPrerequisiteMissing(PipelineError):
    """A required record is missing; aborts the calling workflow"""


class AnalysisCancelled(PipelineError):
    """The run's cancellation token fired"""


class InvalidStageTransition(PipelineError):
    """A pipeline stage was skipped"""
