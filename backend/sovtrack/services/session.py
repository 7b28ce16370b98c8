"""
Analysis session scoping
Session ids, cancellation, per-run context and bounded fan-out
"""

import asyncio
import logging
import secrets
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Sequence, TypeVar
from uuid import UUID

from sovtrack.models import AnalysisStage, STAGE_ORDER
from .exceptions import AnalysisCancelled, InvalidStageTransition

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def new_session_id(purpose: str = "analysis") -> str:
    """Session id of the form <purpose>_<epoch-ms>_<8 hex>; never reused"""
    return f"{purpose}_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


def session_filter(column, session_id: Optional[str]):
    """WHERE clause for a session column; None selects legacy rows"""
    if session_id is None:
        return column.is_(None)
    return column == session_id


class CancellationToken:
    """
    Cooperative cancellation for long runs.

    Checked between model calls; work already completed is kept.
    """

    def __init__(self, timeout: Optional[float] = None):
        self._event = asyncio.Event()
        self._deadline = time.monotonic() + timeout if timeout else None
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled"):
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self.cancel("deadline exceeded")
            return True
        return False

    def raise_if_cancelled(self):
        if self.cancelled:
            raise AnalysisCancelled(f"Analysis cancelled: {self.reason}")


@dataclass
class AnalysisContext:
    """Per-run values threaded through the pipeline stages"""
    session_id: str
    user_id: str
    domain: str
    brand_id: Optional[UUID] = None
    brand_name: Optional[str] = None
    profile_text: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    categories: List[str] = field(default_factory=list)
    competitors: List[str] = field(default_factory=list)
    isolated: bool = False
    stage: AnalysisStage = AnalysisStage.NOT_STARTED

    def advance(self, stage: AnalysisStage):
        """Move to stage; re-entering an earlier or the same stage is allowed"""
        current = STAGE_ORDER.index(self.stage)
        target = STAGE_ORDER.index(stage)
        if target > current + 1:
            raise InvalidStageTransition(
                f"Cannot move from {self.stage.value} to {stage.value}",
                {"session_id": self.session_id},
            )
        self.stage = stage
        logger.debug("Session %s reached stage %s", self.session_id, stage.value)


async def gather_bounded(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    limit: int,
) -> List[Any]:
    """
    Run worker over items with at most `limit` in flight.

    Results keep input order; an exception is returned in place of its
    item's result so siblings are never cancelled.
    """
    semaphore = asyncio.Semaphore(max(1, limit))

    async def run_with_semaphore(item: T):
        async with semaphore:
            return await worker(item)

    tasks = [run_with_semaphore(item) for item in items]
    return await asyncio.gather(*tasks, return_exceptions=True)
