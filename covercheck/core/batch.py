"""
Batch optimization of coverage work items.

BatchOptimizer walks a list of work items one at a time and runs three
steps for each through an injected ContentOptimizer:

    analysis -> optimization -> scoring

Gap items get a content brief and new content; assigned items get an
analysis of their chunk and a rewrite of it. The optimizer is typically
backed by a language model; nothing here depends on which.

Behavior:
- Items already optimized are skipped
- Each item is marked in_progress while it is worked on; on success it
  keeps that status with optimized_text and current_scores filled in,
  awaiting approval (see coverage.approve_query)
- A failing item is reverted to ready (or gap) and its error recorded;
  the batch moves on
- abort() is cooperative: it is checked between items and between steps
- A fixed delay separates consecutive items
- One run at a time; if the run is cancelled the in-flight item is
  reverted before the cancellation propagates

The optimizer works on its own copy of the work items.
"""

import asyncio
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, List, Optional, Protocol, Sequence

from loguru import logger

from covercheck.config import get_settings
from covercheck.core.coverage import document_headings
from covercheck.core.models import ChunkInput, CoverageWorkItem, QueryScores, QueryStatus


class BatchStep(Enum):
    """Step currently running for the active item."""
    ANALYSIS = "analysis"
    OPTIMIZATION = "optimization"
    SCORING = "scoring"


class ContentOptimizer(Protocol):
    """Produces analysis, content and scores for one work item."""

    async def analyze(
        self,
        item: CoverageWorkItem,
        chunk: Optional[ChunkInput],
        existing_headings: List[str],
    ) -> str: ...

    async def optimize(
        self,
        item: CoverageWorkItem,
        chunk: Optional[ChunkInput],
        analysis: str,
    ) -> str: ...

    async def score(
        self,
        item: CoverageWorkItem,
        chunk: Optional[ChunkInput],
        content: str,
    ) -> QueryScores: ...


@dataclass
class BatchItemError:
    item_id: str
    error: str


@dataclass
class BatchState:
    """
    Progress of a batch run.

    Attributes:
        is_running: True while run() is executing
        current_index: Position of the active item in this run
        total_count: Number of items selected for this run
        current_query: Query text of the active item
        current_step: Step running for the active item
        completed_count: Items that finished all three steps
        error_count: Items that failed
        errors: Per-item error messages
        aborted: True if the run was stopped by abort()
    """
    is_running: bool = False
    current_index: int = 0
    total_count: int = 0
    current_query: Optional[str] = None
    current_step: Optional[BatchStep] = None
    completed_count: int = 0
    error_count: int = 0
    errors: List[BatchItemError] = field(default_factory=list)
    aborted: bool = False


class BatchBusyError(Exception):
    """Raised when run() is called while another run is in progress."""
    pass


class _Aborted(Exception):
    pass


class BatchOptimizer:
    """
    Sequential, cancellable optimization of work items.

    Example:
        >>> batch = BatchOptimizer(optimizer, chunks)
        >>> items = await batch.run(work_items)
    """

    def __init__(
        self,
        optimizer: ContentOptimizer,
        chunks: Sequence[ChunkInput],
        delay_seconds: Optional[float] = None,
        on_item_update: Optional[Callable[[CoverageWorkItem], None]] = None,
    ):
        self.optimizer = optimizer
        self.chunks = list(chunks)
        if delay_seconds is None:
            delay_seconds = get_settings().batch_delay_seconds
        self.delay_seconds = delay_seconds
        self.on_item_update = on_item_update
        self.state = BatchState()
        self.items: List[CoverageWorkItem] = []
        self._abort = False

    def abort(self) -> None:
        """Request the running batch to stop at the next check."""
        logger.info("Aborting batch optimization")
        self._abort = True

    def reset(self) -> None:
        """Clear progress from the previous run."""
        self.state = BatchState()

    def _chunk_for(self, item: CoverageWorkItem) -> Optional[ChunkInput]:
        if item.assigned_chunk is None:
            return None
        index = item.assigned_chunk.index
        if 0 <= index < len(self.chunks):
            return self.chunks[index]
        return None

    def _update(self, position: int, item: CoverageWorkItem) -> CoverageWorkItem:
        self.items[position] = item
        if self.on_item_update is not None:
            self.on_item_update(item)
        return item

    def _step(self, step: BatchStep) -> None:
        if self._abort:
            raise _Aborted()
        self.state.current_step = step

    async def _process(self, item: CoverageWorkItem) -> CoverageWorkItem:
        chunk = self._chunk_for(item)
        headings = document_headings(self.chunks)

        self._step(BatchStep.ANALYSIS)
        logger.debug(f"Generating analysis for query: '{item.query}'")
        analysis = await self.optimizer.analyze(item, chunk, headings)

        self._step(BatchStep.OPTIMIZATION)
        logger.debug(f"Generating optimized content for query: '{item.query}'")
        content = await self.optimizer.optimize(item, chunk, analysis)

        self._step(BatchStep.SCORING)
        logger.debug(f"Scoring content for query: '{item.query}'")
        scores = await self.optimizer.score(item, chunk, content)

        return replace(item, optimized_text=content, current_scores=scores)

    async def run(
        self,
        items: Sequence[CoverageWorkItem],
        selected_ids: Optional[Sequence[str]] = None,
    ) -> List[CoverageWorkItem]:
        """
        Optimize every selected, not yet optimized item.

        Args:
            items: Work items; the list is copied, never mutated
            selected_ids: Restrict the run to these item ids

        Returns:
            The updated copy of all items, in input order

        Raises:
            BatchBusyError: If a run is already in progress
        """
        if self.state.is_running:
            raise BatchBusyError("A batch optimization is already running")

        self.items = list(items)
        selected = set(selected_ids) if selected_ids is not None else None
        positions = [
            pos for pos, item in enumerate(self.items)
            if item.status != QueryStatus.OPTIMIZED
            and (selected is None or item.id in selected)
        ]
        if not positions:
            return list(self.items)

        self._abort = False
        self.state = BatchState(is_running=True, total_count=len(positions))
        logger.info(f"Starting batch optimization of {len(positions)} queries")

        # (position, working copy, status to restore) of the item in flight
        active = None
        try:
            for run_index, pos in enumerate(positions):
                if self._abort:
                    break

                original = self.items[pos]
                revert_status = QueryStatus.GAP if original.is_gap else QueryStatus.READY
                self.state.current_index = run_index
                self.state.current_query = original.query
                self.state.current_step = None

                working = self._update(pos, replace(original, status=QueryStatus.IN_PROGRESS))
                active = (pos, working, revert_status)
                try:
                    self._update(pos, await self._process(working))
                    active = None
                    self.state.completed_count += 1
                    logger.info(f"Completed query: '{original.query}'")
                except _Aborted:
                    break
                except Exception as e:
                    message = str(e) or "Optimization failed"
                    logger.error(f"Error optimizing query {original.id}: {message}")
                    self._update(pos, replace(working, status=revert_status))
                    active = None
                    self.state.error_count += 1
                    self.state.errors.append(BatchItemError(item_id=original.id, error=message))

                if run_index < len(positions) - 1 and not self._abort and self.delay_seconds > 0:
                    await asyncio.sleep(self.delay_seconds)
        finally:
            if active is not None:
                pos, working, revert_status = active
                self._update(pos, replace(working, status=revert_status))
            self.state.aborted = self._abort
            self.state.is_running = False
            self.state.current_query = None
            self.state.current_step = None

        logger.info(
            f"Batch optimization finished: {self.state.completed_count} completed, "
            f"{self.state.error_count} failed"
        )
        return list(self.items)
