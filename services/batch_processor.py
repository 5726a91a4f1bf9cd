"""
POOL MATERIAL VISUALIZER - Batch Processor

Manages ProcessPoolExecutor for compositing many masks in parallel.
"""

import gc
import logging
from concurrent.futures import Future, ProcessPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from services.memory_manager import MemoryManager
from workers.composite_worker import composite_mask

logger = logging.getLogger(__name__)


@dataclass
class CompositeJob:
    """A single mask compositing job."""
    index: int
    texture_source: str
    mask_data: Dict[str, Any]
    settings: Dict[str, Any] = field(default_factory=dict)
    tile_scale: float = 1.0
    image_size: Optional[Tuple[int, int]] = None
    material_id: Optional[str] = None


class BatchProcessor:
    """
    Manages ProcessPoolExecutor for batch compositing.

    Jobs are submitted in chunks so progress is reported steadily and
    cancellation takes effect between chunks.
    """

    # Jobs submitted per chunk
    CHUNK_SIZE = 16

    # Seconds to wait for a single composite
    JOB_TIMEOUT = 300

    def __init__(
        self,
        on_progress: Callable[[int, int, str], None],
        on_item_complete: Callable[[int, Dict[str, Any]], None],
        on_error: Callable[[int, str], None],
        on_batch_complete: Callable[[int, int], None],
        max_workers: Optional[int] = None,
    ):
        """
        Initialize the batch processor.

        Args:
            on_progress: Callback for progress updates (current, total, message)
            on_item_complete: Callback when an item completes (index, result)
            on_error: Callback when an item fails (index, error_message)
            on_batch_complete: Callback when batch completes (success_count, total)
            max_workers: Worker processes (default: sized by MemoryManager)
        """
        self._executor: Optional[ProcessPoolExecutor] = None
        self._cancelled = False
        self._on_progress = on_progress
        self._on_item_complete = on_item_complete
        self._on_error = on_error
        self._on_batch_complete = on_batch_complete
        self._memory_manager = MemoryManager()
        self._max_workers = max_workers
        self._completed_count = 0
        self._error_count = 0

    def start(self, jobs: List[CompositeJob]):
        """Composite every job and report through the callbacks. Blocks until done or cancelled."""
        workers = self.get_worker_count()

        self._cancelled = False
        self._completed_count = 0
        self._error_count = 0
        total = len(jobs)

        self._executor = ProcessPoolExecutor(max_workers=workers)
        logger.info("Compositing %d masks with %d workers", total, workers)

        try:
            for chunk_start in range(0, total, self.CHUNK_SIZE):
                if self._cancelled:
                    break
                self._process_chunk(jobs[chunk_start:chunk_start + self.CHUNK_SIZE], total)
                gc.collect()
        finally:
            self._shutdown_executor()

        self._on_batch_complete(self._completed_count, total)

    def _process_chunk(self, chunk: List[CompositeJob], total: int):
        """Submit a chunk of jobs and handle results."""
        futures: Dict[Future, CompositeJob] = {}
        for job in chunk:
            if self._cancelled:
                break
            future = self._executor.submit(
                composite_mask, job.texture_source, job.mask_data, job.settings,
                job.tile_scale, job.image_size, job.material_id,
            )
            futures[future] = job

        for future in as_completed(futures):
            if self._cancelled:
                for f in futures:
                    f.cancel()
                break

            job = futures[future]
            try:
                result = future.result(timeout=self.JOB_TIMEOUT)
                result['texture_source'] = job.texture_source
                self._on_item_complete(job.index, result)
                self._completed_count += 1
            except Exception as e:
                logger.warning("Composite job %d failed: %s", job.index, e)
                self._on_error(job.index, str(e))
                self._error_count += 1

            processed = self._completed_count + self._error_count
            self._on_progress(processed, total, job.mask_data.get('id', ''))

    def _shutdown_executor(self):
        if self._executor:
            self._executor.shutdown(wait=not self._cancelled, cancel_futures=self._cancelled)
            self._executor = None

    def cancel(self):
        """Cancel all pending work."""
        self._cancelled = True
        self._shutdown_executor()

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    @property
    def completed_count(self) -> int:
        return self._completed_count

    @property
    def error_count(self) -> int:
        return self._error_count

    def get_worker_count(self) -> int:
        """Get the number of workers that will be used."""
        if self._max_workers:
            return self._max_workers
        return self._memory_manager.get_optimal_workers()
