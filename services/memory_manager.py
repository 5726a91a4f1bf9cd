"""
POOL MATERIAL VISUALIZER - Memory Manager

Monitor system memory and size compositing caches and worker pools.
"""

import multiprocessing
from typing import Tuple

import psutil

import config


class MemoryManager:
    """Monitor memory and calculate cache capacities and worker counts."""

    # RGBA uint8 bitmap
    BYTES_PER_PIXEL = 4

    # Working copies held by one pipeline run (material, mask, stage outputs, float buffers)
    PIPELINE_OVERHEAD_FACTOR = 12

    # Reserve this much RAM for system/Qt/other processes
    SAFETY_MARGIN_GB = 1.5

    # Share of the remaining memory the result cache may use
    RESULT_CACHE_MEMORY_SHARE = 0.1

    # Estimated baseline memory per worker process (interpreter, numpy, OpenCV)
    MEMORY_PER_WORKER_GB = 0.25

    MAX_WORKERS = 8
    MIN_WORKERS = 1

    MAX_RESULT_CACHE_ENTRIES = 64

    def get_cpu_count(self) -> int:
        return multiprocessing.cpu_count()

    def get_available_memory_gb(self) -> float:
        """Get current available memory in GB."""
        return psutil.virtual_memory().available / (1024 ** 3)

    def get_total_memory_gb(self) -> float:
        return psutil.virtual_memory().total / (1024 ** 3)

    def estimate_bitmap_mb(self, width: int, height: int) -> float:
        """Memory of one RGBA bitmap in MB."""
        return (width * height * self.BYTES_PER_PIXEL) / (1024 ** 2)

    def get_result_cache_entries(self, width: int, height: int) -> int:
        """
        How many composites of a given size the result cache should hold.

        Never more than MAX_RESULT_CACHE_ENTRIES and never less than 1;
        DEFAULT_RESULT_CACHE_ENTRIES when memory allows.
        """
        bitmap_mb = self.estimate_bitmap_mb(width, height)
        if bitmap_mb <= 0:
            return config.DEFAULT_RESULT_CACHE_ENTRIES

        usable_gb = max(0.0, self.get_available_memory_gb() - self.SAFETY_MARGIN_GB)
        budget_mb = usable_gb * 1024 * self.RESULT_CACHE_MEMORY_SHARE
        affordable = int(budget_mb / bitmap_mb)

        return max(1, min(affordable, config.DEFAULT_RESULT_CACHE_ENTRIES, self.MAX_RESULT_CACHE_ENTRIES))

    def get_optimal_workers(self, region_size: Tuple[int, int] = (2048, 2048)) -> int:
        """
        Calculate optimal number of compositing worker processes.

        Considers both CPU cores and available memory to avoid:
        - Under-utilizing CPUs (too few workers)
        - Running out of memory (too many workers)
        """
        cpu_count = self.get_cpu_count()
        available_gb = self.get_available_memory_gb()

        # Leave one core for the UI thread
        max_by_cpu = max(self.MIN_WORKERS, cpu_count - 1)

        per_job_gb = self.estimate_bitmap_mb(*region_size) * self.PIPELINE_OVERHEAD_FACTOR / 1024
        per_worker_gb = self.MEMORY_PER_WORKER_GB + per_job_gb
        usable_memory = available_gb - self.SAFETY_MARGIN_GB
        max_by_memory = max(1, int(usable_memory / per_worker_gb))

        optimal = min(max_by_cpu, max_by_memory, self.MAX_WORKERS)
        return max(1, optimal)

    def can_composite(self, width: int, height: int) -> bool:
        """Check if there is enough memory to composite a region of this size."""
        required_gb = self.estimate_bitmap_mb(width, height) * self.PIPELINE_OVERHEAD_FACTOR / 1024
        return self.get_available_memory_gb() > (required_gb + self.SAFETY_MARGIN_GB)

    def get_resource_summary(self) -> dict:
        """Get a summary of available resources for display."""
        return {
            'cpu_count': self.get_cpu_count(),
            'total_memory_gb': round(self.get_total_memory_gb(), 1),
            'available_memory_gb': round(self.get_available_memory_gb(), 1),
            'optimal_workers': self.get_optimal_workers(),
        }
