"""
POOL MATERIAL VISUALIZER - Workers Module

Picklable functions run in compositing worker processes.
"""

from workers.composite_worker import composite_mask

__all__ = [
    'composite_mask',
]
