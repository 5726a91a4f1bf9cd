"""
POOL MATERIAL VISUALIZER - Services Layer

Caches, compositing and background batch processing.
"""

from services.memory_manager import MemoryManager
from services.texture_cache import TextureCache, Pattern, TextureLoadError
from services.composite_cache import CompositeCache, CacheEntry, mask_hash
from services.compositor import MaskCompositor, Composite, composite_pattern
from services.batch_processor import BatchProcessor, CompositeJob

__all__ = [
    'MemoryManager',
    'TextureCache',
    'Pattern',
    'TextureLoadError',
    'CompositeCache',
    'CacheEntry',
    'mask_hash',
    'MaskCompositor',
    'Composite',
    'composite_pattern',
    'BatchProcessor',
    'CompositeJob',
]
