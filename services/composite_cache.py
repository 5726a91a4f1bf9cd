"""
POOL MATERIAL VISUALIZER - Composite Cache

Bounded LRU of underwater compositing results.
"""

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Optional, Sequence

import numpy as np

import config
from presets import UnderwaterSettings

logger = logging.getLogger(__name__)


def _format_number(value) -> str:
    """Shortest text form of a number; integral floats drop the fraction."""
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def mask_hash(points: Sequence[Sequence[float]]) -> str:
    """Order-sensitive 32-bit rolling hash (h * 31 + c) of the point list text.

    Cheap and non-cryptographic; collisions are possible.
    """
    text = '|'.join(f"{_format_number(p[0])},{_format_number(p[1])}" for p in points)
    h = 0
    for ch in text:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return str(h)


def cache_key(material_id: str, tile_scale: float, settings: UnderwaterSettings, mask_hash_value: str) -> str:
    parts = (
        material_id,
        _format_number(tile_scale),
        _format_number(settings.enabled),
        _format_number(settings.blend),
        _format_number(settings.refraction),
        _format_number(settings.edge_softness),
        mask_hash_value,
    )
    return '@'.join(str(p) for p in parts)


@dataclass
class CacheEntry:
    image: np.ndarray
    settings: UnderwaterSettings
    material_id: str
    tile_scale: float
    mask_hash: str
    timestamp: float = field(default_factory=time.time)


class CompositeCache:
    """Strict LRU keyed by material, tile scale, settings and mask hash."""

    def __init__(self, max_entries: int = None):
        self.max_entries = config.DEFAULT_RESULT_CACHE_ENTRIES if max_entries is None else max_entries
        if self.max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._entries: 'OrderedDict[str, CacheEntry]' = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, material_id: str, tile_scale: float, settings: UnderwaterSettings,
            mask_hash_value: str) -> Optional[np.ndarray]:
        key = cache_key(material_id, tile_scale, settings, mask_hash_value)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            self._entries.move_to_end(key)
            return entry.image

    def set(self, material_id: str, tile_scale: float, settings: UnderwaterSettings,
            mask_hash_value: str, image: np.ndarray):
        key = cache_key(material_id, tile_scale, settings, mask_hash_value)
        with self._lock:
            if key not in self._entries:
                while len(self._entries) >= self.max_entries:
                    evicted, _ = self._entries.popitem(last=False)
                    logger.debug("Evicted composite %s", evicted)
            self._entries[key] = CacheEntry(image, settings, material_id, tile_scale, mask_hash_value)
            self._entries.move_to_end(key)

    def keys(self):
        """Keys from least to most recently used."""
        with self._lock:
            return list(self._entries)

    def _invalidate(self, predicate) -> int:
        with self._lock:
            doomed = [k for k, e in self._entries.items() if predicate(e)]
            for key in doomed:
                del self._entries[key]
        return len(doomed)

    def invalidate_material(self, material_id: str) -> int:
        """Remove every entry for a material. Returns the number removed."""
        removed = self._invalidate(lambda e: e.material_id == material_id)
        logger.debug("Invalidated %d composites for material %s", removed, material_id)
        return removed

    def invalidate_mask(self, mask_hash_value: str) -> int:
        """Remove every entry for a mask shape. Returns the number removed."""
        removed = self._invalidate(lambda e: e.mask_hash == mask_hash_value)
        logger.debug("Invalidated %d composites for mask %s", removed, mask_hash_value)
        return removed

    def clear(self):
        with self._lock:
            self._entries.clear()

    def get_stats(self) -> dict:
        """Entry count and approximate bitmap memory (width * height * 4 per entry)."""
        with self._lock:
            memory = sum(e.image.shape[0] * e.image.shape[1] * 4 for e in self._entries.values())
            return {
                'total': len(self._entries),
                'approx_memory_bytes': memory,
            }
