"""
POOL MATERIAL VISUALIZER - Texture Cache

Decoded textures and tileable patterns keyed by (material id, tile scale).
Decoding runs on a thread pool; concurrent requests for the same URL share
one decode, failures are never cached, and a load that was started before
an invalidation never overwrites newer state.
"""

import logging
import math
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from functools import partial
from typing import Callable, Dict, Optional, Set, Tuple

import cv2
import numpy as np

import config
from processing import TextureLoadError, load_texture

logger = logging.getLogger(__name__)

Decoder = Callable[[str], np.ndarray]


@dataclass(frozen=True, eq=False)
class Pattern:
    """A material bitmap at natural size * scale, repeated in both axes when filled."""
    material_id: str
    scale: float
    image: np.ndarray  # RGBA uint8

    @classmethod
    def from_image(cls, material_id: str, scale: float, image: np.ndarray) -> 'Pattern':
        h, w = image.shape[:2]
        new_w = max(1, int(round(w * scale)))
        new_h = max(1, int(round(h * scale)))
        if (new_w, new_h) == (w, h):
            scaled = image.copy()
        else:
            interpolation = cv2.INTER_AREA if scale < 1 else cv2.INTER_LINEAR
            scaled = cv2.resize(image, (new_w, new_h), interpolation=interpolation)
        scaled.setflags(write=False)
        return cls(material_id, scale, scaled)

    @property
    def width(self) -> int:
        return self.image.shape[1]

    @property
    def height(self) -> int:
        return self.image.shape[0]

    def fill(self, width: int, height: int, offset: Tuple[float, float] = (0, 0)) -> np.ndarray:
        """Tile the pattern over a width x height raster.

        offset is the image coordinate of the raster's top-left pixel, so
        regions filled with the same pattern line up across the photo.
        """
        if width <= 0 or height <= 0:
            return np.zeros((max(0, height), max(0, width), 4), dtype=np.uint8)
        ox = int(math.floor(offset[0])) % self.width
        oy = int(math.floor(offset[1])) % self.height
        reps_x = (ox + width) // self.width + 1
        reps_y = (oy + height) // self.height + 1
        tiled = np.tile(self.image, (reps_y, reps_x, 1))
        return tiled[oy:oy + height, ox:ox + width].copy()


def _resolved(value) -> Future:
    future = Future()
    future.set_result(value)
    return future


class TextureCache:
    """Pattern cache. get_pattern returns a Future resolving to a Pattern."""

    def __init__(self, decoder: Optional[Decoder] = None, max_workers: int = 4,
                 timeout: float = None):
        timeout = config.FETCH_TIMEOUT_SECONDS if timeout is None else timeout
        self._decoder = decoder or partial(load_texture, timeout=timeout)
        self._executor = ThreadPoolExecutor(max_workers=max_workers,
                                            thread_name_prefix='texture-decode')
        self._lock = threading.RLock()
        self._patterns: Dict[Tuple[str, float], Pattern] = {}
        self._images: Dict[str, np.ndarray] = {}
        self._pending: Dict[str, Future] = {}
        self._material_urls: Dict[str, Set[str]] = {}
        self._epoch = 0
        self._material_generations: Dict[str, int] = {}

    def _generation(self, material_id: str) -> Tuple[int, int]:
        return self._epoch, self._material_generations.get(material_id, 0)

    def _decode(self, url: str) -> np.ndarray:
        try:
            return self._decoder(url)
        except TextureLoadError as e:
            logger.warning("Texture load failed: %s", e)
            raise
        except Exception as e:
            logger.warning("Texture load failed for %s: %s", url[:80], e)
            raise TextureLoadError(f"Failed to load texture {url[:80]}: {e}") from e

    def _image_done(self, url: str, future: Future):
        with self._lock:
            if self._pending.get(url) is not future:
                logger.debug("Discarding texture decoded before invalidation: %s", url[:80])
                return
            del self._pending[url]
            if future.cancelled() or future.exception() is not None:
                return
            self._images[url] = future.result()

    def _load_image(self, url: str) -> Future:
        """Decoded image for url, sharing any in-flight decode. Caller holds the lock."""
        image = self._images.get(url)
        if image is not None:
            return _resolved(image)

        pending = self._pending.get(url)
        if pending is not None:
            return pending

        future = self._executor.submit(self._decode, url)
        self._pending[url] = future
        future.add_done_callback(partial(self._image_done, url))
        return future

    def get_pattern(self, material_id: str, texture_url: str, scale: float) -> Future:
        """Pattern for a material at a tile scale.

        A cache hit returns an already-resolved Future. Decode failures
        resolve the Future with TextureLoadError and leave nothing cached,
        so a later call retries.
        """
        if not isinstance(scale, (int, float)) or not math.isfinite(scale) or scale <= 0:
            raise ValueError(f"Tile scale must be a positive number, got {scale!r}")

        key = (material_id, float(scale))
        with self._lock:
            pattern = self._patterns.get(key)
            if pattern is not None:
                return _resolved(pattern)
            generation = self._generation(material_id)
            self._material_urls.setdefault(material_id, set()).add(texture_url)
            image_future = self._load_image(texture_url)

        result = Future()

        def build(done: Future):
            if done.cancelled():
                result.cancel()
                return
            error = done.exception()
            if error is not None:
                result.set_exception(error)
                return
            try:
                built = Pattern.from_image(material_id, float(scale), done.result())
            except (cv2.error, ValueError) as e:
                result.set_exception(TextureLoadError(f"Could not build pattern for {material_id}: {e}"))
                return
            with self._lock:
                if self._generation(material_id) == generation:
                    built = self._patterns.setdefault(key, built)
                else:
                    logger.debug("Not caching stale pattern for %s@%s", material_id, scale)
            result.set_result(built)

        image_future.add_done_callback(build)
        return result

    def invalidate_material(self, material_id: str):
        """Drop every pattern and decoded image of a material; in-flight loads won't be stored."""
        with self._lock:
            self._material_generations[material_id] = self._material_generations.get(material_id, 0) + 1
            for key in [k for k in self._patterns if k[0] == material_id]:
                del self._patterns[key]
            for url in self._material_urls.pop(material_id, set()):
                self._images.pop(url, None)
                self._pending.pop(url, None)
        logger.debug("Invalidated textures for material %s", material_id)

    def clear(self):
        """Drop patterns, decoded images and pending loads."""
        with self._lock:
            self._epoch += 1
            self._patterns.clear()
            self._images.clear()
            self._pending.clear()
            self._material_urls.clear()
        logger.debug("Texture cache cleared")

    def get_stats(self) -> dict:
        with self._lock:
            return {
                'patterns': len(self._patterns),
                'images': len(self._images),
                'loading': len(self._pending),
            }

    def shutdown(self, wait: bool = True):
        self._executor.shutdown(wait=wait, cancel_futures=not wait)
