"""
POOL MATERIAL VISUALIZER - Mask Compositor

Renderer-facing glue: fill a mask's bounding region with a material
pattern, run the underwater pipeline over it and memoize the result.
"""

import logging
import math
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from geometry import Mask, mask_bounds, rasterize_mask
from presets import UnderwaterSettings
from processing import perform_underwater_realism
from services.composite_cache import CompositeCache, mask_hash
from services.texture_cache import Pattern, TextureCache

logger = logging.getLogger(__name__)


@dataclass
class Composite:
    """A rendered mask region. image covers (x, y, width, height) of the photo."""
    mask_id: str
    image: Optional[np.ndarray]
    origin: Tuple[int, int]
    success: bool = True
    cached: bool = False
    error: Optional[str] = None
    processing_time: float = 0.0


def mask_region(points, image_size: Optional[Tuple[int, int]] = None) -> Tuple[int, int, int, int]:
    """Integer bounding region (x, y, width, height) of a mask, clipped to image_size (w, h)."""
    min_x, min_y, max_x, max_y = mask_bounds(points)
    x0, y0 = int(math.floor(min_x)), int(math.floor(min_y))
    x1, y1 = int(math.ceil(max_x)), int(math.ceil(max_y))
    if image_size is not None:
        img_w, img_h = image_size
        x0, y0 = max(0, x0), max(0, y0)
        x1, y1 = min(img_w, x1), min(img_h, y1)
    return x0, y0, max(0, x1 - x0), max(0, y1 - y0)


def composite_pattern(pattern: Pattern, mask: Mask, settings: UnderwaterSettings,
                      background: Optional[np.ndarray] = None,
                      image_size: Optional[Tuple[int, int]] = None) -> Composite:
    """Fill the mask region with the pattern and apply the underwater effect.

    On pipeline failure the untreated material fill is returned with
    success=False so the caller can still show the material.
    """
    if not mask.is_closed or len(mask.points) < 3:
        return Composite(mask.id, None, (0, 0), success=False, error="Mask has no area")

    if image_size is None and background is not None:
        image_size = (background.shape[1], background.shape[0])
    x, y, width, height = mask_region(mask.points, image_size)
    if width == 0 or height == 0:
        return Composite(mask.id, None, (x, y), success=False, error="Mask lies outside the photo")

    material = pattern.fill(width, height, offset=(x, y))
    region_bg = background[y:y + height, x:x + width] if background is not None else None

    result = perform_underwater_realism(region_bg, material, mask.points, settings, origin=(x, y))
    if not result.success:
        logger.warning("Showing %s without underwater effect: %s", mask.id, result.error)
        return Composite(mask.id, material, (x, y), success=False, error=result.error,
                         processing_time=result.processing_time)
    return Composite(mask.id, result.result, (x, y), processing_time=result.processing_time)


class MaskCompositor:
    """Owns a TextureCache and a CompositeCache and renders masks through them."""

    def __init__(self, texture_cache: TextureCache = None, result_cache: CompositeCache = None):
        self.texture_cache = texture_cache or TextureCache()
        self.result_cache = result_cache or CompositeCache()

    def composite(self, mask: Mask, pattern: Pattern, settings: UnderwaterSettings,
                  background: Optional[np.ndarray] = None,
                  image_size: Optional[Tuple[int, int]] = None) -> Composite:
        """Render synchronously, serving and storing results through the result cache.

        A cached bitmap is only reused when it covers the same clipped region
        as this request; otherwise it is recomputed and replaced.
        """
        shape_hash = mask_hash(mask.points)
        cached = self.result_cache.get(pattern.material_id, pattern.scale, settings, shape_hash)
        if cached is not None:
            x, y, width, height = mask_region(mask.points, image_size or _size_of(background))
            if cached.shape[:2] == (height, width):
                return Composite(mask.id, cached, (x, y), cached=True)
            logger.debug("Cached composite for %s covers another region, recomputing", mask.id)

        composite = composite_pattern(pattern, mask, settings, background, image_size)
        if composite.success:
            self.result_cache.set(pattern.material_id, pattern.scale, settings, shape_hash, composite.image)
        return composite

    def render(self, mask: Mask, texture_url: str, settings: UnderwaterSettings, tile_scale: float,
               background: Optional[np.ndarray] = None,
               image_size: Optional[Tuple[int, int]] = None) -> Future:
        """Fetch the pattern (asynchronously on a miss) and composite. Resolves to a Composite.

        A texture failure resolves the Future with TextureLoadError.
        """
        material_id = mask.material_id or texture_url
        result = Future()
        pattern_future = self.texture_cache.get_pattern(material_id, texture_url, tile_scale)

        def done(f: Future):
            if f.cancelled():
                result.cancel()
                return
            error = f.exception()
            if error is not None:
                result.set_exception(error)
                return
            try:
                result.set_result(self.composite(mask, f.result(), settings, background, image_size))
            except Exception as e:
                logger.error("Compositing %s failed: %s", mask.id, e, exc_info=True)
                result.set_exception(e)

        pattern_future.add_done_callback(done)
        return result

    def invalidate_material(self, material_id: str):
        """A material's texture changed in place under the same id."""
        self.texture_cache.invalidate_material(material_id)
        self.result_cache.invalidate_material(material_id)

    def invalidate_mask(self, mask: Mask):
        self.result_cache.invalidate_mask(mask_hash(mask.points))

    def clear(self):
        self.texture_cache.clear()
        self.result_cache.clear()


def _size_of(background: Optional[np.ndarray]) -> Optional[Tuple[int, int]]:
    if background is None:
        return None
    return background.shape[1], background.shape[0]


def overlay(photo: np.ndarray, composite: Composite, mask: Mask) -> np.ndarray:
    """Alpha-blend a composite onto an RGBA photo, inside the mask only. Returns a new array.

    Parts of the composite that fall outside the photo are skipped.
    """
    out = photo.copy()
    if composite.image is None:
        return out
    x, y = composite.origin
    height, width = composite.image.shape[:2]
    x0, y0 = max(0, x), max(0, y)
    x1, y1 = min(out.shape[1], x + width), min(out.shape[0], y + height)
    if x1 <= x0 or y1 <= y0:
        return out

    coverage = rasterize_mask(mask.points, width, height, origin=(x, y)).astype(np.float64) / 255
    alpha = coverage * (composite.image[..., 3].astype(np.float64) / 255)

    inside = (slice(y0 - y, y1 - y), slice(x0 - x, x1 - x))
    alpha = alpha[inside]
    region = out[y0:y1, x0:x1]
    blended = (composite.image[inside][..., :3].astype(np.float64) * alpha[..., None]
               + region[..., :3].astype(np.float64) * (1 - alpha[..., None]))
    region[..., :3] = np.clip(np.rint(blended), 0, 255).astype(np.uint8)
    return out
