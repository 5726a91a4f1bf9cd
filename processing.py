"""
POOL MATERIAL VISUALIZER - Image Processing Core

Texture decoding and the underwater compositing pipeline.
Pixels are RGBA uint8 arrays of shape (height, width, 4); every stage is a
pure function of its inputs so results can be memoized.
"""

import base64
import logging
import math
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Tuple
from urllib.parse import unquote, urlparse

import cv2
import numpy as np
import requests
from scipy import ndimage

import config
from geometry import mask_bounds, point_in_polygon, rasterize_mask
from presets import UnderwaterSettings

logger = logging.getLogger(__name__)

# Underwater colour attenuation: blue-green shift plus overall darkening
TINT_R = 0.8
TINT_G = 0.9
TINT_B = 1.1
TINT_BRIGHTNESS = 0.85

# Refraction ripple
RIPPLE_FREQUENCY = 0.1
RIPPLE_MAX_OFFSET_PX = 2.0

# Inner shadow darkening at full softened-mask coverage
INNER_SHADOW_STRENGTH = 0.3


class TextureLoadError(IOError):
    """A texture could not be fetched or decoded."""


@dataclass
class UnderwaterResult:
    success: bool
    result: Optional[np.ndarray] = None
    error: Optional[str] = None
    processing_time: float = 0.0  # milliseconds


# =============================================================================
# TEXTURE DECODING
# =============================================================================

def decode_image(data: bytes) -> np.ndarray:
    """Decode encoded image bytes (PNG, JPEG, WebP...) to RGBA uint8."""
    buf = np.frombuffer(data, dtype=np.uint8)
    img = cv2.imdecode(buf, cv2.IMREAD_UNCHANGED) if buf.size else None
    if img is None:
        raise TextureLoadError("Could not decode image data")
    return to_rgba(img)


def to_rgba(img: np.ndarray) -> np.ndarray:
    """Convert an OpenCV-decoded image (gray, BGR or BGRA; 8 or 16 bit) to RGBA uint8."""
    if img.dtype == np.uint16:
        img = (img // 257).astype(np.uint8)
    elif img.dtype != np.uint8:
        img = np.clip(img, 0, 255).astype(np.uint8)

    if img.ndim == 2:
        return cv2.cvtColor(img, cv2.COLOR_GRAY2RGBA)
    if img.shape[2] == 3:
        return cv2.cvtColor(img, cv2.COLOR_BGR2RGBA)
    if img.shape[2] == 4:
        return cv2.cvtColor(img, cv2.COLOR_BGRA2RGBA)
    raise TextureLoadError(f"Unsupported channel count: {img.shape[2]}")


def _read_source(source: str, timeout: float) -> bytes:
    if source.startswith('data:'):
        header, _, payload = source.partition(',')
        if ';base64' in header:
            return base64.b64decode(payload)
        return unquote(payload).encode('latin-1')

    parsed = urlparse(source)
    if parsed.scheme in ('http', 'https'):
        response = requests.get(source, timeout=timeout)
        response.raise_for_status()
        return response.content

    path = Path(unquote(parsed.path)) if parsed.scheme == 'file' else Path(source)
    return path.read_bytes()


def load_texture(source: str, timeout: float = None, store=None) -> np.ndarray:
    """Fetch and decode a texture as RGBA uint8.

    source may be a filesystem path, a file:// URL, a data: URL or an
    http(s) URL. Remote textures are cached on disk through `store`
    (defaults to the shared Storage). Any failure raises TextureLoadError.
    """
    timeout = config.FETCH_TIMEOUT_SECONDS if timeout is None else timeout
    remote = source.startswith(('http://', 'https://'))

    if remote:
        if store is None:
            import storage
            store = storage.get_storage()
        cached = store.load_texture_cache(source)
        if cached is not None:
            return cached

    try:
        img = decode_image(_read_source(source, timeout))
    except TextureLoadError:
        raise
    except (requests.RequestException, OSError, ValueError) as e:
        raise TextureLoadError(f"Failed to load texture {source[:80]}: {e}") from e

    if remote:
        store.save_texture_cache(source, img)
    return img


# =============================================================================
# UNDERWATER STAGES
# =============================================================================

def _to_uint8(values: np.ndarray) -> np.ndarray:
    return np.clip(np.rint(values), 0, 255).astype(np.uint8)


def apply_underwater_tint(img: np.ndarray, mask: np.ndarray, blend: float) -> np.ndarray:
    """Blue-green attenuation inside the mask, blended with the original by blend/100."""
    result = img.copy()
    inside = mask > 0
    if not inside.any():
        return result

    rgb = img[..., :3].astype(np.float64)
    coefficients = np.array([TINT_R, TINT_G, TINT_B])
    tinted = np.clip(rgb * coefficients * TINT_BRIGHTNESS, 0, 255)

    factor = blend / 100
    blended = rgb * (1 - factor) + tinted * factor
    result[..., :3][inside] = _to_uint8(blended[inside])
    return result


def apply_refraction(img: np.ndarray, mask: np.ndarray, refraction: float) -> np.ndarray:
    """Deterministic sinusoidal displacement of pixels inside the mask.

    Destination (x, y) samples source
    (floor(x + sin(0.1 y) * s), floor(y + cos(0.1 x) * s)) clamped to the
    image, where s = refraction / 100 * 2 px.
    """
    height, width = mask.shape
    ripple_scale = refraction / 100 * RIPPLE_MAX_OFFSET_PX

    ys = np.arange(height, dtype=np.float64)[:, None]
    xs = np.arange(width, dtype=np.float64)[None, :]
    src_x = np.floor(xs + np.sin(ys * RIPPLE_FREQUENCY) * ripple_scale)
    src_y = np.floor(ys + np.cos(xs * RIPPLE_FREQUENCY) * ripple_scale)
    src_x = np.clip(src_x, 0, width - 1).astype(np.intp)
    src_y = np.clip(src_y, 0, height - 1).astype(np.intp)

    inside = mask > 0
    result = img.copy()
    result[inside] = img[src_y[inside], src_x[inside]]
    return result


def gaussian_kernel(edge_softness: float) -> np.ndarray:
    """Square kernel of radius ceil(edge_softness) with weights exp(-d^2 / 2 sigma^2)."""
    radius = int(math.ceil(edge_softness))
    offsets = np.arange(-radius, radius + 1, dtype=np.float64)
    dist_sq = offsets[:, None] ** 2 + offsets[None, :] ** 2
    return np.exp(-dist_sq / (2 * edge_softness * edge_softness))


def soften_mask(mask: np.ndarray, edge_softness: float) -> np.ndarray:
    """Gaussian-weighted fraction of in-mask neighbours, as uint8, inside the hard mask only.

    Neighbours outside the image do not count towards either the weighted
    sum or the total weight.
    """
    kernel = gaussian_kernel(edge_softness)
    inside = (mask > 0).astype(np.float64)
    weighted = ndimage.correlate(inside, kernel, mode='constant', cval=0.0)
    total = ndimage.correlate(np.ones_like(inside), kernel, mode='constant', cval=0.0)

    soft = np.zeros(mask.shape, dtype=np.uint8)
    hard = mask > 0
    soft[hard] = np.floor(weighted[hard] / total[hard] * 255).astype(np.uint8)
    return soft


def apply_edge_softening(img: np.ndarray, mask: np.ndarray, edge_softness: float) -> np.ndarray:
    """Inner shadow: darken by up to 30% in proportion to the softened mask."""
    soft = soften_mask(mask, edge_softness)
    covered = soft > 0
    result = img.copy()
    if not covered.any():
        return result

    shadow = 1 - (soft[covered].astype(np.float64) / 255) * INNER_SHADOW_STRENGTH
    rgb = img[..., :3][covered].astype(np.float64)
    result[..., :3][covered] = _to_uint8(rgb * shadow[:, None])
    return result


def perform_underwater_realism(background: Optional[np.ndarray], material: np.ndarray,
                               mask_points: Sequence[Sequence[float]],
                               settings: UnderwaterSettings,
                               origin: Tuple[float, float] = (0.0, 0.0)) -> UnderwaterResult:
    """Run tint -> refraction -> edge softening on the material inside the mask.

    Args:
        background: Photo pixels under the material (same shape) or None
        material: RGBA uint8 material raster
        mask_points: Polygon in image coordinates
        settings: UnderwaterSettings (or a settings dict)
        origin: Image coordinate of material pixel (0, 0)

    Returns:
        UnderwaterResult; never raises. When disabled, result is the
        material array itself.
    """
    start = time.perf_counter()
    try:
        if isinstance(settings, dict):
            settings = UnderwaterSettings.from_dict(settings)

        if not settings.enabled:
            return UnderwaterResult(True, material, processing_time=_elapsed_ms(start))

        if material.ndim != 3 or material.shape[2] != 4 or material.dtype != np.uint8:
            raise ValueError(f"Material must be RGBA uint8, got {material.dtype} {material.shape}")
        if background is not None and background.shape != material.shape:
            raise ValueError(
                f"Background shape {background.shape} does not match material {material.shape}"
            )

        height, width = material.shape[:2]
        mask = rasterize_mask(mask_points, width, height, origin)

        result = material.copy()
        if settings.blend > 0:
            result = apply_underwater_tint(result, mask, settings.blend)
        if settings.refraction > 0:
            result = apply_refraction(result, mask, settings.refraction)
        if settings.edge_softness > 0:
            result = apply_edge_softening(result, mask, settings.edge_softness)

        return UnderwaterResult(True, result, processing_time=_elapsed_ms(start))

    except Exception as e:
        logger.error("Underwater realism processing failed: %s", e, exc_info=True)
        return UnderwaterResult(False, error=str(e), processing_time=_elapsed_ms(start))


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


# =============================================================================
# AUTO-CALIBRATION
# =============================================================================

def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def sample_mask_luminance(photo: np.ndarray, points: Sequence[Sequence[float]]) -> Optional[float]:
    """Mean luminance (0-1) of a sparse grid of photo pixels inside the mask.

    The grid step is 8-16 px depending on mask size. Returns None when no
    sample lands inside both the mask and the photo.
    """
    if len(points) < 3:
        return None

    min_x, min_y, max_x, max_y = mask_bounds(points)
    sample_size = min(128.0, min(max_x - min_x, max_y - min_y) / 4)
    grid = max(8, int(math.floor(sample_size / 8)))
    height, width = photo.shape[:2]

    total = 0.0
    count = 0
    x = min_x
    while x < max_x:
        y = min_y
        while y < max_y:
            px, py = int(math.floor(x)), int(math.floor(y))
            if 0 <= px < width and 0 <= py < height and point_in_polygon(x, y, points):
                r, g, b = (float(c) for c in photo[py, px, :3])
                total += (r * 0.299 + g * 0.587 + b * 0.114) / 255
                count += 1
            y += grid
        x += grid

    return total / count if count else None


def auto_calibrate_settings(photo: np.ndarray, points: Sequence[Sequence[float]]) -> Dict[str, Any]:
    """Derive tint, highlights, blend and depthBias from the photo under a mask.

    Brighter pools get a lighter tint. Returns {} (keep defaults) when the
    mask has no usable samples.
    """
    try:
        luminance = sample_mask_luminance(photo, points)
    except (IndexError, ValueError) as e:
        logger.warning("Auto-calibration failed: %s", e)
        return {}
    if luminance is None:
        return {}

    offset = luminance - 0.5
    tint = max(12.0, min(28.0, 28 - offset * 20))
    highlights = max(15.0, min(28.0, 28 - offset * 15))
    blend = max(35.0, min(55.0, 45 + offset * 20))
    depth_bias = max(18.0, min(30.0, 24 + offset * 12))

    return {
        'tint': _round_half_up(tint),
        'highlights': _round_half_up(highlights),
        'blend': _round_half_up(blend),
        'depthBias': _round_half_up(depth_bias),
        'autoCalibrated': True,
    }
