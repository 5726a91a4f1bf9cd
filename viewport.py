"""
POOL MATERIAL VISUALIZER - Viewport Transform

Photo space: the scale + pan mapping between image pixels and screen pixels.
All functions here are pure; they take a PhotoSpace and return a new one.
Live, signal-emitting state lives in state.ViewportState.
"""

import logging
import math
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

# Zoom limits, as a percentage of the fit scale
MIN_ZOOM_PERCENT = 10.0
MAX_ZOOM_PERCENT = 500.0

# Absolute scale guard applied to every update
MIN_SCALE = 0.01
MAX_SCALE = 10.0

# Device pixel ratio guard
MIN_DPR = 0.5
MAX_DPR = 3.0

# A persisted pan within this many screen pixels of centred counts as centred
CENTER_EPSILON = 2.0

# Version of the persisted blob layout
PERSIST_VERSION = 1


@dataclass(frozen=True)
class PhotoSpace:
    """Image <-> screen transform.

    scale maps one image pixel to `scale` screen pixels; (pan_x, pan_y) is
    the screen position of the image origin. fit_scale is the scale at which
    the whole image exactly fills the container (the 100% zoom baseline).
    scale == 0 means "not initialized".
    """
    scale: float = 0.0
    pan_x: float = 0.0
    pan_y: float = 0.0
    img_w: int = 0
    img_h: int = 0
    device_pixel_ratio: float = 1.0
    fit_scale: Optional[float] = None
    container_w: float = 0.0
    container_h: float = 0.0

    @property
    def is_ready(self) -> bool:
        return self.scale > 0


def _finite(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def center_pan(img_w: float, img_h: float, container_w: float, container_h: float,
               scale: float) -> Tuple[float, float]:
    """Pan that centres an image of the given size in the container."""
    pan_x = (container_w - img_w * scale) / 2
    pan_y = (container_h - img_h * scale) / 2
    return pan_x, pan_y


def fit_scale(img_w: float, img_h: float, container_w: float, container_h: float,
              padding: float = 1.0) -> float:
    """Largest scale at which the image fits inside the container.

    Returns 0.0 when any dimension is not positive.
    """
    if img_w <= 0 or img_h <= 0 or container_w <= 0 or container_h <= 0:
        return 0.0
    scale_x = (container_w * padding) / img_w
    scale_y = (container_h * padding) / img_h
    return min(scale_x, scale_y)


def fit(img_w: int, img_h: int, container_w: float, container_h: float,
        padding: float = 1.0, device_pixel_ratio: float = 1.0) -> PhotoSpace:
    """Fit the image to the container and centre it.

    The resulting scale, held to the absolute scale guard, becomes
    fit_scale. A zero-sized image or container yields an uninitialized
    PhotoSpace (scale == 0).
    """
    scale = fit_scale(img_w, img_h, container_w, container_h, padding)
    if scale <= 0:
        logger.debug("Fit skipped for image %sx%s in container %sx%s",
                     img_w, img_h, container_w, container_h)
        return PhotoSpace(img_w=max(0, img_w), img_h=max(0, img_h),
                          device_pixel_ratio=device_pixel_ratio,
                          container_w=max(0, container_w), container_h=max(0, container_h))

    scale = guard_photo_space({'scale': scale})['scale']
    pan_x, pan_y = center_pan(img_w, img_h, container_w, container_h, scale)
    return PhotoSpace(
        scale=scale,
        pan_x=pan_x,
        pan_y=pan_y,
        img_w=img_w,
        img_h=img_h,
        device_pixel_ratio=device_pixel_ratio,
        fit_scale=scale,
        container_w=container_w,
        container_h=container_h,
    )


def reset_to_fit(space: PhotoSpace) -> PhotoSpace:
    """Re-fit using the space's own image and container sizes."""
    return fit(space.img_w, space.img_h, space.container_w, space.container_h,
               device_pixel_ratio=space.device_pixel_ratio)


def _baseline(space: PhotoSpace) -> float:
    return space.fit_scale if space.fit_scale else space.scale


def zoom_percent(space: PhotoSpace) -> float:
    """Current zoom relative to fit_scale, in percent (0 when not ready)."""
    if not space.is_ready:
        return 0.0
    return space.scale / _baseline(space) * 100.0


def format_zoom_label(space: PhotoSpace) -> str:
    return f"{round(zoom_percent(space))}%"


def zoom_at_point(space: PhotoSpace, screen_x: float, screen_y: float,
                  delta_percent: float) -> PhotoSpace:
    """Zoom by delta_percent (of fit scale) keeping the pointed-at image pixel fixed.

    The new scale is (current% + delta%) / 100 * fit_scale, clamped to
    [MIN_ZOOM_PERCENT, MAX_ZOOM_PERCENT] of fit_scale and to the absolute
    scale guard. Pan is solved so that (screen - pan) / scale is unchanged
    at the cursor.
    """
    if not space.is_ready:
        return space

    baseline = _baseline(space)
    target = zoom_percent(space) + delta_percent
    target = max(MIN_ZOOM_PERCENT, min(MAX_ZOOM_PERCENT, target))
    new_scale = target / 100.0 * baseline
    new_scale = max(MIN_SCALE, min(MAX_SCALE, new_scale))

    if new_scale == space.scale:
        return space
    # The absolute guard may not turn a zoom in into a zoom out or vice versa
    if (new_scale - space.scale) * delta_percent < 0:
        return space

    image_x = (screen_x - space.pan_x) / space.scale
    image_y = (screen_y - space.pan_y) / space.scale

    return replace(
        space,
        scale=new_scale,
        pan_x=screen_x - image_x * new_scale,
        pan_y=screen_y - image_y * new_scale,
        fit_scale=baseline,
    )


def set_zoom_percent(space: PhotoSpace, percent: float,
                     anchor: Optional[Tuple[float, float]] = None) -> PhotoSpace:
    """Jump to an absolute zoom percentage, anchored at the container centre by default."""
    if not space.is_ready:
        return space
    if anchor is None:
        anchor = (space.container_w / 2, space.container_h / 2)
    return zoom_at_point(space, anchor[0], anchor[1], percent - zoom_percent(space))


def pan(space: PhotoSpace, delta_x: float, delta_y: float) -> PhotoSpace:
    """Shift the image by a screen-space delta. No bounds clamping."""
    return replace(space, pan_x=space.pan_x + delta_x, pan_y=space.pan_y + delta_y)


def image_to_screen(point: Tuple[float, float], space: PhotoSpace) -> Tuple[float, float]:
    x, y = point
    return x * space.scale + space.pan_x, y * space.scale + space.pan_y


def screen_to_image(point: Tuple[float, float], space: PhotoSpace,
                    clamp: bool = False) -> Tuple[float, float]:
    """Map a screen point to image pixels; optionally clamp to the image rectangle."""
    if not space.is_ready:
        raise ValueError("PhotoSpace is not initialized (scale == 0)")
    sx, sy = point
    x = (sx - space.pan_x) / space.scale
    y = (sy - space.pan_y) / space.scale
    if clamp:
        x = max(0.0, min(x, float(space.img_w)))
        y = max(0.0, min(y, float(space.img_h)))
    return x, y


def guard_photo_space(updates: Dict[str, Any]) -> Dict[str, Any]:
    """Drop non-finite values and clamp the rest into their valid ranges."""
    guarded = {}

    scale = updates.get('scale')
    if _finite(scale):
        # 0 is the "not ready" sentinel and passes through untouched
        guarded['scale'] = 0.0 if scale == 0 else max(MIN_SCALE, min(MAX_SCALE, scale))

    for key in ('pan_x', 'pan_y'):
        if _finite(updates.get(key)):
            guarded[key] = updates[key]

    for key in ('img_w', 'img_h'):
        if _finite(updates.get(key)):
            guarded[key] = max(0, int(updates[key]))

    for key in ('container_w', 'container_h'):
        if _finite(updates.get(key)):
            guarded[key] = max(0.0, updates[key])

    dpr = updates.get('device_pixel_ratio')
    if _finite(dpr):
        guarded['device_pixel_ratio'] = max(MIN_DPR, min(MAX_DPR, dpr))

    fs = updates.get('fit_scale')
    if _finite(fs) and fs > 0:
        guarded['fit_scale'] = fs

    return guarded


def apply_updates(space: PhotoSpace, updates: Dict[str, Any]) -> PhotoSpace:
    """Return space with the guarded subset of updates applied."""
    guarded = guard_photo_space(updates)
    if len(guarded) < len(updates):
        ignored = sorted(set(updates) - set(guarded))
        logger.warning("Ignored invalid PhotoSpace fields: %s", ignored)
    return replace(space, **guarded) if guarded else space


# =============================================================================
# PERSISTENCE
# =============================================================================

def to_blob(space: PhotoSpace) -> Dict[str, Any]:
    """Serialize to the persisted JSON layout."""
    return {
        'version': PERSIST_VERSION,
        'scale': space.scale,
        'panX': space.pan_x,
        'panY': space.pan_y,
        'imgW': space.img_w,
        'imgH': space.img_h,
        'fitScale': space.fit_scale,
        'containerW': space.container_w,
        'containerH': space.container_h,
    }


def restore_from_blob(blob: Dict[str, Any], natural_w: int, natural_h: int,
                      container_w: float, container_h: float,
                      device_pixel_ratio: float = 1.0) -> Optional[PhotoSpace]:
    """Rebuild a PhotoSpace from a persisted blob for the currently loaded image.

    Returns None (caller should re-fit) when the blob is from another layout
    version, is malformed, or was saved for different natural dimensions.
    A centred pan is re-centred for the current container; a user pan keeps
    its offset from centre.
    """
    if not isinstance(blob, dict) or blob.get('version') != PERSIST_VERSION:
        logger.info("Discarding persisted viewport with unknown layout")
        return None

    scale = blob.get('scale')
    img_w = blob.get('imgW')
    img_h = blob.get('imgH')
    if not (_finite(scale) and scale > 0 and _finite(img_w) and _finite(img_h)):
        logger.info("Discarding malformed persisted viewport")
        return None

    if int(img_w) != int(natural_w) or int(img_h) != int(natural_h):
        logger.info("Discarding persisted viewport: saved for %sx%s, image is %sx%s",
                    img_w, img_h, natural_w, natural_h)
        return None

    pan_x = blob.get('panX', 0.0)
    pan_y = blob.get('panY', 0.0)
    saved_cw = blob.get('containerW') or 0
    saved_ch = blob.get('containerH') or 0

    if saved_cw > 0 and saved_ch > 0 and container_w > 0 and container_h > 0:
        old_cx, old_cy = center_pan(img_w, img_h, saved_cw, saved_ch, scale)
        new_cx, new_cy = center_pan(img_w, img_h, container_w, container_h, scale)
        offset_x = pan_x - old_cx
        offset_y = pan_y - old_cy
        if abs(offset_x) <= CENTER_EPSILON and abs(offset_y) <= CENTER_EPSILON:
            pan_x, pan_y = new_cx, new_cy
        else:
            pan_x, pan_y = new_cx + offset_x, new_cy + offset_y

    fs = blob.get('fitScale')
    return PhotoSpace(
        scale=float(scale),
        pan_x=float(pan_x),
        pan_y=float(pan_y),
        img_w=int(natural_w),
        img_h=int(natural_h),
        device_pixel_ratio=device_pixel_ratio,
        fit_scale=float(fs) if _finite(fs) and fs > 0 else None,
        container_w=container_w,
        container_h=container_h,
    )


def persist(store, photo_id: str, space: PhotoSpace):
    """Save the viewport for a photo into a key-value store (see storage.Storage)."""
    if not space.is_ready:
        return
    store.save_photo_space(photo_id, to_blob(space))


def restore(store, photo_id: str, natural_w: int, natural_h: int,
            container_w: float, container_h: float,
            device_pixel_ratio: float = 1.0) -> Optional[PhotoSpace]:
    """Load the persisted viewport for a photo, or None if absent or stale.

    Stale blobs are removed from the store.
    """
    blob = store.load_photo_space(photo_id)
    if blob is None:
        return None
    space = restore_from_blob(blob, natural_w, natural_h, container_w, container_h,
                              device_pixel_ratio)
    if space is None:
        store.delete_photo_space(photo_id)
    return space
