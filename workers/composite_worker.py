"""
POOL MATERIAL VISUALIZER - Composite Worker

Standalone compositing function for ProcessPoolExecutor.
Must be picklable (no class state, importable at module level).
"""

from typing import Any, Dict, Optional


def composite_mask(texture_source: str, mask_data: Dict[str, Any], settings: Dict[str, Any],
                   tile_scale: float = 1.0, image_size: Optional[tuple] = None,
                   material_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Render one mask with its material in a worker process.

    Args:
        texture_source: Path or URL of the material texture
        mask_data: Serialized Mask (Mask.to_dict layout)
        settings: Underwater settings dict (edgeSoftness etc.)
        tile_scale: Pattern scale relative to the texture's natural size
        image_size: (width, height) of the photo to clip the region to
        material_id: Pattern identity; defaults to the mask's material or the source

    Returns:
        Dict with:
            - mask_id: Id of the rendered mask
            - image: RGBA uint8 region (None if nothing to draw)
            - origin: (x, y) of the region in the photo
            - success: False when the underwater effect failed
            - error: Failure message, if any
            - processing_time: Pipeline time in ms
    """
    # Import here to avoid issues with multiprocessing
    from geometry import Mask
    from presets import UnderwaterSettings
    from processing import load_texture
    from services.compositor import composite_pattern
    from services.texture_cache import Pattern

    mask = Mask.from_dict(mask_data)
    texture = load_texture(texture_source)
    pattern = Pattern.from_image(material_id or mask.material_id or texture_source, tile_scale, texture)

    composite = composite_pattern(pattern, mask, UnderwaterSettings.from_dict(settings),
                                  image_size=image_size)

    return {
        'mask_id': composite.mask_id,
        'image': composite.image,
        'origin': composite.origin,
        'success': composite.success,
        'error': composite.error,
        'processing_time': composite.processing_time,
    }
