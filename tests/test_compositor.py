"""
Tests for mask compositing through the caches
"""

import numpy as np
import pytest

from conftest import solid_rgba
from geometry import Mask
from presets import UnderwaterSettings
from services.composite_cache import CompositeCache
from services.compositor import MaskCompositor, composite_pattern, mask_region, overlay
from services.texture_cache import Pattern, TextureCache, TextureLoadError

TIMEOUT = 5
RED = (200, 0, 0, 255)


@pytest.fixture
def pattern():
    return Pattern.from_image('tile-blue', 1.0, solid_rgba(8, 8, RED))


@pytest.fixture
def compositor():
    compositor = MaskCompositor(TextureCache(decoder=lambda url: solid_rgba(8, 8, RED)),
                                CompositeCache(max_entries=5))
    yield compositor
    compositor.texture_cache.shutdown()


class TestMaskRegion:
    def test_rounds_outwards(self):
        assert mask_region([(1.5, 2.2), (10.1, 2), (4, 7.9)]) == (1, 2, 10, 6)

    def test_clipped_to_image(self):
        assert mask_region([(-5, -5), (30, -5), (30, 30)], (20, 10)) == (0, 0, 20, 10)

    def test_outside_image(self):
        assert mask_region([(50, 50), (60, 50), (60, 60)], (20, 20))[2:] == (0, 0)


class TestCompositePattern:
    def test_region_and_effect(self, pattern, square_mask):
        composite = composite_pattern(pattern, square_mask, UnderwaterSettings(blend=100, refraction=0,
                                                                              edge_softness=0))
        assert composite.success
        assert composite.origin == (0, 0)
        assert composite.image.shape == (100, 100, 4)
        # R * 0.8 * 0.85
        assert abs(int(composite.image[50, 50, 0]) - 136) <= 1

    def test_disabled_is_plain_fill(self, pattern, square_mask):
        composite = composite_pattern(pattern, square_mask, UnderwaterSettings(enabled=False))
        assert composite.success
        assert np.all(composite.image == np.array(RED, dtype=np.uint8))

    def test_linear_mask_has_no_area(self, pattern):
        rope = Mask('rope', [(0, 0), (50, 0), (50, 50)], type='linear')
        composite = composite_pattern(pattern, rope, UnderwaterSettings())
        assert composite.success is False
        assert composite.error == "Mask has no area"
        assert composite.image is None

    def test_outside_photo(self, pattern):
        mask = Mask('far', [(100, 100), (120, 100), (120, 120)])
        composite = composite_pattern(pattern, mask, UnderwaterSettings(), image_size=(50, 50))
        assert composite.success is False
        assert composite.image is None

    def test_pipeline_failure_falls_back_to_material(self, square_mask):
        broken = Pattern('tile-blue', 1.0, np.zeros((4, 4, 4), dtype=np.float32))
        composite = composite_pattern(broken, square_mask, UnderwaterSettings(blend=50))
        assert composite.success is False
        assert 'RGBA uint8' in composite.error
        assert composite.image is not None
        assert composite.image.shape == (100, 100, 4)

    def test_background_shape_follows_region(self, pattern, square_mask):
        photo = solid_rgba(150, 120)
        composite = composite_pattern(pattern, square_mask, UnderwaterSettings(), background=photo)
        assert composite.success
        assert composite.image.shape == (100, 100, 4)


class TestMaskCompositor:
    def test_second_composite_is_cached(self, compositor, pattern, square_mask):
        settings = UnderwaterSettings()
        first = compositor.composite(square_mask, pattern, settings)
        second = compositor.composite(square_mask, pattern, settings)
        assert first.cached is False
        assert second.cached is True
        assert second.image is first.image
        assert len(compositor.result_cache) == 1

    def test_settings_change_misses(self, compositor, pattern, square_mask):
        compositor.composite(square_mask, pattern, UnderwaterSettings(blend=10))
        again = compositor.composite(square_mask, pattern, UnderwaterSettings(blend=20))
        assert again.cached is False
        assert len(compositor.result_cache) == 2

    def test_cached_bitmap_follows_region_size(self, compositor, pattern, square_mask):
        settings = UnderwaterSettings()
        clipped = compositor.composite(square_mask, pattern, settings, image_size=(50, 50))
        assert clipped.image.shape[:2] == (50, 50)

        full = compositor.composite(square_mask, pattern, settings, image_size=(200, 200))
        assert full.cached is False
        assert full.image.shape[:2] == (100, 100)

        again = compositor.composite(square_mask, pattern, settings, image_size=(200, 200))
        assert again.cached is True
        assert again.image is full.image

    def test_failures_are_not_cached(self, compositor, square_mask):
        broken = Pattern('tile-blue', 1.0, np.zeros((4, 4, 4), dtype=np.float32))
        compositor.composite(square_mask, broken, UnderwaterSettings(blend=50))
        assert len(compositor.result_cache) == 0

    def test_render_fetches_pattern(self, compositor, square_mask):
        composite = compositor.render(square_mask, 'https://cdn/tile.png', UnderwaterSettings(), 2.0) \
            .result(TIMEOUT)
        assert composite.success
        assert composite.mask_id == 'pool-floor'
        assert compositor.texture_cache.get_stats()['patterns'] == 1

    def test_render_texture_failure(self, square_mask):
        def fail(url):
            raise OSError("404")

        compositor = MaskCompositor(TextureCache(decoder=fail), CompositeCache())
        try:
            future = compositor.render(square_mask, 'https://cdn/missing.png', UnderwaterSettings(), 1.0)
            with pytest.raises(TextureLoadError):
                future.result(TIMEOUT)
        finally:
            compositor.texture_cache.shutdown()

    def test_invalidate_material(self, compositor, pattern, square_mask):
        compositor.composite(square_mask, pattern, UnderwaterSettings())
        compositor.invalidate_material('tile-blue')
        assert len(compositor.result_cache) == 0

    def test_invalidate_mask(self, compositor, pattern, square_mask):
        compositor.composite(square_mask, pattern, UnderwaterSettings())
        compositor.invalidate_mask(square_mask)
        assert compositor.composite(square_mask, pattern, UnderwaterSettings()).cached is False


class TestOverlay:
    def test_only_inside_mask(self, pattern, square_mask):
        photo = solid_rgba(120, 120, (0, 0, 0, 255))
        composite = composite_pattern(pattern, square_mask, UnderwaterSettings(enabled=False))
        out = overlay(photo, composite, square_mask)
        assert tuple(out[50, 50]) == RED
        assert tuple(out[110, 110]) == (0, 0, 0, 255)
        assert tuple(photo[50, 50]) == (0, 0, 0, 255)

    def test_region_hanging_off_photo(self, pattern):
        mask = Mask('corner', [(-20, -20), (30, -20), (30, 30), (-20, 30)])
        composite = composite_pattern(pattern, mask, UnderwaterSettings(enabled=False))
        assert composite.origin == (-20, -20)

        photo = solid_rgba(40, 40, (0, 0, 0, 255))
        out = overlay(photo, composite, mask)
        assert tuple(out[0, 0]) == RED
        assert tuple(out[29, 29]) == RED
        assert tuple(out[35, 35]) == (0, 0, 0, 255)

    def test_region_entirely_off_photo(self, pattern):
        mask = Mask('far', [(100, 100), (120, 100), (120, 120)])
        composite = composite_pattern(pattern, mask, UnderwaterSettings(enabled=False))
        photo = solid_rgba(40, 40)
        assert np.array_equal(overlay(photo, composite, mask), photo)

    def test_nothing_to_draw(self, pattern):
        photo = solid_rgba(10, 10)
        rope = Mask('rope', [(0, 0), (5, 5)], type='linear')
        out = overlay(photo, composite_pattern(pattern, rope, UnderwaterSettings()), rope)
        assert np.array_equal(out, photo)
