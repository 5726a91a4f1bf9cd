"""
Tests for underwater settings defaults and presets
"""

import presets
from presets import PRESETS, SETTING_RANGES, UnderwaterSettings


class TestDefaults:
    def test_underwater_categories_enabled(self):
        assert presets.default_underwater_settings('interior')['enabled'] is True
        assert presets.default_underwater_settings('waterline_tile')['enabled'] is True
        assert presets.default_underwater_settings('coping')['enabled'] is False
        assert presets.default_underwater_settings()['enabled'] is False

    def test_default_values(self):
        settings = presets.default_underwater_settings('interior')
        assert (settings['blend'], settings['refraction'], settings['edgeSoftness']) == (65, 25, 6)
        assert settings['materialOpacity'] == 85
        assert settings['autoCalibrated'] is False

    def test_auto_calibrated_starting_point(self):
        settings = presets.default_underwater_settings('interior', auto_calibrated=True)
        assert settings['blend'] == 45
        assert settings['autoCalibrated'] is True
        assert settings['refraction'] == 25

    def test_defaults_not_shared(self):
        presets.default_underwater_settings('interior')['blend'] = 0
        assert presets.DEFAULT_SETTINGS['blend'] == 65


class TestClamp:
    def test_every_range(self):
        high = presets.clamp_settings({key: 1000 for key in SETTING_RANGES})
        low = presets.clamp_settings({key: -1000 for key in SETTING_RANGES})
        for key, (lo, hi) in SETTING_RANGES.items():
            assert high[key] == hi
            assert low[key] == lo

    def test_leaves_flags_alone(self):
        assert presets.clamp_settings({'enabled': True, 'autoCalibrated': False}) == {
            'enabled': True, 'autoCalibrated': False}


class TestSettingsConversion:
    def test_from_partial_dict(self):
        settings = UnderwaterSettings.from_dict({'blend': 10})
        assert settings == UnderwaterSettings(enabled=True, blend=10, refraction=25, edge_softness=6)

    def test_to_dict(self):
        assert UnderwaterSettings(blend=1, refraction=2, edge_softness=3).to_dict() == {
            'enabled': True, 'blend': 1, 'refraction': 2, 'edgeSoftness': 3}


class TestBuiltInPresets:
    def test_every_preset_in_range(self):
        for preset in PRESETS.values():
            assert presets.clamp_settings(preset['settings']) == preset['settings']

    def test_order_covers_presets(self):
        assert sorted(presets.PRESET_ORDER) == sorted(PRESETS)

    def test_dry_is_disabled(self):
        assert presets.get_preset_settings('dry').enabled is False

    def test_standard_matches_defaults(self):
        assert presets.get_preset_settings('standard') == UnderwaterSettings()


class TestUserPresets:
    def test_create_list_delete(self, tmp_storage):
        key = presets.create_user_preset('My Pool', 'Sunny afternoon', {'blend': 150}, store=tmp_storage)
        assert key.startswith('user_my_pool_')
        assert presets.is_user_preset(key)

        preset = presets.get_preset(key, store=tmp_storage)
        assert preset['settings']['blend'] == 100

        listing = presets.get_preset_list(store=tmp_storage)
        assert [k for k, _, _ in listing[:len(presets.PRESET_ORDER)]] == presets.PRESET_ORDER
        assert listing[-1] == (key, 'My Pool', 'Sunny afternoon')

        assert presets.delete_user_preset(key, store=tmp_storage) is True
        assert presets.get_preset(key, store=tmp_storage) is PRESETS['standard']

    def test_built_in_cannot_be_deleted(self, tmp_storage):
        assert presets.delete_user_preset('deep', store=tmp_storage) is False
        assert not presets.is_user_preset('deep')
