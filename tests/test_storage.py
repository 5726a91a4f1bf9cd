"""
Tests for SQLite storage and the texture disk cache
"""

import sqlite3

import numpy as np

from conftest import solid_rgba


class TestPhotoSpaces:
    def test_save_and_load(self, tmp_storage):
        blob = {'version': 1, 'scale': 0.5, 'panX': 10, 'panY': -4}
        tmp_storage.save_photo_space('photo-1', blob)
        assert tmp_storage.load_photo_space('photo-1') == blob
        assert tmp_storage.load_photo_space('photo-2') is None

    def test_overwrite(self, tmp_storage):
        tmp_storage.save_photo_space('p', {'version': 1, 'scale': 1})
        tmp_storage.save_photo_space('p', {'version': 1, 'scale': 2})
        assert tmp_storage.load_photo_space('p')['scale'] == 2
        assert tmp_storage.get_stats()['photo_space_count'] == 1

    def test_corrupt_blob_reads_as_missing(self, tmp_storage):
        with sqlite3.connect(tmp_storage.db_path) as conn:
            conn.execute("INSERT INTO photo_spaces (photo_id, blob) VALUES (?, ?)", ('p', '{not json'))
        assert tmp_storage.load_photo_space('p') is None

    def test_delete(self, tmp_storage):
        tmp_storage.save_photo_space('p', {'version': 1})
        tmp_storage.delete_photo_space('p')
        assert tmp_storage.load_photo_space('p') is None


class TestMasks:
    def test_save_and_load(self, tmp_storage, square_mask):
        tmp_storage.save_masks('p', [square_mask.to_dict()], pixels_per_meter=42.5)
        assert tmp_storage.load_masks('p') == [square_mask.to_dict()]
        assert tmp_storage.load_pixels_per_meter('p') == 42.5

    def test_missing(self, tmp_storage):
        assert tmp_storage.load_masks('nope') == []
        assert tmp_storage.load_pixels_per_meter('nope') is None

    def test_delete_and_clear(self, tmp_storage, square_mask):
        for photo_id in ('a', 'b'):
            tmp_storage.save_masks(photo_id, [square_mask.to_dict()])
            tmp_storage.save_photo_space(photo_id, {'version': 1})
        tmp_storage.delete('a')
        assert tmp_storage.load_masks('a') == []
        assert tmp_storage.get_stats()['mask_photo_count'] == 1

        tmp_storage.set_default_preset('deep')
        tmp_storage.clear_all()
        assert tmp_storage.get_stats()['photo_space_count'] == 0
        assert tmp_storage.get_default_preset() == 'deep'


class TestPreferences:
    def test_user_presets(self, tmp_storage):
        assert tmp_storage.get_user_presets() == {}
        tmp_storage.save_user_preset('user_x', {'name': 'X', 'settings': {'blend': 1}})
        assert tmp_storage.get_user_presets()['user_x']['name'] == 'X'
        assert tmp_storage.delete_user_preset('user_x') is True
        assert tmp_storage.delete_user_preset('user_x') is False

    def test_default_preset(self, tmp_storage):
        assert tmp_storage.get_default_preset() == 'standard'
        tmp_storage.set_default_preset('shallow')
        assert tmp_storage.get_default_preset() == 'shallow'


class TestTextureCache:
    URL = "https://cdn.example.com/tile.png"

    def test_round_trip_keeps_alpha(self, tmp_storage):
        img = solid_rgba(6, 4, (12, 34, 56, 78))
        tmp_storage.save_texture_cache(self.URL, img)
        assert tmp_storage.has_texture_cache(self.URL)
        loaded = tmp_storage.load_texture_cache(self.URL)
        assert np.array_equal(loaded, img)

    def test_miss(self, tmp_storage):
        assert tmp_storage.load_texture_cache(self.URL) is None
        assert not tmp_storage.has_texture_cache(self.URL)

    def test_stats_and_clear(self, tmp_storage):
        tmp_storage.save_texture_cache(self.URL, solid_rgba(4, 4))
        tmp_storage.save_texture_cache(self.URL + "?v=2", solid_rgba(4, 4))
        stats = tmp_storage.get_texture_cache_stats()
        assert stats['file_count'] == 2
        assert stats['total_bytes'] > 0

        tmp_storage.clear_texture_cache()
        assert tmp_storage.get_texture_cache_stats() == {'file_count': 0, 'total_bytes': 0}

    def test_unreadable_file_ignored(self, tmp_storage):
        tmp_storage._texture_path(self.URL).write_bytes(b"garbage")
        assert tmp_storage.load_texture_cache(self.URL) is None
