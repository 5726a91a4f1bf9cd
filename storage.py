"""
POOL MATERIAL VISUALIZER - Storage

SQLite-backed key-value store scoped by photo identifier (viewport blobs,
masks, calibration) plus a lossless on-disk cache of decoded textures.
"""

import hashlib
import json
import logging
import sqlite3
from pathlib import Path
from typing import Dict, List, Optional

import cv2
import numpy as np

import config

logger = logging.getLogger(__name__)

# Texture cache settings - PNG keeps the alpha channel lossless
TEXTURE_CACHE_EXT = ".png"
TEXTURE_PNG_COMPRESSION = 1


class Storage:
    """SQLite storage for per-photo editor state and app preferences."""

    def __init__(self, db_path: Path = None, texture_cache_dir: Path = None):
        self.db_path = Path(db_path or config.DB_FILE)
        self.texture_cache_dir = Path(texture_cache_dir or config.TEXTURE_CACHE_DIR)
        self._ensure_dir()
        self._init_db()

    def _ensure_dir(self):
        """Ensure the database and cache directories exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.texture_cache_dir.mkdir(parents=True, exist_ok=True)

    def _init_db(self):
        """Initialize the database schema."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS photo_spaces (
                    photo_id TEXT PRIMARY KEY,
                    blob TEXT,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS masks (
                    photo_id TEXT PRIMARY KEY,
                    masks TEXT,
                    pixels_per_meter REAL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            # App-wide preferences table
            conn.execute("""
                CREATE TABLE IF NOT EXISTS preferences (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
            """)
            conn.commit()

    # ------------------------------------------------------------------
    # Viewport
    # ------------------------------------------------------------------

    def save_photo_space(self, photo_id: str, blob: dict):
        """Save the persisted viewport for a photo."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                INSERT INTO photo_spaces (photo_id, blob, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(photo_id) DO UPDATE SET
                    blob = excluded.blob,
                    updated_at = CURRENT_TIMESTAMP
            """, (photo_id, json.dumps(blob)))
            conn.commit()

    def load_photo_space(self, photo_id: str) -> Optional[dict]:
        """Load the persisted viewport for a photo. Returns None if not found or unreadable."""
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute(
                "SELECT blob FROM photo_spaces WHERE photo_id = ?",
                (photo_id,)
            )
            row = cursor.fetchone()
        if not row or not row[0]:
            return None
        try:
            return json.loads(row[0])
        except json.JSONDecodeError:
            logger.warning("Corrupt viewport blob for photo %s", photo_id)
            return None

    def delete_photo_space(self, photo_id: str):
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("DELETE FROM photo_spaces WHERE photo_id = ?", (photo_id,))
            conn.commit()

    # ------------------------------------------------------------------
    # Masks
    # ------------------------------------------------------------------

    def save_masks(self, photo_id: str, masks: List[dict], pixels_per_meter: Optional[float] = None):
        """Save the serialized masks (and photo-wide calibration) for a photo."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                INSERT INTO masks (photo_id, masks, pixels_per_meter, updated_at)
                VALUES (?, ?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(photo_id) DO UPDATE SET
                    masks = excluded.masks,
                    pixels_per_meter = excluded.pixels_per_meter,
                    updated_at = CURRENT_TIMESTAMP
            """, (photo_id, json.dumps(masks), pixels_per_meter))
            conn.commit()

    def load_masks(self, photo_id: str) -> List[dict]:
        """Load the serialized masks for a photo. Returns [] if none."""
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute(
                "SELECT masks FROM masks WHERE photo_id = ?",
                (photo_id,)
            )
            row = cursor.fetchone()
            if row and row[0]:
                return json.loads(row[0])
            return []

    def load_pixels_per_meter(self, photo_id: str) -> Optional[float]:
        """Photo-wide pixels-per-metre saved alongside the masks."""
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute(
                "SELECT pixels_per_meter FROM masks WHERE photo_id = ?",
                (photo_id,)
            )
            row = cursor.fetchone()
            return row[0] if row else None

    def delete(self, photo_id: str):
        """Delete everything stored for a photo."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("DELETE FROM photo_spaces WHERE photo_id = ?", (photo_id,))
            conn.execute("DELETE FROM masks WHERE photo_id = ?", (photo_id,))
            conn.commit()

    def clear_all(self):
        """Clear all per-photo data (preferences are kept)."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("DELETE FROM photo_spaces")
            conn.execute("DELETE FROM masks")
            conn.commit()

    def get_stats(self) -> dict:
        """Get storage statistics."""
        with sqlite3.connect(self.db_path) as conn:
            spaces = conn.execute("SELECT COUNT(*) FROM photo_spaces").fetchone()[0]
            masks = conn.execute("SELECT COUNT(*), SUM(LENGTH(masks)) FROM masks").fetchone()
        return {
            'photo_space_count': spaces or 0,
            'mask_photo_count': masks[0] or 0,
            'mask_bytes': masks[1] or 0,
        }

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    def _get_preference(self, key: str, default):
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute(
                "SELECT value FROM preferences WHERE key = ?", (key,)
            )
            row = cursor.fetchone()
            if row and row[0]:
                return json.loads(row[0])
            return default

    def _set_preference(self, key: str, value):
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                INSERT INTO preferences (key, value)
                VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
            """, (key, json.dumps(value)))
            conn.commit()

    def get_user_presets(self) -> Dict[str, dict]:
        """Get all user-saved underwater presets. Returns {key: preset_dict}."""
        return self._get_preference('user_presets', {})

    def save_user_preset(self, key: str, preset: dict):
        """Save a user preset. Preset should have 'name', 'description', 'settings'."""
        presets = self.get_user_presets()
        presets[key] = preset
        self._set_preference('user_presets', presets)

    def delete_user_preset(self, key: str) -> bool:
        """Delete a user preset by key. Returns True if deleted, False if not found."""
        presets = self.get_user_presets()
        if key not in presets:
            return False
        del presets[key]
        self._set_preference('user_presets', presets)
        return True

    def get_default_preset(self) -> str:
        return self._get_preference('default_preset', 'standard')

    def set_default_preset(self, key: str):
        self._set_preference('default_preset', key)

    # ------------------------------------------------------------------
    # Decoded texture cache
    # ------------------------------------------------------------------

    def _texture_path(self, url: str) -> Path:
        digest = hashlib.sha1(url.encode('utf-8')).hexdigest()
        return self.texture_cache_dir / f"{digest}{TEXTURE_CACHE_EXT}"

    def save_texture_cache(self, url: str, img: np.ndarray):
        """Cache a decoded RGBA uint8 texture to disk as lossless PNG."""
        if img is None:
            return
        bgra = cv2.cvtColor(img, cv2.COLOR_RGBA2BGRA)
        path = self._texture_path(url)
        if not cv2.imwrite(str(path), bgra, [cv2.IMWRITE_PNG_COMPRESSION, TEXTURE_PNG_COMPRESSION]):
            logger.warning("Could not write texture cache %s", path)

    def load_texture_cache(self, url: str) -> Optional[np.ndarray]:
        """Load a cached texture as RGBA uint8, or None."""
        path = self._texture_path(url)
        if not path.exists():
            return None
        img = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
        if img is None or img.ndim != 3 or img.shape[2] != 4:
            logger.info("Ignoring unreadable texture cache %s", path)
            return None
        return cv2.cvtColor(img, cv2.COLOR_BGRA2RGBA)

    def has_texture_cache(self, url: str) -> bool:
        return self._texture_path(url).exists()

    def clear_texture_cache(self):
        """Clear all cached textures."""
        for f in self.texture_cache_dir.glob(f"*{TEXTURE_CACHE_EXT}"):
            f.unlink()

    def get_texture_cache_stats(self) -> dict:
        files = list(self.texture_cache_dir.glob(f"*{TEXTURE_CACHE_EXT}"))
        return {
            'file_count': len(files),
            'total_bytes': sum(f.stat().st_size for f in files),
        }


# Global storage instance
_storage = None


def get_storage() -> Storage:
    """Get the global storage instance."""
    global _storage
    if _storage is None:
        _storage = Storage()
    return _storage
