"""
Shared fixtures for the pool material visualizer tests
"""

import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from geometry import Mask
from storage import Storage


def solid_rgba(width: int, height: int, color: tuple = (200, 200, 200, 255)) -> np.ndarray:
    """Create an RGBA image with a solid color."""
    img = np.zeros((height, width, 4), dtype=np.uint8)
    img[:, :] = color
    return img


@pytest.fixture
def tmp_storage(tmp_path):
    return Storage(db_path=tmp_path / "test.db", texture_cache_dir=tmp_path / "textures")


@pytest.fixture
def square_points():
    return [(0, 0), (100, 0), (100, 100), (0, 100)]


@pytest.fixture
def square_mask(square_points):
    return Mask(id='pool-floor', points=square_points, material_id='tile-blue')


@pytest.fixture(scope='session')
def qt_app():
    from PySide6.QtCore import QCoreApplication
    app = QCoreApplication.instance() or QCoreApplication([])
    yield app
