"""
POOL MATERIAL VISUALIZER - Configuration

Shared locations, limits and logging setup.
"""

import logging
from pathlib import Path
from typing import Optional

# Application data location
APP_DIR = Path.home() / ".config" / "pool-material-visualizer"
DB_FILE = APP_DIR / "cache.db"
TEXTURE_CACHE_DIR = APP_DIR / "texture_cache"

# Network / decode bound for texture fetches (seconds)
FETCH_TIMEOUT_SECONDS = 10.0

# Compositing result cache capacity (entries)
DEFAULT_RESULT_CACHE_ENTRIES = 20

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(level: int = logging.INFO, log_file: Optional[Path] = None) -> logging.Logger:
    """Attach console (and optionally file) handlers to the root logger.

    Safe to call more than once; handlers are only added the first time.
    """
    root = logging.getLogger()
    root.setLevel(level)

    if not any(getattr(h, '_pmv_handler', False) for h in root.handlers):
        formatter = logging.Formatter(LOG_FORMAT)

        stream = logging.StreamHandler()
        stream.setFormatter(formatter)
        stream._pmv_handler = True
        root.addHandler(stream)

        if log_file is not None:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            fh = logging.FileHandler(log_file)
            fh.setFormatter(formatter)
            fh._pmv_handler = True
            root.addHandler(fh)

    return root
