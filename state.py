"""
POOL MATERIAL VISUALIZER - Shared State

Centralized viewport state shared between the canvas and the overlays.
"""

import logging
import threading
from typing import Optional

from PySide6.QtCore import QObject, Signal

import storage
import viewport
from viewport import PhotoSpace

logger = logging.getLogger(__name__)


class ViewportState(QObject):
    """Single source of truth for the live PhotoSpace of the editor.

    Every mutation is a read-modify-write of the whole PhotoSpace done under
    one lock and published as one photoSpaceChanged emission, so a zoom can
    never observe a half-applied pan. Image loads are tracked with tokens:
    a superseded load's completion is ignored.
    """

    photoSpaceChanged = Signal(object)  # PhotoSpace
    zoomLabelChanged = Signal(str)  # e.g. "150%"
    imageLoadIgnored = Signal(int)  # stale token

    def __init__(self, store: Optional[storage.Storage] = None, autosave: bool = True):
        super().__init__()
        self._store = store
        self._autosave = autosave
        self._lock = threading.RLock()
        self._space = PhotoSpace()
        self._photo_id: Optional[str] = None
        self._load_token = 0
        self._pending_photo_id: Optional[str] = None

    @property
    def store(self) -> storage.Storage:
        if self._store is None:
            self._store = storage.get_storage()
        return self._store

    @property
    def photo_space(self) -> PhotoSpace:
        with self._lock:
            return self._space

    @property
    def photo_id(self) -> Optional[str]:
        return self._photo_id

    @property
    def is_ready(self) -> bool:
        return self.photo_space.is_ready

    @property
    def zoom_label(self) -> str:
        return viewport.format_zoom_label(self.photo_space)

    def _commit(self, new_space: PhotoSpace, persist: bool = True) -> list:
        """Publish new_space. Caller must hold the lock.

        Returns the (signal, value) pairs to emit once the lock is released.
        """
        if new_space == self._space:
            return []
        old_label = viewport.format_zoom_label(self._space)
        self._space = new_space
        if persist and self._autosave and self._photo_id and new_space.is_ready:
            viewport.persist(self.store, self._photo_id, new_space)
        pending = [(self.photoSpaceChanged, new_space)]
        new_label = viewport.format_zoom_label(new_space)
        if new_label != old_label:
            pending.append((self.zoomLabelChanged, new_label))
        return pending

    @staticmethod
    def _emit(pending: list):
        for signal, value in pending:
            signal.emit(value)

    # ------------------------------------------------------------------
    # Image loading
    # ------------------------------------------------------------------

    def begin_image_load(self, photo_id: str) -> int:
        """Register a new image load and return its token.

        Any load started earlier becomes stale.
        """
        with self._lock:
            self._load_token += 1
            self._pending_photo_id = photo_id
            return self._load_token

    def cancel_image_load(self):
        """Invalidate the in-flight load, if any."""
        with self._lock:
            self._load_token += 1
            self._pending_photo_id = None

    def finish_image_load(self, token: int, natural_w: int, natural_h: int,
                          container_w: float, container_h: float,
                          device_pixel_ratio: float = 1.0) -> bool:
        """Complete a load with the decoded image's natural dimensions.

        Restores the persisted viewport for the photo when it is still valid
        for these dimensions, otherwise fits the image. Returns False (and
        changes nothing) when token has been superseded.
        """
        with self._lock:
            stale = token != self._load_token or self._pending_photo_id is None
            if stale:
                logger.debug("Ignoring stale image load (token %s, current %s)",
                             token, self._load_token)
                pending = [(self.imageLoadIgnored, token)]
            else:
                photo_id = self._pending_photo_id
                self._pending_photo_id = None
                self._photo_id = photo_id

                restored = viewport.restore(self.store, photo_id, natural_w, natural_h,
                                            container_w, container_h, device_pixel_ratio)
                if restored is not None:
                    pending = self._commit(restored, persist=False)
                else:
                    pending = self._commit(viewport.fit(natural_w, natural_h, container_w, container_h,
                                                        device_pixel_ratio=device_pixel_ratio))
        self._emit(pending)
        return not stale

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def set_container_size(self, container_w: float, container_h: float):
        """React to a layout change, keeping a centred image centred."""
        pending = []
        with self._lock:
            space = self._space
            if not space.is_ready:
                if space.img_w > 0 and space.img_h > 0:
                    pending = self._commit(viewport.fit(space.img_w, space.img_h, container_w, container_h,
                                                        device_pixel_ratio=space.device_pixel_ratio))
            else:
                moved = viewport.restore_from_blob(viewport.to_blob(space), space.img_w, space.img_h,
                                                   container_w, container_h,
                                                   space.device_pixel_ratio)
                if moved is not None:
                    pending = self._commit(moved)
        self._emit(pending)

    def zoom_at_point(self, screen_x: float, screen_y: float, delta_percent: float):
        with self._lock:
            pending = self._commit(viewport.zoom_at_point(self._space, screen_x, screen_y, delta_percent))
        self._emit(pending)

    def set_zoom_percent(self, percent: float):
        with self._lock:
            pending = self._commit(viewport.set_zoom_percent(self._space, percent))
        self._emit(pending)

    def pan_by(self, delta_x: float, delta_y: float):
        pending = []
        with self._lock:
            if self._space.is_ready:
                pending = self._commit(viewport.pan(self._space, delta_x, delta_y))
        self._emit(pending)

    def reset_to_fit(self):
        with self._lock:
            pending = self._commit(viewport.reset_to_fit(self._space))
        self._emit(pending)

    def update(self, **fields):
        """Apply a partial update; invalid fields are dropped by the guard."""
        with self._lock:
            pending = self._commit(viewport.apply_updates(self._space, fields))
        self._emit(pending)

    def forget_photo(self, photo_id: str):
        """Remove the persisted viewport for a photo."""
        self.store.delete_photo_space(photo_id)
