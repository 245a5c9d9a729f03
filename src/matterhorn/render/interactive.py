"""
Superseding renderer for interactive previews.

Every request bumps a generation counter. In-flight work checks its token
between tiles and stops once a newer request exists; a result is only
delivered if its generation is still the latest. No thread is killed.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional, Tuple

import numpy as np

from matterhorn.cancel import CancelToken
from matterhorn.errors import RenderCancelled
from matterhorn.render.backend import FrameRenderer, RenderRequest

logger = logging.getLogger(__name__)

FrameCallback = Callable[[int, np.ndarray], None]


class InteractiveRenderer:
    """
    Wraps a FrameRenderer so only the most recent request reaches the viewport.

    Args:
        renderer: Backend that produces frames.
        on_frame: Optional callback(generation, frame) for delivered frames.
    """

    def __init__(self, renderer: FrameRenderer, on_frame: Optional[FrameCallback] = None):
        self.renderer = renderer
        self.on_frame = on_frame
        self._lock = threading.Lock()
        self._generation = 0
        self._latest: Optional[Tuple[int, np.ndarray]] = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="matterhorn-preview")

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    @property
    def latest(self) -> Optional[Tuple[int, np.ndarray]]:
        """(generation, frame) of the last delivered frame."""
        with self._lock:
            return self._latest

    def is_current(self, generation: int) -> bool:
        with self._lock:
            return generation == self._generation

    def submit(self, request: RenderRequest) -> Future:
        """
        Queue a render, superseding everything submitted before it.

        The future resolves to the frame, or None if the request went stale.
        """
        with self._lock:
            self._generation += 1
            generation = self._generation
        token = CancelToken(lambda: not self.is_current(generation))
        return self._executor.submit(self._run, generation, request, token)

    def _run(self, generation: int, request: RenderRequest, token: CancelToken):
        if token.cancelled:
            logger.debug("skipping stale preview generation %d", generation)
            return None
        try:
            frame = self.renderer.render(request, cancel=token)
        except RenderCancelled:
            logger.debug("preview generation %d superseded mid-render", generation)
            return None

        with self._lock:
            if generation != self._generation:
                logger.debug("discarding stale preview generation %d", generation)
                return None
            self._latest = (generation, frame)

        if self.on_frame is not None:
            self.on_frame(generation, frame)
        return frame

    def close(self):
        with self._lock:
            # Invalidate anything still queued.
            self._generation += 1
        self._executor.shutdown(wait=True)
        self.renderer.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
