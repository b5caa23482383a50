"""Runs cascade searches off the event loop.

Routes are async but a search is CPU-bound Python and numpy, so searches go
to a small thread pool. An ``asyncio.Semaphore`` bounds how many run at once;
uploads that cannot get a slot within ``queue_timeout`` seconds fail with
``TimeoutError`` and the API answers 503.

The ``FaceDetector`` and its cascade are shared by every worker. Each search
builds its own integral tables, so nothing else needs locking.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from PIL import Image

    from haarscan.config import Settings
    from haarscan.ml.face_detector import DetectionResult, FaceDetector

logger = logging.getLogger(__name__)


class SearchPool:
    """Bounded executor for ``FaceDetector.detect_image`` calls."""

    def __init__(self, settings: Settings) -> None:
        self._queue_timeout = settings.queue_timeout
        self._slots = asyncio.Semaphore(settings.max_concurrent)
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent,
            thread_name_prefix="cascade-search",
        )
        self._running = 0
        self._waiting = 0
        self._lock = threading.Lock()

    async def detect(self, detector: FaceDetector, image: Image.Image) -> DetectionResult | None:
        """Search ``image`` on a worker thread.

        Raises:
            TimeoutError: If every worker stays busy for ``queue_timeout`` seconds.
            InvalidImageError: Propagated from the detector.
        """
        async with self._slot(image):
            loop = asyncio.get_running_loop()
            started = time.perf_counter()
            result = await loop.run_in_executor(self._executor, detector.detect_image, image)
            logger.debug(
                "Searched %dx%d upload in %.1f ms",
                image.width,
                image.height,
                (time.perf_counter() - started) * 1000,
            )
            return result

    @asynccontextmanager
    async def _slot(self, image: Image.Image) -> AsyncIterator[None]:
        self._adjust(waiting=1)
        try:
            await asyncio.wait_for(self._slots.acquire(), timeout=self._queue_timeout)
        except TimeoutError:
            logger.warning(
                "No search slot for %dx%d upload after %.1fs (%d running)",
                image.width,
                image.height,
                self._queue_timeout,
                self.active_count,
            )
            raise
        finally:
            self._adjust(waiting=-1)

        self._adjust(running=1)
        try:
            yield
        finally:
            self._slots.release()
            self._adjust(running=-1)

    def _adjust(self, running: int = 0, waiting: int = 0) -> None:
        with self._lock:
            self._running += running
            self._waiting += waiting

    @property
    def active_count(self) -> int:
        """Searches currently running on a worker."""
        with self._lock:
            return self._running

    @property
    def queue_depth(self) -> int:
        """Uploads waiting for a free worker."""
        with self._lock:
            return self._waiting

    def shutdown(self) -> None:
        """Wait for running searches, then stop the workers."""
        self._executor.shutdown(wait=True)
