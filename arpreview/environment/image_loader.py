"""
Callback-style image loader

``ImageLoader.load`` mirrors the browser image-loading contract the model
loader was written against: it returns a placeholder image right away and
reports the real outcome through ``on_load`` / ``on_error``. The decode runs
as a task on the current event loop.
"""

import asyncio
import logging
from typing import Callable, List, Optional, Set

from PIL import Image

from arpreview.environment.host import HostEnvironment
from arpreview.environment.resolvers import (
    BlobImageResolver,
    ImageResolver,
    PathImageResolver,
)
from arpreview.exceptions import ImageDecodeError, ImageLoadError

logger = logging.getLogger(__name__)

OnLoad = Callable[[Image.Image], None]
OnProgress = Callable[[int, int], None]
OnError = Callable[[Exception], None]


class ImageLoader:
    """
    Load images by URL through a chain of resolvers.

    Blob URLs are looked up in the environment's registry; any other URL is
    treated as a path or data URI. Pass ``resolvers`` to replace the chain.

    Example:
        >>> loader = ImageLoader(HostEnvironment.create())
        >>> image = await loader.load_async("textures/wood.png")
    """

    def __init__(
        self,
        environment: HostEnvironment,
        base_path: Optional[str] = None,
        resolvers: Optional[List[ImageResolver]] = None,
    ):
        self.environment = environment
        if resolvers is None:
            resolvers = [
                BlobImageResolver(environment.blobs),
                PathImageResolver(base_path),
            ]
        self.resolvers = resolvers
        self._tasks: Set[asyncio.Task] = set()

    def load(
        self,
        url: str,
        on_load: OnLoad,
        on_progress: Optional[OnProgress] = None,
        on_error: Optional[OnError] = None,
    ) -> Image.Image:
        """
        Start loading ``url``. Must be called with an event loop running.

        Exactly one of ``on_load`` / ``on_error`` fires, later, on the loop.
        The returned image is a placeholder and never receives the pixels.
        """
        logger.debug(f"Loading image: {url[:50]}...")
        loop = asyncio.get_running_loop()
        task = loop.create_task(self._load(url, on_load, on_progress, on_error))
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return self.environment.create_image()

    async def load_async(self, url: str) -> Image.Image:
        """Load ``url`` and return the decoded image, raising ImageLoadError on failure"""
        loop = asyncio.get_running_loop()
        future = loop.create_future()

        def _on_load(image):
            if not future.done():
                future.set_result(image)

        def _on_error(error):
            if not future.done():
                future.set_exception(error)

        self.load(url, _on_load, on_error=_on_error)
        return await future

    async def _load(self, url, on_load, on_progress, on_error) -> None:
        try:
            data = self._resolver_for(url).resolve(url)
            if on_progress is not None:
                on_progress(len(data), len(data))
            if self.environment.blobs.is_blob_url(url):
                logger.debug("Blob loaded, converting to image...")
            image = await self.environment.decode_image(data)
        except ImageLoadError as e:
            self._fail(e, on_error)
            return
        except Exception as e:
            error = ImageDecodeError(f"Could not load image {url[:50]}: {e}")
            error.__cause__ = e
            self._fail(error, on_error)
            return

        logger.debug(f"Image loaded successfully ({image.width}x{image.height})")
        on_load(image)

    def _fail(self, error: ImageLoadError, on_error: Optional[OnError]) -> None:
        logger.error(f"Image load failed: {error}")
        if on_error is not None:
            on_error(error)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Image load callback raised: {error!r}")

    def _resolver_for(self, url: str) -> ImageResolver:
        for resolver in self.resolvers:
            if resolver.matches(url):
                return resolver
        raise ImageLoadError(f"No resolver for image URL: {url[:50]}")
