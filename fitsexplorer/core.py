"""Browser service: scan a directory and serve rendered frames.

The presentation layer owns an :class:`ImageBrowser`, asks it for frames
synchronously (:meth:`ImageBrowser.get_display_frame`) or asynchronously
(:meth:`ImageBrowser.request_frame`, results pushed to
:attr:`ImageBrowser.completions`), and cancels requests it no longer needs.
"""

import logging
import math
import queue
import threading
from concurrent.futures import CancelledError, ThreadPoolExecutor
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Callable, Dict, List, NamedTuple, Optional, Set, Tuple

import xarray as xr

from . import fits, tiff
from .cache import CacheKey, ThumbnailCache
from .config import FITS_EXTENSIONS, TIFF_EXTENSIONS, BrowserConfig
from .cube import as_lazy_cube, flatten, frame_unit, get_frame
from .errors import ExplorerError, IoError, RenderError, RequestCancelled, RootDirectoryError
from .model import DataUnit, FileIdentity
from .render import PercentileInterval, RenderedFrame, StretchParams, placeholder_frame, render
from .scanner import ScanResult, scan

logger = logging.getLogger(__name__)

# Frame index that renders the mean of all frames of a cube
FLATTENED_FRAME = -1


class FormatReader(NamedTuple):
    load: Callable[[str], DataUnit]
    load_frame: Callable[[str, int], DataUnit]
    probe: Callable[[str], Tuple[Tuple[int, ...], int]]


def _load_fits(path: str) -> DataUnit:
    _, data_unit = fits.load_image(path, mmap=True)
    return data_unit


def _load_fits_frame(path: str, index: int) -> DataUnit:
    # Memory-mapped, so only the pages of this frame are read
    return frame_unit(_load_fits(path), index)


def _probe_fits(path: str) -> Tuple[Tuple[int, ...], int]:
    header = fits.probe(path)
    return header.axes, header.bitpix


FITS_READER = FormatReader(_load_fits, _load_fits_frame, _probe_fits)
TIFF_READER = FormatReader(tiff.read_tiff, tiff.read_frame, tiff.probe)

FORMAT_READERS: Dict[str, FormatReader] = {
    **{ext: FITS_READER for ext in FITS_EXTENSIONS},
    **{ext: TIFF_READER for ext in TIFF_EXTENSIONS},
}


def reader_for(identity: FileIdentity) -> FormatReader:
    try:
        return FORMAT_READERS[identity.suffix]
    except KeyError:
        raise IoError(identity.path, f"no reader for {identity.suffix!r} files") from None


@dataclass(frozen=True)
class CatalogEntry:
    """A scanned file with its probed shape, or the error that excludes it."""

    identity: FileIdentity
    axes: Tuple[int, ...] = ()
    bitpix: Optional[int] = None
    error: Optional[ExplorerError] = None

    @property
    def browsable(self) -> bool:
        return self.error is None

    @property
    def frame_count(self) -> int:
        return math.prod(self.axes[2:]) if self.axes else 0


class CancelToken:
    """Per-request cancellation flag."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RequestCancelled("request cancelled")


class FrameRequest:
    """Handle for an asynchronous frame request."""

    def __init__(
        self,
        identity: FileIdentity,
        frame_index: int,
        params: StretchParams,
        token: Optional[CancelToken] = None,
    ):
        self.identity = identity
        self.frame_index = frame_index
        self.params = params
        self.token = token or CancelToken()
        self.future = None

    def cancel(self) -> None:
        self.token.cancel()

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    def done(self) -> bool:
        return self.future is not None and self.future.done()

    def result(self, timeout: Optional[float] = None) -> RenderedFrame:
        """Wait for the frame. Raises RequestCancelled for cancelled requests."""
        try:
            frame = self.future.result(timeout)
        except CancelledError:
            raise RequestCancelled(f"{self!r} cancelled before start") from None
        self.token.raise_if_cancelled()
        return frame

    def __repr__(self):
        return (
            f"FrameRequest({self.identity.name!r}, frame={self.frame_index}, "
            f"cancelled={self.cancelled})"
        )


@dataclass
class FrameEvent:
    """Completion notification pushed to :attr:`ImageBrowser.completions`."""

    request: FrameRequest
    frame: Optional[RenderedFrame] = None
    error: Optional[BaseException] = None
    cancelled: bool = False


class ImageBrowser:
    """Decode-and-render service for one root directory.

    Args:
        root: directory to browse. Validated once here.
        config: session settings, defaults to :class:`BrowserConfig`.
        cache: shared :class:`ThumbnailCache`; one is created (and closed with
            the browser) if not given.

    Raises:
        RootDirectoryError: ``root`` is not a readable directory.
    """

    def __init__(
        self,
        root,
        config: Optional[BrowserConfig] = None,
        cache: Optional[ThumbnailCache] = None,
    ):
        self.root = Path(root)
        if not self.root.is_dir():
            raise RootDirectoryError(f"not a directory: {self.root}")
        self.config = config or BrowserConfig()
        self._owns_cache = cache is None
        self._cache = cache if cache is not None else ThumbnailCache(
            self.config.cache_capacity, self.config.cache_max_memory_bytes
        )
        self._autoscale = PercentileInterval(
            self.config.low_percentile,
            self.config.high_percentile,
            self.config.autoscale_max_samples,
        )
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.max_workers, thread_name_prefix="fitsexplorer"
        )
        self.completions: "queue.Queue[FrameEvent]" = queue.Queue()
        self._pending: Set[FrameRequest] = set()
        self._pending_lock = threading.Lock()

    @property
    def cache(self) -> ThumbnailCache:
        return self._cache

    # -------- discovery --------

    def scan(self) -> ScanResult:
        return scan(self.root, self.config.extensions, recursive=self.config.recursive)

    def probe(self, identity: FileIdentity) -> CatalogEntry:
        axes, bitpix = reader_for(identity).probe(identity.path)
        return CatalogEntry(identity, axes=tuple(axes), bitpix=bitpix)

    def catalog(self) -> List[CatalogEntry]:
        """Scan and probe every file; unparseable files are kept with their error."""
        entries = []
        for identity in self.scan():
            try:
                entries.append(self.probe(identity))
            except ExplorerError as e:
                logger.warning("File %s is not browsable: %s", identity.path, e)
                entries.append(CatalogEntry(identity, error=e))
        return entries

    # -------- decoding and rendering --------

    def load_unit(self, identity: FileIdentity) -> DataUnit:
        return reader_for(identity).load(identity.path)

    def lazy_cube(self, identity: FileIdentity) -> xr.DataArray:
        """Lazy ``(frame, y, x)`` view of a file's image data."""
        return as_lazy_cube(self.load_unit(identity), name=identity.name)

    def _render_frame(
        self, identity: FileIdentity, frame_index: int, params: StretchParams
    ) -> RenderedFrame:
        reader = reader_for(identity)
        if frame_index == FLATTENED_FRAME:
            samples = flatten(reader.load(identity.path))
        else:
            samples = get_frame(reader.load_frame(identity.path, frame_index), 0)
        try:
            return render(
                samples,
                params.width,
                params.height,
                params.stretch,
                params.colormap,
                params.black_point,
                params.white_point,
                autoscale=self._autoscale,
            )
        except RenderError as e:
            logger.debug(
                "Rendering placeholder for %s frame %d: %s", identity.path, frame_index, e
            )
            return placeholder_frame(params.width, params.height, params)

    def get_display_frame(
        self,
        identity: FileIdentity,
        frame_index: int = 0,
        params: Optional[StretchParams] = None,
    ) -> RenderedFrame:
        """Rendered frame for ``identity``, from the cache when possible.

        The file is re-stat'ed so a file changed since the scan is re-rendered
        rather than served from a stale entry. Only the requested frame is
        decoded, except for ``FLATTENED_FRAME``.

        Raises:
            IoError, ParseError: the file cannot be read or decoded.
            IndexOutOfRange: ``frame_index`` is outside the cube.
        """
        params = params or StretchParams()
        current = fits.open(identity.path)
        if identity.is_stale(current):
            logger.debug("%s changed since it was scanned", identity.path)
        key = CacheKey(
            current, frame_index, params.signature() + self._autoscale.signature()
        )
        return self._cache.get_or_compute(
            key, partial(self._render_frame, current, frame_index, params)
        )

    def frame_count(self, identity: FileIdentity) -> int:
        """Number of frames, from the headers only."""
        return self.probe(identity).frame_count

    # -------- asynchronous requests --------

    def request_frame(
        self,
        identity: FileIdentity,
        frame_index: int = 0,
        params: Optional[StretchParams] = None,
        token: Optional[CancelToken] = None,
    ) -> FrameRequest:
        """Queue a render on the worker pool; the result is pushed to ``completions``."""
        request = FrameRequest(identity, frame_index, params or StretchParams(), token)
        with self._pending_lock:
            request.future = self._executor.submit(self._run_request, request)
            self._pending.add(request)
        return request

    def _run_request(self, request: FrameRequest) -> RenderedFrame:
        try:
            return self._deliver(request)
        finally:
            with self._pending_lock:
                self._pending.discard(request)

    def _deliver(self, request: FrameRequest) -> RenderedFrame:
        if request.cancelled:
            self.completions.put(FrameEvent(request, cancelled=True))
            raise RequestCancelled(f"{request!r} cancelled before start")
        try:
            frame = self.get_display_frame(
                request.identity, request.frame_index, request.params
            )
        except Exception as e:
            if request.cancelled:
                self.completions.put(FrameEvent(request, cancelled=True))
            else:
                if isinstance(e, ExplorerError):
                    logger.warning("Request %r failed: %s", request, e)
                else:
                    logger.error("Request %r failed unexpectedly: %s", request, e, exc_info=True)
                self.completions.put(FrameEvent(request, error=e))
            raise
        if request.cancelled:
            # Result stays in the cache but is not delivered
            self.completions.put(FrameEvent(request, cancelled=True))
            raise RequestCancelled(f"{request!r} cancelled")
        self.completions.put(FrameEvent(request, frame=frame))
        return frame

    # -------- teardown --------

    def close(self) -> None:
        """Stop the worker pool and release the cache.

        Requests still queued are cancelled and get a cancelled ``FrameEvent``;
        running requests finish and are delivered as usual.
        """
        with self._pending_lock:
            pending = list(self._pending)
            self._pending.clear()
        for request in pending:
            if request.future.cancel():
                request.cancel()
                self.completions.put(FrameEvent(request, cancelled=True))
        self._executor.shutdown(wait=True, cancel_futures=True)
        if self._owns_cache:
            self._cache.close()

    def __enter__(self) -> "ImageBrowser":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
