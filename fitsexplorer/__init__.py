"""fitsexplorer - Decode-and-render core for browsing FITS and TIFF images."""

try:
    from importlib.metadata import version

    __version__ = version("fitsexplorer")
except Exception:
    __version__ = "unknown"

from .cache import CacheKey, CacheState, ThumbnailCache
from .config import BrowserConfig
from .core import (
    FLATTENED_FRAME,
    CancelToken,
    CatalogEntry,
    FrameEvent,
    FrameRequest,
    ImageBrowser,
)
from .cube import as_lazy_cube, flatten, frame_count, get_frame
from .errors import (
    BlockAlignmentError,
    ExplorerError,
    IndexOutOfRange,
    InvalidKeywordSyntax,
    IoError,
    ParseError,
    RenderError,
    RequestCancelled,
    RootDirectoryError,
    TruncatedFile,
    UnsupportedSampleWidth,
)
from .model import Card, DataUnit, FileIdentity, HeaderUnit
from .render import (
    Colormap,
    MinMaxInterval,
    PercentileInterval,
    RenderedFrame,
    StretchKind,
    StretchParams,
    render,
)
from .scanner import ScanResult, ScanWarning, scan
from .transform import MISSING, to_samples

__all__ = [
    "__version__",
    "FLATTENED_FRAME",
    "MISSING",
    "BlockAlignmentError",
    "BrowserConfig",
    "CacheKey",
    "CacheState",
    "CancelToken",
    "Card",
    "CatalogEntry",
    "Colormap",
    "DataUnit",
    "ExplorerError",
    "FileIdentity",
    "FrameEvent",
    "FrameRequest",
    "HeaderUnit",
    "ImageBrowser",
    "IndexOutOfRange",
    "InvalidKeywordSyntax",
    "IoError",
    "MinMaxInterval",
    "ParseError",
    "PercentileInterval",
    "RenderError",
    "RenderedFrame",
    "RequestCancelled",
    "RootDirectoryError",
    "ScanResult",
    "ScanWarning",
    "StretchKind",
    "StretchParams",
    "ThumbnailCache",
    "TruncatedFile",
    "UnsupportedSampleWidth",
    "as_lazy_cube",
    "flatten",
    "frame_count",
    "get_frame",
    "render",
    "scan",
    "to_samples",
]
