"""Constants and runtime configuration."""

import logging
import os
from dataclasses import dataclass, fields
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

# FITS layout
BLOCK_SIZE = 2880
RECORD_SIZE = 80
RECORDS_PER_BLOCK = BLOCK_SIZE // RECORD_SIZE  # 36

# Directory scanning
FITS_EXTENSIONS = {".fits", ".fit", ".fts"}
TIFF_EXTENSIONS = {".tif", ".tiff"}
DEFAULT_EXTENSIONS = FITS_EXTENSIONS | TIFF_EXTENSIONS

# Thumbnail cache
CACHE_CAPACITY = 64  # entries
CACHE_MAX_MEMORY_BYTES = 256 * 1024 * 1024  # 256MB of rendered rasters

# Rendering
THUMBNAIL_SIZE = 256  # default output width/height in pixels
AUTOSCALE_LOW_PERCENTILE = 0.25
AUTOSCALE_HIGH_PERCENTILE = 99.75
AUTOSCALE_MAX_SAMPLES = 10_000  # strided subset size for percentile estimation

# Worker pool
MAX_WORKERS = 4

ENV_PREFIX = "FITSEXPLORER_"


@dataclass(frozen=True)
class BrowserConfig:
    """Settings for an :class:`~fitsexplorer.core.ImageBrowser` session."""

    extensions: Tuple[str, ...] = tuple(sorted(DEFAULT_EXTENSIONS))
    recursive: bool = False
    cache_capacity: int = CACHE_CAPACITY
    cache_max_memory_bytes: int = CACHE_MAX_MEMORY_BYTES
    max_workers: int = MAX_WORKERS
    low_percentile: float = AUTOSCALE_LOW_PERCENTILE
    high_percentile: float = AUTOSCALE_HIGH_PERCENTILE
    autoscale_max_samples: int = AUTOSCALE_MAX_SAMPLES

    def __post_init__(self):
        if self.cache_capacity < 1:
            raise ValueError("cache_capacity must be >= 1")
        if self.max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        if not (0.0 <= self.low_percentile < self.high_percentile <= 100.0):
            raise ValueError("percentiles must satisfy 0 <= low < high <= 100")
        if self.autoscale_max_samples < 1:
            raise ValueError("autoscale_max_samples must be >= 1")

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "BrowserConfig":
        """Build a config, overriding defaults from ``FITSEXPLORER_*`` variables.

        ``FITSEXPLORER_CACHE_CAPACITY=128`` sets ``cache_capacity``, and so on.
        ``FITSEXPLORER_EXTENSIONS`` is a comma separated list such as
        ``.fits,.fit``. Unparseable values are ignored with a warning.
        """
        env = os.environ if environ is None else environ
        overrides = {}
        for f in fields(cls):
            raw = env.get(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            try:
                if f.name == "extensions":
                    exts = [e.strip().lower() for e in raw.split(",") if e.strip()]
                    overrides[f.name] = tuple(
                        e if e.startswith(".") else f".{e}" for e in exts
                    )
                elif f.name == "recursive":
                    overrides[f.name] = raw.strip().lower() in ("1", "true", "yes")
                elif f.type in (int, "int"):
                    overrides[f.name] = int(raw)
                else:
                    overrides[f.name] = float(raw)
            except ValueError:
                logger.warning("Ignoring invalid %s%s=%r", ENV_PREFIX, f.name.upper(), raw)
        return cls(**overrides)
