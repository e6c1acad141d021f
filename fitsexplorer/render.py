"""Samples -> display raster.

Rendering is deterministic: the same samples and parameters always give a
bit-identical raster. Pipeline: pick black/white points (explicit, or from an
autoscale strategy), resample to the output size (nearest neighbour), normalise
to [0, 1] with clamping, apply the stretch, quantise to 256 levels and look the
levels up in a colormap table. Missing samples get ``MISSING_FILL``.
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Tuple, Union

import numpy as np
from scipy.ndimage import zoom as ndimage_zoom

from .config import (
    AUTOSCALE_HIGH_PERCENTILE,
    AUTOSCALE_LOW_PERCENTILE,
    AUTOSCALE_MAX_SAMPLES,
    THUMBNAIL_SIZE,
)
from .errors import RenderError
from .transform import sample_range

logger = logging.getLogger(__name__)

OUTPUT_LEVELS = 256
MISSING_FILL = (0, 0, 0)
LOG_EXPONENT = 1000.0  # ds9-style log stretch
ASINH_SOFTENING = 0.1


class StretchKind(Enum):
    LINEAR = "linear"
    LOG = "log"
    SQRT = "sqrt"
    ASINH = "asinh"


class Colormap(Enum):
    GRAY = "gray"
    RED = "red"
    GREEN = "green"
    BLUE = "blue"
    YELLOW = "yellow"
    MAGENTA = "magenta"
    CYAN = "cyan"
    HOT = "hot"
    GRAY_R = "gray_r"


# -------- stretches --------


def _linear(x: np.ndarray) -> np.ndarray:
    return x


def _log(x: np.ndarray) -> np.ndarray:
    return np.log10(LOG_EXPONENT * x + 1.0) / np.log10(LOG_EXPONENT + 1.0)


def _sqrt(x: np.ndarray) -> np.ndarray:
    return np.sqrt(x)


def _asinh(x: np.ndarray) -> np.ndarray:
    return np.arcsinh(x / ASINH_SOFTENING) / np.arcsinh(1.0 / ASINH_SOFTENING)


STRETCHES: Dict[StretchKind, Callable[[np.ndarray], np.ndarray]] = {
    StretchKind.LINEAR: _linear,
    StretchKind.LOG: _log,
    StretchKind.SQRT: _sqrt,
    StretchKind.ASINH: _asinh,
}


# -------- colormaps --------


def _tinted(r: int, g: int, b: int) -> np.ndarray:
    ramp = np.arange(OUTPUT_LEVELS, dtype=np.uint16)
    return np.stack([ramp * r, ramp * g, ramp * b], axis=1).astype(np.uint8)


def _hot() -> np.ndarray:
    x = np.arange(OUTPUT_LEVELS) / (OUTPUT_LEVELS - 1)
    channels = [np.clip(3.0 * x - k, 0.0, 1.0) for k in (0.0, 1.0, 2.0)]
    return np.rint(np.stack(channels, axis=1) * 255).astype(np.uint8)


COLORMAPS: Dict[Colormap, np.ndarray] = {
    Colormap.GRAY: _tinted(1, 1, 1),
    Colormap.RED: _tinted(1, 0, 0),
    Colormap.GREEN: _tinted(0, 1, 0),
    Colormap.BLUE: _tinted(0, 0, 1),
    Colormap.YELLOW: _tinted(1, 1, 0),
    Colormap.MAGENTA: _tinted(1, 0, 1),
    Colormap.CYAN: _tinted(0, 1, 1),
    Colormap.HOT: _hot(),
    Colormap.GRAY_R: _tinted(1, 1, 1)[::-1].copy(),
}


def _check_exhaustive(table: dict, kinds) -> None:
    missing = set(kinds) - set(table)
    if missing:
        raise RuntimeError(f"no dispatch entry for {sorted(m.value for m in missing)}")


_check_exhaustive(STRETCHES, StretchKind)
_check_exhaustive(COLORMAPS, Colormap)
for _lut in COLORMAPS.values():
    _lut.setflags(write=False)


def colormap_lut(colormap_id: Union[Colormap, str]) -> np.ndarray:
    """The read-only ``(256, 3)`` uint8 lookup table for a colormap."""
    return COLORMAPS[Colormap(colormap_id)]


# -------- autoscale strategies --------


class PercentileInterval:
    """Black/white points from percentiles of a strided subset of the frame.

    A 2-D frame is subsampled with the same step along both axes, the
    smallest step that keeps at most ``max_samples`` values, so every region
    of the frame contributes. Other shapes take every
    ``ceil(n / max_samples)``-th sample of the flattened data. Missing values
    are dropped and ``numpy.percentile`` (linear interpolation) gives the
    cut-offs. If the subset has no valid values, all valid values are used
    instead.
    """

    def __init__(
        self,
        low: float = AUTOSCALE_LOW_PERCENTILE,
        high: float = AUTOSCALE_HIGH_PERCENTILE,
        max_samples: int = AUTOSCALE_MAX_SAMPLES,
    ):
        if not 0.0 <= low < high <= 100.0:
            raise ValueError(f"invalid percentiles ({low}, {high})")
        if max_samples < 1:
            raise ValueError("max_samples must be >= 1")
        self.low = float(low)
        self.high = float(high)
        self.max_samples = int(max_samples)

    def __call__(self, samples: np.ndarray) -> Tuple[float, float]:
        data = np.asarray(samples)
        flat = data.ravel()
        subset = self._subsample(data).ravel()
        subset = subset[np.isfinite(subset)]
        if subset.size == 0:
            subset = flat[np.isfinite(flat)]
        if subset.size == 0:
            raise RenderError("frame has no valid samples")
        black, white = np.percentile(subset.astype(np.float64), [self.low, self.high])
        return float(black), float(white)

    def _subsample(self, data: np.ndarray) -> np.ndarray:
        if data.ndim != 2:
            flat = data.ravel()
            return flat[:: max(1, -(-flat.size // self.max_samples))]
        h, w = data.shape
        step = max(1, math.ceil(math.sqrt(data.size / self.max_samples)))
        while -(-h // step) * -(-w // step) > self.max_samples:
            step += 1
        return data[::step, ::step]

    def signature(self) -> tuple:
        return ("percentile", self.low, self.high, self.max_samples)

    def __repr__(self):
        return f"PercentileInterval(low={self.low}, high={self.high}, max_samples={self.max_samples})"


class MinMaxInterval:
    """Black/white points at the minimum and maximum valid sample."""

    def __call__(self, samples: np.ndarray) -> Tuple[float, float]:
        flat = np.asarray(samples).ravel()
        values = flat[np.isfinite(flat)]
        if values.size == 0:
            raise RenderError("frame has no valid samples")
        return float(values.min()), float(values.max())

    def signature(self) -> tuple:
        return ("minmax",)

    def __repr__(self):
        return "MinMaxInterval()"


# -------- parameters and output --------


@dataclass(frozen=True)
class StretchParams:
    """Render parameters. ``None`` black/white points request autoscaling;
    ``None`` width/height keep the frame's native size."""

    stretch: StretchKind = StretchKind.LINEAR
    colormap: Colormap = Colormap.GRAY
    black_point: Optional[float] = None
    white_point: Optional[float] = None
    width: Optional[int] = THUMBNAIL_SIZE
    height: Optional[int] = THUMBNAIL_SIZE

    def __post_init__(self):
        object.__setattr__(self, "stretch", StretchKind(self.stretch))
        object.__setattr__(self, "colormap", Colormap(self.colormap))
        for dim in (self.width, self.height):
            if dim is not None and dim < 1:
                raise ValueError(f"output size must be positive, got {dim}")

    def signature(self) -> tuple:
        return (
            self.stretch.value,
            self.colormap.value,
            self.black_point,
            self.white_point,
            self.width,
            self.height,
        )


@dataclass(frozen=True, eq=False)
class RenderedFrame:
    """Read-only ``(height, width, 3)`` uint8 raster and what produced it.

    ``data_min`` and ``data_max`` are the range of valid samples in the
    full-resolution frame, None when it has none.
    """

    pixels: np.ndarray
    stretch: StretchKind
    black_point: float
    white_point: float
    colormap: Colormap
    placeholder: bool = False
    data_min: Optional[float] = None
    data_max: Optional[float] = None

    @property
    def width(self) -> int:
        return self.pixels.shape[1]

    @property
    def height(self) -> int:
        return self.pixels.shape[0]

    @property
    def nbytes(self) -> int:
        return self.pixels.nbytes

    @property
    def params(self) -> tuple:
        return (self.stretch, self.black_point, self.white_point, self.colormap)


def _resample(data: np.ndarray, width: Optional[int], height: Optional[int]) -> np.ndarray:
    h, w = data.shape
    out_h = h if height is None else height
    out_w = w if width is None else width
    if (out_h, out_w) == (h, w):
        return data
    # order=0: nearest neighbour, missing values are copied, never interpolated
    resized = ndimage_zoom(data, (out_h / h, out_w / w), order=0)
    if resized.shape != (out_h, out_w):
        rows = np.arange(out_h) * h // out_h
        cols = np.arange(out_w) * w // out_w
        resized = data[np.ix_(rows, cols)]
    return resized


def _to_levels(
    data: np.ndarray, black: float, white: float, stretch_fn: Callable
) -> np.ndarray:
    span = white - black
    with np.errstate(invalid="ignore", over="ignore"):
        if span > 0:
            x = (data - black) / span
        else:
            x = np.where(data > black, 1.0, 0.0)
        x = np.clip(x, 0.0, 1.0)
        y = stretch_fn(x)
    y = np.nan_to_num(y, nan=0.0)
    return np.rint(y * (OUTPUT_LEVELS - 1)).astype(np.uint8)


def render(
    samples: np.ndarray,
    width: Optional[int] = None,
    height: Optional[int] = None,
    stretch_kind: Union[StretchKind, str] = StretchKind.LINEAR,
    colormap_id: Union[Colormap, str] = Colormap.GRAY,
    black_point: Optional[float] = None,
    white_point: Optional[float] = None,
    autoscale: Optional[Callable[[np.ndarray], Tuple[float, float]]] = None,
) -> RenderedFrame:
    """Map a 2-D sample frame to a display raster.

    Args:
        samples: ``(height, width)`` floats; NaN marks missing samples. 1-D
            input is treated as a single row.
        width, height: output size; ``None`` keeps the input size.
        stretch_kind: one of :class:`StretchKind`.
        colormap_id: one of :class:`Colormap`.
        black_point, white_point: explicit cut-offs; whichever is ``None`` is
            taken from ``autoscale`` (default :class:`PercentileInterval`).
            Autoscaling always sees the full-resolution frame.

    Raises:
        RenderError: empty input, or autoscaling over a frame with no valid
            samples.
    """
    data = np.asarray(samples, dtype=np.float64)
    if data.ndim == 1:
        data = data.reshape(1, -1)
    if data.ndim != 2 or data.size == 0:
        raise RenderError(f"cannot render samples of shape {data.shape}")
    stretch_kind = StretchKind(stretch_kind)
    colormap_id = Colormap(colormap_id)

    data_range = sample_range(data)
    if black_point is None or white_point is None:
        auto_black, auto_white = (autoscale or PercentileInterval())(data)
        black = auto_black if black_point is None else float(black_point)
        white = auto_white if white_point is None else float(white_point)
    else:
        black, white = float(black_point), float(white_point)

    data = _resample(data, width, height)
    levels = _to_levels(data, black, white, STRETCHES[stretch_kind])
    pixels = COLORMAPS[colormap_id][levels]
    pixels[np.isnan(data)] = MISSING_FILL
    pixels.setflags(write=False)
    data_min, data_max = data_range if data_range is not None else (None, None)
    return RenderedFrame(
        pixels, stretch_kind, black, white, colormap_id, data_min=data_min, data_max=data_max
    )


def placeholder_frame(
    width: Optional[int], height: Optional[int], params: Optional[StretchParams] = None
) -> RenderedFrame:
    """Blank raster returned when a frame cannot be rendered."""
    params = params or StretchParams()
    pixels = np.empty((height or THUMBNAIL_SIZE, width or THUMBNAIL_SIZE, 3), dtype=np.uint8)
    pixels[...] = MISSING_FILL
    pixels.setflags(write=False)
    return RenderedFrame(
        pixels,
        params.stretch,
        float("nan") if params.black_point is None else params.black_point,
        float("nan") if params.white_point is None else params.white_point,
        params.colormap,
        placeholder=True,
    )
