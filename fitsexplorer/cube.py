"""Frame access for multi-dimensional data units.

A unit with more than two axes is a cube of ``NAXIS1 x NAXIS2`` frames. Frame
``i`` is the ``i``-th contiguous run of ``NAXIS1 * NAXIS2`` samples, so frames
are sliced out of the raw buffer by offset without copying the cube.
"""

import logging
import math
from typing import Optional, Tuple

import dask.array as da
import numpy as np
import xarray as xr

from .errors import IndexOutOfRange
from .model import DataUnit
from .transform import to_samples

logger = logging.getLogger(__name__)


def frame_shape(data_unit: DataUnit) -> Tuple[int, int]:
    """(height, width) of one frame; 1-D data is a single row."""
    if data_unit.ndim == 1:
        return 1, data_unit.axes[0]
    return data_unit.axes[1], data_unit.axes[0]


def frame_count(data_unit: DataUnit) -> int:
    return math.prod(data_unit.axes[2:])


def frame_unit(data_unit: DataUnit, index: int) -> DataUnit:
    """Return frame ``index`` as a 2-D DataUnit sharing the cube's buffer."""
    count = frame_count(data_unit)
    if not 0 <= index < count:
        raise IndexOutOfRange(f"frame {index} out of range [0, {count})")
    if data_unit.ndim <= 2:
        return data_unit
    height, width = frame_shape(data_unit)
    frame_bytes = height * width * data_unit.sample_width
    start = index * frame_bytes
    view = memoryview(data_unit.buffer).cast("B")[start : start + frame_bytes]
    return DataUnit(
        view,
        (width, height),
        data_unit.bitpix,
        scale=data_unit.scale,
        offset=data_unit.offset,
        blank=data_unit.blank,
    )


def get_frame(data_unit: DataUnit, index: int) -> np.ndarray:
    """Samples of frame ``index`` as a ``(height, width)`` array."""
    samples = to_samples(frame_unit(data_unit, index))
    return samples.reshape(frame_shape(data_unit))


def flatten(data_unit: DataUnit) -> np.ndarray:
    """Mean of all frames, ignoring missing samples.

    Pixels missing in every frame stay missing. Frames are decoded one at a
    time so memory stays at a few frames regardless of cube depth.
    """
    count = frame_count(data_unit)
    if count == 1:
        return get_frame(data_unit, 0)
    shape = frame_shape(data_unit)
    total = np.zeros(shape, dtype=np.float64)
    n_valid = np.zeros(shape, dtype=np.int64)
    for i in range(count):
        frame = get_frame(data_unit, i)
        valid = np.isfinite(frame)
        total[valid] += frame[valid]
        n_valid += valid
    logger.debug("Flattened %d frames of %s", count, shape)
    mean = np.full(shape, np.nan)
    np.divide(total, n_valid, out=mean, where=n_valid > 0)
    return mean


def as_lazy_cube(data_unit: DataUnit, name: Optional[str] = None) -> xr.DataArray:
    """Wrap the unit as a lazy ``(frame, y, x)`` DataArray.

    Each dask block is one frame decoded on demand with :func:`get_frame`.
    """
    n_frames = frame_count(data_unit)
    height, width = frame_shape(data_unit)
    dtype = to_samples(frame_unit(data_unit, 0)).dtype if n_frames else np.float64
    chunks = ((1,) * n_frames, (height,), (width,))

    def _block_loader(block, block_info=None):
        f_idx = block_info[None]["chunk-location"][0]
        return get_frame(data_unit, f_idx).reshape(1, height, width)

    dummy = da.zeros((n_frames, height, width), chunks=chunks, dtype=dtype)
    stacked = da.map_blocks(_block_loader, dummy, dtype=dtype, chunks=chunks)

    xarr = xr.DataArray(
        stacked,
        dims=["frame", "y", "x"],
        coords={"frame": list(range(n_frames))},
        name=name,
    )
    xarr.attrs["bitpix"] = data_unit.bitpix
    xarr.attrs["bscale"] = data_unit.scale
    xarr.attrs["bzero"] = data_unit.offset
    xarr.attrs["axes"] = list(data_unit.axes)
    return xarr
