"""TIFF bridge: reads TIFF stacks into the same DataUnit model as FITS.

Samples are re-encoded big-endian with FITS scaling conventions (unsigned
16/32-bit via BZERO, signed bytes via BZERO = -128) so the rest of the
pipeline is format-agnostic. Pages, and the colour samples of RGB images,
become frames.
"""

import logging
import math
from typing import List, Tuple

import numpy as np
import tifffile as tf

from .cube import frame_unit
from .errors import IndexOutOfRange, IoError, ParseError, UnsupportedSampleWidth
from .model import DataUnit

logger = logging.getLogger(__name__)

# numpy dtype -> (BITPIX, BZERO, bit flipped when storing)
_DTYPE_TABLE = {
    np.dtype(np.uint8): (8, 0.0, 0),
    np.dtype(np.int8): (8, -128.0, 0x80),
    np.dtype(np.int16): (16, 0.0, 0),
    np.dtype(np.uint16): (16, 32768.0, 0x8000),
    np.dtype(np.int32): (32, 0.0, 0),
    np.dtype(np.uint32): (32, 2147483648.0, 0x80000000),
    np.dtype(np.int64): (64, 0.0, 0),
    np.dtype(np.float32): (-32, 0.0, 0),
    np.dtype(np.float64): (-64, 0.0, 0),
}

# BITPIX -> big-endian storage dtype of the unsigned bit pattern
_STORAGE_DTYPES = {8: ">u1", 16: ">u2", 32: ">u4", 64: ">u8"}


def _lookup_dtype(dtype) -> Tuple[int, float, int]:
    try:
        return _DTYPE_TABLE[np.dtype(dtype).newbyteorder("=")]
    except KeyError:
        raise UnsupportedSampleWidth(f"unsupported TIFF sample type {dtype}") from None


def _frames_shape(axes: str, shape: Tuple[int, ...]) -> Tuple[int, ...]:
    """Numpy shape once colour samples ('S') are moved in front of Y/X."""
    dims: List[int] = list(shape)
    if "S" in axes:
        samples = dims.pop(axes.index("S"))
        dims.insert(len(dims) - 2, samples)
    if len(dims) < 2:
        dims = [1] + dims
    return tuple(dims)


def _read_series(path):
    try:
        with tf.TiffFile(path) as tif:
            series = tif.series[0]
            return series.asarray(), series.axes
    except OSError as e:
        raise IoError(path, str(e)) from e
    except (tf.TiffFileError, ValueError, IndexError) as e:
        raise ParseError(f"invalid TIFF {path}: {e}") from e


def probe(path) -> Tuple[Tuple[int, ...], int]:
    """(declared-order axes, BITPIX) of the first series, without reading pixels."""
    try:
        with tf.TiffFile(path) as tif:
            series = tif.series[0]
            shape, axes, dtype = tuple(series.shape), series.axes, series.dtype
    except OSError as e:
        raise IoError(path, str(e)) from e
    except (tf.TiffFileError, ValueError, IndexError) as e:
        raise ParseError(f"invalid TIFF {path}: {e}") from e
    bitpix, _, _ = _lookup_dtype(dtype)
    return tuple(reversed(_frames_shape(axes, shape))), bitpix


def to_data_unit(arr: np.ndarray, axes: str = "") -> DataUnit:
    """Encode an array (slowest axis first, Y/X last) as a big-endian DataUnit."""
    bitpix, bzero, flip = _lookup_dtype(arr.dtype)
    if "S" in axes:
        arr = np.moveaxis(arr, axes.index("S"), -3)
    if arr.ndim < 2:
        arr = arr.reshape(1, -1)
    if flip:
        # Signed <-> unsigned offset by flipping the top bit of the pattern
        unsigned = arr.view(arr.dtype.str.replace("i", "u"))
        stored = (unsigned ^ unsigned.dtype.type(flip)).astype(_STORAGE_DTYPES[bitpix])
    else:
        stored = arr.astype(arr.dtype.newbyteorder(">"))
    buffer = np.ascontiguousarray(stored).tobytes()
    return DataUnit(buffer, tuple(reversed(arr.shape)), bitpix, scale=1.0, offset=bzero)


def read_tiff(path) -> DataUnit:
    """Read the first series of a TIFF file as a DataUnit."""
    arr, axes = _read_series(path)
    logger.debug("Read TIFF %s: shape=%s axes=%s dtype=%s", path, arr.shape, axes, arr.dtype)
    return to_data_unit(arr, axes)


def read_frame(path, index: int) -> DataUnit:
    """Read frame ``index`` of the first series as a 2-D DataUnit.

    Only the TIFF page holding the frame is decoded. Colour samples of a page
    are separate frames, so frame ``index`` lives in page ``index // samples``.
    """
    try:
        with tf.TiffFile(path) as tif:
            series = tif.series[0]
            shape = _frames_shape(series.axes, tuple(series.shape))
            count = math.prod(shape[:-2])
            if not 0 <= index < count:
                raise IndexOutOfRange(f"frame {index} out of range [0, {count})")
            samples = shape[-3] if "S" in series.axes else 1
            pages = series.pages
            page = pages[index // samples] if len(pages) * samples == count else None
            if page is None:
                logger.debug("Pages of %s do not map to frames; reading the series", path)
                arr, axes = series.asarray(), series.axes
            else:
                arr = page.asarray()
                axes = series.axes[len(series.axes) - arr.ndim :]
                index %= samples
    except IndexOutOfRange:
        raise
    except OSError as e:
        raise IoError(path, str(e)) from e
    except (tf.TiffFileError, ValueError, IndexError) as e:
        raise ParseError(f"invalid TIFF {path}: {e}") from e
    return frame_unit(to_data_unit(arr, axes), index)
