"""Raw bytes -> canonical float samples.

FITS data is big-endian regardless of host. BITPIX 8 is unsigned; 16/32/64
are signed two's complement unless BSCALE = 1 and BZERO = 2**(bits-1), the
convention for storing unsigned integers, which is applied exactly by flipping
the sign bit. Floating-point data is IEEE. Blank integers and NaNs become
``MISSING``.
"""

from typing import Optional, Tuple

import numpy as np

from .model import DataUnit

MISSING = np.nan

_RAW_DTYPES = {
    8: np.dtype(">u1"),
    16: np.dtype(">i2"),
    32: np.dtype(">i4"),
    64: np.dtype(">i8"),
    -32: np.dtype(">f4"),
    -64: np.dtype(">f8"),
}

_UNSIGNED_DTYPES = {
    16: np.dtype(">u2"),
    32: np.dtype(">u4"),
    64: np.dtype(">u8"),
}

# float32 holds every unscaled 8/16-bit integer exactly
_SAMPLE_DTYPES = {
    8: np.float32,
    16: np.float32,
    32: np.float64,
    64: np.float64,
    -32: np.float32,
    -64: np.float64,
}


def raw_array(data_unit: DataUnit) -> np.ndarray:
    """View the buffer as big-endian raw samples in numpy (slowest-first) shape."""
    raw = np.frombuffer(data_unit.buffer, dtype=_RAW_DTYPES[data_unit.bitpix])
    return raw.reshape(data_unit.shape)


def is_unsigned_remap(data_unit: DataUnit) -> bool:
    """True if BSCALE/BZERO encode unsigned integers in a signed type."""
    bits = data_unit.bitpix
    return (
        bits in _UNSIGNED_DTYPES
        and data_unit.scale == 1.0
        and data_unit.offset == float(2 ** (bits - 1))
    )


def to_samples(data_unit: DataUnit) -> np.ndarray:
    """Decode ``data_unit`` into float samples, ``sample = raw * scale + offset``.

    The result has the unit's numpy shape, so ``ravel()`` yields the samples in
    declared axis order. Missing samples are NaN.
    """
    raw = raw_array(data_unit)
    remap = is_unsigned_remap(data_unit)
    out_dtype = _SAMPLE_DTYPES[data_unit.bitpix]
    if not remap and (data_unit.scale != 1.0 or data_unit.offset != 0.0):
        # Scaled values need the full float64 mantissa
        out_dtype = np.float64

    if remap:
        sign_bit = 1 << (data_unit.bitpix - 1)
        unsigned = raw.view(_UNSIGNED_DTYPES[data_unit.bitpix]) ^ np.array(
            sign_bit, dtype=_UNSIGNED_DTYPES[data_unit.bitpix]
        )
        samples = unsigned.astype(out_dtype)
    else:
        samples = raw.astype(out_dtype)
        if data_unit.scale != 1.0:
            samples *= data_unit.scale
        if data_unit.offset != 0.0:
            samples += data_unit.offset

    if data_unit.blank is not None and data_unit.bitpix > 0:
        samples[raw == data_unit.blank] = MISSING
    return samples


def missing_mask(samples: np.ndarray) -> np.ndarray:
    return np.isnan(samples)


def valid_values(samples: np.ndarray) -> np.ndarray:
    """Flat array of finite samples, for statistics."""
    flat = np.asarray(samples).ravel()
    return flat[np.isfinite(flat)]


def sample_range(samples: np.ndarray) -> Optional[Tuple[float, float]]:
    """(min, max) over finite samples, or None if there are none."""
    values = valid_values(samples)
    if values.size == 0:
        return None
    return float(values.min()), float(values.max())
