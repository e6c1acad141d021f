"""Builders for small FITS files used across the test modules."""

import numpy as np

BLOCK = 2880

_BITPIX = {
    np.dtype(np.uint8): 8,
    np.dtype(np.int16): 16,
    np.dtype(np.int32): 32,
    np.dtype(np.int64): 64,
    np.dtype(np.float32): -32,
    np.dtype(np.float64): -64,
}


def _format_value(value) -> str:
    if isinstance(value, bool):
        return f"{'T' if value else 'F':>20}"
    if isinstance(value, str):
        quoted = "'" + f"{value.replace(chr(39), chr(39) * 2):<8}" + "'"
        return f"{quoted:<20}"
    return f"{value!r:>20}"


def card(keyword: str, value=None, comment: str = "") -> bytes:
    """One 80-byte header record. ``value=None`` gives a commentary record."""
    if value is None:
        text = f"{keyword:<8}{comment}"
    else:
        text = f"{keyword:<8}= {_format_value(value)}"
        if comment:
            text += f" / {comment}"
    assert len(text) <= 80, text
    return text.ljust(80).encode("ascii")


def pad(data: bytes, fill: bytes = b"\0") -> bytes:
    return data + fill * (-len(data) % BLOCK)


def header_bytes(cards) -> bytes:
    """Header block from ``(keyword, value)`` pairs or raw records, END appended."""
    records = [c if isinstance(c, bytes) else card(*c) for c in cards]
    return pad(b"".join(records) + card("END"), b" ")


def fits_bytes(data=None, extra=(), primary=True, bitpix=None, pad_data=True) -> bytes:
    """Serialize ``data`` (numpy order, slowest axis first) as one FITS unit."""
    if data is None:
        axes = ()
        bitpix = bitpix or 8
        payload = b""
    else:
        data = np.asarray(data)
        bitpix = bitpix or _BITPIX[data.dtype]
        axes = data.shape[::-1]
        payload = data.astype(data.dtype.newbyteorder(">")).tobytes()

    cards = [("SIMPLE", True)] if primary else [("XTENSION", "IMAGE")]
    cards += [("BITPIX", bitpix), ("NAXIS", len(axes))]
    cards += [(f"NAXIS{i}", n) for i, n in enumerate(axes, start=1)]
    if not primary:
        cards += [("PCOUNT", 0), ("GCOUNT", 1)]
    cards += list(extra)

    if pad_data:
        payload = pad(payload)
    return header_bytes(cards) + payload


def write_fits(path, data=None, **kwargs):
    path.write_bytes(fits_bytes(data, **kwargs))
    return path
