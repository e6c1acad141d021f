"""FITS header/data unit parser.

A FITS file is a sequence of units. Each unit is a header of 80-character
``KEYWORD = value / comment`` records terminated by ``END`` and padded to a
2880-byte block, followed by a big-endian data block (also padded). The first
unit is the primary unit (``SIMPLE``); later ones are extensions
(``XTENSION``).
"""

import builtins
import logging
import math
import os
import re
from typing import BinaryIO, Iterator, List, Optional, Tuple

import numpy as np

from .config import BLOCK_SIZE, RECORD_SIZE
from .errors import (
    BlockAlignmentError,
    InvalidKeywordSyntax,
    IoError,
    ParseError,
    TruncatedFile,
    UnsupportedSampleWidth,
)
from .model import (
    COMMENTARY_KEYWORDS,
    SAMPLE_WIDTHS,
    Card,
    DataUnit,
    FileIdentity,
    HeaderUnit,
    HeaderValue,
)

logger = logging.getLogger(__name__)

_KEYWORD_RE = re.compile(r"^[A-Z0-9_-]*$")
_PRINTABLE_RE = re.compile(r"^[\x20-\x7e]*$")
_INT_RE = re.compile(r"^[+-]?\d+$")
_FLOAT_RE = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([EeDd][+-]?\d+)?$")
_COMPLEX_RE = re.compile(r"^\(\s*([^,]+?)\s*,\s*([^)]+?)\s*\)$")
_PADDING = b"\0 "


def open(path) -> FileIdentity:
    """Return the identity (path, mtime, size) of a FITS file without parsing it."""
    return FileIdentity.from_path(path)


def padded_length(nbytes: int) -> int:
    """Round ``nbytes`` up to a whole number of blocks."""
    return -(-nbytes // BLOCK_SIZE) * BLOCK_SIZE


def _stream_size(stream: BinaryIO) -> int:
    pos = stream.tell()
    size = stream.seek(0, os.SEEK_END)
    stream.seek(pos)
    return size


def _has_fileno(stream) -> bool:
    try:
        stream.fileno()
    except (AttributeError, OSError, ValueError):
        return False
    return True


# -------- header records --------


def _parse_scalar(token: str, keyword: str) -> HeaderValue:
    if token == "T":
        return True
    if token == "F":
        return False
    if _INT_RE.match(token):
        return int(token)
    if _FLOAT_RE.match(token):
        return float(token.replace("D", "E").replace("d", "e"))
    m = _COMPLEX_RE.match(token)
    if m:
        try:
            return complex(
                float(m.group(1).replace("D", "E")), float(m.group(2).replace("D", "E"))
            )
        except ValueError:
            pass
    raise InvalidKeywordSyntax(f"cannot parse value {token!r} for keyword {keyword}")


def _parse_value(field: str, keyword: str) -> Tuple[HeaderValue, str]:
    """Split the value field (columns 11-80) into a typed value and comment."""
    text = field.lstrip()
    if not text:
        return None, ""
    if text[0] == "'":
        parts = []
        i = 1
        while True:
            j = text.find("'", i)
            if j < 0:
                raise InvalidKeywordSyntax(f"unterminated string for keyword {keyword}")
            parts.append(text[i:j])
            if text[j + 1 : j + 2] == "'":
                parts.append("'")
                i = j + 2
                continue
            rest = text[j + 1 :]
            break
        value = "".join(parts).rstrip()
    elif text[0] == "/":
        value, rest = None, text
    else:
        slash = text.find("/")
        token, rest = (text, "") if slash < 0 else (text[:slash], text[slash:])
        value = _parse_scalar(token.strip(), keyword)

    rest = rest.strip()
    if rest and not rest.startswith("/"):
        raise InvalidKeywordSyntax(f"unexpected text {rest!r} after value of {keyword}")
    return value, rest[1:].strip()


def parse_record(record: bytes) -> Optional[Card]:
    """Parse one 80-byte record. Returns None for the END record."""
    try:
        text = record.decode("ascii")
    except UnicodeDecodeError as e:
        raise InvalidKeywordSyntax(f"non-ASCII header record: {record[:8]!r}") from e
    if not _PRINTABLE_RE.match(text):
        raise InvalidKeywordSyntax(f"non-printable character in record {text[:8]!r}")

    keyword = text[:8].rstrip()
    if not _KEYWORD_RE.match(keyword):
        raise InvalidKeywordSyntax(f"invalid keyword {text[:8]!r}")
    if keyword == "END":
        return None
    if keyword in COMMENTARY_KEYWORDS or text[8:10] != "= ":
        return Card(keyword, text[8:].rstrip(), commentary=True)
    value, comment = _parse_value(text[10:], keyword)
    return Card(keyword, value, comment)


def _expect(cards: List[Card], pos: int, keyword: str, kind) -> HeaderValue:
    if pos >= len(cards) or cards[pos].keyword != keyword:
        found = cards[pos].keyword if pos < len(cards) else "END"
        raise InvalidKeywordSyntax(
            f"mandatory keyword {keyword} expected at record {pos + 1}, found {found!r}"
        )
    value = cards[pos].value
    if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
        raise InvalidKeywordSyntax(f"keyword {keyword} has invalid value {value!r}")
    return value


def _validate_mandatory(cards: List[Card], primary: bool) -> None:
    """Check SIMPLE/XTENSION, BITPIX, NAXIS, NAXISn appear first and in order."""
    if primary:
        simple = _expect(cards, 0, "SIMPLE", bool)
        if not simple:
            logger.debug("Primary header declares SIMPLE = F; parsing anyway")
    else:
        _expect(cards, 0, "XTENSION", str)
    bitpix = _expect(cards, 1, "BITPIX", int)
    if bitpix not in SAMPLE_WIDTHS:
        raise UnsupportedSampleWidth(f"unsupported BITPIX {bitpix}")
    naxis = _expect(cards, 2, "NAXIS", int)
    if not 0 <= naxis <= 999:
        raise InvalidKeywordSyntax(f"NAXIS out of range: {naxis}")
    for i in range(1, naxis + 1):
        if _expect(cards, 2 + i, f"NAXIS{i}", int) < 0:
            raise InvalidKeywordSyntax(f"NAXIS{i} must be >= 0")


def read_header(stream: BinaryIO, offset: int = 0) -> Tuple[HeaderUnit, int]:
    """Parse the header unit starting at ``offset``.

    Returns:
        ``(header, next_offset)`` where ``next_offset`` is the start of the
        unit's data block.

    Raises:
        BlockAlignmentError: ``offset`` is not on a block boundary, or the
            header ends inside a partial block.
        TruncatedFile: the file ends before the END record.
        InvalidKeywordSyntax, UnsupportedSampleWidth: malformed records.
    """
    if offset % BLOCK_SIZE:
        raise BlockAlignmentError(
            f"header offset {offset} is not a multiple of {BLOCK_SIZE}"
        )
    stream.seek(offset)
    cards: List[Card] = []
    pos = offset
    while True:
        block = stream.read(BLOCK_SIZE)
        if len(block) < BLOCK_SIZE:
            if b"END     " in block:
                raise BlockAlignmentError(
                    f"header at offset {offset} ends inside a partial block"
                )
            raise TruncatedFile(f"no END record before end of file (header at {offset})")
        pos += BLOCK_SIZE
        for start in range(0, BLOCK_SIZE, RECORD_SIZE):
            card = parse_record(block[start : start + RECORD_SIZE])
            if card is None:
                _validate_mandatory(cards, primary=(offset == 0))
                header = HeaderUnit(tuple(cards), offset=offset, data_offset=pos)
                return header, pos
            cards.append(card)


# -------- data blocks --------


def data_size(header: HeaderUnit) -> int:
    """Byte length of the unit's data block, excluding padding."""
    axes = header.axes
    if not axes:
        return 0
    pcount = header.get("PCOUNT", 0)
    gcount = header.get("GCOUNT", 1)
    if header.is_primary and header.get("GROUPS") is True and axes[0] == 0:
        # Random groups: NAXIS1 = 0 is a placeholder
        axes = axes[1:]
    return SAMPLE_WIDTHS[header.bitpix] * gcount * (pcount + math.prod(axes))


def next_unit_offset(header: HeaderUnit) -> int:
    """Offset of the header following this unit."""
    return header.data_offset + padded_length(data_size(header))


def read_data(stream: BinaryIO, header: HeaderUnit, mmap: bool = False) -> DataUnit:
    """Read the image array described by ``header``.

    With ``mmap=True`` and a real file the buffer is a read-only
    ``numpy.memmap``, so reading one frame of a cube only touches that frame.

    Raises:
        TruncatedFile: fewer bytes remain than the header declares.
        ParseError: the unit holds no image data.
    """
    if not header.is_image:
        raise ParseError(f"unit at offset {header.offset} holds no image data")
    nbytes = math.prod(header.axes) * SAMPLE_WIDTHS[header.bitpix]
    total = _stream_size(stream)
    available = total - header.data_offset
    if available < nbytes:
        raise TruncatedFile(
            f"data at offset {header.data_offset} needs {nbytes} bytes, "
            f"only {max(available, 0)} available"
        )

    if mmap and _has_fileno(stream):
        buffer = np.memmap(
            stream, dtype=np.uint8, mode="r", offset=header.data_offset, shape=(nbytes,)
        )
    else:
        stream.seek(header.data_offset)
        buffer = stream.read(nbytes)
        if len(buffer) < nbytes:
            raise TruncatedFile(f"short read: {len(buffer)} of {nbytes} bytes")

    if total < next_unit_offset(header):
        logger.debug("Data block at offset %d is not padded", header.data_offset)

    blank = header.blank
    if blank is not None and header.bitpix < 0:
        logger.debug("Ignoring BLANK on floating-point data")
        blank = None
    return DataUnit(
        buffer,
        header.axes,
        header.bitpix,
        scale=header.bscale,
        offset=header.bzero,
        blank=blank,
    )


# -------- whole files --------


def iter_headers(stream: BinaryIO) -> Iterator[HeaderUnit]:
    """Yield the primary header and every extension header, skipping data."""
    size = _stream_size(stream)
    if size == 0:
        raise TruncatedFile("empty file")
    offset = 0
    while offset < size:
        stream.seek(offset)
        if offset > 0:
            peek = stream.read(BLOCK_SIZE)
            if not peek.strip(_PADDING):
                logger.debug("Stopping at zero padding at offset %d", offset)
                return
            if len(peek) < BLOCK_SIZE:
                raise BlockAlignmentError(
                    f"{len(peek)} trailing bytes at offset {offset} do not form a block"
                )
        header, _ = read_header(stream, offset)
        yield header
        offset = next_unit_offset(header)


def find_image_unit(stream: BinaryIO) -> HeaderUnit:
    """Return the header of the first unit that carries image data."""
    for index, header in enumerate(iter_headers(stream)):
        if header.is_image:
            if index:
                logger.debug("Using image in extension %d", index)
            return header
    raise ParseError("no image data in any unit")


def probe(path) -> HeaderUnit:
    """Validate every header of ``path`` and return the first image header.

    Only headers are read; data blocks are skipped by seeking, but the image
    block is checked against the file size.
    """
    try:
        with builtins.open(path, "rb") as f:
            size = _stream_size(f)
            image = None
            for header in iter_headers(f):
                if image is None and header.is_image:
                    image = header
    except OSError as e:
        raise IoError(path, e.strerror or str(e)) from e
    if image is None:
        raise ParseError("no image data in any unit")
    needed = image.data_offset + math.prod(image.axes) * SAMPLE_WIDTHS[image.bitpix]
    if size < needed:
        raise TruncatedFile(f"image data needs {needed} bytes, file has {size}")
    return image


def load_image(path, mmap: bool = True) -> Tuple[HeaderUnit, DataUnit]:
    """Parse headers up to the first image unit and return it with its data."""
    try:
        with builtins.open(path, "rb") as f:
            header = find_image_unit(f)
            return header, read_data(f, header, mmap=mmap)
    except OSError as e:
        raise IoError(path, e.strerror or str(e)) from e
