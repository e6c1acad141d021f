"""Core data model: file identities, header cards/units and data units."""

import math
import os
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

from .errors import IoError, ParseError, UnsupportedSampleWidth

# BITPIX -> bytes per sample
SAMPLE_WIDTHS = {8: 1, 16: 2, 32: 4, 64: 8, -32: 4, -64: 8}

COMMENTARY_KEYWORDS = {"COMMENT", "HISTORY", ""}

HeaderValue = Union[str, int, float, bool, complex, None]


@dataclass(frozen=True)
class FileIdentity:
    """Stability key for a file: any change of mtime or size invalidates it."""

    path: str
    mtime_ns: int
    size: int

    @classmethod
    def from_path(cls, path) -> "FileIdentity":
        """Stat ``path`` (metadata only).

        Raises:
            IoError: if the file is missing, unreadable or not a regular file.
        """
        try:
            st = os.stat(path)
        except OSError as e:
            raise IoError(path, e.strerror or str(e)) from e
        if not stat.S_ISREG(st.st_mode):
            raise IoError(path, "not a regular file")
        return cls(os.fspath(path), st.st_mtime_ns, st.st_size)

    @property
    def name(self) -> str:
        return Path(self.path).name

    @property
    def suffix(self) -> str:
        return Path(self.path).suffix.lower()

    def is_stale(self, current: "FileIdentity") -> bool:
        """True if ``current`` describes the same path with different content."""
        return self.path == current.path and (
            self.mtime_ns != current.mtime_ns or self.size != current.size
        )


@dataclass(frozen=True)
class Card:
    """One 80-character header record."""

    keyword: str
    value: HeaderValue
    comment: str = ""
    commentary: bool = False


@dataclass(frozen=True)
class HeaderUnit:
    """Ordered header cards with mapping-style access to keyword values.

    Lookup returns the first non-commentary card for a keyword. Byte offsets
    are bookkeeping only and do not take part in equality.
    """

    cards: Tuple[Card, ...]
    offset: int = field(default=0, compare=False)
    data_offset: int = field(default=0, compare=False)
    _index: Dict[str, HeaderValue] = field(
        default=None, init=False, repr=False, compare=False
    )

    def __post_init__(self):
        index = {}
        for card in self.cards:
            if not card.commentary and card.keyword not in index:
                index[card.keyword] = card.value
        object.__setattr__(self, "_index", index)

    def __getitem__(self, keyword: str) -> HeaderValue:
        return self._index[keyword.upper()]

    def __contains__(self, keyword: str) -> bool:
        return keyword.upper() in self._index

    def __iter__(self) -> Iterator[str]:
        return iter(self._index)

    def __len__(self) -> int:
        return len(self._index)

    def get(self, keyword: str, default: Any = None) -> HeaderValue:
        return self._index.get(keyword.upper(), default)

    def keywords(self) -> List[str]:
        return list(self._index)

    def to_dict(self) -> Dict[str, HeaderValue]:
        return dict(self._index)

    @property
    def comments(self) -> List[str]:
        """Text of all commentary records, in order."""
        return [c.value for c in self.cards if c.commentary]

    @property
    def is_primary(self) -> bool:
        return "SIMPLE" in self._index

    @property
    def extension_type(self) -> Optional[str]:
        xt = self._index.get("XTENSION")
        return xt.strip().upper() if isinstance(xt, str) else None

    @property
    def bitpix(self) -> int:
        return self._index["BITPIX"]

    @property
    def axes(self) -> Tuple[int, ...]:
        naxis = self._index.get("NAXIS", 0)
        return tuple(self._index[f"NAXIS{i}"] for i in range(1, naxis + 1))

    @property
    def bscale(self) -> float:
        return float(self._index.get("BSCALE", 1.0))

    @property
    def bzero(self) -> float:
        return float(self._index.get("BZERO", 0.0))

    @property
    def blank(self) -> Optional[int]:
        blank = self._index.get("BLANK")
        return blank if isinstance(blank, int) and not isinstance(blank, bool) else None

    @property
    def is_image(self) -> bool:
        """True for units carrying a non-empty image array."""
        if not self.is_primary and self.extension_type not in ("IMAGE", "IUEIMAGE"):
            return False
        axes = self.axes
        return len(axes) > 0 and math.prod(axes) > 0


@dataclass(frozen=True)
class DataUnit:
    """Raw big-endian sample buffer with its shape and scaling.

    ``axes`` is in declared order: ``axes[0]`` (NAXIS1) varies fastest.
    """

    buffer: Any
    axes: Tuple[int, ...]
    bitpix: int
    scale: float = 1.0
    offset: float = 0.0
    blank: Optional[int] = None

    def __post_init__(self):
        if self.bitpix not in SAMPLE_WIDTHS:
            raise UnsupportedSampleWidth(f"unsupported BITPIX {self.bitpix}")
        object.__setattr__(self, "axes", tuple(int(n) for n in self.axes))
        if not self.axes or any(n < 0 for n in self.axes):
            raise ParseError(f"invalid data shape {self.axes}")
        actual = memoryview(self.buffer).nbytes
        if actual != self.nbytes:
            raise ParseError(
                f"data buffer holds {actual} bytes, shape {self.axes} with "
                f"BITPIX {self.bitpix} needs {self.nbytes}"
            )

    @property
    def sample_width(self) -> int:
        return SAMPLE_WIDTHS[self.bitpix]

    @property
    def sample_count(self) -> int:
        return math.prod(self.axes)

    @property
    def nbytes(self) -> int:
        return self.sample_count * self.sample_width

    @property
    def ndim(self) -> int:
        return len(self.axes)

    @property
    def shape(self) -> Tuple[int, ...]:
        """Array shape in numpy (slowest axis first) order."""
        return self.axes[::-1]
