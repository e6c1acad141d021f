"""Exception taxonomy for the decode-and-render core.

Per-file errors (``IoError`` and the ``ParseError`` family) make a single file
non-browsable. ``RenderError`` is recovered with a placeholder raster. Only
``RootDirectoryError`` ends a browsing session.
"""


class ExplorerError(Exception):
    """Base class for all fitsexplorer errors."""


class IoError(ExplorerError):
    """A file is missing or cannot be read."""

    def __init__(self, path, reason: str = ""):
        self.path = str(path)
        self.reason = reason
        msg = f"cannot read {self.path}"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)


class ParseError(ExplorerError):
    """A file is structurally invalid for its format."""


class TruncatedFile(ParseError):
    """The file ends before a header or data block is complete."""


class InvalidKeywordSyntax(ParseError):
    """A header record is neither a valid keyword/value pair nor a comment."""


class UnsupportedSampleWidth(ParseError):
    """The declared sample bit-width (or array dtype) is not supported."""


class BlockAlignmentError(ParseError):
    """A unit does not start or end on a block boundary."""


class IndexOutOfRange(ExplorerError, IndexError):
    """A frame index is outside ``[0, frame_count)``."""


class RenderError(ExplorerError):
    """A frame cannot be rendered, e.g. it has no valid samples."""


class RootDirectoryError(ExplorerError):
    """The browse root is missing or unreadable. Fatal for the session."""


class RequestCancelled(ExplorerError):
    """A pending request was cancelled by its caller."""
