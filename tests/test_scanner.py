"""
Unit tests for directory scanning.

Tests cover:
1. Extension filtering (case-insensitive) and name ordering
2. Recursive scanning
3. Per-file warnings for entries that cannot be stat'ed
4. RootDirectoryError for unusable roots
"""

import os

import pytest


def _touch(path, data=b"x"):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path


class TestScan:
    """Tests for scan()."""

    def test_filters_and_sorts_by_name(self, tmp_path):
        """Only image suffixes are listed, sorted by file name."""
        from fitsexplorer.scanner import scan

        for name in ["c.fits", "a.FIT", "b.tiff", "notes.txt", "d.fts"]:
            _touch(tmp_path / name)
        result = scan(tmp_path)
        assert [i.name for i in result] == ["a.FIT", "b.tiff", "c.fits", "d.fts"]
        assert len(result) == 4
        assert result.warnings == []

    def test_custom_extensions(self, tmp_path):
        """Extensions may be given with or without the leading dot."""
        from fitsexplorer.scanner import scan

        _touch(tmp_path / "a.fits")
        _touch(tmp_path / "b.tif")
        assert [i.name for i in scan(tmp_path, extensions=["tif"])] == ["b.tif"]

    def test_identity_is_metadata_only(self, tmp_path):
        """Unparseable files are still listed; scan never reads contents."""
        from fitsexplorer.scanner import scan

        path = _touch(tmp_path / "garbage.fits", b"\xff" * 10)
        (identity,) = scan(tmp_path).files
        assert identity.path == str(path)
        assert identity.size == 10
        assert identity.mtime_ns == os.stat(path).st_mtime_ns

    def test_recursive(self, tmp_path):
        """Subdirectories are only searched when recursive is set."""
        from fitsexplorer.scanner import scan

        _touch(tmp_path / "top.fits")
        _touch(tmp_path / "night1" / "deep.fits")
        assert [i.name for i in scan(tmp_path)] == ["top.fits"]
        assert [i.name for i in scan(tmp_path, recursive=True)] == ["deep.fits", "top.fits"]

    def test_directory_with_image_suffix_is_a_warning(self, tmp_path):
        """Entries that are not regular files are reported, not listed."""
        from fitsexplorer.scanner import scan

        (tmp_path / "folder.fits").mkdir()
        _touch(tmp_path / "ok.fits")
        result = scan(tmp_path)
        assert [i.name for i in result] == ["ok.fits"]
        assert len(result.warnings) == 1
        assert result.warnings[0].path.endswith("folder.fits")

    def test_broken_symlink_is_a_warning(self, tmp_path):
        """A dangling link cannot be stat'ed and becomes a warning."""
        from fitsexplorer.scanner import scan

        os.symlink(tmp_path / "missing.fits", tmp_path / "link.fits")
        result = scan(tmp_path)
        assert len(result) == 0
        assert len(result.warnings) == 1

    def test_missing_root(self, tmp_path):
        """A missing root ends the session."""
        from fitsexplorer.errors import RootDirectoryError
        from fitsexplorer.scanner import scan

        with pytest.raises(RootDirectoryError):
            scan(tmp_path / "nope")

    def test_root_is_a_file(self, tmp_path):
        """A regular file is not a valid root."""
        from fitsexplorer.errors import RootDirectoryError
        from fitsexplorer.scanner import scan

        with pytest.raises(RootDirectoryError):
            scan(_touch(tmp_path / "a.fits"))
