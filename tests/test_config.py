"""
Unit tests for BrowserConfig.

Tests cover:
1. Defaults and validation
2. Environment overrides via FITSEXPLORER_* variables
"""

import logging

import pytest


class TestBrowserConfig:
    """Tests for BrowserConfig construction."""

    def test_defaults(self):
        """Defaults come from the module constants."""
        from fitsexplorer.config import CACHE_CAPACITY, DEFAULT_EXTENSIONS, BrowserConfig

        config = BrowserConfig()
        assert config.cache_capacity == CACHE_CAPACITY
        assert set(config.extensions) == DEFAULT_EXTENSIONS
        assert config.recursive is False

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"cache_capacity": 0},
            {"max_workers": 0},
            {"low_percentile": 99.0, "high_percentile": 1.0},
            {"autoscale_max_samples": 0},
        ],
    )
    def test_invalid_values(self, kwargs):
        """Out-of-range settings are rejected."""
        from fitsexplorer.config import BrowserConfig

        with pytest.raises(ValueError):
            BrowserConfig(**kwargs)


class TestFromEnv:
    """Tests for BrowserConfig.from_env()."""

    def test_overrides(self):
        """Variables override the matching fields."""
        from fitsexplorer.config import BrowserConfig

        config = BrowserConfig.from_env(
            {
                "FITSEXPLORER_CACHE_CAPACITY": "128",
                "FITSEXPLORER_RECURSIVE": "yes",
                "FITSEXPLORER_HIGH_PERCENTILE": "99.5",
                "FITSEXPLORER_EXTENSIONS": "fits, .FIT",
            }
        )
        assert config.cache_capacity == 128
        assert config.recursive is True
        assert config.high_percentile == 99.5
        assert config.extensions == (".fits", ".fit")

    def test_invalid_value_ignored(self, caplog):
        """Unparseable values keep the default and log a warning."""
        from fitsexplorer.config import CACHE_CAPACITY, BrowserConfig

        with caplog.at_level(logging.WARNING, logger="fitsexplorer.config"):
            config = BrowserConfig.from_env({"FITSEXPLORER_CACHE_CAPACITY": "lots"})
        assert config.cache_capacity == CACHE_CAPACITY
        assert "FITSEXPLORER_CACHE_CAPACITY" in caplog.text

    def test_unrelated_variables_ignored(self):
        """Only prefixed variables are read."""
        from fitsexplorer.config import BrowserConfig

        assert BrowserConfig.from_env({"CACHE_CAPACITY": "1"}) == BrowserConfig()
