"""
Pytest configuration for the CHIP-8 test suite.

    python -m pytest                 # everything that can run here
    python -m pytest -m "not display"  # skip the pygame window tests

Tests marked ``display`` open a real pygame window (using the dummy SDL
video/audio drivers) and are skipped when pygame is not installed.
"""

import importlib.util
import os

import pytest


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers",
        "display: tests requiring pygame (skipped when it is not installed)")

    # Let pygame run without a real screen or sound card
    os.environ.setdefault("SDL_VIDEODRIVER", "dummy")
    os.environ.setdefault("SDL_AUDIODRIVER", "dummy")
    os.environ.setdefault("PYGAME_HIDE_SUPPORT_PROMPT", "1")


def pytest_collection_modifyitems(config, items):
    if importlib.util.find_spec("pygame") is not None:
        return
    skip = pytest.mark.skip(reason="pygame not installed")
    for item in items:
        if "display" in item.keywords:
            item.add_marker(skip)
