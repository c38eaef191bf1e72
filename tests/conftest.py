"""Shared fixtures: synthetic JPEGs and loguru capture."""

import sys
from pathlib import Path

import pytest
from loguru import logger
from PIL import Image

# EXIF IFD0 DateTime
DATETIME_TAG = 306


def write_jpeg(path: Path, size=(640, 480), date: str | None = None, color=(200, 120, 40)) -> Path:
    """Write a solid-colour JPEG, optionally tagged with an EXIF DateTime
    given as 'YYYY:MM:DD HH:MM:SS'."""
    path.parent.mkdir(parents=True, exist_ok=True)
    img = Image.new("RGB", size, color)
    if date is None:
        img.save(path, "JPEG")
    else:
        exif = Image.Exif()
        exif[DATETIME_TAG] = date
        img.save(path, "JPEG", exif=exif)
    return path


@pytest.fixture
def make_jpeg():
    return write_jpeg


@pytest.fixture
def log_messages():
    """Collect warning-and-above loguru messages emitted during a test."""
    messages = []
    sink_id = logger.add(lambda m: messages.append(m.record["message"]), level="WARNING")
    yield messages
    logger.remove(sink_id)


@pytest.fixture(autouse=True)
def _reset_logging():
    # The CLI rebinds loguru to whatever sys.stderr was at the time.
    yield
    logger.remove()
    logger.add(sys.stderr, level="WARNING")


@pytest.fixture
def scenario_tree(tmp_path, make_jpeg):
    """root/{a.jpg (2020-01-05), b.jpg (no EXIF), sub/c.jpg (2020-01-01)}"""
    root = tmp_path / "root"
    make_jpeg(root / "a.jpg", date="2020:01:05 10:00:00")
    make_jpeg(root / "b.jpg")
    make_jpeg(root / "sub" / "c.jpg", date="2020:01:01 08:30:00")
    return root
