"""Test fixtures for mpdbridge tests."""

from collections.abc import Callable
from pathlib import Path

import pytest

from mpdbridge.api.mpd.types import MpdResponse


@pytest.fixture
def make_response() -> Callable[..., MpdResponse]:
    """Return a factory building MpdResponse objects from keyword fields."""

    def _make_response(binary: bytes | None = None, **fields: object) -> MpdResponse:
        return MpdResponse(
            fields=tuple((key, str(value)) for key, value in fields.items()),
            binary=binary,
        )

    return _make_response


@pytest.fixture
def art_dir(tmp_path: Path) -> Path:
    """Return an album art directory inside the test's temp dir."""
    return tmp_path / "album_art"
