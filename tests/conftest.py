"""
Shared pytest fixtures for the Scenecast test suite.

Provides a small catalog (one campaign, two backgrounds, a handful of
characters, audio and video tracks), a stage wired to an event recorder, and
temporary data/upload directories for library tests.
"""

import sys
from pathlib import Path
from typing import Dict, List

import pytest

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from scenecast.core import Catalog, LayoutTable, StageEvent, StageService

FIXED_TIMESTAMP = "2024-05-01T12:00:00.000Z"


# =============================================================================
# Catalog Fixtures
# =============================================================================


def build_library() -> Dict[str, List[Dict]]:
    """Raw library records in the persisted (camelCase) form."""
    return {
        "campaigns": [
            {"id": "camp-1", "name": "Main campaign", "createdAt": "2024-01-01T00:00:00.000Z"},
        ],
        "backgrounds": [
            {"id": "bg1", "name": "Tavern", "background": "#0f172a", "campaignId": "camp-1"},
            {"id": "bg2", "name": "Forest", "background": "#14532d", "campaignId": None},
        ],
        "characters": [
            {"id": "warrior", "name": "Warrior", "color": "#1e293b", "campaignId": "camp-1"},
            {"id": "a", "name": "A", "color": "#000000"},
            {"id": "b", "name": "B", "color": "#000000"},
            {"id": "c", "name": "C", "color": "#000000"},
        ],
        "tracks": [
            {"id": "rain", "name": "Rain", "file": "/uploads/tracks/audio/rain.mp3", "mimeType": "audio/mpeg"},
            {"id": "tavern-noise", "name": "Tavern noise", "file": "/sounds/tavern.ogg"},
            {"id": "wind", "name": "Wind", "storage": "audio", "file": "/sounds/wind.bin"},
            {"id": "track-x", "name": "Intro", "file": "/uploads/tracks/video/intro.mp4", "mimeType": "video/mp4"},
        ],
    }


@pytest.fixture
def library_records() -> Dict[str, List[Dict]]:
    return build_library()


@pytest.fixture
def catalog(library_records) -> Catalog:
    return Catalog.from_library(library_records)


@pytest.fixture
def layouts() -> LayoutTable:
    return LayoutTable.builtin()


# =============================================================================
# Stage Fixtures
# =============================================================================


class EventRecorder:
    """Collects stage events in emission order."""

    def __init__(self):
        self.events: List[StageEvent] = []

    def __call__(self, event: StageEvent) -> None:
        self.events.append(event)

    @property
    def types(self) -> List[str]:
        return [event.type for event in self.events]

    def clear(self) -> None:
        self.events.clear()


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def fixed_timestamp() -> str:
    return FIXED_TIMESTAMP


@pytest.fixture
def stage(catalog, recorder) -> StageService:
    """Stage with a fixed clock and a recorder attached."""
    service = StageService(catalog, clock=lambda: FIXED_TIMESTAMP)
    service.on_event = recorder
    return service


# =============================================================================
# Temporary Directory Fixtures
# =============================================================================


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    return tmp_path / "data"


@pytest.fixture
def uploads_dir(tmp_path: Path) -> Path:
    return tmp_path / "uploads"
