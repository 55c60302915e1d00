"""
Scenecast Path Configuration.

Centralized path management for runtime data storage.
All runtime data is stored outside the source tree.

Directory structure with SCENECAST_ROOT=/srv/scenecast:
    /srv/scenecast/logs/                    - Log files
    /srv/scenecast/data/                    - library.json
    /srv/scenecast/uploads/characters/      - Character portraits
    /srv/scenecast/uploads/backgrounds/     - Background images
    /srv/scenecast/uploads/tracks/audio/    - Ambient audio tracks
    /srv/scenecast/uploads/tracks/video/    - Full-screen video tracks

Environment variable:
    SCENECAST_ROOT - Base directory for all data (default: ~/.local/share/scenecast)
"""

import os
from pathlib import Path
from typing import List

APP_NAME = "scenecast"

# Get root directory from environment or use default
_root_override = os.environ.get("SCENECAST_ROOT")
if _root_override:
    ROOT_DIR = Path(_root_override)
else:
    _xdg_data_home = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local" / "share"))
    ROOT_DIR = _xdg_data_home / APP_NAME

LOGS_DIR = ROOT_DIR / "logs"
DATA_DIR = ROOT_DIR / "data"
UPLOADS_DIR = ROOT_DIR / "uploads"

LIBRARY_FILE_NAME = "library.json"

# Upload sub-directories, relative to the uploads directory
CHARACTER_UPLOADS_SUBDIR = "characters"
BACKGROUND_UPLOADS_SUBDIR = "backgrounds"
TRACK_AUDIO_UPLOADS_SUBDIR = "tracks/audio"
TRACK_VIDEO_UPLOADS_SUBDIR = "tracks/video"

UPLOAD_SUBDIRS = [
    CHARACTER_UPLOADS_SUBDIR,
    BACKGROUND_UPLOADS_SUBDIR,
    TRACK_AUDIO_UPLOADS_SUBDIR,
    TRACK_VIDEO_UPLOADS_SUBDIR,
]


def upload_dirs(uploads_dir: Path) -> List[Path]:
    """All upload directories below an uploads root."""
    return [uploads_dir / subdir for subdir in UPLOAD_SUBDIRS]


def get_log_file_path(filename: str = "scenecast.log") -> Path:
    """Get the full path for a log file."""
    return LOGS_DIR / filename
