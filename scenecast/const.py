"""
Global constants for the Scenecast scene broadcaster.

This module contains the fixed tables and thresholds shared by the scene and
audio state machines, the library store and the web server.
"""

# Scene layouts: (id, label, left slot count, right slot count)
SCENE_LAYOUTS = (
    ("1v0", "1 vs 0", 1, 0),
    ("0v1", "0 vs 1", 0, 1),
    ("1v1", "1 vs 1", 1, 1),
    ("2v1", "2 vs 1", 2, 1),
    ("1v2", "1 vs 2", 1, 2),
    ("2v2", "2 vs 2", 2, 2),
    ("2v3", "2 vs 3", 2, 3),
    ("1v3", "1 vs 3", 1, 3),
    ("3v1", "3 vs 1", 3, 1),
    ("3v2", "3 vs 2", 3, 2),
    ("3v3", "3 vs 3", 3, 3),
)
DEFAULT_LAYOUT_ID = "2v3"

# Audio mix change suppression thresholds
MIX_VOLUME_TOLERANCE = 0.0001
MIX_POSITION_TOLERANCE = 0.01  # seconds

# Track classification tables
AUDIO_EXTENSIONS = frozenset(["mp3", "wav", "ogg", "oga", "aac", "flac", "m4a", "opus", "weba"])
VIDEO_EXTENSIONS = frozenset(["mp4", "mpeg", "mpg", "mov", "qt", "m4v", "webm"])
AUDIO_TRACK_PATH_MARKER = "/uploads/tracks/audio/"
VIDEO_TRACK_PATH_MARKER = "/uploads/tracks/video/"

# Upload handling
VIDEO_UPLOAD_MIME_TYPES = frozenset(["video/mp4", "video/mpeg", "video/quicktime"])
MAX_IMAGE_UPLOAD_MB = 8
MAX_TRACK_UPLOAD_MB = 64
DEFAULT_UPLOAD_EXTENSION = ".png"
UPLOAD_CHUNK_SIZE = 1024 * 1024

# Library defaults
MAIN_CAMPAIGN_NAME = "Main campaign"
UNTITLED_CAMPAIGN_NAME = "Untitled campaign"
DEFAULT_CHARACTER_COLOR = "#1e293b"
DEFAULT_BACKGROUND_COLOR = "#0f172a"
UPLOAD_ORIGIN = "upload"

# Web server
DEFAULT_WEB_PORT = 3000
MAX_PORT_RETRIES = 10
BROADCAST_QUEUE_SIZE = 64  # Pending outbound messages per client before it is dropped

# Log Management Configuration
LOG_MAX_SIZE_MB = 100  # Maximum log file size in MB before rotation
