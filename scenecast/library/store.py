"""
Asset library persistence.

The library store owns ``library.json``: the campaigns plus the backgrounds,
characters and media tracks uploaded by the game master. It normalizes the
file on load, applies uploads, deletions and campaign creation, and after
every change builds a fresh ``Catalog`` snapshot and hands it to the
``on_library_changed`` callback.
"""

import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

from ..const import (
    DEFAULT_BACKGROUND_COLOR,
    DEFAULT_CHARACTER_COLOR,
    MAIN_CAMPAIGN_NAME,
    UNTITLED_CAMPAIGN_NAME,
    UPLOAD_ORIGIN,
    VIDEO_UPLOAD_MIME_TYPES,
)
from ..core.catalog import Catalog, TrackKind, classify_track
from ..paths import (
    BACKGROUND_UPLOADS_SUBDIR,
    CHARACTER_UPLOADS_SUBDIR,
    LIBRARY_FILE_NAME,
    TRACK_AUDIO_UPLOADS_SUBDIR,
    TRACK_VIDEO_UPLOADS_SUBDIR,
    upload_dirs,
)
from ..utils.coerce import as_text
from .uploads import (
    create_asset_id,
    create_campaign_id,
    decode_upload_text,
    public_upload_path,
    remove_upload_file,
)

logger = logging.getLogger(__name__)

LibraryRecord = Dict[str, Any]


class LibraryError(Exception):
    """Base class for library operation failures."""


class InvalidInputError(LibraryError):
    """The request is missing data or references an unknown campaign."""


class DuplicateCampaignError(LibraryError):
    """A campaign with the same name already exists."""


class AssetNotFoundError(LibraryError):
    """No asset with the requested id."""


class AssetNotDeletableError(LibraryError):
    """The asset was not uploaded and cannot be removed."""


class AssetKind(str, Enum):
    """Asset collections in the library."""

    CHARACTERS = "characters"
    BACKGROUNDS = "backgrounds"
    TRACKS = "tracks"


ASSET_FILE_KEYS = ("image", "file", "source")


@dataclass
class StoredUpload:
    """An uploaded file already written below the uploads directory."""

    file_name: str
    original_name: str
    mime_type: str = ""


def format_timestamp(moment: datetime) -> str:
    """UTC ISO8601 with millisecond precision and a Z suffix."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: Any) -> Optional[datetime]:
    text = as_text(value).strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def now_timestamp() -> str:
    return format_timestamp(datetime.now(timezone.utc))


def create_campaign(name: Optional[str]) -> LibraryRecord:
    clean_name = as_text(name).strip() or UNTITLED_CAMPAIGN_NAME
    return {"id": create_campaign_id(clean_name), "name": clean_name, "createdAt": now_timestamp()}


def normalize_campaign(entry: Any) -> Optional[LibraryRecord]:
    """Normalize a stored campaign; None when the entry is not an object."""
    if not isinstance(entry, dict):
        return None

    name = as_text(entry.get("name")).strip() or UNTITLED_CAMPAIGN_NAME
    campaign_id = as_text(entry.get("id")).strip() or create_campaign_id(name)
    created_at = parse_timestamp(entry.get("createdAt"))
    return {
        "id": campaign_id,
        "name": name,
        "createdAt": format_timestamp(created_at) if created_at else now_timestamp(),
    }


def normalize_track(entry: LibraryRecord) -> LibraryRecord:
    """Stamp the classified kind into ``storage`` and repair the display name."""
    kind = classify_track(entry)
    return {**entry, "name": decode_upload_text(as_text(entry.get("name"))), "storage": kind.value if kind else None}


class LibraryStore:
    """
    Persistent asset library backed by a JSON file.

    All mutations persist immediately and publish a new catalog snapshot.
    """

    def __init__(self, data_dir: Path, uploads_dir: Path):
        self.data_dir = Path(data_dir)
        self.uploads_dir = Path(uploads_dir)
        self.library_file = self.data_dir / LIBRARY_FILE_NAME

        self._library: Dict[str, List[LibraryRecord]] = {
            "campaigns": [],
            "backgrounds": [],
            "characters": [],
            "tracks": [],
        }
        self._catalog = Catalog()
        self._lock = threading.RLock()

        # Event callback
        self.on_library_changed: Optional[Callable[[Catalog], None]] = None

        self.data_dir.mkdir(parents=True, exist_ok=True)
        for directory in upload_dirs(self.uploads_dir):
            directory.mkdir(parents=True, exist_ok=True)

    @property
    def catalog(self) -> Catalog:
        return self._catalog

    @property
    def campaigns(self) -> List[LibraryRecord]:
        return list(self._library["campaigns"])

    # ------------------------------------------------------------------
    # Loading and persistence
    # ------------------------------------------------------------------

    def _read_file(self) -> Optional[Dict[str, Any]]:
        if not self.library_file.exists():
            return None
        try:
            with open(self.library_file, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to read library file {self.library_file}: {e}")
            return None
        return data if isinstance(data, dict) else None

    def load(self) -> Catalog:
        """
        Load and normalize ``library.json``.

        A missing or unreadable file starts a fresh library with one campaign.
        The file is rewritten whenever normalization changed anything.
        """
        with self._lock:
            stored = self._read_file()
            if stored is None:
                logger.info(f"No library found at {self.library_file}, starting a new one")
                self._library = {
                    "campaigns": [create_campaign(MAIN_CAMPAIGN_NAME)],
                    "backgrounds": [],
                    "characters": [],
                    "tracks": [],
                }
                needs_persist = True
            else:
                self._library, needs_persist = self._normalize(stored)

            if needs_persist:
                self.save()

            return self._refresh(notify=False)

    def _normalize(self, stored: Dict[str, Any]):
        needs_persist = False

        campaigns: List[LibraryRecord] = []
        seen_ids: Set[str] = set()
        raw_campaigns = stored.get("campaigns")
        for entry in raw_campaigns if isinstance(raw_campaigns, list) else []:
            campaign = normalize_campaign(entry)
            if campaign is None or campaign["id"] in seen_ids:
                needs_persist = True
                continue
            if campaign["id"] != as_text(entry.get("id")).strip() or campaign["name"] != as_text(entry.get("name")).strip():
                needs_persist = True
            campaigns.append(campaign)
            seen_ids.add(campaign["id"])

        if not campaigns:
            campaigns.append(create_campaign(MAIN_CAMPAIGN_NAME))
            seen_ids.add(campaigns[0]["id"])
            needs_persist = True

        def attach(entry: Any) -> Optional[LibraryRecord]:
            nonlocal needs_persist
            if not isinstance(entry, dict):
                needs_persist = True
                return None
            raw_campaign_id = as_text(entry.get("campaignId")).strip()
            campaign_id = raw_campaign_id if raw_campaign_id in seen_ids else None
            if campaign_id != entry.get("campaignId"):
                needs_persist = True
            return {**entry, "campaignId": campaign_id}

        def collection(key: str) -> List[LibraryRecord]:
            nonlocal needs_persist
            value = stored.get(key)
            if not isinstance(value, list):
                if value:
                    needs_persist = True
                return []
            return [record for record in (attach(item) for item in value) if record is not None]

        backgrounds = collection("backgrounds")
        characters = collection("characters")
        tracks = []
        for record in collection("tracks"):
            track = normalize_track(record)
            if track != record:
                needs_persist = True
            tracks.append(track)

        library = {
            "campaigns": campaigns,
            "backgrounds": backgrounds,
            "characters": characters,
            "tracks": tracks,
        }
        return library, needs_persist

    def save(self) -> None:
        """Write the library to disk."""
        try:
            with open(self.library_file, "w", encoding="utf-8") as f:
                json.dump(self._library, f, indent=2, ensure_ascii=False)
        except OSError as e:
            logger.error(f"Failed to save library to {self.library_file}: {e}")

    def _refresh(self, notify: bool = True) -> Catalog:
        self._catalog = Catalog.from_library(self._library)
        if notify and self.on_library_changed:
            try:
                self.on_library_changed(self._catalog)
            except Exception as e:
                logger.error(f"Error in library change callback: {e}")
        return self._catalog

    def _commit(self) -> Catalog:
        self.save()
        return self._refresh()

    # ------------------------------------------------------------------
    # Campaigns
    # ------------------------------------------------------------------

    def create_campaign(self, name: Any) -> LibraryRecord:
        """
        Create a campaign.

        Raises:
            InvalidInputError: name is empty
            DuplicateCampaignError: a campaign with the same name (case-insensitive) exists
        """
        clean_name = " ".join(as_text(name).split())
        if not clean_name:
            raise InvalidInputError("Campaign name is required.")

        with self._lock:
            if any(campaign["name"].lower() == clean_name.lower() for campaign in self._library["campaigns"]):
                raise DuplicateCampaignError("A campaign with this name already exists.")

            campaign = create_campaign(clean_name)
            self._library["campaigns"].append(campaign)
            self._commit()

        logger.info(f"Created campaign {campaign['id']} ({clean_name})")
        return campaign

    def require_campaign(self, campaign_id: Any, asset_label: str = "asset") -> str:
        """Return the campaign id, or raise InvalidInputError when it is unknown."""
        clean_id = as_text(campaign_id).strip()
        if not clean_id or self._catalog.get_campaign(clean_id) is None:
            raise InvalidInputError(f"Select a valid campaign before adding a {asset_label}.")
        return clean_id

    # ------------------------------------------------------------------
    # Assets
    # ------------------------------------------------------------------

    def upload_subdir(self, kind: AssetKind, mime_type: str = "") -> str:
        """Uploads sub-directory that receives files of this kind."""
        if kind == AssetKind.CHARACTERS:
            return CHARACTER_UPLOADS_SUBDIR
        if kind == AssetKind.BACKGROUNDS:
            return BACKGROUND_UPLOADS_SUBDIR
        return TRACK_VIDEO_UPLOADS_SUBDIR if mime_type in VIDEO_UPLOAD_MIME_TYPES else TRACK_AUDIO_UPLOADS_SUBDIR

    def _display_name(self, name: Any, upload: StoredUpload) -> str:
        return decode_upload_text(as_text(name).strip() or upload.original_name)

    def _add(self, kind: AssetKind, record: LibraryRecord) -> LibraryRecord:
        with self._lock:
            self._library[kind.value].append(record)
            self._commit()
        logger.info(f"Added {kind.value[:-1]} {record['id']} ({record['name']})")
        return record

    def add_character(self, upload: StoredUpload, name: Any, campaign_id: Any) -> LibraryRecord:
        campaign = self.require_campaign(campaign_id, "character")
        display_name = self._display_name(name, upload)
        record = {
            "id": create_asset_id("char", display_name),
            "name": display_name,
            "color": DEFAULT_CHARACTER_COLOR,
            "image": public_upload_path(CHARACTER_UPLOADS_SUBDIR, upload.file_name),
            "origin": UPLOAD_ORIGIN,
            "createdAt": now_timestamp(),
            "campaignId": campaign,
        }
        return self._add(AssetKind.CHARACTERS, record)

    def add_background(self, upload: StoredUpload, name: Any, campaign_id: Any) -> LibraryRecord:
        campaign = self.require_campaign(campaign_id, "background")
        display_name = self._display_name(name, upload)
        image = public_upload_path(BACKGROUND_UPLOADS_SUBDIR, upload.file_name)
        record = {
            "id": create_asset_id("bg", display_name),
            "name": display_name,
            "background": f'{DEFAULT_BACKGROUND_COLOR} url("{image}") center / cover no-repeat',
            "image": image,
            "origin": UPLOAD_ORIGIN,
            "createdAt": now_timestamp(),
            "campaignId": campaign,
        }
        return self._add(AssetKind.BACKGROUNDS, record)

    def add_track(self, upload: StoredUpload, name: Any, campaign_id: Any) -> LibraryRecord:
        campaign = self.require_campaign(campaign_id, "track")
        display_name = self._display_name(name, upload)
        is_video = upload.mime_type in VIDEO_UPLOAD_MIME_TYPES
        record = {
            "id": create_asset_id("track", display_name),
            "name": display_name,
            "file": public_upload_path(self.upload_subdir(AssetKind.TRACKS, upload.mime_type), upload.file_name),
            "mimeType": upload.mime_type,
            "storage": TrackKind.VIDEO.value if is_video else TrackKind.AUDIO.value,
            "origin": UPLOAD_ORIGIN,
            "createdAt": now_timestamp(),
            "campaignId": campaign,
        }
        return self._add(AssetKind.TRACKS, record)

    def delete_asset(self, kind: AssetKind, asset_id: str) -> LibraryRecord:
        """
        Remove an uploaded asset and its files.

        Raises:
            AssetNotFoundError: no asset with this id
            AssetNotDeletableError: the asset did not come from an upload
        """
        with self._lock:
            records = self._library[kind.value]
            index = next((i for i, record in enumerate(records) if record.get("id") == asset_id), None)
            if index is None:
                raise AssetNotFoundError("Asset not found.")

            record = records[index]
            if record.get("origin") != UPLOAD_ORIGIN:
                raise AssetNotDeletableError("This asset cannot be deleted.")

            del records[index]
            for key in ASSET_FILE_KEYS:
                if record.get(key):
                    remove_upload_file(record[key], self.uploads_dir)
            self._commit()

        logger.info(f"Deleted {kind.value[:-1]} {asset_id}")
        return record

    def custom_assets(self) -> Dict[str, Any]:
        """Persisted collections plus tracks split by kind."""
        with self._lock:
            tracks = [normalize_track(record) for record in self._library["tracks"]]
            return {
                "backgrounds": list(self._library["backgrounds"]),
                "characters": list(self._library["characters"]),
                "tracks": list(self._library["tracks"]),
                "campaigns": list(self._library["campaigns"]),
                "audioTracks": [record for record in tracks if classify_track(record) == TrackKind.AUDIO],
                "videoTracks": [record for record in tracks if classify_track(record) == TrackKind.VIDEO],
            }
