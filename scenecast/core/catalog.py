"""
Read-only asset catalog.

The catalog indexes the campaigns, backgrounds, characters and media tracks
that scenes and audio mixes may reference. A ``Catalog`` is an immutable
snapshot; the library collaborator builds a fresh one on every change and the
``CatalogStore`` swaps it in atomically, so a normalization pass always sees
one consistent view.
"""

import logging
import os
import threading
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from ..const import (
    AUDIO_EXTENSIONS,
    AUDIO_TRACK_PATH_MARKER,
    VIDEO_EXTENSIONS,
    VIDEO_TRACK_PATH_MARKER,
)
from ..utils.coerce import as_text
from .layouts import LayoutTable

logger = logging.getLogger(__name__)


class TrackKind(str, Enum):
    """Media track kinds."""

    AUDIO = "audio"
    VIDEO = "video"


def _track_storage(record: Mapping[str, Any]) -> Optional[TrackKind]:
    storage = as_text(record.get("storage")).lower()
    if storage in (TrackKind.AUDIO.value, TrackKind.VIDEO.value):
        return TrackKind(storage)

    file_path = as_text(record.get("file")).lower()
    if VIDEO_TRACK_PATH_MARKER in file_path:
        return TrackKind.VIDEO
    if AUDIO_TRACK_PATH_MARKER in file_path:
        return TrackKind.AUDIO
    return None


def classify_track(record: Mapping[str, Any]) -> Optional[TrackKind]:
    """
    Classify a track record as audio or video.

    Priority: explicit ``storage`` field, upload path pattern, MIME type
    prefix, then file extension of ``file`` (or ``source``).

    Returns:
        TrackKind, or None when nothing identifies the track
    """
    if not isinstance(record, Mapping):
        return None

    storage = _track_storage(record)
    if storage is not None:
        return storage

    mime_type = as_text(record.get("mimeType")).lower()
    if mime_type.startswith("video/"):
        return TrackKind.VIDEO
    if mime_type.startswith("audio/"):
        return TrackKind.AUDIO

    file_path = (as_text(record.get("file")) or as_text(record.get("source"))).lower()
    if not file_path:
        return None

    extension = os.path.splitext(file_path)[1].lstrip(".")
    if extension in VIDEO_EXTENSIONS:
        return TrackKind.VIDEO
    if extension in AUDIO_EXTENSIONS:
        return TrackKind.AUDIO
    return None


@dataclass(frozen=True)
class Campaign:
    id: str
    name: str
    created_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "createdAt": self.created_at}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Campaign":
        return cls(id=as_text(data.get("id")), name=as_text(data.get("name")), created_at=as_text(data.get("createdAt")))


@dataclass(frozen=True)
class Background:
    id: str
    name: str = ""
    background: str = ""  # CSS background shorthand
    image: Optional[str] = None
    origin: Optional[str] = None
    created_at: str = ""
    campaign_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "background": self.background,
            "image": self.image,
            "origin": self.origin,
            "createdAt": self.created_at,
            "campaignId": self.campaign_id,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Background":
        return cls(
            id=as_text(data.get("id")),
            name=as_text(data.get("name")),
            background=as_text(data.get("background")),
            image=data.get("image") or None,
            origin=data.get("origin") or None,
            created_at=as_text(data.get("createdAt")),
            campaign_id=data.get("campaignId") or None,
        )


@dataclass(frozen=True)
class Character:
    id: str
    name: str = ""
    color: str = ""
    image: Optional[str] = None
    origin: Optional[str] = None
    created_at: str = ""
    campaign_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "color": self.color,
            "image": self.image,
            "origin": self.origin,
            "createdAt": self.created_at,
            "campaignId": self.campaign_id,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Character":
        return cls(
            id=as_text(data.get("id")),
            name=as_text(data.get("name")),
            color=as_text(data.get("color")),
            image=data.get("image") or None,
            origin=data.get("origin") or None,
            created_at=as_text(data.get("createdAt")),
            campaign_id=data.get("campaignId") or None,
        )


@dataclass(frozen=True)
class Track:
    id: str
    name: str = ""
    file: Optional[str] = None
    source: Optional[str] = None
    mime_type: Optional[str] = None
    storage: Optional[TrackKind] = None
    origin: Optional[str] = None
    created_at: str = ""
    campaign_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "name": self.name,
            "file": self.file,
            "mimeType": self.mime_type,
            "storage": self.storage.value if self.storage else None,
            "origin": self.origin,
            "createdAt": self.created_at,
            "campaignId": self.campaign_id,
        }
        if self.source:
            data["source"] = self.source
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Track":
        """Build a track; ``storage`` always holds the classified kind."""
        return cls(
            id=as_text(data.get("id")),
            name=as_text(data.get("name")),
            file=data.get("file") or None,
            source=data.get("source") or None,
            mime_type=data.get("mimeType") or None,
            storage=classify_track(data),
            origin=data.get("origin") or None,
            created_at=as_text(data.get("createdAt")),
            campaign_id=data.get("campaignId") or None,
        )


def _index(entities: Iterable[Any]) -> Mapping[str, Any]:
    # Later entries win on duplicate ids
    return MappingProxyType({entity.id: entity for entity in entities})


@dataclass(frozen=True)
class Catalog:
    """Immutable snapshot of everything a scene or mix may reference."""

    campaigns: Tuple[Campaign, ...] = ()
    backgrounds: Tuple[Background, ...] = ()
    characters: Tuple[Character, ...] = ()
    tracks: Tuple[Track, ...] = ()
    _campaigns_by_id: Mapping[str, Campaign] = field(init=False, repr=False, compare=False)
    _backgrounds_by_id: Mapping[str, Background] = field(init=False, repr=False, compare=False)
    _characters_by_id: Mapping[str, Character] = field(init=False, repr=False, compare=False)
    _tracks_by_id: Mapping[str, Track] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "campaigns", tuple(self.campaigns))
        object.__setattr__(self, "backgrounds", tuple(self.backgrounds))
        object.__setattr__(self, "characters", tuple(self.characters))
        object.__setattr__(self, "tracks", tuple(self.tracks))
        object.__setattr__(self, "_campaigns_by_id", _index(self.campaigns))
        object.__setattr__(self, "_backgrounds_by_id", _index(self.backgrounds))
        object.__setattr__(self, "_characters_by_id", _index(self.characters))
        object.__setattr__(self, "_tracks_by_id", _index(self.tracks))

    @classmethod
    def from_library(cls, library: Mapping[str, Any]) -> "Catalog":
        """Build a snapshot from normalized library records."""

        def records(key: str) -> List[Mapping[str, Any]]:
            value = library.get(key)
            if not isinstance(value, list):
                return []
            return [item for item in value if isinstance(item, Mapping) and item.get("id")]

        return cls(
            campaigns=tuple(Campaign.from_dict(item) for item in records("campaigns")),
            backgrounds=tuple(Background.from_dict(item) for item in records("backgrounds")),
            characters=tuple(Character.from_dict(item) for item in records("characters")),
            tracks=tuple(Track.from_dict(item) for item in records("tracks")),
        )

    def get_campaign(self, campaign_id: Optional[str]) -> Optional[Campaign]:
        return self._campaigns_by_id.get(campaign_id) if campaign_id else None

    def get_background(self, background_id: Optional[str]) -> Optional[Background]:
        return self._backgrounds_by_id.get(background_id) if background_id else None

    def get_character(self, character_id: Optional[str]) -> Optional[Character]:
        return self._characters_by_id.get(character_id) if character_id else None

    def get_track(self, track_id: Optional[str]) -> Optional[Track]:
        return self._tracks_by_id.get(track_id) if track_id else None

    def classify_track(self, track: Optional[Track]) -> Optional[TrackKind]:
        if track is None:
            return None
        return classify_track(track.to_dict())

    def get_track_of_kind(self, track_id: Optional[str], kind: TrackKind) -> Optional[Track]:
        """Resolve a track id only when it is classified as ``kind``."""
        track = self.get_track(track_id)
        if track is None or self.classify_track(track) != kind:
            return None
        return track

    @property
    def audio_tracks(self) -> Tuple[Track, ...]:
        return tuple(track for track in self.tracks if self.classify_track(track) == TrackKind.AUDIO)

    @property
    def video_tracks(self) -> Tuple[Track, ...]:
        return tuple(track for track in self.tracks if self.classify_track(track) == TrackKind.VIDEO)

    def to_dict(self, layouts: Optional[LayoutTable] = None) -> Dict[str, Any]:
        """Library payload sent to clients."""
        return {
            "backgrounds": [item.to_dict() for item in self.backgrounds],
            "characters": [item.to_dict() for item in self.characters],
            "tracks": [item.to_dict() for item in self.tracks],
            "audioTracks": [item.to_dict() for item in self.audio_tracks],
            "videoTracks": [item.to_dict() for item in self.video_tracks],
            "layouts": layouts.to_list() if layouts is not None else [],
            "campaigns": [item.to_dict() for item in self.campaigns],
        }


class CatalogStore:
    """Holds the current catalog snapshot and swaps it wholesale."""

    def __init__(self, catalog: Optional[Catalog] = None):
        self._catalog = catalog or Catalog()
        self._lock = threading.Lock()

    @property
    def current(self) -> Catalog:
        return self._catalog

    def replace(self, catalog: Catalog) -> Catalog:
        """Install a new snapshot and return the previous one."""
        with self._lock:
            previous = self._catalog
            self._catalog = catalog

        logger.info(
            f"Catalog updated: {len(catalog.backgrounds)} backgrounds, {len(catalog.characters)} characters, "
            f"{len(catalog.tracks)} tracks, {len(catalog.campaigns)} campaigns"
        )
        return previous
