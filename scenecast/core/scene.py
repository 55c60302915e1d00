"""
Scene state machine.

Holds the single authoritative scene shown on every viewer and validates
scene-change requests from admin consoles. A request is parsed once into a
``SceneRequest`` at the boundary, then normalized against the current catalog
and layout table. Requests that cannot be normalized are dropped without
touching the current scene.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, ClassVar, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from ..utils.coerce import as_entity_id, as_text
from .catalog import Catalog, CatalogStore, TrackKind
from .layouts import Layout, LayoutTable

logger = logging.getLogger(__name__)


class SceneType(str, Enum):
    """Kinds of scene a viewer can display."""

    CHARACTER = "character"
    VIDEO = "video"


class Orientation(str, Enum):
    """Portrait orientation within a slot."""

    NORMAL = "normal"
    MIRRORED = "mirrored"


def utc_timestamp() -> str:
    """Current UTC time as ISO8601 with millisecond precision and a Z suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class Slot:
    """A character placed in a layout slot."""

    id: str
    orientation: Orientation = Orientation.NORMAL

    def to_dict(self) -> Dict[str, str]:
        return {"id": self.id, "orientation": self.orientation.value}

    @classmethod
    def parse(cls, candidate: Any) -> Optional["Slot"]:
        """
        Parse a bare id or an ``{id, orientation}`` object.

        Returns None for empty slots. The id is not resolved here.
        """
        if not candidate:
            return None

        if isinstance(candidate, Mapping):
            raw_id = candidate.get("id")
            raw_orientation = candidate.get("orientation")
        elif isinstance(candidate, str):
            raw_id = candidate
            raw_orientation = None
        else:
            # Bare numbers and other scalars are empty slots
            return None

        slot_id = as_entity_id(raw_id)
        if slot_id is None:
            return None

        try:
            orientation = Orientation(raw_orientation)
        except ValueError:
            orientation = Orientation.NORMAL
        return cls(id=slot_id, orientation=orientation)


def _slot_list(value: Any) -> List[Optional[Slot]]:
    if not isinstance(value, (list, tuple)):
        return []
    return [Slot.parse(item) for item in value]


@dataclass(frozen=True)
class SceneRequest:
    """A scene-change request parsed from an untrusted client payload."""

    type: SceneType = SceneType.CHARACTER
    background: Optional[str] = None
    video: Optional[str] = None
    layout: Optional[str] = None
    left: Tuple[Optional[Slot], ...] = ()
    right: Tuple[Optional[Slot], ...] = ()
    campaign: Optional[str] = None

    @classmethod
    def parse(cls, candidate: Any) -> Optional["SceneRequest"]:
        """Parse a payload; returns None when it is not an object at all."""
        if not isinstance(candidate, Mapping):
            return None

        try:
            scene_type = SceneType(candidate.get("type"))
        except ValueError:
            scene_type = SceneType.CHARACTER

        raw_campaign = candidate.get("campaign") or candidate.get("campaignId")
        campaign = as_text(raw_campaign).strip() or None
        layout = candidate.get("layout")

        return cls(
            type=scene_type,
            background=as_entity_id(candidate.get("background")),
            video=as_entity_id(candidate.get("video")),
            layout=layout if isinstance(layout, str) else None,
            left=tuple(_slot_list(candidate.get("left"))),
            right=tuple(_slot_list(candidate.get("right"))),
            campaign=campaign,
        )


@dataclass(frozen=True)
class CharacterScene:
    """Background plus character portraits arranged in a layout."""

    background: Optional[str]
    layout: str
    left: Tuple[Optional[Slot], ...] = ()
    right: Tuple[Optional[Slot], ...] = ()
    campaign: Optional[str] = None
    updated_at: str = field(default_factory=utc_timestamp)

    type: ClassVar[SceneType] = SceneType.CHARACTER

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "background": self.background,
            "layout": self.layout,
            "left": [slot.to_dict() if slot else None for slot in self.left],
            "right": [slot.to_dict() if slot else None for slot in self.right],
            "campaign": self.campaign,
            "updatedAt": self.updated_at,
        }


@dataclass(frozen=True)
class VideoScene:
    """A full-screen video track."""

    video: str
    campaign: Optional[str] = None
    updated_at: str = field(default_factory=utc_timestamp)

    type: ClassVar[SceneType] = SceneType.VIDEO

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "video": self.video,
            "campaign": self.campaign,
            "updatedAt": self.updated_at,
        }


Scene = Union[CharacterScene, VideoScene]


def _resolve_campaign(campaign_id: Optional[str], catalog: Catalog) -> Optional[str]:
    campaign = catalog.get_campaign(campaign_id)
    return campaign.id if campaign else None


def _fit_slots(slots: Sequence[Optional[Slot]], arity: int, catalog: Catalog) -> Tuple[Optional[Slot], ...]:
    """Truncate or pad to exactly ``arity`` slots, emptying unknown characters."""
    fitted: List[Optional[Slot]] = []
    for index in range(arity):
        slot = slots[index] if index < len(slots) else None
        character = catalog.get_character(slot.id) if slot else None
        fitted.append(Slot(id=character.id, orientation=slot.orientation) if character else None)
    return tuple(fitted)


def normalize_scene(
    candidate: Any, catalog: Catalog, layouts: LayoutTable, timestamp: Optional[str] = None
) -> Optional[Scene]:
    """
    Validate a scene-change payload against the catalog and layout table.

    Args:
        candidate: Untrusted payload (dict, or anything else)
        catalog: Catalog snapshot to resolve ids against
        layouts: Layout table
        timestamp: ``updatedAt`` value for the result (defaults to now)

    Returns:
        The normalized scene, or None when the payload must be rejected
    """
    request = SceneRequest.parse(candidate)
    if request is None:
        return None

    updated_at = timestamp or utc_timestamp()
    campaign = _resolve_campaign(request.campaign, catalog)

    if request.type == SceneType.VIDEO:
        track = catalog.get_track_of_kind(request.video, TrackKind.VIDEO)
        if track is None:
            return None
        return VideoScene(video=track.id, campaign=campaign, updated_at=updated_at)

    background = catalog.get_background(request.background)
    if background is None:
        return None

    layout = layouts.resolve(request.layout, len(request.left), len(request.right))
    return CharacterScene(
        background=background.id,
        layout=layout.id,
        left=_fit_slots(request.left, layout.left, catalog),
        right=_fit_slots(request.right, layout.right, catalog),
        campaign=campaign,
        updated_at=updated_at,
    )


def _round_robin(catalog: Catalog, count: int, offset: int) -> Tuple[Optional[Slot], ...]:
    characters = catalog.characters
    if not characters:
        return tuple(None for _ in range(count))
    return tuple(Slot(id=characters[(offset + index) % len(characters)].id) for index in range(count))


def default_scene(catalog: Catalog, layouts: LayoutTable, timestamp: Optional[str] = None) -> CharacterScene:
    """
    Startup scene: the default layout filled round-robin with known characters.

    Right-hand slots take characters first; the left side continues after them.
    """
    layout: Layout = layouts.default()
    background = catalog.backgrounds[0].id if catalog.backgrounds else None
    return CharacterScene(
        background=background,
        layout=layout.id,
        left=_round_robin(catalog, layout.left, offset=layout.right),
        right=_round_robin(catalog, layout.right, offset=0),
        campaign=None,
        updated_at=timestamp or utc_timestamp(),
    )


class SceneStateMachine:
    """Owns the current scene; all mutation goes through ``submit``."""

    def __init__(
        self,
        catalog_store: CatalogStore,
        layouts: Optional[LayoutTable] = None,
        clock: Callable[[], str] = utc_timestamp,
    ):
        self.catalog_store = catalog_store
        self.layouts = layouts or LayoutTable.builtin()
        self._clock = clock
        self._lock = threading.Lock()
        self._scene: Scene = default_scene(catalog_store.current, self.layouts, clock())

        logger.info(f"Scene state machine initialized with layout {self._scene.layout}")

    @property
    def current(self) -> Scene:
        return self._scene

    def submit(self, candidate: Any) -> Optional[Scene]:
        """
        Normalize and install a scene-change request.

        Returns:
            The new scene, or None when the request was rejected (state unchanged)
        """
        scene = normalize_scene(candidate, self.catalog_store.current, self.layouts, self._clock())
        if scene is None:
            logger.debug(f"Rejected scene submission: {candidate!r}")
            return None

        with self._lock:
            self._scene = scene

        logger.info(f"Scene updated: {scene.type.value} scene at {scene.updated_at}")
        return scene
