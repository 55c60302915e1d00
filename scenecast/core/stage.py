"""
Stage coordination service.

The ``StageService`` is the single owner of the authoritative scene and audio
mix. Transports hand it inbound client messages and register an event
callback; every accepted state change is emitted as a ``StageEvent`` to be
pushed to all connected clients, the submitter included.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .audio_mix import AudioMix, AudioMixStateMachine
from .catalog import Catalog, CatalogStore
from .layouts import LayoutTable
from .scene import Scene, SceneStateMachine, utc_timestamp

logger = logging.getLogger(__name__)

# Inbound client message types
SCENE_DISPLAY = "scene:display"
AUDIO_SET = "audio:set"

# Outbound broadcast types
SCENE_UPDATE = "scene:update"
AUDIO_UPDATE = "audio:update"
LIBRARY_UPDATE = "library:update"

_PAYLOAD_KEYS = {
    SCENE_UPDATE: "scene",
    AUDIO_UPDATE: "mix",
    LIBRARY_UPDATE: "library",
}


@dataclass(frozen=True)
class StageEvent:
    """An outbound state snapshot."""

    type: str
    payload: Dict[str, Any]

    def to_message(self) -> Dict[str, Any]:
        """Wire form: ``{"type": ..., <scene|mix|library>: payload}``."""
        return {"type": self.type, _PAYLOAD_KEYS[self.type]: self.payload}


class StageService:
    """Owns the scene and audio mix state machines and the catalog they validate against."""

    def __init__(
        self,
        catalog: Optional[Catalog] = None,
        layouts: Optional[LayoutTable] = None,
        clock: Callable[[], str] = utc_timestamp,
    ):
        self.layouts = layouts or LayoutTable.builtin()
        self.catalog_store = CatalogStore(catalog)
        self.scenes = SceneStateMachine(self.catalog_store, self.layouts, clock=clock)
        self.mixes = AudioMixStateMachine(self.catalog_store)

        # Event callback, set by the transport
        self.on_event: Optional[Callable[[StageEvent], None]] = None

    @property
    def scene(self) -> Scene:
        return self.scenes.current

    @property
    def mix(self) -> AudioMix:
        return self.mixes.current

    @property
    def catalog(self) -> Catalog:
        return self.catalog_store.current

    def library_payload(self) -> Dict[str, Any]:
        return self.catalog.to_dict(self.layouts)

    def snapshot_events(self) -> List[StageEvent]:
        """Latest state for a client that just connected."""
        return [
            StageEvent(SCENE_UPDATE, self.scene.to_dict()),
            StageEvent(AUDIO_UPDATE, self.mix.to_dict()),
        ]

    def submit_scene(self, candidate: Any) -> Optional[Scene]:
        """Route a scene-change request; broadcasts only when accepted."""
        scene = self.scenes.submit(candidate)
        if scene is not None:
            self._emit(StageEvent(SCENE_UPDATE, scene.to_dict()))
        return scene

    def submit_mix(self, candidate: Any) -> Tuple[AudioMix, bool]:
        """Route a mix-change request; broadcasts only when the mix actually changed."""
        mix, changed = self.mixes.submit(candidate)
        if changed:
            self._emit(StageEvent(AUDIO_UPDATE, mix.to_dict()))
        return mix, changed

    def replace_catalog(self, catalog: Catalog) -> None:
        """
        Install a new catalog snapshot.

        The audio mix is re-validated so deleted tracks drop out of it; the
        current scene is left as it is.
        """
        self.catalog_store.replace(catalog)
        mix, changed = self.mixes.revalidate()
        if changed:
            self._emit(StageEvent(AUDIO_UPDATE, mix.to_dict()))

    def publish_library(self) -> None:
        self._emit(StageEvent(LIBRARY_UPDATE, self.library_payload()))

    def handle_client_message(self, message: Any) -> None:
        """Dispatch one inbound client message; anything unrecognized is ignored."""
        if not isinstance(message, Mapping):
            logger.debug(f"Ignoring non-object client message: {message!r}")
            return

        message_type = message.get("type")
        if message_type == SCENE_DISPLAY:
            self.submit_scene(message.get("scene"))
        elif message_type == AUDIO_SET:
            self.submit_mix(message.get("mix"))
        else:
            logger.debug(f"Ignoring unknown client message type: {message_type!r}")

    def _emit(self, event: StageEvent) -> None:
        if self.on_event is None:
            return
        try:
            self.on_event(event)
        except Exception as e:
            logger.error(f"Error in stage event callback for {event.type}: {e}")
