"""
Audio mix state machine.

The mix is the set of ambient audio tracks currently active on every viewer,
each with its own volume, loop, playing flag and playback position. Every
accepted submission replaces the whole set. Submissions equal to the current
mix (within tolerance) are reported as unchanged so the caller does not
broadcast them; admin consoles echo each broadcast back through their own
controls, and re-broadcasting those echoes would never settle.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

from ..const import MIX_POSITION_TOLERANCE, MIX_VOLUME_TOLERANCE
from ..utils.coerce import as_entity_id, as_finite_float
from .catalog import Catalog, CatalogStore, TrackKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MixTrack:
    """One active track in the mix."""

    id: str
    volume: float = 1.0
    loop: bool = False
    playing: bool = True
    position: float = 0.0  # seconds

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "volume": self.volume,
            "loop": self.loop,
            "playing": self.playing,
            "position": self.position,
        }

    @classmethod
    def parse(cls, entry: Any) -> Optional["MixTrack"]:
        """Parse one client entry; the track id is not resolved here."""
        if not isinstance(entry, Mapping):
            return None

        track_id = as_entity_id(entry.get("id"))
        if track_id is None:
            return None

        # A missing or null volume means full volume
        volume = as_finite_float(entry.get("volume"))
        volume = 1.0 if volume is None else min(max(volume, 0.0), 1.0)

        position = as_finite_float(entry.get("position"))
        if position is None or position < 0:
            position = 0.0

        return cls(
            id=track_id,
            volume=volume,
            loop=bool(entry.get("loop")),
            playing=entry.get("playing") is not False,
            position=position,
        )

    def matches(self, other: "MixTrack") -> bool:
        """Equality within the volume and position tolerances."""
        return (
            self.id == other.id
            and self.loop == other.loop
            and self.playing == other.playing
            and abs(self.volume - other.volume) < MIX_VOLUME_TOLERANCE
            and abs(self.position - other.position) < MIX_POSITION_TOLERANCE
        )


@dataclass(frozen=True)
class AudioMix:
    """Ordered set of active tracks; order is activation order."""

    tracks: Tuple[MixTrack, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {"tracks": [track.to_dict() for track in self.tracks]}

    @property
    def track_ids(self) -> List[str]:
        return [track.id for track in self.tracks]

    def matches(self, other: "AudioMix") -> bool:
        """Structural equality within tolerance, index by index."""
        if len(self.tracks) != len(other.tracks):
            return False
        return all(mine.matches(theirs) for mine, theirs in zip(self.tracks, other.tracks))


def normalize_mix(candidate: Any, catalog: Catalog) -> AudioMix:
    """
    Normalize a mix-change payload.

    Anything without a ``tracks`` list becomes the empty mix. Entries that are
    malformed, repeat an earlier id or do not resolve to an audio track are
    dropped; the first occurrence of an id wins.
    """
    if not isinstance(candidate, Mapping):
        return AudioMix()

    entries = candidate.get("tracks")
    if not isinstance(entries, (list, tuple)):
        return AudioMix()

    seen: Set[str] = set()
    tracks: List[MixTrack] = []
    for entry in entries:
        parsed = MixTrack.parse(entry)
        if parsed is None or parsed.id in seen:
            continue

        track = catalog.get_track_of_kind(parsed.id, TrackKind.AUDIO)
        if track is None:
            logger.debug(f"Dropping mix entry for unknown audio track: {parsed.id}")
            continue

        seen.add(track.id)
        tracks.append(parsed)

    return AudioMix(tracks=tuple(tracks))


class AudioMixStateMachine:
    """Owns the current audio mix; all mutation goes through ``submit``."""

    def __init__(self, catalog_store: CatalogStore):
        self.catalog_store = catalog_store
        self._mix = AudioMix()
        self._lock = threading.Lock()

    @property
    def current(self) -> AudioMix:
        return self._mix

    def _install(self, mix: AudioMix) -> bool:
        with self._lock:
            changed = not self._mix.matches(mix)
            self._mix = mix
        return changed

    def submit(self, candidate: Any) -> Tuple[AudioMix, bool]:
        """
        Normalize and install a mix-change request.

        The normalized mix always replaces the current one.

        Returns:
            Tuple of (current mix, changed); ``changed`` is False when the
            submission matched the previous mix within tolerance
        """
        mix = normalize_mix(candidate, self.catalog_store.current)
        changed = self._install(mix)

        if changed:
            logger.info(f"Audio mix updated: {len(mix.tracks)} tracks {mix.track_ids}")
        else:
            logger.debug("Audio mix submission matches current mix, not broadcasting")
        return mix, changed

    def revalidate(self) -> Tuple[AudioMix, bool]:
        """Re-normalize the current mix against the current catalog, e.g. after a track was deleted."""
        mix = normalize_mix(self._mix.to_dict(), self.catalog_store.current)
        changed = self._install(mix)
        if changed:
            logger.info(f"Audio mix pruned after catalog change: {len(mix.tracks)} tracks remain")
        return mix, changed
