"""
Core Scene Synchronization Components.

This module contains the authoritative state for the Scenecast system:
- Layout table and catalog snapshots used for validation
- Scene and audio mix state machines
- Stage service coordinating both and emitting broadcast events
"""

from .audio_mix import AudioMix, AudioMixStateMachine, MixTrack, normalize_mix
from .catalog import Background, Campaign, Catalog, CatalogStore, Character, Track, TrackKind, classify_track
from .layouts import Layout, LayoutTable
from .scene import (
    CharacterScene,
    Orientation,
    SceneStateMachine,
    SceneType,
    Slot,
    VideoScene,
    default_scene,
    normalize_scene,
)
from .stage import StageEvent, StageService

__all__ = [
    "AudioMix",
    "AudioMixStateMachine",
    "MixTrack",
    "normalize_mix",
    "Background",
    "Campaign",
    "Catalog",
    "CatalogStore",
    "Character",
    "Track",
    "TrackKind",
    "classify_track",
    "Layout",
    "LayoutTable",
    "CharacterScene",
    "Orientation",
    "SceneStateMachine",
    "SceneType",
    "Slot",
    "VideoScene",
    "default_scene",
    "normalize_scene",
    "StageEvent",
    "StageService",
]
