"""
Unit tests for scene normalization and the scene state machine.
"""

import pytest

from scenecast.core.catalog import Catalog, CatalogStore
from scenecast.core.scene import (
    CharacterScene,
    Orientation,
    SceneRequest,
    SceneStateMachine,
    SceneType,
    Slot,
    VideoScene,
    default_scene,
    normalize_scene,
)

NOW = "2024-05-01T12:00:00.000Z"


@pytest.fixture
def machine(catalog, layouts):
    return SceneStateMachine(CatalogStore(catalog), layouts, clock=lambda: NOW)


class TestSlot:
    """Tests for slot parsing."""

    def test_bare_id(self):
        assert Slot.parse("warrior") == Slot("warrior", Orientation.NORMAL)

    def test_object_with_orientation(self):
        assert Slot.parse({"id": "warrior", "orientation": "mirrored"}) == Slot("warrior", Orientation.MIRRORED)

    def test_invalid_orientation_defaults_to_normal(self):
        assert Slot.parse({"id": "warrior", "orientation": "upside-down"}).orientation == Orientation.NORMAL

    @pytest.mark.parametrize("candidate", [None, "", 0, {}, {"id": ""}, {"id": None}, ["warrior"]])
    def test_empty_slots(self, candidate):
        assert Slot.parse(candidate) is None

    @pytest.mark.parametrize("candidate", [7, 3.5, True])
    def test_bare_non_string_is_empty(self, candidate):
        assert Slot.parse(candidate) is None

    def test_numeric_id_in_object_kept_as_text(self):
        assert Slot.parse({"id": 7}).id == "7"


class TestSceneRequest:
    """Tests for boundary parsing of scene payloads."""

    def test_non_object_rejected(self):
        assert SceneRequest.parse("bg1") is None
        assert SceneRequest.parse(None) is None
        assert SceneRequest.parse(["bg1"]) is None

    def test_unknown_type_falls_back_to_character(self):
        assert SceneRequest.parse({"type": "slideshow"}).type == SceneType.CHARACTER

    def test_campaign_id_alias(self):
        assert SceneRequest.parse({"campaignId": " camp-1 "}).campaign == "camp-1"

    def test_non_string_layout_dropped(self):
        assert SceneRequest.parse({"layout": 23}).layout is None

    def test_non_list_slots_become_empty(self):
        request = SceneRequest.parse({"left": "warrior", "right": None})
        assert request.left == ()
        assert request.right == ()


class TestNormalizeCharacterScene:
    """Tests for the character branch."""

    def test_layout_fallback_by_arity(self, catalog, layouts):
        scene = normalize_scene({"background": "bg1", "left": ["a", "b"], "right": ["c"]}, catalog, layouts, NOW)
        assert scene.layout == "2v1"
        assert scene.to_dict()["left"] == [
            {"id": "a", "orientation": "normal"},
            {"id": "b", "orientation": "normal"},
        ]
        assert scene.to_dict()["right"] == [{"id": "c", "orientation": "normal"}]

    def test_round_trip_orientation(self, catalog, layouts):
        scene = normalize_scene(
            {"background": "bg1", "layout": "1v1", "left": [{"id": "warrior", "orientation": "mirrored"}], "right": ["warrior"]},
            catalog,
            layouts,
            NOW,
        )
        assert scene.to_dict()["left"] == [{"id": "warrior", "orientation": "mirrored"}]
        assert scene.to_dict()["right"] == [{"id": "warrior", "orientation": "normal"}]

    def test_slots_truncated_to_layout(self, catalog, layouts):
        scene = normalize_scene(
            {"background": "bg1", "layout": "1v1", "left": ["a", "b", "c"], "right": ["warrior", "a"]},
            catalog,
            layouts,
            NOW,
        )
        assert [slot.id for slot in scene.left] == ["a"]
        assert [slot.id for slot in scene.right] == ["warrior"]

    def test_slots_padded_to_layout(self, catalog, layouts):
        scene = normalize_scene({"background": "bg1", "layout": "3v3", "left": ["a"]}, catalog, layouts, NOW)
        assert scene.left == (Slot("a"), None, None)
        assert scene.right == (None, None, None)

    def test_unknown_characters_become_empty(self, catalog, layouts):
        scene = normalize_scene(
            {"background": "bg1", "layout": "2v2", "left": ["ghost", {"id": "b", "orientation": "mirrored"}], "right": [None, "c"]},
            catalog,
            layouts,
            NOW,
        )
        assert scene.left == (None, Slot("b", Orientation.MIRRORED))
        assert scene.right == (None, Slot("c"))

    def test_unknown_background_rejected(self, catalog, layouts):
        assert normalize_scene({"background": "moon", "left": ["a"]}, catalog, layouts, NOW) is None

    def test_missing_background_rejected(self, catalog, layouts):
        assert normalize_scene({"left": ["a"]}, catalog, layouts, NOW) is None

    def test_default_layout_when_nothing_matches(self, catalog, layouts):
        scene = normalize_scene({"background": "bg1"}, catalog, layouts, NOW)
        assert scene.layout == "2v3"
        assert len(scene.left) == 2
        assert len(scene.right) == 3

    def test_oversized_arrays_clamped_before_matching(self, catalog, layouts):
        scene = normalize_scene({"background": "bg1", "left": ["a"] * 6, "right": ["b"] * 5}, catalog, layouts, NOW)
        assert scene.layout == "3v3"

    def test_campaign_resolution(self, catalog, layouts):
        known = normalize_scene({"background": "bg1", "campaign": "camp-1"}, catalog, layouts, NOW)
        unknown = normalize_scene({"background": "bg1", "campaign": "camp-404"}, catalog, layouts, NOW)
        assert known.campaign == "camp-1"
        assert unknown.campaign is None

    def test_arity_invariant(self, catalog, layouts):
        payloads = [
            {"background": "bg1", "layout": layout.id, "left": ["a", "b", "c", "warrior"], "right": ["c"]}
            for layout in layouts
        ] + [{"background": "bg2", "left": ["a"] * n, "right": ["b"] * m} for n in range(5) for m in range(5)]

        for payload in payloads:
            scene = normalize_scene(payload, catalog, layouts, NOW)
            layout = layouts.get(scene.layout)
            assert len(scene.left) == layout.left
            assert len(scene.right) == layout.right

    def test_normalization_is_idempotent(self, catalog, layouts):
        first = normalize_scene(
            {"background": "bg2", "left": [{"id": "a", "orientation": "mirrored"}, "ghost"], "right": ["c"], "campaign": "camp-1"},
            catalog,
            layouts,
            NOW,
        )
        second = normalize_scene(first.to_dict(), catalog, layouts, NOW)
        assert second == first


class TestNormalizeVideoScene:
    """Tests for the video branch."""

    def test_video_scene(self, catalog, layouts):
        scene = normalize_scene({"type": "video", "video": "track-x"}, catalog, layouts, NOW)
        assert isinstance(scene, VideoScene)
        assert scene.to_dict() == {"type": "video", "video": "track-x", "campaign": None, "updatedAt": NOW}

    def test_audio_track_rejected_as_video(self, catalog, layouts):
        assert normalize_scene({"type": "video", "video": "rain"}, catalog, layouts, NOW) is None

    def test_missing_video_rejected(self, catalog, layouts):
        assert normalize_scene({"type": "video"}, catalog, layouts, NOW) is None

    def test_unknown_campaign_nulled(self, catalog, layouts):
        scene = normalize_scene({"type": "video", "video": "track-x", "campaign": "nope"}, catalog, layouts, NOW)
        assert scene.campaign is None


class TestDefaultScene:
    """Tests for the startup scene."""

    def test_round_robin_fill(self, catalog, layouts):
        scene = default_scene(catalog, layouts, NOW)
        assert scene.layout == "2v3"
        assert scene.background == "bg1"
        # Right side takes characters first, left continues after it
        assert [slot.id for slot in scene.right] == ["warrior", "a", "b"]
        assert [slot.id for slot in scene.left] == ["c", "warrior"]
        assert scene.campaign is None

    def test_empty_catalog(self, layouts):
        scene = default_scene(Catalog(), layouts, NOW)
        assert scene.background is None
        assert scene.left == (None, None)
        assert scene.right == (None, None, None)


class TestSceneStateMachine:
    """Tests for the authoritative scene holder."""

    def test_initial_scene_is_default(self, machine):
        assert isinstance(machine.current, CharacterScene)
        assert machine.current.layout == "2v3"
        assert machine.current.updated_at == NOW

    def test_accepted_submission_replaces_scene(self, machine):
        scene = machine.submit({"background": "bg2", "layout": "1v0", "left": ["a"]})
        assert scene is machine.current
        assert machine.current.background == "bg2"

    def test_rejected_submission_keeps_scene(self, machine):
        before = machine.current
        assert machine.submit({"background": "unknown"}) is None
        assert machine.submit("garbage") is None
        assert machine.current is before

    def test_resubmitting_current_scene(self, machine):
        machine.submit({"background": "bg1", "layout": "2v2", "left": ["a", "b"], "right": ["c", "warrior"]})
        current = machine.current
        assert machine.submit(current.to_dict()) == current

    def test_uses_latest_catalog(self, catalog, layouts):
        store = CatalogStore(Catalog())
        machine = SceneStateMachine(store, layouts, clock=lambda: NOW)
        assert machine.submit({"background": "bg1"}) is None

        store.replace(catalog)
        assert machine.submit({"background": "bg1"}) is not None
