"""
Unit tests for the LibraryStore: loading, normalization and mutations.
"""

import json
from unittest.mock import MagicMock

import pytest

from scenecast.core.catalog import Catalog, TrackKind
from scenecast.library.store import (
    AssetKind,
    AssetNotDeletableError,
    AssetNotFoundError,
    DuplicateCampaignError,
    InvalidInputError,
    LibraryStore,
    StoredUpload,
    format_timestamp,
    parse_timestamp,
)

# =============================================================================
# Fixtures
# =============================================================================


def write_library(data_dir, data):
    data_dir.mkdir(parents=True, exist_ok=True)
    (data_dir / "library.json").write_text(json.dumps(data), encoding="utf-8")


def read_library(data_dir):
    return json.loads((data_dir / "library.json").read_text(encoding="utf-8"))


@pytest.fixture
def store(data_dir, uploads_dir):
    store = LibraryStore(data_dir, uploads_dir)
    store.load()
    return store


@pytest.fixture
def campaign_id(store):
    return store.campaigns[0]["id"]


def place_upload(uploads_dir, subdir, file_name, mime_type="image/png", original_name="portrait.png"):
    target = uploads_dir / subdir / file_name
    target.write_bytes(b"data")
    return StoredUpload(file_name=file_name, original_name=original_name, mime_type=mime_type)


# =============================================================================
# Loading
# =============================================================================


class TestLoad:
    """Tests for reading and normalizing library.json."""

    def test_missing_file_creates_main_campaign(self, data_dir, uploads_dir):
        catalog = LibraryStore(data_dir, uploads_dir).load()

        assert [campaign.name for campaign in catalog.campaigns] == ["Main campaign"]
        persisted = read_library(data_dir)
        assert persisted["campaigns"][0]["name"] == "Main campaign"
        assert persisted["characters"] == []

    def test_corrupt_file_starts_fresh(self, data_dir, uploads_dir):
        data_dir.mkdir(parents=True)
        (data_dir / "library.json").write_text("{not json", encoding="utf-8")

        catalog = LibraryStore(data_dir, uploads_dir).load()
        assert len(catalog.campaigns) == 1

    def test_creates_upload_directories(self, data_dir, uploads_dir):
        LibraryStore(data_dir, uploads_dir)
        for subdir in ("characters", "backgrounds", "tracks/audio", "tracks/video"):
            assert (uploads_dir / subdir).is_dir()

    def test_campaign_normalization(self, data_dir, uploads_dir):
        write_library(
            data_dir,
            {
                "campaigns": [
                    {"id": "c1", "name": "  Dragons  ", "createdAt": "2024-02-03T04:05:06Z"},
                    {"id": "c1", "name": "Duplicate"},
                    {"name": ""},
                    "junk",
                ]
            },
        )
        catalog = LibraryStore(data_dir, uploads_dir).load()

        names = [campaign.name for campaign in catalog.campaigns]
        assert names == ["Dragons", "Untitled campaign"]
        assert catalog.campaigns[0].created_at == "2024-02-03T04:05:06.000Z"
        assert catalog.campaigns[1].id.startswith("campaign-untitled-campaign-")

    def test_normalization_rewrites_file(self, data_dir, uploads_dir):
        write_library(data_dir, {"campaigns": [{"id": "c1", "name": " Padded "}]})
        LibraryStore(data_dir, uploads_dir).load()
        assert read_library(data_dir)["campaigns"][0]["name"] == "Padded"

    def test_clean_file_not_rewritten(self, data_dir, uploads_dir):
        clean = {
            "campaigns": [{"id": "c1", "name": "One", "createdAt": "2024-01-01T00:00:00.000Z"}],
            "backgrounds": [],
            "characters": [],
            "tracks": [],
        }
        write_library(data_dir, clean)
        before = (data_dir / "library.json").read_text(encoding="utf-8")

        LibraryStore(data_dir, uploads_dir).load()
        assert (data_dir / "library.json").read_text(encoding="utf-8") == before

    def test_unknown_campaign_ids_nulled(self, data_dir, uploads_dir):
        write_library(
            data_dir,
            {
                "campaigns": [{"id": "c1", "name": "One"}],
                "characters": [{"id": "x", "name": "X", "campaignId": "gone"}, {"id": "y", "campaignId": "c1"}, 5],
            },
        )
        catalog = LibraryStore(data_dir, uploads_dir).load()

        assert catalog.get_character("x").campaign_id is None
        assert catalog.get_character("y").campaign_id == "c1"
        assert len(catalog.characters) == 2
        assert read_library(data_dir)["characters"][0]["campaignId"] is None

    def test_tracks_classified_and_names_repaired(self, data_dir, uploads_dir):
        garbled = "Forêt.mp3".encode("utf-8").decode("latin-1")
        write_library(
            data_dir,
            {
                "campaigns": [{"id": "c1", "name": "One"}],
                "tracks": [
                    {"id": "t1", "name": garbled, "file": "/uploads/tracks/audio/foret.mp3"},
                    {"id": "t2", "name": "Intro", "file": "/media/intro.mov"},
                ],
            },
        )
        LibraryStore(data_dir, uploads_dir).load()

        tracks = read_library(data_dir)["tracks"]
        assert tracks[0]["name"] == "Forêt.mp3"
        assert tracks[0]["storage"] == "audio"
        assert tracks[1]["storage"] == "video"

    def test_load_does_not_notify(self, data_dir, uploads_dir):
        store = LibraryStore(data_dir, uploads_dir)
        store.on_library_changed = MagicMock()
        store.load()
        store.on_library_changed.assert_not_called()


class TestTimestamps:
    """Tests for createdAt parsing and formatting."""

    def test_round_trip(self):
        assert format_timestamp(parse_timestamp("2024-02-03T04:05:06.789Z")) == "2024-02-03T04:05:06.789Z"

    def test_offset_converted_to_utc(self):
        assert format_timestamp(parse_timestamp("2024-02-03T06:05:06+02:00")) == "2024-02-03T04:05:06.000Z"

    @pytest.mark.parametrize("value", [None, "", "yesterday", 12])
    def test_invalid(self, value):
        assert parse_timestamp(value) is None


# =============================================================================
# Campaigns
# =============================================================================


class TestCampaigns:
    """Tests for campaign creation."""

    def test_create_campaign(self, store, data_dir):
        campaign = store.create_campaign("  Curse   of  Strahd ")

        assert campaign["name"] == "Curse of Strahd"
        assert campaign["id"].startswith("campaign-curse-of-strahd-")
        assert campaign["createdAt"].endswith("Z")
        assert store.catalog.get_campaign(campaign["id"]) is not None
        assert read_library(data_dir)["campaigns"][-1]["id"] == campaign["id"]

    def test_empty_name_rejected(self, store):
        with pytest.raises(InvalidInputError):
            store.create_campaign("   ")
        with pytest.raises(InvalidInputError):
            store.create_campaign(None)

    def test_duplicate_name_rejected(self, store):
        store.create_campaign("Dragons")
        with pytest.raises(DuplicateCampaignError):
            store.create_campaign("  dragons ")

    def test_notifies_with_new_catalog(self, store):
        store.on_library_changed = MagicMock()
        store.create_campaign("Dragons")

        catalog = store.on_library_changed.call_args[0][0]
        assert isinstance(catalog, Catalog)
        assert any(campaign.name == "Dragons" for campaign in catalog.campaigns)

    def test_callback_error_does_not_fail_mutation(self, store):
        store.on_library_changed = MagicMock(side_effect=RuntimeError("boom"))
        campaign = store.create_campaign("Dragons")
        assert store.catalog.get_campaign(campaign["id"]) is not None


# =============================================================================
# Assets
# =============================================================================


class TestAddAssets:
    """Tests for adding uploaded assets."""

    def test_add_character(self, store, uploads_dir, campaign_id):
        upload = place_upload(uploads_dir, "characters", "orc-1.png", original_name="Orc.png")
        character = store.add_character(upload, "", campaign_id)

        assert character["id"].startswith("char-orc-png-")
        assert character["name"] == "Orc.png"
        assert character["image"] == "/uploads/characters/orc-1.png"
        assert character["color"] == "#1e293b"
        assert character["origin"] == "upload"
        assert character["campaignId"] == campaign_id
        assert store.catalog.get_character(character["id"]) is not None

    def test_add_background(self, store, uploads_dir, campaign_id):
        upload = place_upload(uploads_dir, "backgrounds", "crypt-1.jpg")
        background = store.add_background(upload, "Crypt", campaign_id)

        assert background["id"].startswith("bg-crypt-")
        assert background["image"] == "/uploads/backgrounds/crypt-1.jpg"
        assert background["background"] == '#0f172a url("/uploads/backgrounds/crypt-1.jpg") center / cover no-repeat'

    def test_add_audio_track(self, store, uploads_dir, campaign_id):
        upload = place_upload(uploads_dir, "tracks/audio", "rain-1.mp3", mime_type="audio/mpeg")
        track = store.add_track(upload, "Rain", campaign_id)

        assert track["storage"] == "audio"
        assert track["file"] == "/uploads/tracks/audio/rain-1.mp3"
        assert store.catalog.get_track(track["id"]).storage == TrackKind.AUDIO

    def test_add_video_track(self, store, uploads_dir, campaign_id):
        upload = place_upload(uploads_dir, "tracks/video", "intro-1.mov", mime_type="video/quicktime")
        track = store.add_track(upload, "Intro", campaign_id)

        assert track["storage"] == "video"
        assert track["file"] == "/uploads/tracks/video/intro-1.mov"
        assert [item.id for item in store.catalog.video_tracks] == [track["id"]]

    def test_unknown_campaign_rejected(self, store, uploads_dir):
        upload = place_upload(uploads_dir, "characters", "x.png")
        with pytest.raises(InvalidInputError):
            store.add_character(upload, "X", "campaign-nope")
        with pytest.raises(InvalidInputError):
            store.add_background(upload, "X", None)

    def test_upload_subdir(self, store):
        assert store.upload_subdir(AssetKind.CHARACTERS) == "characters"
        assert store.upload_subdir(AssetKind.BACKGROUNDS) == "backgrounds"
        assert store.upload_subdir(AssetKind.TRACKS, "video/mp4") == "tracks/video"
        assert store.upload_subdir(AssetKind.TRACKS, "video/webm") == "tracks/audio"
        assert store.upload_subdir(AssetKind.TRACKS, "audio/ogg") == "tracks/audio"


class TestDeleteAssets:
    """Tests for asset deletion."""

    def test_delete_removes_record_and_file(self, store, uploads_dir, campaign_id, data_dir):
        upload = place_upload(uploads_dir, "characters", "orc-1.png")
        character = store.add_character(upload, "Orc", campaign_id)

        store.delete_asset(AssetKind.CHARACTERS, character["id"])

        assert store.catalog.get_character(character["id"]) is None
        assert not (uploads_dir / "characters" / "orc-1.png").exists()
        assert read_library(data_dir)["characters"] == []

    def test_delete_unknown(self, store):
        with pytest.raises(AssetNotFoundError):
            store.delete_asset(AssetKind.TRACKS, "nope")

    def test_delete_builtin_refused(self, data_dir, uploads_dir):
        write_library(
            data_dir,
            {"campaigns": [{"id": "c1", "name": "One"}], "backgrounds": [{"id": "bg1", "name": "Stock", "origin": "builtin"}]},
        )
        store = LibraryStore(data_dir, uploads_dir)
        store.load()

        with pytest.raises(AssetNotDeletableError):
            store.delete_asset(AssetKind.BACKGROUNDS, "bg1")
        assert store.catalog.get_background("bg1") is not None

    def test_delete_ignores_paths_outside_uploads(self, data_dir, uploads_dir, tmp_path):
        outside = tmp_path / "precious.txt"
        outside.write_text("keep")
        write_library(
            data_dir,
            {
                "campaigns": [{"id": "c1", "name": "One"}],
                "tracks": [{"id": "t1", "name": "Evil", "origin": "upload", "file": "/uploads/../precious.txt"}],
            },
        )
        store = LibraryStore(data_dir, uploads_dir)
        store.load()

        store.delete_asset(AssetKind.TRACKS, "t1")
        assert outside.exists()

    def test_delete_notifies(self, store, uploads_dir, campaign_id):
        upload = place_upload(uploads_dir, "tracks/audio", "rain-1.mp3", mime_type="audio/mpeg")
        track = store.add_track(upload, "Rain", campaign_id)
        store.on_library_changed = MagicMock()

        store.delete_asset(AssetKind.TRACKS, track["id"])

        catalog = store.on_library_changed.call_args[0][0]
        assert catalog.get_track(track["id"]) is None


class TestCustomAssets:
    """Tests for the raw asset listing."""

    def test_custom_assets(self, store, uploads_dir, campaign_id):
        store.add_track(place_upload(uploads_dir, "tracks/audio", "a.mp3", mime_type="audio/mpeg"), "A", campaign_id)
        store.add_track(place_upload(uploads_dir, "tracks/video", "v.mp4", mime_type="video/mp4"), "V", campaign_id)

        assets = store.custom_assets()

        assert set(assets) == {"backgrounds", "characters", "tracks", "campaigns", "audioTracks", "videoTracks"}
        assert [track["name"] for track in assets["audioTracks"]] == ["A"]
        assert [track["name"] for track in assets["videoTracks"]] == ["V"]
        assert len(assets["tracks"]) == 2
