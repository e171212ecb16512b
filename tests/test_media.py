import io
import os
from pathlib import Path

import pytest

from sugarsteps.errors import AssetCopyError, ValidationError
from sugarsteps.services.media import (
    AssetKind,
    BytesSource,
    FileSource,
    MediaManager,
    SlotState,
    new_slots,
)
from sugarsteps.services.naming import asset_filename, is_bundled, parse_bundled


class BrokenSource:
    locator = "content://gone"

    def open(self):
        raise PermissionError("source revoked")


class TruncatedSource:
    """Opens fine, then fails halfway through the read."""

    locator = "content://flaky"

    def open(self):
        class _Stream(io.BytesIO):
            def read(self, *args):
                raise OSError("connection reset")

        return _Stream(b"partial")


@pytest.fixture()
def manager(temp_config) -> MediaManager:
    return MediaManager(temp_config)


def test_asset_filename_is_deterministic_and_path_safe() -> None:
    assert asset_filename("Test", "image", ".jpg") == "lesson_Test_image.jpg"
    assert asset_filename(12, "video", "mp4") == "lesson_12_video.mp4"
    assert "/" not in asset_filename("../etc/passwd", "description", ".txt")


def test_bundled_locator_parsing() -> None:
    assert is_bundled("resource://raw/halot")
    assert not is_bundled("/data/lesson_Test_image.jpg")
    assert parse_bundled("resource://drawable/halot_lesson") == ("drawable", "halot_lesson")
    with pytest.raises(ValueError):
        parse_bundled("resource://raw/../secrets")


def test_resolve_bundled_finds_file_by_resource_id(manager, temp_config) -> None:
    recipe = temp_config.bundled_root / "raw" / "halot_recipe.txt"
    recipe.parent.mkdir(parents=True)
    recipe.write_text("Knead for ten minutes.", encoding="utf-8")

    assert manager.resolve_bundled("resource://raw/halot_recipe") == recipe
    assert manager.read_text("resource://raw/halot_recipe") == "Knead for ten minutes."


def test_resolve_add_copies_every_pending_slot(manager, media_files) -> None:
    slots = new_slots()
    slots[AssetKind.IMAGE].select(FileSource(media_files["image"]))
    slots[AssetKind.VIDEO].select(FileSource(media_files["video"]))
    slots[AssetKind.DESCRIPTION].select(FileSource(media_files["description"]))

    resolved = manager.resolve_add("Test", slots)

    assert Path(resolved.photo_path).name == "lesson_Test_image.jpg"
    assert Path(resolved.video_path).name == "lesson_Test_video.mp4"
    assert Path(resolved.long_description_path).name == "lesson_Test_description.txt"
    assert Path(resolved.video_path).read_bytes() == media_files["video"].read_bytes()
    assert Path(resolved.photo_path).parent == manager.media_root
    assert not list(manager.media_root.glob("*.part"))


def test_original_slots_keep_their_paths_verbatim(manager) -> None:
    slots = new_slots("resource://drawable/a", "/private/lesson_3_video.mp4", "resource://raw/a_recipe")

    resolved = manager.resolve_edit(3, slots)

    assert resolved.photo_path == "resource://drawable/a"
    assert resolved.video_path == "/private/lesson_3_video.mp4"
    assert resolved.long_description_path == "resource://raw/a_recipe"
    assert list(manager.media_root.iterdir()) == []


def test_one_failed_copy_publishes_nothing(manager) -> None:
    existing = manager.media_root / "lesson_5_image.jpg"
    existing.write_bytes(b"old image")
    slots = new_slots(str(existing), "resource://raw/v", "resource://raw/d")
    slots[AssetKind.IMAGE].select(BytesSource(b"new image"))
    slots[AssetKind.VIDEO].select(TruncatedSource())

    with pytest.raises(AssetCopyError) as excinfo:
        manager.resolve_edit(5, slots)

    assert set(excinfo.value.failures) == {AssetKind.VIDEO}
    assert slots[AssetKind.VIDEO].state is SlotState.FAILED
    assert slots[AssetKind.IMAGE].state is SlotState.PENDING
    assert existing.read_bytes() == b"old image"
    assert sorted(path.name for path in manager.media_root.iterdir()) == ["lesson_5_image.jpg"]


def test_failure_reports_every_failed_kind(manager) -> None:
    slots = new_slots()
    slots[AssetKind.IMAGE].select(BrokenSource())
    slots[AssetKind.VIDEO].select(BytesSource(b"video"))
    slots[AssetKind.DESCRIPTION].select(BrokenSource())

    with pytest.raises(AssetCopyError) as excinfo:
        manager.resolve_add("Cake", slots)

    assert set(excinfo.value.failures) == {AssetKind.IMAGE, AssetKind.DESCRIPTION}
    assert "image" in str(excinfo.value) and "description" in str(excinfo.value)
    assert list(manager.media_root.iterdir()) == []


def test_failed_slot_is_retried_on_next_resolve(manager) -> None:
    slots = new_slots("resource://drawable/a", "resource://raw/v", "resource://raw/d")
    slots[AssetKind.IMAGE].select(BrokenSource())
    with pytest.raises(AssetCopyError):
        manager.resolve_edit(8, slots)

    slots[AssetKind.IMAGE].select(BytesSource(b"fixed"))
    resolved = manager.resolve_edit(8, slots)

    assert Path(resolved.photo_path).read_bytes() == b"fixed"


def test_blank_description_in_edit_keeps_original(manager) -> None:
    slots = new_slots("resource://drawable/a", "resource://raw/v", "resource://raw/d")
    slots[AssetKind.DESCRIPTION].select(BytesSource(b"   \n"))

    resolved = manager.resolve_edit(2, slots)

    assert resolved.long_description_path == "resource://raw/d"
    assert list(manager.media_root.iterdir()) == []


def test_replacing_overwrites_deterministic_file_in_place(manager) -> None:
    slots = new_slots("resource://drawable/a", "resource://raw/v", "resource://raw/d")
    slots[AssetKind.IMAGE].select(BytesSource(b"first"))
    first = manager.resolve_edit(4, slots)

    slots[AssetKind.IMAGE].select(BytesSource(b"second"))
    second = manager.resolve_edit(4, slots)

    assert first.photo_path == second.photo_path
    assert Path(second.photo_path).read_bytes() == b"second"


def test_missing_slot_is_a_validation_error(manager) -> None:
    slots = new_slots(None, "resource://raw/v", "resource://raw/d")

    with pytest.raises(ValidationError) as excinfo:
        manager.resolve_add("Cake", slots)
    assert excinfo.value.field == "image"


def test_failed_publish_restores_previously_stored_files(manager, monkeypatch) -> None:
    slots = new_slots("resource://drawable/a", "resource://raw/v", "resource://raw/d")
    slots[AssetKind.IMAGE].select(BytesSource(b"IMG-v1"))
    first = manager.resolve_edit(7, slots)
    slots[AssetKind.IMAGE].reset(first.photo_path)

    real_replace = os.replace

    def failing_replace(source, target):
        if str(source).endswith(".part") and str(target).endswith("_video.mp4"):
            raise OSError("disk full")
        return real_replace(source, target)

    monkeypatch.setattr(os, "replace", failing_replace)
    slots[AssetKind.IMAGE].select(BytesSource(b"IMG-v2"))
    slots[AssetKind.VIDEO].select(BytesSource(b"VID-v2"))

    with pytest.raises(AssetCopyError) as excinfo:
        manager.resolve_edit(7, slots)

    assert set(excinfo.value.failures) == {AssetKind.VIDEO}
    assert slots[AssetKind.VIDEO].state is SlotState.FAILED
    assert Path(first.photo_path).read_bytes() == b"IMG-v1"
    assert sorted(path.name for path in manager.media_root.iterdir()) == ["lesson_7_image.jpg"]
