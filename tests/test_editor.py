import io
import threading
from pathlib import Path

import pytest

from sugarsteps.errors import AssetCopyError, NotFoundError, ValidationError
from sugarsteps.services.actions import toggle_liked
from sugarsteps.services.editor import EditorMode, EditorState
from sugarsteps.services.entities import Lesson, Level, User
from sugarsteps.services.live import QueueDispatcher
from sugarsteps.services.media import AssetKind, BytesSource, FileSource, SlotState


GUIDE = User(username="Dana", role="guide", id=1)


class BrokenSource:
    locator = "content://gone"

    def open(self):
        raise FileNotFoundError("picked file disappeared")


class GatedSource:
    """Blocks the copy until the test releases it."""

    locator = "content://slow"

    def __init__(self, data: bytes) -> None:
        self._data = data
        self.started = threading.Event()
        self.release = threading.Event()

    def open(self):
        self.started.set()
        self.release.wait(timeout=10.0)
        return io.BytesIO(self._data)


def _fill(editor, media_files, name: str = "Test") -> None:
    editor.name = name
    editor.short_description = "Quick and easy"
    editor.select_image(FileSource(media_files["image"]))
    editor.select_video(FileSource(media_files["video"]))
    editor.select_description(FileSource(media_files["description"]))


def _store_bundled_lesson(app_context) -> Lesson:
    recipe = app_context.config.bundled_root / "raw" / "halot_recipe.txt"
    recipe.parent.mkdir(parents=True, exist_ok=True)
    recipe.write_text("Braid into six strands.", encoding="utf-8")
    lesson = Lesson(
        name="Challah",
        photo_path="resource://drawable/halot_lesson",
        short_description="Challah you will keep baking",
        guide_name="Dana",
        level=Level.EXPERT.display,
        video_path="resource://raw/halot",
        long_description_path="resource://raw/halot_recipe",
        liked=True,
    )
    lesson_id = app_context.lessons.insert_and_await_id(lesson, timeout=10.0)
    return app_context.lessons.get(lesson_id).result(timeout=10.0)


def _open_edit(app_context, lesson_id: int):
    editor = app_context.new_editor(lesson_id=lesson_id)
    editor.start()
    app_context.lessons.drain(timeout=10.0)
    return editor


def test_adding_lesson_named_test_stores_private_copies(app_context, media_files) -> None:
    editor = app_context.new_editor(guide=GUIDE)
    states = []
    editor.add_listener(lambda source, state: states.append(state))
    editor.start()
    assert editor.mode is EditorMode.ADD
    assert editor.guide_name == "Dana"

    _fill(editor, media_files)
    inserted_id = editor.save().result(timeout=10.0)

    assert inserted_id > 0
    assert editor.state is EditorState.DONE
    assert editor.saved_id == inserted_id
    assert states == [EditorState.EDITING, EditorState.SAVING, EditorState.DONE]

    stored = app_context.lessons.get(inserted_id).result(timeout=10.0)
    assert stored.name == "Test"
    assert Path(stored.photo_path).name.startswith("lesson_Test_image.")
    assert Path(stored.video_path).name.startswith("lesson_Test_video.")
    assert Path(stored.long_description_path).name.startswith("lesson_Test_description.")
    assert Path(stored.long_description_path).read_text(encoding="utf-8") == (
        media_files["description"].read_text(encoding="utf-8")
    )
    editor.dispose()


@pytest.mark.parametrize(
    "missing",
    ["name", "short_description", "guide_name", "image", "video", "description"],
)
def test_add_with_a_missing_input_is_rejected_before_io(app_context, media_files, missing) -> None:
    editor = app_context.new_editor(guide=GUIDE)
    editor.start()
    editor.name = "Test"
    editor.short_description = "Quick and easy"
    if missing == "name":
        editor.name = ""
    if missing == "short_description":
        editor.short_description = ""
    if missing == "guide_name":
        editor.guide_name = ""
    if missing != "image":
        editor.select_image(FileSource(media_files["image"]))
    if missing != "video":
        editor.select_video(FileSource(media_files["video"]))
    if missing != "description":
        editor.select_description(FileSource(media_files["description"]))

    with pytest.raises(ValidationError) as excinfo:
        editor.save()

    assert excinfo.value.field == missing
    assert editor.state is EditorState.EDITING
    assert list(app_context.config.media_root.iterdir()) == []
    assert app_context.lessons.query_all().first(timeout=10.0) == []
    editor.dispose()


def test_length_limits_apply(app_context, media_files) -> None:
    editor = app_context.new_editor(guide=GUIDE)
    editor.start()
    _fill(editor, media_files, name="x" * 21)

    with pytest.raises(ValidationError) as excinfo:
        editor.validate()
    assert excinfo.value.field == "name"

    editor.name = "x" * 20
    editor.short_description = "y" * 30
    with pytest.raises(ValidationError) as excinfo:
        editor.validate()
    assert excinfo.value.field == "short_description"
    editor.dispose()


def test_edit_without_touching_media_keeps_original_paths(app_context) -> None:
    original = _store_bundled_lesson(app_context)
    editor = _open_edit(app_context, original.id)

    assert editor.state is EditorState.EDITING
    assert editor.description_text == "Braid into six strands."
    assert all(slot.state is SlotState.ORIGINAL for slot in editor.slots.values())

    editor.short_description = "Six strands, golden crust"
    assert editor.save().result(timeout=10.0) == original.id

    stored = app_context.lessons.get(original.id).result(timeout=10.0)
    assert stored.asset_paths() == original.asset_paths()
    assert stored.short_description == "Six strands, golden crust"
    assert stored.liked is True
    editor.dispose()


def test_edit_with_one_failed_copy_leaves_store_untouched(app_context, media_files) -> None:
    original = _store_bundled_lesson(app_context)
    editor = _open_edit(app_context, original.id)

    editor.name = "Renamed"
    editor.select_image(FileSource(media_files["image"]))
    editor.select_video(BrokenSource())
    editor.select_description(FileSource(media_files["description"]))

    with pytest.raises(AssetCopyError):
        editor.save().result(timeout=10.0)

    assert editor.state is EditorState.EDITING
    assert isinstance(editor.error, AssetCopyError)
    assert editor.slots[AssetKind.VIDEO].state is SlotState.FAILED
    assert app_context.lessons.query_by_id(original.id).first(timeout=10.0) == original
    assert list(app_context.config.media_root.iterdir()) == []
    editor.dispose()


def test_edit_of_missing_lesson_is_cancelled(app_context) -> None:
    editor = _open_edit(app_context, 4242)

    assert editor.state is EditorState.CANCELLED
    assert isinstance(editor.error, NotFoundError)
    editor.dispose()


def test_save_and_cancel_are_ignored_while_saving(app_context, media_files) -> None:
    editor = app_context.new_editor(guide=GUIDE)
    editor.start()
    _fill(editor, media_files, name="Slow")
    gate = GatedSource(b"video bytes")
    editor.select_video(gate)

    future = editor.save()
    assert gate.started.wait(timeout=10.0)
    assert editor.state is EditorState.SAVING
    assert editor.save() is None
    assert editor.cancel() is False

    gate.release.set()
    lesson_id = future.result(timeout=10.0)

    assert editor.state is EditorState.DONE
    assert len(app_context.lessons.query_all().first(timeout=10.0)) == 1
    assert app_context.lessons.get(lesson_id).result(timeout=10.0).name == "Slow"
    editor.dispose()


def test_cancel_discards_changes(app_context) -> None:
    original = _store_bundled_lesson(app_context)
    editor = _open_edit(app_context, original.id)
    editor.name = "Discarded"

    assert editor.cancel() is True
    assert editor.state is EditorState.CANCELLED
    assert editor.save() is None
    assert app_context.lessons.get(original.id).result(timeout=10.0).name == "Challah"
    editor.dispose()


def test_disposed_editor_drops_late_results(app_context, media_files) -> None:
    editor = app_context.new_editor(guide=GUIDE)
    editor.start()
    _fill(editor, media_files, name="Late")
    gate = GatedSource(b"video bytes")
    editor.select_video(gate)

    future = editor.save()
    assert gate.started.wait(timeout=10.0)
    editor.dispose()
    gate.release.set()
    lesson_id = future.result(timeout=10.0)

    assert editor.state is EditorState.SAVING
    assert editor.saved_id is None
    assert app_context.lessons.get(lesson_id).result(timeout=10.0).name == "Late"


def test_state_changes_wait_for_the_ui_thread(app_context, media_files) -> None:
    dispatcher = QueueDispatcher()
    editor = app_context.new_editor(guide=GUIDE)
    editor._dispatcher = dispatcher
    editor.start()
    _fill(editor, media_files, name="Queued")

    future = editor.save()
    future.result(timeout=10.0)
    assert editor.state is EditorState.SAVING

    assert dispatcher.run_until(lambda: editor.state is EditorState.DONE, timeout=5.0)
    editor.dispose()


def test_level_setter_rejects_unknown_values(app_context) -> None:
    editor = app_context.new_editor(guide=GUIDE)
    editor.level = "EXPERT"
    assert editor.level == "Expert"
    with pytest.raises(ValidationError):
        editor.level = "master"
    editor.dispose()


def test_blank_description_in_add_mode_is_rejected(app_context, media_files) -> None:
    editor = app_context.new_editor(guide=GUIDE)
    editor.start()
    _fill(editor, media_files)
    editor.select_description(BytesSource(b"  \n"))

    with pytest.raises(ValidationError) as excinfo:
        editor.save()
    assert excinfo.value.field == "description"
    editor.dispose()


def test_edit_save_keeps_flags_changed_while_editing(app_context) -> None:
    original = _store_bundled_lesson(app_context)
    editor = _open_edit(app_context, original.id)

    toggle_liked(app_context.lessons, original).result(timeout=10.0)
    assert app_context.lessons.get(original.id).result(timeout=10.0).liked is False

    editor.short_description = "Braided and glossy"
    editor.save().result(timeout=10.0)

    stored = app_context.lessons.get(original.id).result(timeout=10.0)
    assert stored.short_description == "Braided and glossy"
    assert stored.liked is False
    editor.dispose()


def test_edit_of_lesson_deleted_meanwhile_returns_to_editing(app_context) -> None:
    original = _store_bundled_lesson(app_context)
    editor = _open_edit(app_context, original.id)
    app_context.lessons.delete(original).result(timeout=10.0)
    app_context.lessons.drain(timeout=10.0)

    editor.short_description = "Gone already"
    with pytest.raises(NotFoundError):
        editor.save().result(timeout=10.0)

    assert editor.state is EditorState.EDITING
    assert isinstance(editor.error, NotFoundError)
    assert app_context.lessons.get(original.id).result(timeout=10.0) is None
    editor.dispose()


def test_unexpected_failure_returns_editor_to_editing(app_context, media_files) -> None:
    editor = app_context.new_editor(guide=GUIDE)
    editor.start()
    _fill(editor, media_files, name="Closed")
    app_context.lessons.close()

    with pytest.raises(RuntimeError):
        editor.save().result(timeout=10.0)

    assert editor.state is EditorState.EDITING
    assert isinstance(editor.error, RuntimeError)
    assert editor.cancel() is True
    editor.dispose()
