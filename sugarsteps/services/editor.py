"""State machine behind the add/edit lesson screen."""

from __future__ import annotations

import functools
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum
from typing import Callable, Dict, List, Optional

from ..errors import NotFoundError, ValidationError
from .entities import (
    MAX_LESSON_NAME_LENGTH,
    MAX_SHORT_DESCRIPTION_LENGTH,
    Lesson,
    Level,
    User,
)
from .events import emit_task_event
from .live import Dispatcher, Subscription
from .media import AssetKind, ExternalSource, MediaManager, MediaSlot, ResolvedAssets, new_slots
from .repository import LessonRepository


LOGGER = logging.getLogger(__name__)


class EditorMode(Enum):
    ADD = "add"
    EDIT = "edit"


class EditorState(Enum):
    LOADING = "loading"
    EDITING = "editing"
    SAVING = "saving"
    DONE = "done"
    CANCELLED = "cancelled"


EditorListener = Callable[["LessonEditor", EditorState], None]


class LessonEditor:
    """Collects lesson fields and media, then commits them in one step.

    In add mode the editor starts empty. In edit mode it loads the lesson
    with *lesson_id* and keeps its original media unless new files are
    selected. Media copies run on the editor's own worker; the store write
    is submitted only after every copy succeeded.
    """

    def __init__(
        self,
        repository: LessonRepository,
        media: MediaManager,
        *,
        lesson_id: Optional[int] = None,
        guide: Optional[User] = None,
        dispatcher: Optional[Dispatcher] = None,
    ) -> None:
        self._repository = repository
        self._media = media
        self._dispatcher = dispatcher or repository.dispatcher
        self.mode = EditorMode.ADD if lesson_id is None else EditorMode.EDIT
        self.lesson_id = lesson_id
        self._guide = guide

        self.name = ""
        self.short_description = ""
        self.guide_name = ""
        self._level = Level.BEGINNER.display
        self.description_text = ""

        self.slots: Dict[AssetKind, MediaSlot] = new_slots()
        self.original_paths: Optional[ResolvedAssets] = None

        self.error: Optional[Exception] = None
        self.saved_id: Optional[int] = None

        self._state = EditorState.LOADING
        self._listeners: List[EditorListener] = []
        self._subscription: Optional[Subscription[Optional[Lesson]]] = None
        self._disposed = threading.Event()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="lesson-editor")

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    @property
    def state(self) -> EditorState:
        return self._state

    @property
    def disposed(self) -> bool:
        return self._disposed.is_set()

    def add_listener(self, listener: EditorListener) -> None:
        self._listeners.append(listener)

    def _transition(self, state: EditorState) -> None:
        if self.disposed:
            LOGGER.debug("Editor disposed; dropping transition to %s", state.value)
            return
        previous = self._state
        self._state = state
        LOGGER.debug("Lesson editor %s -> %s", previous.value, state.value)
        for listener in list(self._listeners):
            try:
                listener(self, state)
            except Exception:  # noqa: BLE001 - listeners must not break the machine
                LOGGER.exception("Editor listener raised on %s", state.value)

    def _post(self, callback: Callable[[], None]) -> None:
        self._dispatcher.post(callback)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        if self.mode is EditorMode.ADD:
            if self._guide is not None:
                self.guide_name = self._guide.username
            self._transition(EditorState.EDITING)
            return
        LOGGER.debug("Loading lesson id=%s for editing", self.lesson_id)
        self._transition(EditorState.LOADING)
        query = self._repository.query_by_id(int(self.lesson_id))
        self._subscription = query.subscribe(self._on_loaded)

    def _on_loaded(self, lesson: Optional[Lesson]) -> None:
        if self.disposed or self._state is not EditorState.LOADING:
            return
        if lesson is None:
            LOGGER.warning("Lesson id=%s no longer exists", self.lesson_id)
            self.error = NotFoundError("lesson", int(self.lesson_id))
            self._transition(EditorState.CANCELLED)
            return
        self.name = lesson.name
        self.short_description = lesson.short_description
        self.guide_name = lesson.guide_name
        self._level = lesson.level
        self.slots[AssetKind.IMAGE].reset(lesson.photo_path)
        self.slots[AssetKind.VIDEO].reset(lesson.video_path)
        self.slots[AssetKind.DESCRIPTION].reset(lesson.long_description_path)
        self.original_paths = ResolvedAssets(
            photo_path=lesson.photo_path,
            video_path=lesson.video_path,
            long_description_path=lesson.long_description_path,
        )
        try:
            self.description_text = self._media.read_text(lesson.long_description_path)
        except (OSError, ValueError) as error:
            LOGGER.warning("Could not load description for lesson id=%s: %s", lesson.id, error)
            self.description_text = ""
        self._transition(EditorState.EDITING)

    def cancel(self) -> bool:
        """Leave without saving. Ignored while a save is in flight."""

        if self._state is EditorState.SAVING:
            LOGGER.debug("Cancel ignored while saving")
            return False
        if self._state in (EditorState.DONE, EditorState.CANCELLED):
            return False
        self._transition(EditorState.CANCELLED)
        return True

    def dispose(self) -> None:
        """Detach from the screen; late results of an in-flight save are dropped."""

        self._disposed.set()
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        self._executor.shutdown(wait=False)

    # ------------------------------------------------------------------
    # Fields
    # ------------------------------------------------------------------
    @property
    def level(self) -> str:
        return self._level

    @level.setter
    def level(self, value: str) -> None:
        parsed = Level.parse(value)
        if parsed is None:
            raise ValidationError(f"Unknown level: {value!r}", field="level")
        self._level = parsed.display

    def _select(self, kind: AssetKind, source: ExternalSource) -> None:
        if self._state is not EditorState.EDITING:
            LOGGER.debug("Ignoring %s selection in state %s", kind.value, self._state.value)
            return
        self.slots[kind].select(source)

    def select_image(self, source: ExternalSource) -> None:
        self._select(AssetKind.IMAGE, source)

    def select_video(self, source: ExternalSource) -> None:
        self._select(AssetKind.VIDEO, source)

    def select_description(self, source: ExternalSource) -> None:
        """Select a new description file and preview its text."""

        if self._state is not EditorState.EDITING:
            return
        try:
            with source.open() as stream:
                preview = stream.read().decode("utf-8", errors="replace")
        except OSError as error:
            LOGGER.warning("Could not preview description from %s: %s", source.locator, error)
            preview = ""
        self.slots[AssetKind.DESCRIPTION].select(source)
        if preview.strip() or self.mode is EditorMode.ADD:
            self.description_text = preview

    def validate(self) -> None:
        """Raise :class:`ValidationError` for the first rule the input breaks."""

        if not self.name:
            raise ValidationError("Lesson name is required", field="name")
        if len(self.name) > MAX_LESSON_NAME_LENGTH:
            raise ValidationError(
                f"Lesson name must be at most {MAX_LESSON_NAME_LENGTH} characters", field="name"
            )
        if not self.short_description:
            raise ValidationError("Short description is required", field="short_description")
        if len(self.short_description) > MAX_SHORT_DESCRIPTION_LENGTH:
            raise ValidationError(
                f"Short description must be at most {MAX_SHORT_DESCRIPTION_LENGTH} characters",
                field="short_description",
            )
        if not self.guide_name:
            raise ValidationError("Guide name is required", field="guide_name")
        if self.mode is EditorMode.EDIT:
            return
        if not self.slots[AssetKind.IMAGE].has_asset:
            raise ValidationError("Choose an image for the lesson", field="image")
        if not self.slots[AssetKind.VIDEO].has_asset:
            raise ValidationError("Choose a video for the lesson", field="video")
        if not self.slots[AssetKind.DESCRIPTION].has_asset or not self.description_text.strip():
            raise ValidationError("Choose a description file for the lesson", field="description")

    # ------------------------------------------------------------------
    # Saving
    # ------------------------------------------------------------------
    def save(self) -> Optional["Future[int]"]:
        """Validate and commit in the background.

        Returns ``None`` when the editor is not accepting edits, which also
        makes a second save during an in-flight one a no-op.
        """

        if self._state is not EditorState.EDITING:
            LOGGER.debug("Save ignored in state %s", self._state.value)
            return None
        try:
            self.validate()
        except ValidationError as error:
            self.error = error
            raise
        self.error = None
        self._transition(EditorState.SAVING)
        return self._executor.submit(self._commit)

    def _commit(self) -> int:
        context = {"mode": self.mode.value, "lesson_id": self.lesson_id, "name": self.name}
        emit_task_event("start", "Saving lesson", context=context)
        try:
            if self.mode is EditorMode.ADD:
                assets = self._media.resolve_add(self.name, self.slots)
                lesson = Lesson(
                    name=self.name,
                    photo_path=assets.photo_path,
                    short_description=self.short_description,
                    guide_name=self.guide_name,
                    level=self._level,
                    video_path=assets.video_path,
                    long_description_path=assets.long_description_path,
                )
                saved_id = self._repository.insert_and_await_id(lesson)
            else:
                assets = self._media.resolve_edit(int(self.lesson_id), self.slots)
                lesson = self._repository.apply_edit(
                    int(self.lesson_id),
                    name=self.name,
                    short_description=self.short_description,
                    guide_name=self.guide_name,
                    level=self._level,
                    photo_path=assets.photo_path,
                    video_path=assets.video_path,
                    long_description_path=assets.long_description_path,
                ).result()
                saved_id = int(lesson.id)
        except Exception as error:  # noqa: BLE001 - every failure must leave SAVING
            LOGGER.warning("Saving lesson failed: %s", error)
            emit_task_event(
                "error",
                "Saving lesson failed",
                payload={"error": f"{error.__class__.__name__}: {error}"},
                context=context,
                level=logging.WARNING,
            )
            self._post(functools.partial(self._on_failed, error))
            raise
        emit_task_event("finish", "Lesson saved", payload={"saved_id": saved_id}, context=context)
        self._post(functools.partial(self._on_saved, saved_id))
        return saved_id

    def _on_saved(self, saved_id: int) -> None:
        if self.disposed:
            return
        self.saved_id = saved_id
        self._transition(EditorState.DONE)

    def _on_failed(self, error: Exception) -> None:
        if self.disposed:
            return
        self.error = error
        self._transition(EditorState.EDITING)


__all__ = ["EditorListener", "EditorMode", "EditorState", "LessonEditor"]
