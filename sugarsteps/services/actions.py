"""Lesson interactions available from the list and detail screens."""

from __future__ import annotations

import dataclasses
import logging
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Optional

from ..errors import PermissionDeniedError
from .entities import Lesson, User
from .repository import LessonRepository


LOGGER = logging.getLogger(__name__)

DONE_FROM_LIST_MESSAGE = "A lesson can only be marked as done from the lesson itself"
UNDONE_FROM_LIST_MESSAGE = "A lesson can only be unmarked from the lesson itself"


def toggle_liked(repository: LessonRepository, lesson: Lesson) -> "Future[None]":
    """Flip the like flag and submit the change without waiting for it."""

    updated = dataclasses.replace(lesson, liked=not lesson.liked)
    LOGGER.debug("Lesson id=%s liked -> %s", lesson.id, updated.liked)
    return repository.update(updated)


@dataclass(frozen=True)
class DoneToggleResult:
    done: bool
    message: str


def attempt_done_from_list(lesson: Lesson, requested: bool) -> DoneToggleResult:
    """The list never changes the done flag; it reverts to the stored value."""

    message = DONE_FROM_LIST_MESSAGE if requested else UNDONE_FROM_LIST_MESSAGE
    LOGGER.debug("Rejected done=%s for lesson id=%s from the list", requested, lesson.id)
    return DoneToggleResult(done=lesson.done, message=message)


class DetailSession:
    """Like and done changes made on the detail screen, written when leaving."""

    def __init__(self, repository: LessonRepository, lesson: Lesson) -> None:
        self._repository = repository
        self._lesson = lesson
        self.liked = lesson.liked
        self.done = lesson.done

    @property
    def lesson(self) -> Lesson:
        return self._lesson

    def toggle_liked(self) -> bool:
        self.liked = not self.liked
        return self.liked

    def set_done(self, done: bool) -> None:
        self.done = bool(done)

    @property
    def changed(self) -> bool:
        return self.liked != self._lesson.liked or self.done != self._lesson.done

    def close(self) -> Optional["Future[None]"]:
        if not self.changed:
            LOGGER.debug("Detail session for lesson id=%s closed without changes", self._lesson.id)
            return None
        updated = dataclasses.replace(self._lesson, liked=self.liked, done=self.done)
        self._lesson = updated
        return self._repository.update(updated)


def ensure_guide(user: Optional[User], action: str) -> User:
    if user is None or not user.is_guide:
        raise PermissionDeniedError(f"Only guides may {action} lessons")
    return user


def delete_lesson(repository: LessonRepository, user: Optional[User], lesson: Lesson) -> "Future[None]":
    """Remove *lesson*; private media files are left in place."""

    ensure_guide(user, "delete")
    LOGGER.info("Guide '%s' deleting lesson id=%s", user.username, lesson.id)
    return repository.delete(lesson)


__all__ = [
    "DONE_FROM_LIST_MESSAGE",
    "DetailSession",
    "DoneToggleResult",
    "UNDONE_FROM_LIST_MESSAGE",
    "attempt_done_from_list",
    "delete_lesson",
    "ensure_guide",
    "toggle_liked",
]
