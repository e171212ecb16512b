"""Lesson and User records together with their enumerated fields."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional


MAX_LESSON_NAME_LENGTH = 20
MAX_SHORT_DESCRIPTION_LENGTH = 29


class Level(str, Enum):
    BEGINNER = "beginner"
    ADVANCED = "advanced"
    EXPERT = "expert"

    @property
    def display(self) -> str:
        return self.value.capitalize()

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["Level"]:
        """Return the level matching *value* case-insensitively, or ``None``."""

        if not value:
            return None
        normalized = value.strip().lower()
        for level in cls:
            if level.value == normalized:
                return level
        return None


class Role(str, Enum):
    STUDENT = "student"
    GUIDE = "guide"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["Role"]:
        if not value:
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


@dataclass
class Lesson:
    name: str
    photo_path: str
    short_description: str
    guide_name: str
    level: str
    video_path: str
    long_description_path: str
    liked: bool = False
    done: bool = False
    id: int = 0

    def asset_paths(self) -> tuple[str, str, str]:
        return (self.photo_path, self.video_path, self.long_description_path)

    def matches_level(self, level: Level | str) -> bool:
        wanted = level.value if isinstance(level, Level) else str(level)
        return (self.level or "").strip().lower() == wanted.strip().lower()


@dataclass
class User:
    username: str
    role: str
    level: Optional[str] = None
    gender: Optional[str] = None
    phone_number: Optional[str] = None
    age: int = 0
    id: int = 0

    @property
    def is_guide(self) -> bool:
        return Role.parse(self.role) is Role.GUIDE


def filter_by_level(lessons: Iterable[Lesson], level: Level | str) -> List[Lesson]:
    """Return the lessons shown under the *level* tab of the list screen."""

    return [lesson for lesson in lessons if lesson.matches_level(level)]


def default_level_for(user: Optional[User]) -> Level:
    """Pick the list tab that matches the user's profile level."""

    if user is None:
        return Level.BEGINNER
    return Level.parse(user.level) or Level.BEGINNER


__all__ = [
    "Lesson",
    "Level",
    "MAX_LESSON_NAME_LENGTH",
    "MAX_SHORT_DESCRIPTION_LENGTH",
    "Role",
    "User",
    "default_level_for",
    "filter_by_level",
]
