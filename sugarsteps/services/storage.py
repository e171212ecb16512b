"""Persistence helpers backed by SQLite."""

from __future__ import annotations

import contextlib
import logging
import sqlite3
import time
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from ..errors import ConstraintError, StoreError
from .entities import Lesson, User


LOGGER = logging.getLogger(__name__)

LESSONS_TABLE = "lessons"
USERS_TABLE = "users"

_LESSON_COLUMNS = (
    "id",
    "name",
    "photo_path",
    "short_description",
    "guide_name",
    "level",
    "video_path",
    "long_description_path",
    "liked",
    "done",
)
_USER_COLUMNS = ("id", "username", "role", "level", "gender", "phone_number", "age")


def _lesson_from_row(row: sqlite3.Row) -> Lesson:
    values = dict(row)
    values["liked"] = bool(values["liked"])
    values["done"] = bool(values["done"])
    return Lesson(**values)


def _user_from_row(row: sqlite3.Row) -> User:
    values = dict(row)
    values["age"] = int(values["age"] or 0)
    return User(**values)


class ContentStore:
    """Durable keyed storage for lessons and users.

    Every successful mutation reports the touched table to *on_change* after
    the transaction commits, which is how reactive queries learn that their
    snapshot went stale.
    """

    def __init__(
        self,
        database_file: Path,
        *,
        on_change: Optional[Callable[[str], None]] = None,
        event_emitter: Optional[Callable[..., None]] = None,
    ) -> None:
        self._db_path = database_file
        self._on_change = on_change
        self._event_emitter = event_emitter

    @property
    def database_file(self) -> Path:
        return self._db_path

    @contextlib.contextmanager
    def _track_db_event(self, action: str, **payload: Any) -> Iterator[Dict[str, Any]]:
        """Emit a structured debug event capturing execution time for a DB action."""

        if self._event_emitter is None:
            yield dict(payload)
            return

        start = time.perf_counter()
        event_payload: Dict[str, Any] = dict(payload)
        try:
            yield event_payload
        except Exception as exc:
            event_payload.setdefault("status", "error")
            event_payload.setdefault("error", f"{exc.__class__.__name__}: {exc}")
            raise
        finally:
            event_payload.setdefault("status", "ok")
            filtered = {key: value for key, value in event_payload.items() if value is not None}
            self._event_emitter(
                action,
                payload=filtered,
                duration_ms=(time.perf_counter() - start) * 1000.0,
            )

    def _execute(
        self,
        connection: sqlite3.Connection,
        statement: str,
        parameters: Sequence[Any] | Tuple[Any, ...] = (),
    ) -> sqlite3.Cursor:
        try:
            return connection.execute(statement, tuple(parameters))
        except sqlite3.IntegrityError as error:
            raise ConstraintError(str(error)) from error
        except sqlite3.Error as error:
            raise StoreError(f"{error.__class__.__name__}: {error}") from error

    @contextlib.contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        LOGGER.debug("Opening SQLite connection to %s", self._db_path)
        try:
            connection = sqlite3.connect(self._db_path)
        except sqlite3.Error as error:
            raise StoreError(f"Cannot open store at {self._db_path}: {error}") from error
        connection.row_factory = sqlite3.Row
        try:
            with connection:
                yield connection
        finally:
            connection.close()

    def _notify(self, table: str) -> None:
        if self._on_change is None:
            return
        LOGGER.debug("Table '%s' changed; notifying observers", table)
        self._on_change(table)

    # ------------------------------------------------------------------
    # Lessons
    # ------------------------------------------------------------------
    def insert_lesson(self, lesson: Lesson) -> int:
        LOGGER.debug("Inserting lesson '%s' (level=%s)", lesson.name, lesson.level)
        with self._track_db_event("lessons.insert", table=LESSONS_TABLE, name=lesson.name) as event:
            with self._connect() as connection:
                cursor = self._execute(
                    connection,
                    f"""
                    INSERT INTO {LESSONS_TABLE}(
                        name,
                        photo_path,
                        short_description,
                        guide_name,
                        level,
                        video_path,
                        long_description_path,
                        liked,
                        done
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        lesson.name,
                        lesson.photo_path,
                        lesson.short_description,
                        lesson.guide_name,
                        lesson.level,
                        lesson.video_path,
                        lesson.long_description_path,
                        int(lesson.liked),
                        int(lesson.done),
                    ),
                )
                lesson_id = int(cursor.lastrowid)
            event["lesson_id"] = lesson_id
        LOGGER.debug("Lesson '%s' inserted with id=%s", lesson.name, lesson_id)
        self._notify(LESSONS_TABLE)
        return lesson_id

    def update_lesson(self, lesson: Lesson) -> None:
        with self._track_db_event("lessons.update", table=LESSONS_TABLE, lesson_id=lesson.id) as event:
            with self._connect() as connection:
                cursor = self._execute(
                    connection,
                    f"""
                    UPDATE {LESSONS_TABLE} SET
                        name = ?,
                        photo_path = ?,
                        short_description = ?,
                        guide_name = ?,
                        level = ?,
                        video_path = ?,
                        long_description_path = ?,
                        liked = ?,
                        done = ?
                    WHERE id = ?
                    """,
                    (
                        lesson.name,
                        lesson.photo_path,
                        lesson.short_description,
                        lesson.guide_name,
                        lesson.level,
                        lesson.video_path,
                        lesson.long_description_path,
                        int(lesson.liked),
                        int(lesson.done),
                        lesson.id,
                    ),
                )
                affected = max(cursor.rowcount, 0)
            event["rowcount"] = affected
        if not affected:
            LOGGER.debug("Skipping notification for missing lesson id=%s", lesson.id)
            return
        LOGGER.debug("Lesson id=%s updated", lesson.id)
        self._notify(LESSONS_TABLE)

    def delete_lesson(self, lesson: Lesson) -> None:
        LOGGER.debug("Removing lesson id=%s", lesson.id)
        with self._track_db_event("lessons.delete", table=LESSONS_TABLE, lesson_id=lesson.id) as event:
            with self._connect() as connection:
                cursor = self._execute(
                    connection, f"DELETE FROM {LESSONS_TABLE} WHERE id = ?", (lesson.id,)
                )
                affected = max(cursor.rowcount, 0)
            event["rowcount"] = affected
        if affected:
            self._notify(LESSONS_TABLE)

    def get_all_lessons(self) -> List[Lesson]:
        with self._track_db_event("lessons.list", table=LESSONS_TABLE) as event:
            with self._connect() as connection:
                rows = self._execute(
                    connection,
                    f"SELECT {', '.join(_LESSON_COLUMNS)} FROM {LESSONS_TABLE} ORDER BY id",
                ).fetchall()
            event["rowcount"] = len(rows)
        return [_lesson_from_row(row) for row in rows]

    def get_lesson(self, lesson_id: int) -> Optional[Lesson]:
        LOGGER.debug("Fetching lesson id=%s", lesson_id)
        with self._track_db_event("lessons.get", table=LESSONS_TABLE, lesson_id=lesson_id) as event:
            with self._connect() as connection:
                row = self._execute(
                    connection,
                    f"SELECT {', '.join(_LESSON_COLUMNS)} FROM {LESSONS_TABLE} WHERE id = ?",
                    (lesson_id,),
                ).fetchone()
            event["found"] = row is not None
        return _lesson_from_row(row) if row else None

    def count_lessons(self) -> int:
        with self._connect() as connection:
            row = self._execute(connection, f"SELECT COUNT(*) FROM {LESSONS_TABLE}").fetchone()
        return int(row[0]) if row else 0

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------
    def insert_user(self, user: User) -> int:
        LOGGER.debug("Inserting user '%s' with role=%s", user.username, user.role)
        with self._track_db_event("users.insert", table=USERS_TABLE, role=user.role) as event:
            with self._connect() as connection:
                cursor = self._execute(
                    connection,
                    f"""
                    INSERT INTO {USERS_TABLE}(username, role, level, gender, phone_number, age)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        user.username,
                        user.role,
                        user.level,
                        user.gender,
                        user.phone_number,
                        int(user.age or 0),
                    ),
                )
                user_id = int(cursor.lastrowid)
            event["user_id"] = user_id
        self._notify(USERS_TABLE)
        return user_id

    def update_user(self, user: User) -> None:
        with self._track_db_event("users.update", table=USERS_TABLE, user_id=user.id) as event:
            with self._connect() as connection:
                cursor = self._execute(
                    connection,
                    f"""
                    UPDATE {USERS_TABLE} SET
                        username = ?, role = ?, level = ?, gender = ?, phone_number = ?, age = ?
                    WHERE id = ?
                    """,
                    (
                        user.username,
                        user.role,
                        user.level,
                        user.gender,
                        user.phone_number,
                        int(user.age or 0),
                        user.id,
                    ),
                )
                affected = max(cursor.rowcount, 0)
            event["rowcount"] = affected
        if affected:
            self._notify(USERS_TABLE)

    def delete_user(self, user: User) -> None:
        with self._track_db_event("users.delete", table=USERS_TABLE, user_id=user.id) as event:
            with self._connect() as connection:
                cursor = self._execute(
                    connection, f"DELETE FROM {USERS_TABLE} WHERE id = ?", (user.id,)
                )
                affected = max(cursor.rowcount, 0)
            event["rowcount"] = affected
        if affected:
            self._notify(USERS_TABLE)

    def delete_all_users(self) -> None:
        with self._track_db_event("users.delete_all", table=USERS_TABLE) as event:
            with self._connect() as connection:
                cursor = self._execute(connection, f"DELETE FROM {USERS_TABLE}")
                event["rowcount"] = max(cursor.rowcount, 0)
        self._notify(USERS_TABLE)

    def get_all_users(self) -> List[User]:
        with self._track_db_event("users.list", table=USERS_TABLE) as event:
            with self._connect() as connection:
                rows = self._execute(
                    connection,
                    f"SELECT {', '.join(_USER_COLUMNS)} FROM {USERS_TABLE} ORDER BY id",
                ).fetchall()
            event["rowcount"] = len(rows)
        return [_user_from_row(row) for row in rows]

    def get_user(self, user_id: int) -> Optional[User]:
        with self._track_db_event("users.get", table=USERS_TABLE, user_id=user_id) as event:
            with self._connect() as connection:
                row = self._execute(
                    connection,
                    f"SELECT {', '.join(_USER_COLUMNS)} FROM {USERS_TABLE} WHERE id = ?",
                    (user_id,),
                ).fetchone()
            event["found"] = row is not None
        return _user_from_row(row) if row else None

    def find_user_by_username(self, username: str) -> Optional[User]:
        LOGGER.debug("Looking up user by username '%s'", username)
        with self._track_db_event("users.lookup_by_username", table=USERS_TABLE) as event:
            with self._connect() as connection:
                row = self._execute(
                    connection,
                    f"SELECT {', '.join(_USER_COLUMNS)} FROM {USERS_TABLE} WHERE username = ? LIMIT 1",
                    (username,),
                ).fetchone()
            event["found"] = row is not None
        return _user_from_row(row) if row else None


__all__ = ["ContentStore", "LESSONS_TABLE", "USERS_TABLE"]
