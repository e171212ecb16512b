"""Bootstrap logic that prepares runtime directories and the SQLite database."""

from __future__ import annotations

import logging
import sqlite3
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from . import config as config_module
from .config import AppConfig, load_config
from .errors import BootstrapError
from .services.editor import LessonEditor
from .services.entities import User
from .services.events import emit_db_event
from .services.live import Dispatcher, ImmediateDispatcher, InvalidationTracker
from .services.media import MediaManager
from .services.preferences import PreferenceStore
from .services.repository import LessonRepository, UserRepository
from .services.seeds import build_default_lessons
from .services.storage import ContentStore

LOGGER = logging.getLogger(__name__)

SCHEMA_VERSION = 15

_SCHEMA = """
CREATE TABLE IF NOT EXISTS lessons (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    photo_path TEXT NOT NULL,
    short_description TEXT NOT NULL,
    guide_name TEXT NOT NULL,
    level TEXT NOT NULL,
    video_path TEXT NOT NULL,
    long_description_path TEXT NOT NULL,
    liked INTEGER NOT NULL DEFAULT 0,
    done INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    username TEXT NOT NULL,
    role TEXT NOT NULL,
    level TEXT,
    gender TEXT,
    phone_number TEXT,
    age INTEGER NOT NULL DEFAULT 0
);
"""


class Bootstrapper:
    """High level object orchestrating initialization steps."""

    def __init__(self, config: AppConfig) -> None:
        self._config = config

    @property
    def config(self) -> AppConfig:
        return self._config

    def initialize(self) -> bool:
        """Run all bootstrap tasks and report whether the schema was (re)created."""

        LOGGER.debug("Starting bootstrap sequence")
        self._ensure_directories()
        created = self._ensure_database()
        LOGGER.info("Bootstrap completed successfully (created=%s)", created)
        return created

    def _ensure_directories(self) -> None:
        for label, path in (
            ("storage", self._config.storage_root),
            ("media", self._config.media_root),
            ("database", self._config.database_file.parent),
        ):
            if not config_module._ensure_writable_directory(path):
                raise BootstrapError(
                    f"Unable to prepare {label} directory '{path}'. It is not writable. "
                    "Update config/default.json or adjust permissions."
                )
            LOGGER.debug("Ensured directory exists: %s", path)

    def _ensure_database(self) -> bool:
        LOGGER.debug("Ensuring database schema at %s", self._config.database_file)
        try:
            connection = sqlite3.connect(self._config.database_file)
        except sqlite3.Error as error:
            raise BootstrapError(f"Unable to open database: {error}") from error
        try:
            cursor = connection.cursor()
            version = cursor.execute("PRAGMA user_version").fetchone()[0]
            tables = [
                row[0]
                for row in cursor.execute(
                    "SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%'"
                ).fetchall()
            ]
            if version == SCHEMA_VERSION and tables:
                LOGGER.debug("Schema version %s is current", version)
                return False

            if tables:
                # No migration path is kept between versions; start over.
                LOGGER.warning(
                    "Schema version %s does not match %s; dropping %s table(s)",
                    version,
                    SCHEMA_VERSION,
                    len(tables),
                )
                for table in tables:
                    cursor.execute(f'DROP TABLE IF EXISTS "{table}"')

            cursor.executescript(_SCHEMA)
            cursor.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
            connection.commit()
            LOGGER.info("Created schema version %s", SCHEMA_VERSION)
            return True
        except sqlite3.Error as error:
            raise BootstrapError(f"Unable to prepare database schema: {error}") from error
        finally:
            connection.close()


@dataclass
class AppContext:
    """Process-wide services, exactly one repository per entity type."""

    config: AppConfig
    store: ContentStore
    tracker: InvalidationTracker
    lessons: LessonRepository
    users: UserRepository
    media: MediaManager
    preferences: PreferenceStore
    created: bool = False

    @property
    def dispatcher(self) -> Dispatcher:
        return self.lessons.dispatcher

    def new_editor(self, *, lesson_id: Optional[int] = None, guide: Optional[User] = None) -> LessonEditor:
        return LessonEditor(
            self.lessons,
            self.media,
            lesson_id=lesson_id,
            guide=guide,
            dispatcher=self.dispatcher,
        )

    def close(self) -> None:
        self.lessons.close()
        self.users.close()


def build_app_context(config: AppConfig, *, dispatcher: Optional[Dispatcher] = None) -> AppContext:
    """Bootstrap *config* and wire the services on top of it."""

    created = Bootstrapper(config).initialize()
    tracker = InvalidationTracker()
    store = ContentStore(
        config.database_file,
        on_change=tracker.notify,
        event_emitter=emit_db_event,
    )
    dispatcher = dispatcher or ImmediateDispatcher()
    lessons = LessonRepository(store, tracker, dispatcher=dispatcher)
    users = UserRepository(store, tracker, dispatcher=dispatcher)
    if created:
        lessons.schedule_seed(build_default_lessons())
    return AppContext(
        config=config,
        store=store,
        tracker=tracker,
        lessons=lessons,
        users=users,
        media=MediaManager(config),
        preferences=PreferenceStore(config),
        created=created,
    )


_CONTEXT: Optional[AppContext] = None
_CONTEXT_LOCK = threading.Lock()


def get_app_context(
    config_path: Path | None = None,
    *,
    dispatcher: Optional[Dispatcher] = None,
) -> AppContext:
    """Return the shared context, building it on first access."""

    global _CONTEXT
    with _CONTEXT_LOCK:
        if _CONTEXT is None:
            LOGGER.debug("Building application context")
            _CONTEXT = build_app_context(load_config(config_path=config_path), dispatcher=dispatcher)
        return _CONTEXT


def reset_app_context() -> None:
    """Close and forget the shared context."""

    global _CONTEXT
    with _CONTEXT_LOCK:
        context, _CONTEXT = _CONTEXT, None
    if context is not None:
        context.close()


__all__ = [
    "AppContext",
    "Bootstrapper",
    "SCHEMA_VERSION",
    "build_app_context",
    "get_app_context",
    "reset_app_context",
]
