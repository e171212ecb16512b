"""Repositories that serialize every store access onto one background worker."""

from __future__ import annotations

import dataclasses
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Generic, List, Optional, Sequence, TypeVar

from ..errors import NotFoundError
from .entities import Lesson, User
from .events import TASK_STATE, track_event
from .live import Dispatcher, ImmediateDispatcher, InvalidationTracker, LiveQuery
from .storage import LESSONS_TABLE, USERS_TABLE, ContentStore


LOGGER = logging.getLogger(__name__)

E = TypeVar("E")
R = TypeVar("R")


class _WorkerRepository(Generic[E]):
    """Shared plumbing: a FIFO worker, write submission and live reads.

    All reads and writes go through the same single-thread executor, so a
    write submitted before a read is always applied before that read runs,
    and the refresh triggered by a write queues behind it as well.
    """

    table: str = ""
    entity_name: str = "entity"

    def __init__(
        self,
        store: ContentStore,
        tracker: InvalidationTracker,
        *,
        dispatcher: Optional[Dispatcher] = None,
    ) -> None:
        self._store = store
        self._tracker = tracker
        self._dispatcher = dispatcher or ImmediateDispatcher()
        self._executor = ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix=f"{self.table}-worker",
        )
        self._worker_ident: Optional[int] = None
        self._closed = False
        self._all_query: Optional[LiveQuery[List[E]]] = None
        self._lock = threading.Lock()

    @property
    def dispatcher(self) -> Dispatcher:
        return self._dispatcher

    def _submit(self, label: str, operation: Callable[[], R]) -> "Future[R]":
        def _run() -> R:
            self._worker_ident = threading.get_ident()
            LOGGER.debug("Running %s on %s worker", label, self.table)
            return operation()

        future = self._executor.submit(_run)

        def _report(done: "Future[R]") -> None:
            if done.cancelled():
                return
            error = done.exception()
            if error is not None:
                LOGGER.error("%s failed: %s", label, error)

        future.add_done_callback(_report)
        return future

    def on_worker(self) -> bool:
        return threading.get_ident() == self._worker_ident

    # Subclasses bind these to the store.
    def _insert(self, entity: E) -> int:
        raise NotImplementedError

    def _update(self, entity: E) -> None:
        raise NotImplementedError

    def _delete(self, entity: E) -> None:
        raise NotImplementedError

    def _get_all(self) -> List[E]:
        raise NotImplementedError

    def _get(self, entity_id: int) -> Optional[E]:
        raise NotImplementedError

    def insert(self, entity: E) -> "Future[int]":
        return self._submit(f"insert {self.entity_name}", lambda: self._insert(entity))

    def update(self, entity: E) -> "Future[None]":
        return self._submit(f"update {self.entity_name}", lambda: self._update(entity))

    def delete(self, entity: E) -> "Future[None]":
        return self._submit(f"delete {self.entity_name}", lambda: self._delete(entity))

    def get(self, entity_id: int) -> "Future[Optional[E]]":
        return self._submit(f"get {self.entity_name}", lambda: self._get(entity_id))

    def insert_and_await_id(self, entity: E, timeout: Optional[float] = None) -> int:
        """Insert *entity* and block until the store assigns its id."""

        if self.on_worker():
            raise RuntimeError(
                f"insert_and_await_id cannot run on the {self.table} worker; it would deadlock"
            )
        return self.insert(entity).result(timeout=timeout)

    def query_all(self) -> LiveQuery[List[E]]:
        with self._lock:
            if self._all_query is None:
                self._all_query = LiveQuery(
                    self._get_all,
                    tables=[self.table],
                    tracker=self._tracker,
                    executor=self._executor,
                    dispatcher=self._dispatcher,
                    name=f"{self.table}.all",
                )
            return self._all_query

    def query_by_id(self, entity_id: int) -> LiveQuery[Optional[E]]:
        return LiveQuery(
            lambda: self._get(entity_id),
            tables=[self.table],
            tracker=self._tracker,
            executor=self._executor,
            dispatcher=self._dispatcher,
            name=f"{self.table}.by_id({entity_id})",
        )

    def drain(self, timeout: Optional[float] = None) -> None:
        """Block until everything submitted so far has run."""

        self._executor.submit(lambda: None).result(timeout=timeout)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        LOGGER.debug("Shutting down %s worker", self.table)
        self._executor.shutdown(wait=True)


class LessonRepository(_WorkerRepository[Lesson]):
    table = LESSONS_TABLE
    entity_name = "lesson"

    def _insert(self, entity: Lesson) -> int:
        return self._store.insert_lesson(entity)

    def _update(self, entity: Lesson) -> None:
        self._store.update_lesson(entity)

    def _delete(self, entity: Lesson) -> None:
        self._store.delete_lesson(entity)

    def _get_all(self) -> List[Lesson]:
        return self._store.get_all_lessons()

    def _get(self, entity_id: int) -> Optional[Lesson]:
        return self._store.get_lesson(entity_id)

    def apply_edit(self, lesson_id: int, **fields: object) -> "Future[Lesson]":
        """Write *fields* over the latest stored row and return the result.

        Columns not named in *fields* (the like and done flags in particular)
        keep whatever the store holds when the edit runs.
        """

        def _apply() -> Lesson:
            current = self._store.get_lesson(lesson_id)
            if current is None:
                raise NotFoundError("lesson", lesson_id)
            updated = dataclasses.replace(current, **fields)
            self._store.update_lesson(updated)
            return updated

        return self._submit("edit lesson", _apply)

    def schedule_seed(self, lessons: Sequence[Lesson]) -> "Future[List[int]]":
        """Queue the default lessons ahead of anything submitted later."""

        batch = list(lessons)

        def _seed() -> List[int]:
            with track_event(TASK_STATE, "seed lessons", requested=len(batch)) as event:
                existing = self._store.count_lessons()
                if existing:
                    LOGGER.info("Skipping seed; %s lesson(s) already stored", existing)
                    event["status"] = "skipped"
                    return []
                LOGGER.info("Seeding %s default lesson(s)", len(batch))
                ids = [self._store.insert_lesson(lesson) for lesson in batch]
                event["inserted"] = len(ids)
                return ids

        return self._submit("seed lessons", _seed)


class UserRepository(_WorkerRepository[User]):
    table = USERS_TABLE
    entity_name = "user"

    def _insert(self, entity: User) -> int:
        return self._store.insert_user(entity)

    def _update(self, entity: User) -> None:
        self._store.update_user(entity)

    def _delete(self, entity: User) -> None:
        self._store.delete_user(entity)

    def _get_all(self) -> List[User]:
        return self._store.get_all_users()

    def _get(self, entity_id: int) -> Optional[User]:
        return self._store.get_user(entity_id)

    def find_by_username(self, username: str) -> "Future[Optional[User]]":
        return self._submit(
            "find user by username", lambda: self._store.find_user_by_username(username)
        )

    def delete_all(self) -> "Future[None]":
        return self._submit("delete all users", self._store.delete_all_users)


__all__ = ["LessonRepository", "UserRepository"]
