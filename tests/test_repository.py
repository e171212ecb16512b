import dataclasses
import threading

import pytest

from sugarsteps.services.entities import Lesson, Level, User


def _lesson(name: str = "Rugelach") -> Lesson:
    return Lesson(
        name=name,
        photo_path="resource://drawable/rugelach",
        short_description="Rolled and sweet",
        guide_name="Dana",
        level=Level.ADVANCED.display,
        video_path="resource://raw/rugelach",
        long_description_path="resource://raw/rugelach_recipe",
    )


def test_insert_and_await_id_then_get_by_id(app_context) -> None:
    lessons = app_context.lessons
    lesson = _lesson()

    lesson_id = lessons.insert_and_await_id(lesson, timeout=10.0)

    assert lesson_id > 0
    fetched = lessons.query_by_id(lesson_id).first(timeout=10.0)
    assert fetched == dataclasses.replace(lesson, id=lesson_id)


def test_query_by_missing_id_delivers_none(app_context) -> None:
    assert app_context.lessons.query_by_id(9999).first(timeout=10.0) is None


def test_concurrent_updates_apply_in_submission_order(app_context) -> None:
    lessons = app_context.lessons
    lesson_id = lessons.insert_and_await_id(_lesson(), timeout=10.0)
    base = lessons.get(lesson_id).result(timeout=10.0)

    submission_lock = threading.Lock()
    submitted = []

    def submit_batch(prefix: str) -> None:
        for index in range(10):
            with submission_lock:
                name = f"{prefix}{index}"
                lessons.update(dataclasses.replace(base, name=name))
                submitted.append(name)

    callers = [threading.Thread(target=submit_batch, args=(prefix,)) for prefix in "abc"]
    for caller in callers:
        caller.start()
    for caller in callers:
        caller.join(timeout=10.0)

    lessons.drain(timeout=10.0)
    assert lessons.get(lesson_id).result(timeout=10.0).name == submitted[-1]


def test_query_all_pushes_every_write(app_context) -> None:
    lessons = app_context.lessons
    query = lessons.query_all()
    assert lessons.query_all() is query

    with query.subscribe() as subscription:
        assert subscription.get(timeout=10.0) == []
        lesson_id = lessons.insert_and_await_id(_lesson(), timeout=10.0)
        after_insert = subscription.get(timeout=10.0)
        assert [lesson.id for lesson in after_insert] == [lesson_id]

        lessons.delete(after_insert[0])
        assert subscription.get(timeout=10.0) == []


def test_insert_and_await_id_refuses_to_run_on_worker(app_context) -> None:
    lessons = app_context.lessons

    def nested():
        return lessons.insert_and_await_id(_lesson(), timeout=1.0)

    future = lessons._submit("nested insert", nested)
    with pytest.raises(RuntimeError):
        future.result(timeout=10.0)


def test_user_repository_lookup_and_delete_all(app_context) -> None:
    users = app_context.users
    user_id = users.insert_and_await_id(User(username="maya", role="guide"), timeout=10.0)

    assert users.find_by_username("maya").result(timeout=10.0).id == user_id
    users.delete_all().result(timeout=10.0)
    assert users.find_by_username("maya").result(timeout=10.0) is None


def test_seed_runs_once_and_only_into_an_empty_store(app_context) -> None:
    lessons = app_context.lessons

    first = lessons.schedule_seed([_lesson("Babka"), _lesson("Halva")]).result(timeout=10.0)
    second = lessons.schedule_seed([_lesson("Knafeh")]).result(timeout=10.0)

    assert len(first) == 2
    assert second == []
    assert app_context.store.count_lessons() == 2
