"""Entry-point for the SugarSteps application."""

from __future__ import annotations

import contextlib
import logging
from pathlib import Path
from typing import Iterator, Optional

import typer
from rich.console import Console

from sugarsteps.bootstrap import AppContext, get_app_context, reset_app_context
from sugarsteps.errors import SugarStepsError
from sugarsteps.logging_utils import configure_file_logging
from sugarsteps.services.actions import DetailSession, delete_lesson, ensure_guide, toggle_liked
from sugarsteps.services.editor import EditorState, LessonEditor
from sugarsteps.services.entities import Lesson, Level, User
from sugarsteps.services.media import FileSource
from sugarsteps.services.users import active_user, register_user
from sugarsteps.ui.lesson_list import LessonListUI


LOGGER = logging.getLogger("sugarsteps.cli")


cli = typer.Typer(add_completion=False, help="SugarSteps lesson catalogue commands")

_existing_file = dict(exists=True, file_okay=True, dir_okay=False, resolve_path=True)


@contextlib.contextmanager
def _session() -> Iterator[AppContext]:
    context = get_app_context()
    configure_file_logging(context.config.storage_root)
    try:
        yield context
    finally:
        reset_app_context()


def _fail(message: str) -> None:
    typer.echo(message, err=True)
    raise typer.Exit(code=1)


def _current_user(context: AppContext) -> Optional[User]:
    return active_user(context.users, context.preferences)


def _load_lesson(context: AppContext, lesson_id: int) -> Lesson:
    lesson = context.lessons.get(lesson_id).result(timeout=10.0)
    if lesson is None:
        _fail(f"No lesson with id={lesson_id}.")
    return lesson


def _parse_level(value: Optional[str]) -> Optional[Level]:
    if value is None:
        return None
    level = Level.parse(value)
    if level is None:
        raise typer.BadParameter(
            f"Unknown level '{value}'. Choose beginner, advanced or expert.",
            param_hint="--level",
        )
    return level


def _commit(editor: LessonEditor) -> int:
    try:
        future = editor.save()
        if future is None:
            _fail(f"Editor is not accepting changes (state: {editor.state.value}).")
        saved_id = future.result(timeout=60.0)
    except SugarStepsError as error:
        _fail(f"Could not save lesson: {error}")
    finally:
        editor.dispose()
    return saved_id


@cli.command()
def overview(
    level: Optional[str] = typer.Option(
        None, "--level", "-l", help="Level tab to show (defaults to your profile level)."
    ),
) -> None:
    """Render the lesson list for one level."""

    selected = _parse_level(level)
    with _session() as context:
        user = _current_user(context)
        LessonListUI(context.lessons, user=user, console=Console()).run(selected)


@cli.command()
def register(
    username: str = typer.Argument(..., help="Name shown on your profile."),
    role: Optional[str] = typer.Option(None, "--role", "-r", help="student or guide"),
    accept_terms: bool = typer.Option(False, "--accept-terms", help="Accept the terms of use."),
) -> None:
    """Create a user and remember it as the active one."""

    with _session() as context:
        try:
            user = register_user(context.users, context.preferences, username, role, accept_terms)
        except SugarStepsError as error:
            _fail(str(error))
        typer.echo(f"Registered {user.role} '{user.username}' (id={user.id}).")


@cli.command("add-lesson")
def add_lesson(
    name: str = typer.Option(..., help="Lesson name (up to 20 characters)."),
    short_description: str = typer.Option(..., help="Short description (up to 29 characters)."),
    image: Path = typer.Option(..., **_existing_file, help="Lesson image."),
    video: Path = typer.Option(..., **_existing_file, help="Lesson video."),
    description: Path = typer.Option(..., **_existing_file, help="Text file with the full recipe."),
    level: str = typer.Option("beginner", help="beginner, advanced or expert"),
    guide_name: Optional[str] = typer.Option(None, help="Defaults to your username."),
) -> None:
    """Add a lesson; media files are copied into private storage."""

    selected = _parse_level(level)
    with _session() as context:
        try:
            guide = ensure_guide(_current_user(context), "add")
        except SugarStepsError as error:
            _fail(str(error))
        editor = context.new_editor(guide=guide)
        editor.start()
        editor.name = name
        editor.short_description = short_description
        editor.level = selected.value
        if guide_name:
            editor.guide_name = guide_name
        editor.select_image(FileSource(image))
        editor.select_video(FileSource(video))
        editor.select_description(FileSource(description))
        lesson_id = _commit(editor)
        typer.echo(f"Lesson '{name}' saved with id={lesson_id}.")


@cli.command("edit-lesson")
def edit_lesson(
    lesson_id: int = typer.Argument(..., help="Id of the lesson to edit."),
    name: Optional[str] = typer.Option(None, help="New lesson name."),
    short_description: Optional[str] = typer.Option(None, help="New short description."),
    level: Optional[str] = typer.Option(None, help="beginner, advanced or expert"),
    guide_name: Optional[str] = typer.Option(None, help="New guide name."),
    image: Optional[Path] = typer.Option(None, **_existing_file, help="Replacement image."),
    video: Optional[Path] = typer.Option(None, **_existing_file, help="Replacement video."),
    description: Optional[Path] = typer.Option(None, **_existing_file, help="Replacement recipe text."),
) -> None:
    """Edit a lesson; media that is not replaced keeps its current path."""

    selected = _parse_level(level)
    with _session() as context:
        try:
            ensure_guide(_current_user(context), "edit")
        except SugarStepsError as error:
            _fail(str(error))
        editor = context.new_editor(lesson_id=lesson_id)
        editor.start()
        context.lessons.drain(timeout=10.0)
        if editor.state is not EditorState.EDITING:
            editor.dispose()
            _fail(str(editor.error or f"Lesson id={lesson_id} could not be loaded."))
        if name is not None:
            editor.name = name
        if short_description is not None:
            editor.short_description = short_description
        if selected is not None:
            editor.level = selected.value
        if guide_name is not None:
            editor.guide_name = guide_name
        if image is not None:
            editor.select_image(FileSource(image))
        if video is not None:
            editor.select_video(FileSource(video))
        if description is not None:
            editor.select_description(FileSource(description))
        _commit(editor)
        typer.echo(f"Lesson id={lesson_id} updated.")


@cli.command()
def like(lesson_id: int = typer.Argument(..., help="Id of the lesson to like or unlike.")) -> None:
    """Toggle the like flag of a lesson."""

    with _session() as context:
        lesson = _load_lesson(context, lesson_id)
        toggle_liked(context.lessons, lesson).result(timeout=10.0)
        state = "unliked" if lesson.liked else "liked"
        typer.echo(f"Lesson '{lesson.name}' {state}.")


@cli.command()
def done(
    lesson_id: int = typer.Argument(..., help="Id of the lesson."),
    undo: bool = typer.Option(False, "--undo", help="Clear the done mark instead."),
) -> None:
    """Mark a lesson as done, as from the lesson's own page."""

    with _session() as context:
        session = DetailSession(context.lessons, _load_lesson(context, lesson_id))
        session.set_done(not undo)
        pending = session.close()
        if pending is None:
            typer.echo("Nothing changed.")
            return
        pending.result(timeout=10.0)
        typer.echo("Lesson marked as done." if not undo else "Done mark removed.")


@cli.command("delete-lesson")
def delete_lesson_command(lesson_id: int = typer.Argument(..., help="Id of the lesson to delete.")) -> None:
    """Delete a lesson (guides only)."""

    with _session() as context:
        lesson = _load_lesson(context, lesson_id)
        try:
            delete_lesson(context.lessons, _current_user(context), lesson).result(timeout=10.0)
        except SugarStepsError as error:
            _fail(str(error))
        typer.echo(f"Lesson '{lesson.name}' deleted.")


if __name__ == "__main__":
    cli()
