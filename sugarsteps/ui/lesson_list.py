"""A Rich-powered console rendering of the lesson catalogue."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional

from rich import box
from rich.columns import Columns
from rich.console import Console, Group
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from ..services.entities import Lesson, Level, User, default_level_for, filter_by_level
from ..services.naming import is_bundled
from ..services.repository import LessonRepository


LEVEL_STYLES: Dict[Level, str] = {
    Level.BEGINNER: "green",
    Level.ADVANCED: "yellow",
    Level.EXPERT: "red",
}


@dataclass
class CatalogueSnapshot:
    level: Level
    lessons: List[Lesson]
    level_counts: Dict[Level, int]
    liked_count: int
    done_count: int
    bundled_count: int


class LessonListUI:
    """Render one level tab of the lesson list with a summary panel."""

    def __init__(
        self,
        repository: LessonRepository,
        *,
        user: Optional[User] = None,
        console: Optional[Console] = None,
        timeout: Optional[float] = 10.0,
    ) -> None:
        self._repository = repository
        self._user = user
        self._console = console or Console()
        self._timeout = timeout

    def run(self, level: Optional[Level] = None) -> CatalogueSnapshot:
        snapshot = self.collect(level)
        console = self._console

        console.rule(f"[bold magenta]SugarSteps · {snapshot.level.display} lessons")

        if not snapshot.lessons:
            console.print(
                Panel(
                    f"No {snapshot.level.display.lower()} lessons yet.",
                    border_style="yellow",
                    box=box.ROUNDED,
                )
            )
        else:
            console.print(Columns([self._build_table(snapshot), self._build_stats_panel(snapshot)]))

        if self._user is not None and self._user.is_guide:
            console.print(
                Text("Guides can add lessons with: python run.py add-lesson", style="dim"),
                justify="center",
            )
        return snapshot

    def collect(self, level: Optional[Level] = None) -> CatalogueSnapshot:
        lessons = self._repository.query_all().first(timeout=self._timeout)
        selected = level or default_level_for(self._user)
        return CatalogueSnapshot(
            level=selected,
            lessons=filter_by_level(lessons, selected),
            level_counts={item: len(filter_by_level(lessons, item)) for item in Level},
            liked_count=sum(1 for lesson in lessons if lesson.liked),
            done_count=sum(1 for lesson in lessons if lesson.done),
            bundled_count=sum(1 for lesson in lessons if is_bundled(lesson.photo_path)),
        )

    @staticmethod
    def _build_table(snapshot: CatalogueSnapshot) -> Table:
        table = Table(box=box.SIMPLE_HEAVY, header_style="bold cyan")
        table.add_column("#", justify="right", style="dim")
        table.add_column("Lesson")
        table.add_column("Guide", style="bright_cyan")
        table.add_column("♥", justify="center")
        table.add_column("Done", justify="center")
        table.add_column("Media", style="dim")

        for lesson in snapshot.lessons:
            name = Text(lesson.name, style="bold")
            name.append("\n")
            name.append(lesson.short_description, style="dim")
            table.add_row(
                str(lesson.id),
                name,
                lesson.guide_name,
                "♥" if lesson.liked else "·",
                "✔" if lesson.done else "",
                "bundled" if is_bundled(lesson.photo_path) else "private",
            )
        return table

    @staticmethod
    def _build_stats_panel(snapshot: CatalogueSnapshot) -> Panel:
        levels = Table.grid(expand=True, padding=(0, 1))
        levels.add_column()
        levels.add_column(justify="right", style="bold")
        for level, count in snapshot.level_counts.items():
            marker = "▶ " if level is snapshot.level else "  "
            levels.add_row(Text(f"{marker}{level.display}", style=LEVEL_STYLES[level]), str(count))

        totals = Table.grid(expand=True, padding=(0, 1))
        totals.add_column(style="dim")
        totals.add_column(justify="right", style="bold")
        totals.add_row("Liked", str(snapshot.liked_count))
        totals.add_row("Done", str(snapshot.done_count))
        totals.add_row("Bundled media", str(snapshot.bundled_count))

        body = Group(levels, Rule(style="magenta"), totals)
        return Panel(body, title="At a glance", border_style="magenta", box=box.ROUNDED)


__all__ = ["CatalogueSnapshot", "LessonListUI"]
