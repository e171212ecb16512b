"""Lessons inserted the first time the store is created."""

from __future__ import annotations

from typing import List, Tuple

from .entities import Lesson, Level
from .naming import bundled_locator


SEED_GUIDE_NAME = "SugarSteps Team"

# (name, short description, level, drawable id, raw video id, raw recipe id)
_SEED_ROWS: Tuple[Tuple[str, str, Level, str, str, str], ...] = (
    ("Challah", "Challah you will keep baking", Level.EXPERT, "halot_lesson", "halot", "halot_recipe"),
    ("Soft Cupcakes", "Dream cupcakes, easy to make!", Level.BEGINNER, "cupcakes_lesson", "cupcakes", "cupcakes_recipe"),
    (
        "Choc Chip Cookies",
        "The classic perfect cookies",
        Level.BEGINNER,
        "chocolate_chips_lesson",
        "chocalate_chips_cookies",
        "chocalate_chips_recipe",
    ),
    ("Soft Orange Cake", "The airy orange cake recipe", Level.ADVANCED, "orange_cake_lesson", "orange_cake", "orange_cake_recipe"),
    ("Yeast Cake", "The most professional yeast", Level.EXPERT, "shmarim_cake_lesson", "shmarim_cake", "shmarim_cake_recipe"),
    ("Krembo Cake", "A cake you will keep making", Level.EXPERT, "three_layers_cake_lesson", "three_layers_cake", "three_layers_cake_recipe"),
    ("Crumble Cheesecake", "A recipe you won't forget", Level.ADVANCED, "cheese_cake_lesson", "cheese_cake", "cheese_cake_recipe"),
    ("Date Rolls", "Cookies you just finish", Level.BEGINNER, "megolgalot_tmarim_lesson", "megolgalot_tmarim", "megolgalot_tmarim_recipe"),
    ("Milk Jam Roulade", "An unforgettable taste", Level.ADVANCED, "milk_jam_lesson", "milk_jam_roll", "milk_jam_roll_recipe"),
)


def build_default_lessons() -> List[Lesson]:
    """Return fresh copies of the default lessons, all backed by bundled assets."""

    lessons: List[Lesson] = []
    for name, short_description, level, image_id, video_id, recipe_id in _SEED_ROWS:
        lessons.append(
            Lesson(
                name=name,
                photo_path=bundled_locator("drawable", image_id),
                short_description=short_description,
                guide_name=SEED_GUIDE_NAME,
                level=level.display,
                video_path=bundled_locator("raw", video_id),
                long_description_path=bundled_locator("raw", recipe_id),
            )
        )
    return lessons


DEFAULT_LESSON_COUNT = len(_SEED_ROWS)


__all__ = ["DEFAULT_LESSON_COUNT", "SEED_GUIDE_NAME", "build_default_lessons"]
