"""Utility helpers for consistent asset naming."""

from __future__ import annotations

import re
from typing import Optional, Tuple

__all__ = [
    "BUNDLED_SCHEME",
    "asset_filename",
    "bundled_locator",
    "is_bundled",
    "parse_bundled",
    "sanitize_component",
]


BUNDLED_SCHEME = "resource://"


def sanitize_component(value: str) -> str:
    """Return *value* made safe for use inside a single path component.

    Unlike a slug, case and word characters are preserved so that a lesson
    named ``Test`` still produces ``lesson_Test_*`` files.
    """

    value = value.strip()
    value = re.sub(r"[\\/:*?\"<>|\x00-\x1f]+", "_", value)
    value = re.sub(r"\s+", "_", value)
    value = value.strip("._")
    return value or "item"


def asset_filename(key: object, kind: str, extension: str) -> str:
    """Return the deterministic file name for one lesson asset.

    The same *key* and *kind* always map to the same name, which lets a
    replacement overwrite the previous file in place.
    """

    suffix = extension if extension.startswith(".") else f".{extension}"
    return f"lesson_{sanitize_component(str(key))}_{kind}{suffix.lower()}"


def bundled_locator(namespace: str, resource_id: str) -> str:
    return f"{BUNDLED_SCHEME}{namespace}/{resource_id}"


def is_bundled(path: Optional[str]) -> bool:
    return bool(path) and str(path).startswith(BUNDLED_SCHEME)


def parse_bundled(path: str) -> Tuple[str, str]:
    """Split a bundled locator into ``(namespace, resource_id)``."""

    if not is_bundled(path):
        raise ValueError(f"Not a bundled locator: {path!r}")
    remainder = path[len(BUNDLED_SCHEME):]
    namespace, _, resource_id = remainder.partition("/")
    if not namespace or not resource_id or "/" in resource_id or ".." in (namespace, resource_id):
        raise ValueError(f"Malformed bundled locator: {path!r}")
    return namespace, resource_id
