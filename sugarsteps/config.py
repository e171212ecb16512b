"""Where SugarSteps keeps its database, media copies and bundled resources."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple


LOGGER = logging.getLogger(__name__)


_WRITE_PROBE = ".sugarsteps_write_check"


def _ensure_writable_directory(path: Path) -> bool:
    """Create *path* if needed and check a file can be written inside it."""

    probe = path / _WRITE_PROBE
    try:
        path.mkdir(parents=True, exist_ok=True)
        probe.write_text("ok", encoding="utf-8")
        probe.unlink()
    except OSError:
        return False
    return True


def _first_writable(label: str, preferred: Path, *fallbacks: Path) -> Tuple[Path, bool]:
    """Pick *preferred* or the first usable fallback; flag whether one was used.

    If nothing is usable *preferred* comes back unchanged and bootstrap
    reports the problem.
    """

    preferred = preferred.resolve()
    if _ensure_writable_directory(preferred):
        return preferred, False
    for fallback in fallbacks:
        candidate = fallback.resolve()
        if candidate != preferred and _ensure_writable_directory(candidate):
            LOGGER.warning("%s directory %s is unusable; using %s", label.capitalize(), preferred, candidate)
            return candidate, True
    LOGGER.warning("%s directory %s is unusable and has no usable fallback", label.capitalize(), preferred)
    return preferred, False


def _place_database(
    database_file: Path,
    *,
    preferred_storage: Path,
    storage_root: Path,
) -> Path:
    """Keep the database beside the storage root that was actually chosen."""

    candidate: Optional[Path] = None
    if storage_root != preferred_storage:
        try:
            candidate = storage_root / database_file.relative_to(preferred_storage)
        except ValueError:
            candidate = None
    if candidate is None and not _ensure_writable_directory(database_file.parent):
        candidate = storage_root / database_file.name

    if candidate is None:
        return database_file
    candidate = candidate.resolve()
    if candidate == database_file or not _ensure_writable_directory(candidate.parent):
        LOGGER.warning("Database location %s is unusable and has no usable fallback", database_file)
        return database_file
    LOGGER.warning("Database moved from %s to %s", database_file, candidate)
    return candidate


@dataclass(frozen=True)
class AppConfig:
    """Runtime paths for the content store and the media namespaces."""

    storage_root: Path
    database_file: Path
    media_root: Path
    bundled_root: Path

    @property
    def preferences_file(self) -> Path:
        """Flat key-value blob holding session state."""

        return (self.storage_root / "preferences.json").resolve()

    @classmethod
    def from_mapping(cls, mapping: Dict[str, Any], *, base_path: Path) -> "AppConfig":
        preferred_storage = (base_path / mapping["storage_root"]).resolve()
        storage_root, _ = _first_writable(
            "storage", preferred_storage, Path.home() / ".sugarsteps" / "storage"
        )
        media_root, _ = _first_writable(
            "media", base_path / mapping["media_root"], storage_root / "_media"
        )
        database_file = _place_database(
            (base_path / mapping["database_file"]).resolve(),
            preferred_storage=preferred_storage,
            storage_root=storage_root,
        )
        # Read-only; only needed once a bundled lesson is displayed.
        bundled_root = (base_path / mapping.get("bundled_root", "bundled")).resolve()
        return cls(
            storage_root=storage_root,
            database_file=database_file,
            media_root=media_root,
            bundled_root=bundled_root,
        )


def load_config(config_path: Path | None = None) -> AppConfig:
    """Read ``config/default.json`` (or *config_path*); paths resolve from the project root."""

    base_path = Path(__file__).resolve().parent.parent
    path = config_path or base_path / "config" / "default.json"
    raw_config = json.loads(Path(path).read_text(encoding="utf-8"))
    return AppConfig.from_mapping(raw_config, base_path=base_path)


__all__ = ["AppConfig", "load_config"]
