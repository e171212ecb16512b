"""Lesson media: bundled resources, user-selected files and private storage."""

from __future__ import annotations

import io
import logging
import os
import shutil
import tempfile
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Dict, Mapping, Optional, Protocol, Tuple, Union

from ..config import AppConfig
from ..errors import AssetCopyError, ValidationError
from .events import emit_file_event
from .naming import asset_filename, is_bundled, parse_bundled


LOGGER = logging.getLogger(__name__)

COPY_BUFFER_SIZE = 64 * 1024


class AssetKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    DESCRIPTION = "description"

    @property
    def extension(self) -> str:
        return _EXTENSIONS[self]


_EXTENSIONS = {
    AssetKind.IMAGE: ".jpg",
    AssetKind.VIDEO: ".mp4",
    AssetKind.DESCRIPTION: ".txt",
}


class SlotState(Enum):
    ORIGINAL = "original"
    PENDING = "pending"
    FAILED = "failed"


class ExternalSource(Protocol):
    """A user-selected file the core may read but does not own."""

    @property
    def locator(self) -> str:
        ...

    def open(self) -> BinaryIO:
        ...


class FileSource:
    """External source backed by a path on the local filesystem."""

    def __init__(self, path: Union[str, Path]) -> None:
        self._path = Path(path)

    @property
    def locator(self) -> str:
        return str(self._path)

    def open(self) -> BinaryIO:
        return self._path.open("rb")

    def __repr__(self) -> str:
        return f"FileSource({self._path!s})"


class BytesSource:
    """External source holding its content in memory."""

    def __init__(self, data: bytes, locator: str = "memory://") -> None:
        self._data = bytes(data)
        self._locator = locator

    @property
    def locator(self) -> str:
        return self._locator

    def open(self) -> BinaryIO:
        return io.BytesIO(self._data)


@dataclass
class MediaSlot:
    """One of the three media fields of a lesson being edited."""

    kind: AssetKind
    original_path: Optional[str] = None
    source: Optional[ExternalSource] = None
    state: SlotState = SlotState.ORIGINAL

    def select(self, source: ExternalSource) -> None:
        self.source = source
        self.state = SlotState.PENDING

    def reset(self, original_path: Optional[str]) -> None:
        self.original_path = original_path
        self.source = None
        self.state = SlotState.ORIGINAL

    @property
    def has_asset(self) -> bool:
        return self.source is not None or bool(self.original_path)

    @property
    def needs_copy(self) -> bool:
        # A failed slot keeps its source so that the next save retries it.
        return self.source is not None and self.state in (SlotState.PENDING, SlotState.FAILED)


@dataclass(frozen=True)
class ResolvedAssets:
    photo_path: str
    video_path: str
    long_description_path: str


def new_slots(
    photo_path: Optional[str] = None,
    video_path: Optional[str] = None,
    long_description_path: Optional[str] = None,
) -> Dict[AssetKind, MediaSlot]:
    return {
        AssetKind.IMAGE: MediaSlot(AssetKind.IMAGE, photo_path),
        AssetKind.VIDEO: MediaSlot(AssetKind.VIDEO, video_path),
        AssetKind.DESCRIPTION: MediaSlot(AssetKind.DESCRIPTION, long_description_path),
    }


class MediaManager:
    """Copies user-selected media into private storage, all or nothing."""

    def __init__(self, config: AppConfig) -> None:
        self._media_root = config.media_root
        self._bundled_root = config.bundled_root

    @property
    def media_root(self) -> Path:
        return self._media_root

    # ------------------------------------------------------------------
    # Bundled resources
    # ------------------------------------------------------------------
    def resolve_bundled(self, locator: str) -> Path:
        namespace, resource_id = parse_bundled(locator)
        base = self._bundled_root / namespace
        candidate = base / resource_id
        if candidate.exists():
            return candidate
        matches = sorted(base.glob(f"{resource_id}.*")) if base.is_dir() else []
        return matches[0] if matches else candidate

    def local_path(self, path: str) -> Path:
        return self.resolve_bundled(path) if is_bundled(path) else Path(path)

    def read_text(self, path: str) -> str:
        """Return the text of a long description, bundled or private."""

        target = self.local_path(path)
        LOGGER.debug("Reading description text from %s", target)
        return target.read_text(encoding="utf-8")

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------
    def resolve_add(self, name: str, slots: Mapping[AssetKind, MediaSlot]) -> ResolvedAssets:
        return self._resolve(name, slots, mode="add")

    def resolve_edit(self, lesson_id: int, slots: Mapping[AssetKind, MediaSlot]) -> ResolvedAssets:
        return self._resolve(lesson_id, slots, mode="edit")

    def _resolve(
        self,
        key: object,
        slots: Mapping[AssetKind, MediaSlot],
        *,
        mode: str,
    ) -> ResolvedAssets:
        for kind in AssetKind:
            slot = slots.get(kind)
            if slot is None or not slot.has_asset:
                raise ValidationError(f"No {kind.value} selected", field=kind.value)

        start = time.perf_counter()
        self._media_root.mkdir(parents=True, exist_ok=True)
        final: Dict[AssetKind, str] = {}
        staged: Dict[AssetKind, Tuple[Path, Path]] = {}
        failures: Dict[AssetKind, str] = {}

        for kind in AssetKind:
            slot = slots[kind]
            if not slot.needs_copy:
                final[kind] = str(slot.original_path)
                continue
            target = self._media_root / asset_filename(key, kind.value, kind.extension)
            try:
                temporary, size = self._stage(slot.source, target)
            except Exception as error:  # noqa: BLE001 - any source failure is a copy failure
                LOGGER.warning("Could not copy %s from %s: %s", kind.value, slot.source.locator, error)
                failures[kind] = f"{error.__class__.__name__}: {error}"
                continue
            if mode == "edit" and kind is AssetKind.DESCRIPTION and not self._has_text(temporary):
                LOGGER.debug("Selected description is blank; keeping %s", slot.original_path)
                temporary.unlink(missing_ok=True)
                final[kind] = str(slot.original_path)
                continue
            emit_file_event(
                "asset_staged",
                payload={"kind": kind, "source": slot.source.locator, "target": target, "bytes": size},
            )
            staged[kind] = (temporary, target)

        if failures:
            self._discard(staged)
            for kind in failures:
                slots[kind].state = SlotState.FAILED
            emit_file_event(
                "assets_rejected",
                payload={"mode": mode, "key": key, "failed": [kind.value for kind in failures], "status": "error"},
                duration_ms=(time.perf_counter() - start) * 1000.0,
                level=logging.WARNING,
            )
            raise AssetCopyError(failures)

        copied = len(staged)
        published = self._publish(staged, slots, failures)
        final.update(published)

        emit_file_event(
            "assets_resolved",
            payload={"mode": mode, "key": key, "copied": copied},
            duration_ms=(time.perf_counter() - start) * 1000.0,
        )
        return ResolvedAssets(
            photo_path=final[AssetKind.IMAGE],
            video_path=final[AssetKind.VIDEO],
            long_description_path=final[AssetKind.DESCRIPTION],
        )

    def _publish(
        self,
        staged: Dict[AssetKind, Tuple[Path, Path]],
        slots: Mapping[AssetKind, MediaSlot],
        failures: Dict[AssetKind, str],
    ) -> Dict[AssetKind, str]:
        """Move every staged file onto its target, or none of them.

        Existing targets are set aside as ``.bak`` files first and put back
        if any later move fails.
        """

        backups: Dict[AssetKind, Path] = {}
        published: Dict[AssetKind, str] = {}
        current: Optional[AssetKind] = None
        try:
            for kind, (temporary, target) in staged.items():
                current = kind
                if target.exists():
                    backup = target.with_name(f".{target.name}.bak")
                    os.replace(target, backup)
                    backups[kind] = backup
                os.replace(temporary, target)
                published[kind] = str(target)
        except OSError as error:
            failures[current] = f"{error.__class__.__name__}: {error}"
            slots[current].state = SlotState.FAILED
            self._roll_back(staged, published, backups)
            self._discard({kind: paths for kind, paths in staged.items() if kind not in published})
            emit_file_event(
                "assets_rolled_back",
                payload={"failed": current.value, "restored": len(backups), "status": "error"},
                level=logging.WARNING,
            )
            raise AssetCopyError(failures) from error

        for backup in backups.values():
            try:
                backup.unlink(missing_ok=True)
            except OSError as error:
                LOGGER.warning("Could not remove backup %s: %s", backup, error)
        return published

    @staticmethod
    def _roll_back(
        staged: Mapping[AssetKind, Tuple[Path, Path]],
        published: Mapping[AssetKind, str],
        backups: Mapping[AssetKind, Path],
    ) -> None:
        for kind, (_temporary, target) in staged.items():
            try:
                if kind in backups:
                    os.replace(backups[kind], target)
                elif kind in published:
                    target.unlink(missing_ok=True)
            except OSError as error:
                LOGGER.error("Could not restore %s: %s", target, error)

    def _stage(self, source: ExternalSource, target: Path) -> Tuple[Path, int]:
        """Stream *source* into a temporary file beside *target*."""

        descriptor, name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".part", dir=target.parent)
        temporary = Path(name)
        try:
            with os.fdopen(descriptor, "wb") as buffer, source.open() as stream:
                shutil.copyfileobj(stream, buffer, length=COPY_BUFFER_SIZE)
        except BaseException:
            temporary.unlink(missing_ok=True)
            raise
        return temporary, temporary.stat().st_size

    @staticmethod
    def _has_text(path: Path) -> bool:
        return bool(path.read_text(encoding="utf-8", errors="replace").strip())

    @staticmethod
    def _discard(staged: Mapping[AssetKind, Tuple[Path, Path]]) -> None:
        for temporary, _target in staged.values():
            try:
                temporary.unlink(missing_ok=True)
            except OSError as error:  # pragma: no cover - best effort cleanup
                LOGGER.warning("Could not remove staged file %s: %s", temporary, error)


__all__ = [
    "AssetKind",
    "BytesSource",
    "COPY_BUFFER_SIZE",
    "ExternalSource",
    "FileSource",
    "MediaManager",
    "MediaSlot",
    "ResolvedAssets",
    "SlotState",
    "is_bundled",
    "new_slots",
    "parse_bundled",
]
