from __future__ import annotations

import sys
from pathlib import Path
from typing import Iterator

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from PIL import Image

from sugarsteps.bootstrap import AppContext, Bootstrapper, build_app_context
from sugarsteps.config import AppConfig


@pytest.fixture()
def temp_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> AppConfig:
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    config_file = config_dir / "default.json"
    config_file.write_text(
        """
        {
            \"storage_root\": \"storage\",\n
            \"database_file\": \"storage/sugarsteps.db\",\n
            \"media_root\": \"storage/media\",\n
            \"bundled_root\": \"bundled\"\n
        }
        """,
        encoding="utf-8",
    )
    monkeypatch.chdir(tmp_path)

    config = AppConfig.from_mapping(
        {
            "storage_root": "storage",
            "database_file": "storage/sugarsteps.db",
            "media_root": "storage/media",
            "bundled_root": "bundled",
        },
        base_path=tmp_path,
    )

    Bootstrapper(config).initialize()
    return config


@pytest.fixture()
def app_context(temp_config: AppConfig) -> Iterator[AppContext]:
    context = build_app_context(temp_config)
    context.lessons.drain(timeout=10.0)
    try:
        yield context
    finally:
        context.close()


@pytest.fixture()
def media_files(tmp_path: Path) -> dict:
    """Real files standing in for what a user picks from their device."""

    picked = tmp_path / "picked"
    picked.mkdir()
    image_path = picked / "cake.png"
    Image.new("RGB", (64, 48), color=(230, 180, 90)).save(image_path)
    video_path = picked / "cake.mov"
    video_path.write_bytes(b"\x00\x00\x00\x18ftypmp42" + bytes(range(256)) * 8)
    description_path = picked / "recipe.txt"
    description_path.write_text("Mix, bake at 180C for 25 minutes.\n", encoding="utf-8")
    return {"image": image_path, "video": video_path, "description": description_path}
