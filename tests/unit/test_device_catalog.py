from __future__ import annotations

import io
from pathlib import Path

import pytest
import yaml
from rich.console import Console

from webview_dev.devices import (
    DeviceCatalogError,
    find_profile,
    load_profiles,
    profiles_as_yaml,
    select_profile,
)


def test_shipped_catalog() -> None:
    profiles = load_profiles()
    by_key = {p.key: p for p in profiles}
    assert set(by_key) == {"note10", "note20", "s22"}
    assert (by_key["note10"].screen.width, by_key["note10"].screen.height, by_key["note10"].screen.density) == (1080, 2280, 401)
    assert (by_key["note20"].screen.height, by_key["note20"].screen.density) == (2400, 393)
    assert (by_key["s22"].screen.height, by_key["s22"].screen.density) == (2340, 420)
    for p in profiles:
        assert p.api == "android-30"
        assert p.api_level == 30
        assert p.ram_mb == 8192
        assert p.variant == "google_apis"
    assert by_key["s22"].system_image("x86_64") == "system-images;android-30;google_apis;x86_64"


def test_schema_rejects_bad_entries(tmp_path: Path) -> None:
    bad = tmp_path / "devices.yaml"
    bad.write_text(
        yaml.safe_dump([{"key": "x", "label": "X", "avd_name": "X", "api": "30", "screen": {"width": 1}, "ram_mb": 8192}]),
        encoding="utf-8",
    )
    with pytest.raises(DeviceCatalogError) as excinfo:
        load_profiles(bad)
    assert "api" in str(excinfo.value)


def test_duplicate_keys_rejected(tmp_path: Path) -> None:
    entry = {
        "key": "a",
        "label": "A",
        "avd_name": "A",
        "api": "android-30",
        "screen": {"width": 1, "height": 1, "density": 1},
        "ram_mb": 1024,
    }
    path = tmp_path / "devices.yaml"
    path.write_text(yaml.safe_dump([entry, entry]), encoding="utf-8")
    with pytest.raises(DeviceCatalogError):
        load_profiles(path)


def test_selection_by_key_avd_name_or_default() -> None:
    profiles = load_profiles()
    assert select_profile(profiles, "S22").key == "s22"
    assert find_profile(profiles, "Galaxy_Note20_API_30").key == "note20"
    assert select_profile(profiles).key == profiles[0].key
    with pytest.raises(DeviceCatalogError):
        select_profile(profiles, "pixel")


def test_interactive_prompt_uses_choice_index() -> None:
    profiles = load_profiles()
    asked: dict = {}

    def ask(prompt, *, choices, default, console):
        asked.update(prompt=prompt, choices=choices, default=default)
        return "3"

    chosen = select_profile(profiles, interactive=True, ask=ask, console=Console(file=io.StringIO()))
    assert chosen == profiles[2]
    assert asked["choices"] == ["1", "2", "3"]
    assert asked["default"] == "1"


def test_catalog_yaml_dump_roundtrips_keys() -> None:
    data = yaml.safe_load(profiles_as_yaml(load_profiles()))
    assert [d["key"] for d in data] == ["note10", "note20", "s22"]
    assert data[0]["screen"] == {"width": 1080, "height": 2280, "density": 401}
