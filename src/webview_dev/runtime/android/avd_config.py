"""Read, merge and write AVD ``config.ini`` files (``key=value`` per line)."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Mapping


def parse_config(text: str) -> Dict[str, str]:
    values: Dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if key:
            values[key] = value.strip()
    return values


def serialize_config(values: Mapping[str, str]) -> str:
    return "".join(f"{k}={v}\n" for k, v in values.items())


def merge_config(existing: Mapping[str, str], overrides: Mapping[str, object]) -> Dict[str, str]:
    """Upsert: existing order kept, overridden values replaced, new keys appended."""

    merged = dict(existing)
    for key, value in overrides.items():
        merged[key] = str(value)
    return merged


def upsert_config_file(path: Path, overrides: Mapping[str, object]) -> Dict[str, str]:
    current = parse_config(path.read_text(encoding="utf-8")) if path.is_file() else {}
    merged = merge_config(current, overrides)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(serialize_config(merged), encoding="utf-8")
    return merged
