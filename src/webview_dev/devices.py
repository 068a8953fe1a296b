"""Device profile catalog and interactive selection."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

import jsonschema
import yaml
from rich.console import Console
from rich.prompt import Prompt
from rich.table import Table

from webview_dev.errors import WebviewDevError

logger = logging.getLogger(__name__)


class DeviceCatalogError(WebviewDevError):
    step = "device"


@dataclass(frozen=True)
class Resolution:
    width: int
    height: int
    density: int


@dataclass(frozen=True)
class DeviceProfile:
    key: str
    label: str
    avd_name: str
    api: str
    screen: Resolution
    ram_mb: int
    variant: str = "google_apis"
    cpu_cores: int = 4

    @property
    def api_level(self) -> int:
        return int(self.api.split("-", 1)[1])

    def system_image(self, abi: str) -> str:
        return f"system-images;{self.api};{self.variant};{abi}"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _catalog_path() -> Path:
    return Path(__file__).resolve().parent / "data" / "device_profiles.yaml"


def _schema_path() -> Path:
    return Path(__file__).resolve().parent / "schemas" / "device_profiles.schema.json"


@lru_cache(maxsize=1)
def _load_schema() -> dict[str, Any]:
    schema_path = _schema_path()
    data = json.loads(schema_path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise DeviceCatalogError(f"schema must be an object: {schema_path}")
    jsonschema.Draft202012Validator.check_schema(data)
    return data


def validate_catalog(data: Any, *, source: Path) -> None:
    validator = jsonschema.Draft202012Validator(_load_schema())
    errors = sorted(validator.iter_errors(data), key=lambda err: list(err.path))
    if not errors:
        return
    msgs = []
    for err in errors[:20]:
        loc = "/".join(str(p) for p in err.path)
        suffix = f":{loc}" if loc else ""
        msgs.append(f"- {source}{suffix}: {err.message}")
    raise DeviceCatalogError("device catalog validation failed:\n" + "\n".join(msgs))


def load_profiles(path: Optional[Path] = None) -> list[DeviceProfile]:
    path = path or _catalog_path()
    if not path.exists():
        raise FileNotFoundError(path)
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    validate_catalog(data, source=path)

    profiles: list[DeviceProfile] = []
    seen: set[str] = set()
    for item in data:
        if item["key"] in seen:
            raise DeviceCatalogError(f"duplicate device key {item['key']!r}: {path}")
        seen.add(item["key"])
        profiles.append(
            DeviceProfile(
                key=item["key"],
                label=item["label"],
                avd_name=item["avd_name"],
                api=item["api"],
                variant=item.get("variant", "google_apis"),
                screen=Resolution(**item["screen"]),
                ram_mb=int(item["ram_mb"]),
                cpu_cores=int(item.get("cpu_cores", 4)),
            )
        )
    return profiles


def find_profile(profiles: Sequence[DeviceProfile], key: str) -> DeviceProfile:
    wanted = key.strip().lower()
    for p in profiles:
        if p.key == wanted or p.avd_name.lower() == wanted:
            return p
    known = ", ".join(p.key for p in profiles)
    raise DeviceCatalogError(f"unknown device {key!r} (known: {known})")


def select_profile(
    profiles: Sequence[DeviceProfile],
    requested: Optional[str] = None,
    *,
    interactive: bool = False,
    ask: Optional[Callable[..., str]] = None,
    console: Optional[Console] = None,
) -> DeviceProfile:
    """Pick a profile: explicit key, else prompt (interactive), else the first entry."""

    if not profiles:
        raise DeviceCatalogError("device catalog is empty")
    if requested:
        return find_profile(profiles, requested)
    if not interactive:
        logger.info("No device requested; using %s", profiles[0].label)
        return profiles[0]

    console = console or Console()
    table = Table(title="Device profiles")
    table.add_column("#", justify="right")
    table.add_column("key")
    table.add_column("device")
    table.add_column("screen")
    for i, p in enumerate(profiles, start=1):
        table.add_row(
            str(i), p.key, p.label, f"{p.screen.width}x{p.screen.height} @{p.screen.density}dpi"
        )
    console.print(table)

    ask = ask or Prompt.ask
    choices = [str(i) for i in range(1, len(profiles) + 1)]
    answer = ask("Select a device", choices=choices, default="1", console=console)
    return profiles[int(answer) - 1]


def profiles_as_yaml(profiles: Sequence[DeviceProfile]) -> str:
    return yaml.safe_dump([p.to_dict() for p in profiles], sort_keys=False)
