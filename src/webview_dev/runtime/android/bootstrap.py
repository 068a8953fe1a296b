"""Host bootstrap: a JDK 17+ and the Android SDK command-line tools.

Both steps are idempotent. When the tool is already present nothing is
downloaded; otherwise the archive is fetched with httpx, unpacked, and its
``bin`` directory promoted to a stable location.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import tarfile
import tempfile
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Mapping, Optional

import httpx
from rich.progress import BarColumn, DownloadColumn, Progress, TextColumn, TransferSpeedColumn

from webview_dev.errors import ToolchainUnavailable
from webview_dev.runtime.android.tools import ToolPaths
from webview_dev.runtime.host import HostPlatform
from webview_dev.runtime.process import ToolRunner

logger = logging.getLogger(__name__)

MIN_JAVA_MAJOR = 17
JDK_DIRNAME = "jdk-17"
CMDLINE_TOOLS_BUILD = "12266719"
DOWNLOAD_TIMEOUT_S = 600.0

_VERSION_RE = re.compile(r'version\s+"([^"]+)"')
_OPENJDK_RE = re.compile(r"^(?:openjdk|java)\s+(\d+)", re.MULTILINE)


def jdk_download_url(host: HostPlatform) -> str:
    return (
        "https://api.adoptium.net/v3/binary/latest/17/ga/"
        f"{host.jdk_os}/{host.jdk_arch}/jdk/hotspot/normal/eclipse"
    )


def cmdline_tools_url(host: HostPlatform) -> str:
    return (
        "https://dl.google.com/android/repository/"
        f"commandlinetools-{host.cmdline_tools_os}-{CMDLINE_TOOLS_BUILD}_latest.zip"
    )


def parse_java_major(text: str) -> Optional[int]:
    """Major version from ``java -version`` output ("1.8.0_x" -> 8, "17.0.2" -> 17)."""

    m = _VERSION_RE.search(text or "")
    raw = m.group(1) if m else None
    if raw is None:
        m2 = _OPENJDK_RE.search(text or "")
        if not m2:
            return None
        return int(m2.group(1))
    parts = re.split(r"[._+-]", raw)
    try:
        if parts[0] == "1" and len(parts) > 1:
            return int(parts[1])
        return int(parts[0])
    except ValueError:
        return None


@dataclass(frozen=True)
class JavaRuntime:
    home: Path
    java: Path
    version: int


def _java_candidates(host: HostPlatform, environ: Mapping[str, str]) -> Iterator[Path]:
    java_home = (environ.get("JAVA_HOME") or "").strip()
    if java_home:
        yield Path(java_home) / "bin" / host.java_filename()
    yield host.android_env_dir / JDK_DIRNAME / "bin" / host.java_filename()
    on_path = shutil.which("java", path=environ.get("PATH"))
    if on_path:
        yield Path(on_path)


async def _probe_java(java: Path, runner: ToolRunner, environ: Mapping[str, str]) -> Optional[int]:
    try:
        res = await runner([str(java), "-version"], env=environ, timeout_s=30.0)
    except ToolchainUnavailable as e:
        logger.debug("java probe failed for %s: %s", java, e)
        return None
    # `java -version` writes to stderr.
    return parse_java_major(res.stderr or res.stdout)


async def find_java(
    host: HostPlatform, environ: Mapping[str, str], runner: ToolRunner
) -> Optional[JavaRuntime]:
    """First runtime >= 17 among JAVA_HOME, ~/AndroidEnv/jdk-17 and PATH.

    When only older runtimes exist the first of those is returned so callers
    can report its version.
    """

    first: Optional[JavaRuntime] = None
    seen: set[Path] = set()
    for java in _java_candidates(host, environ):
        if java in seen or not java.is_file():
            continue
        seen.add(java)
        version = await _probe_java(java, runner, environ)
        if version is None:
            continue
        rt = JavaRuntime(home=java.resolve().parent.parent, java=java, version=version)
        if version >= MIN_JAVA_MAJOR:
            return rt
        first = first or rt
    return first


def _find_bin_dir(root: Path) -> Optional[Path]:
    """Directory containing ``bin`` at ``root``, one or two levels below it, or under ``Contents/Home``."""

    def dirs(p: Path) -> list[Path]:
        try:
            return sorted(c for c in p.iterdir() if c.is_dir())
        except OSError:
            return []

    level1 = dirs(root)
    level2 = [g for c in level1 for g in dirs(c)]
    for candidate in [root, *level1, *level2]:
        if (candidate / "bin").is_dir():
            return candidate
        home = candidate / "Contents" / "Home"
        if (home / "bin").is_dir():
            return home
    return None


def promote_bin_root(extracted: Path, target: Path) -> Path:
    """Move the directory holding ``bin`` inside ``extracted`` to ``target``.

    No-op when ``target/bin`` already exists.
    """

    if (target / "bin").is_dir():
        return target
    found = _find_bin_dir(extracted)
    if found is None:
        raise ToolchainUnavailable(f"no bin/ directory found in extracted archive at {extracted}")
    if target.exists():
        shutil.rmtree(target)
    target.parent.mkdir(parents=True, exist_ok=True)
    shutil.move(str(found), str(target))
    return target


def extract_zip(archive: Path, dest: Path) -> None:
    """Extract keeping POSIX permission bits (zipfile drops them)."""

    with zipfile.ZipFile(archive) as zf:
        for info in zf.infolist():
            path = zf.extract(info, dest)
            mode = (info.external_attr >> 16) & 0o777
            if mode and not info.is_dir():
                os.chmod(path, mode)


def extract_archive(archive: Path, dest: Path) -> None:
    dest.mkdir(parents=True, exist_ok=True)
    try:
        if zipfile.is_zipfile(archive):
            extract_zip(archive, dest)
            return
        with tarfile.open(archive) as tf:
            if hasattr(tarfile, "data_filter"):
                tf.extractall(dest, filter="data")
            else:
                tf.extractall(dest)
    except (OSError, zipfile.BadZipFile, tarfile.TarError) as e:
        raise ToolchainUnavailable(f"failed to extract {archive.name}: {e}") from e


async def download(
    client: httpx.AsyncClient,
    url: str,
    dest: Path,
    *,
    label: str,
    show_progress: bool = True,
) -> Path:
    logger.info("Downloading %s", url)
    try:
        async with client.stream("GET", url, follow_redirects=True) as resp:
            resp.raise_for_status()
            total = int(resp.headers.get("Content-Length") or 0) or None
            with Progress(
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                DownloadColumn(),
                TransferSpeedColumn(),
                disable=not show_progress,
            ) as progress, open(dest, "wb") as fh:
                task = progress.add_task(label, total=total)
                async for chunk in resp.aiter_bytes():
                    fh.write(chunk)
                    progress.update(task, advance=len(chunk))
    except httpx.HTTPError as e:
        raise ToolchainUnavailable(f"download failed for {url}: {e}") from e
    except OSError as e:
        raise ToolchainUnavailable(f"cannot write {dest}: {e}") from e
    return dest


class Bootstrapper:
    def __init__(
        self,
        *,
        host: HostPlatform,
        environ: Mapping[str, str],
        runner: ToolRunner,
        client: Optional[httpx.AsyncClient] = None,
        show_progress: bool = True,
    ) -> None:
        self.host = host
        self.environ = environ
        self._runner = runner
        self._client = client
        self.show_progress = show_progress

    async def _fetch_and_promote(self, url: str, target: Path, *, label: str) -> Path:
        work = Path(tempfile.mkdtemp(prefix="webview-dev-"))
        try:
            name = url.rsplit("/", 1)[-1] or "download"
            if not name.endswith((".zip", ".tar.gz")):
                name += self.host.jdk_archive_ext
            archive = work / name
            if self._client is not None:
                await download(self._client, url, archive, label=label, show_progress=self.show_progress)
            else:
                async with httpx.AsyncClient(timeout=DOWNLOAD_TIMEOUT_S) as client:
                    await download(client, url, archive, label=label, show_progress=self.show_progress)
            staging = work / "extracted"
            extract_archive(archive, staging)
            return promote_bin_root(staging, target)
        finally:
            shutil.rmtree(work, ignore_errors=True)

    async def ensure_java(self) -> JavaRuntime:
        existing = await find_java(self.host, self.environ, self._runner)
        if existing is not None and existing.version >= MIN_JAVA_MAJOR:
            logger.info("Using Java %s at %s", existing.version, existing.home)
            return existing
        if existing is not None:
            logger.warning(
                "Java %s at %s is too old (need %s+); installing Temurin 17",
                existing.version,
                existing.home,
                MIN_JAVA_MAJOR,
            )
        else:
            logger.info("No Java runtime found; installing Temurin 17")

        target = self.host.android_env_dir / JDK_DIRNAME
        await self._fetch_and_promote(jdk_download_url(self.host), target, label="Temurin JDK 17")
        java = target / "bin" / self.host.java_filename()
        if not java.is_file():
            raise ToolchainUnavailable(f"JDK install finished but {java} is missing")
        version = await _probe_java(java, self._runner, self.environ)
        return JavaRuntime(home=target, java=java, version=version or MIN_JAVA_MAJOR)

    async def ensure_cmdline_tools(self, sdk_root: Path) -> Path:
        """Path of ``sdkmanager``, installing the command-line tools when missing."""

        existing = ToolPaths.resolve(self.host, sdk_root).sdkmanager
        if existing is not None:
            logger.info("Using sdkmanager at %s", existing)
            return existing

        target = sdk_root / "cmdline-tools" / "latest"
        await self._fetch_and_promote(
            cmdline_tools_url(self.host), target, label="Android command-line tools"
        )
        sdkmanager = target / "bin" / self.host.tool_filename("sdkmanager")
        if not sdkmanager.is_file():
            raise ToolchainUnavailable(f"command-line tools installed but {sdkmanager} is missing")
        return sdkmanager
