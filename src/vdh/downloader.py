# src/vdh/downloader.py

"""
yt-dlp collaborator.

The daemon treats yt-dlp as a black box:
- build a deterministic output template under the download directory
- run the binary with stdout and stderr merged
- exit status 0 means success
- the produced file path is guessed from the output text (best-effort heuristic)
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from collections.abc import Iterable, Sequence
from pathlib import Path
from urllib.parse import urlparse

from .core.ports import DownloadResult

logger = logging.getLogger(__name__)

ALLOWED_SCHEMES = frozenset({"http", "https"})
CONTAINER_EXTENSIONS = (".mp4", ".mkv", ".webm")
OUTPUT_TEMPLATE = "%(title)s.%(id)s.%(ext)s"

STANDARD_PATHS = (
    "/opt/homebrew/bin/yt-dlp",
    "/usr/local/bin/yt-dlp",
    "/usr/bin/yt-dlp",
)


def is_valid_url(url: str) -> bool:
    try:
        scheme = urlparse(url.strip()).scheme.lower()
    except ValueError:
        return False
    return scheme in ALLOWED_SCHEMES


def find_downloader_binary(
    explicit: str | Path | None = None,
    search_paths: Iterable[str] = STANDARD_PATHS,
) -> Path | None:
    """Explicit path first, then PATH, then the usual install locations."""
    if explicit:
        p = Path(explicit).expanduser()
        return p if p.is_file() else None

    found = shutil.which("yt-dlp")
    if found:
        return Path(found)

    for candidate in search_paths:
        p = Path(candidate)
        if p.is_file():
            return p
    return None


def extract_file_path(output: str, output_dir: str | Path) -> str | None:
    """
    First output line that is a path under the download directory and ends with a
    known container extension. yt-dlp prints the final path because of `--print after_move:filepath`.
    """
    prefix = str(output_dir).rstrip("/") + "/"
    for raw in output.splitlines():
        line = raw.strip()
        if line.startswith(prefix) and line.endswith(CONTAINER_EXTENSIONS):
            return line
    return None


class YtDlpDownloader:
    """Runs yt-dlp once per task. No timeout: a hung process keeps its slot."""

    def __init__(
        self,
        binary: str | Path | None = None,
        *,
        proxy: str = "",
        cookies_from_browser: str = "",
        merge_output_format: str = "mp4",
        search_paths: Sequence[str] = STANDARD_PATHS,
    ) -> None:
        self._binary = binary
        self._proxy = proxy
        self._cookies_from_browser = cookies_from_browser
        self._merge_output_format = merge_output_format
        self._search_paths = tuple(search_paths)

    def build_command(self, binary: Path, url: str, output_dir: Path) -> list[str]:
        cmd = [str(binary)]
        if self._proxy:
            cmd += ["--proxy", self._proxy]
        if self._cookies_from_browser:
            cmd += ["--cookies-from-browser", self._cookies_from_browser]
        if self._merge_output_format:
            cmd += ["--merge-output-format", self._merge_output_format]
        cmd += [
            "--verbose",
            "--no-playlist",
            "--print", "after_move:filepath",
            "-o", str(output_dir / OUTPUT_TEMPLATE),
            url,
        ]
        return cmd

    def invoke(self, url: str, output_dir: Path) -> DownloadResult:
        binary = find_downloader_binary(self._binary, self._search_paths)
        if binary is None:
            logger.error(
                "yt-dlp not found (explicit=%s, searched PATH and %s)",
                self._binary,
                ", ".join(self._search_paths),
            )
            return DownloadResult(
                success=False,
                exit_status=-1,
                error_message="yt-dlp not found in standard paths",
            )

        output_dir = Path(output_dir).expanduser()
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.exception("Cannot create download directory %s", output_dir)
            return DownloadResult(
                success=False,
                exit_status=-1,
                error_message=f"Cannot create download directory: {e}",
            )

        cmd = self.build_command(binary, url, output_dir)
        logger.info("Download command: %s", " ".join(cmd))

        try:
            proc = subprocess.run(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                text=True,
                encoding="utf-8",
                errors="replace",
                check=False,
            )
        except OSError as e:
            logger.exception("Failed to execute yt-dlp url=%s", url)
            return DownloadResult(
                success=False,
                exit_status=-1,
                error_message=f"Failed to execute yt-dlp: {e}",
            )

        output = proc.stdout or ""
        logger.debug("yt-dlp output for %s:\n%s", url, output)
        file_path = extract_file_path(output, output_dir)

        if proc.returncode == 0:
            logger.info("Download completed url=%s file=%s", url, file_path)
            return DownloadResult(
                success=True,
                exit_status=0,
                output=output,
                file_path=file_path,
            )

        msg = f"Download failed with exit code: {proc.returncode}"
        logger.warning("%s url=%s", msg, url)
        return DownloadResult(
            success=False,
            exit_status=proc.returncode,
            output=output,
            file_path=file_path,
            error_message=msg,
        )
