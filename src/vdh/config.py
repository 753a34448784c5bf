# src/vdh/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole daemon (normal "settings layer").
- Every value has a working default; nothing is required at import time.
- Tests build their own settings objects instead of reading the environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "VDH"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Local paths ----
    data_dir: Path
    db_path: Path
    log_dir: Path
    socket_path: Path
    download_dir: Path

    # ---- Queue ----
    max_concurrent: int
    cleanup_days: int

    # ---- yt-dlp ----
    ytdlp_path: str | None
    proxy: str
    cookies_from_browser: str
    merge_output_format: str

    # ---- Client ----
    client_timeout: float

    @staticmethod
    def from_env() -> "Settings":
        load_dotenv(override=False)

        data_dir = _env_path(_k("DATA_DIR"), Path.home() / ".vdh")
        db_path = _env_path(_k("DB_PATH"), data_dir / "video_downloader.db")
        log_dir = _env_path(_k("LOG_DIR"), data_dir / "logs")
        socket_path = _env_path(_k("SOCKET_PATH"), Path("/tmp/video_downloader.sock"))
        download_dir = _env_path(_k("DOWNLOAD_DIR"), Path.home() / "Downloads" / "VideoDownloader")

        ytdlp_path = _env(_k("YTDLP_PATH")).strip() or None

        return Settings(
            app_name=_env(_k("APP_NAME"), "vdh"),
            log_level=_env(_k("LOG_LEVEL"), "INFO"),
            data_dir=data_dir,
            db_path=db_path,
            log_dir=log_dir,
            socket_path=socket_path,
            download_dir=download_dir,
            max_concurrent=max(1, _env_int(_k("MAX_CONCURRENT"), 2)),
            cleanup_days=max(0, _env_int(_k("CLEANUP_DAYS"), 30)),
            ytdlp_path=ytdlp_path,
            proxy=_env(_k("PROXY")).strip(),
            cookies_from_browser=_env(_k("COOKIES_FROM_BROWSER")).strip(),
            merge_output_format=_env(_k("MERGE_OUTPUT_FORMAT"), "mp4").strip(),
            client_timeout=max(0.1, _env_float(_k("CLIENT_TIMEOUT"), 5.0)),
        )


_SETTINGS: Settings | None = None


def get_settings() -> Settings:
    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = Settings.from_env()
    return _SETTINGS
