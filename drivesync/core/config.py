from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path

from pydantic import BaseModel, Field


class DriveConfig(BaseModel):
    folder_id: str = ""
    client_email: str = ""
    # Literal "\n" sequences (as found in env files) are expanded on load.
    private_key: str = ""
    mime_prefix: str = "image/"
    page_size: int = Field(default=1000, ge=1, le=1000)
    # Per-request retries performed by the Google API client itself.
    num_retries: int = Field(default=3, ge=0, le=10)


class MediaServiceConfig(BaseModel):
    base_url: str = "http://localhost:3001"
    admin_secret: str = "change-me"
    timeout_sec: int = 60


class SyncConfig(BaseModel):
    concurrency: int = Field(default=3, ge=1, le=32)
    max_attempts: int = Field(default=5, ge=1, le=10)
    backoff_base_ms: int = Field(default=1000, ge=0)
    backoff_max_ms: int = Field(default=15000, ge=0)
    # When enabled, every file must match a catalog article or group and the
    # uploaded asset is linked to it; unmatched files are skipped.
    link_targets: bool = False
    link_max_attempts: int = Field(default=3, ge=1, le=10)
    cleanup_max_attempts: int = Field(default=5, ge=1, le=50)
    default_mime_type: str = "image/jpeg"
    # 0 disables `watch`; positive values are seconds between runs.
    poll_interval_sec: int = Field(default=0, ge=0, le=86400)


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file: str = str(Path.home() / ".drivesync" / "runtime" / "drivesync.log")


class DatabaseConfig(BaseModel):
    path: str = str(Path.home() / ".drivesync" / "runtime" / "drivesync.db")


class AppConfig(BaseModel):
    drive: DriveConfig = Field(default_factory=DriveConfig)
    media: MediaServiceConfig = Field(default_factory=MediaServiceConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)


PROJECT_ROOT = Path.home() / ".drivesync"
RUNTIME_DIR = PROJECT_ROOT / "runtime"
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config.yaml"
SOURCE_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_CONFIG_TEMPLATE_PATH = SOURCE_ROOT / "config.yaml.example"
LAST_RUN_PATH = RUNTIME_DIR / "last_run.json"
RUN_HISTORY_PATH = RUNTIME_DIR / "run_history.jsonl"

# Variable names kept from the deployment's .env files.
ENV_OVERRIDES = {
    "DRIVE_FOLDER_ID": ("drive", "folder_id"),
    "GOOGLE_CLIENT_EMAIL": ("drive", "client_email"),
    "GOOGLE_PRIVATE_KEY": ("drive", "private_key"),
    "ADMIN_BASE": ("media", "base_url"),
    "ADMIN_SHARED_SECRET": ("media", "admin_secret"),
}


def apply_env_overrides(cfg: AppConfig, env: Mapping[str, str]) -> list[str]:
    applied: list[str] = []
    for var, (section, field) in ENV_OVERRIDES.items():
        value = env.get(var)
        if not value:
            continue
        setattr(getattr(cfg, section), field, value)
        applied.append(var)
    return applied


def normalize_private_key(value: str) -> str:
    return (value or "").replace("\\n", "\n")


def ensure_runtime_dirs(cfg: AppConfig):
    Path(cfg.logging.file).parent.mkdir(parents=True, exist_ok=True)
    Path(cfg.database.path).parent.mkdir(parents=True, exist_ok=True)


def _finalize(cfg: AppConfig, env: Mapping[str, str] | None) -> AppConfig:
    if env is not None:
        apply_env_overrides(cfg, env)
    cfg.drive.private_key = normalize_private_key(cfg.drive.private_key)
    cfg.media.base_url = cfg.media.base_url.rstrip("/")
    cfg.logging.file = str(Path(cfg.logging.file).expanduser())
    cfg.database.path = str(Path(cfg.database.path).expanduser())
    ensure_runtime_dirs(cfg)
    return cfg


def load_config(path: Path = DEFAULT_CONFIG_PATH, env: Mapping[str, str] | None = None) -> AppConfig:
    import yaml

    if not path.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
        if DEFAULT_CONFIG_TEMPLATE_PATH.exists():
            try:
                template_text = DEFAULT_CONFIG_TEMPLATE_PATH.read_text(encoding="utf-8")
                data = yaml.safe_load(template_text) or {}
                cfg = AppConfig.model_validate(data)
                path.write_text(template_text, encoding="utf-8")
            except Exception:
                cfg = AppConfig()
                path.write_text(yaml.safe_dump(cfg.model_dump(), allow_unicode=True, sort_keys=False), encoding="utf-8")
        else:
            cfg = AppConfig()
            path.write_text(yaml.safe_dump(cfg.model_dump(), allow_unicode=True, sort_keys=False), encoding="utf-8")
        return _finalize(cfg, env)

    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    cfg = AppConfig.model_validate(data)
    return _finalize(cfg, env)
