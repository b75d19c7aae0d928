"""Application settings and environment overrides."""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import os
from pathlib import Path
from typing import Optional


_DEFAULT_UNATTENDED_MODE = "security"
_ALLOWED_UNATTENDED_MODES = {"disable", "security", "patch"}
_DEFAULT_FILE_SYNCER = "python"
_ALLOWED_FILE_SYNCERS = {"python", "rsync"}
_DEFAULT_LOCK_EXPIRE_SECONDS = 604800

DEFAULT_CORE_PACKAGES = (
    "drupal/core",
    "drupal/core-recommended",
    "drupal/core-composer-scaffold",
    "drupal/core-project-message",
    "drupal/core-vendor-hardening",
    "drupal/core-dev",
    "drupal/core-dev-pinned",
)

_ENV_OVERRIDES = {
    "project_root": "PKGSTAGE_PROJECT_ROOT",
    "web_root": "PKGSTAGE_WEB_ROOT",
    "staging_root": "PKGSTAGE_STAGING_ROOT",
    "state_db": "PKGSTAGE_STATE_DB",
    "unattended_mode": "PKGSTAGE_UNATTENDED_MODE",
    "file_syncer": "PKGSTAGE_FILE_SYNCER",
    "composer_executable": "PKGSTAGE_COMPOSER",
}


@dataclass(frozen=True)
class Settings:
    project_root: Path = field(default_factory=Path.cwd)
    web_root: str = ""
    vendor_dir: Optional[Path] = None
    staging_root: Optional[Path] = None
    state_db: Optional[Path] = None
    site_path: str = "sites/default"
    public_files_path: Optional[str] = "sites/default/files"
    private_files_path: Optional[str] = None
    database_driver: str = "mysql"
    database_path: Optional[str] = None
    unattended_mode: str = _DEFAULT_UNATTENDED_MODE
    allow_core_minor_updates: bool = False
    lock_expire_seconds: int = _DEFAULT_LOCK_EXPIRE_SECONDS
    file_syncer: str = _DEFAULT_FILE_SYNCER
    composer_executable: str = "composer"
    core_packages: tuple[str, ...] = DEFAULT_CORE_PACKAGES


def load_settings(path: Optional[Path]) -> Settings:
    """Load settings from JSON config file, with environment variable overrides.

    Priority order:
    1. Environment variables (for the keys in ``_ENV_OVERRIDES``)
    2. JSON config file
    3. Defaults

    Args:
        path: Path to JSON config file, or None to use defaults only

    Returns:
        Settings object with resolved values
    """
    json_settings: dict = {}
    if path and path.exists():
        json_settings = json.loads(path.read_text())

    values = dict(json_settings)
    for key, env_name in _ENV_OVERRIDES.items():
        env_value = os.getenv(env_name)
        if env_value:
            values[key] = env_value

    unknown = set(values) - set(Settings.__dataclass_fields__)
    if unknown:
        raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")

    mode = values.get("unattended_mode", _DEFAULT_UNATTENDED_MODE)
    if mode not in _ALLOWED_UNATTENDED_MODES:
        raise ValueError(f"Unsupported unattended mode: {mode}")
    syncer = values.get("file_syncer", _DEFAULT_FILE_SYNCER)
    if syncer not in _ALLOWED_FILE_SYNCERS:
        raise ValueError(f"Unsupported file syncer: {syncer}")

    for key in ("project_root", "vendor_dir", "staging_root", "state_db"):
        if values.get(key) is not None:
            values[key] = Path(values[key]).expanduser()
    if "project_root" in values:
        values["project_root"] = values["project_root"].resolve()
    if "core_packages" in values:
        values["core_packages"] = tuple(values["core_packages"])
    if "lock_expire_seconds" in values:
        values["lock_expire_seconds"] = int(values["lock_expire_seconds"])
    if "allow_core_minor_updates" in values:
        values["allow_core_minor_updates"] = _as_bool(values["allow_core_minor_updates"])
    values["web_root"] = str(values.get("web_root", "")).strip("/")

    return Settings(**values)


def default_config_path() -> Path:
    return Path.home() / ".config" / "pkgstage" / "settings.json"


def default_state_db(settings: Settings) -> Path:
    if settings.state_db is not None:
        return settings.state_db
    return Path.home() / ".local" / "state" / "pkgstage" / "stages.db"


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)
