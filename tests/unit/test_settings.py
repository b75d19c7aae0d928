"""Unit tests for settings loading."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from pkgstage.settings import (
    DEFAULT_CORE_PACKAGES,
    Settings,
    default_config_path,
    default_state_db,
    load_settings,
)


def test_defaults_without_config(monkeypatch) -> None:
    for name in ("PKGSTAGE_PROJECT_ROOT", "PKGSTAGE_UNATTENDED_MODE", "PKGSTAGE_WEB_ROOT"):
        monkeypatch.delenv(name, raising=False)

    settings = load_settings(None)

    assert settings.unattended_mode == "security"
    assert settings.file_syncer == "python"
    assert settings.lock_expire_seconds == 604800
    assert settings.core_packages == DEFAULT_CORE_PACKAGES
    assert settings.allow_core_minor_updates is False


def test_json_values_are_coerced(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.delenv("PKGSTAGE_STAGING_ROOT", raising=False)
    config = tmp_path / "settings.json"
    config.write_text(
        json.dumps(
            {
                "project_root": str(tmp_path),
                "web_root": "/web/",
                "staging_root": "~/staging",
                "core_packages": ["drupal/core"],
                "lock_expire_seconds": "60",
                "allow_core_minor_updates": "yes",
            }
        )
    )
    monkeypatch.setenv("HOME", str(tmp_path / "home"))

    settings = load_settings(config)

    assert settings.project_root == tmp_path.resolve()
    assert settings.web_root == "web"
    assert settings.staging_root == tmp_path / "home" / "staging"
    assert settings.core_packages == ("drupal/core",)
    assert settings.lock_expire_seconds == 60
    assert settings.allow_core_minor_updates is True


def test_environment_overrides_json(tmp_path: Path, monkeypatch) -> None:
    config = tmp_path / "settings.json"
    config.write_text(json.dumps({"unattended_mode": "patch", "file_syncer": "python"}))
    monkeypatch.setenv("PKGSTAGE_UNATTENDED_MODE", "disable")
    monkeypatch.setenv("PKGSTAGE_FILE_SYNCER", "rsync")

    settings = load_settings(config)

    assert settings.unattended_mode == "disable"
    assert settings.file_syncer == "rsync"


@pytest.mark.parametrize(
    "values,message",
    [
        ({"unattended_mode": "always"}, "Unsupported unattended mode"),
        ({"file_syncer": "robocopy"}, "Unsupported file syncer"),
        ({"colour": "blue"}, "Unknown settings: colour"),
    ],
)
def test_invalid_settings(tmp_path: Path, monkeypatch, values: dict, message: str) -> None:
    monkeypatch.delenv("PKGSTAGE_UNATTENDED_MODE", raising=False)
    monkeypatch.delenv("PKGSTAGE_FILE_SYNCER", raising=False)
    config = tmp_path / "settings.json"
    config.write_text(json.dumps(values))

    with pytest.raises(ValueError, match=message):
        load_settings(config)


def test_default_paths_are_deterministic(monkeypatch) -> None:
    monkeypatch.setenv("HOME", "/tmp/pkgstage-home")

    assert default_config_path() == Path("/tmp/pkgstage-home/.config/pkgstage/settings.json")
    assert default_state_db(Settings()) == Path(
        "/tmp/pkgstage-home/.local/state/pkgstage/stages.db"
    )
    assert default_state_db(Settings(state_db=Path("/x/y.db"))) == Path("/x/y.db")
