"""End-to-end stage lifecycle over a fake site and a fake Composer."""

from __future__ import annotations

from pathlib import Path

import pytest

from pkgstage.core.manifest import changed_versions
from pkgstage.core.state import StageState
from pkgstage.errors import (
    AlreadyActiveError,
    NoActiveStageError,
    StageError,
    StageValidationError,
    WrongOwnerError,
)
from pkgstage.validators.lock_file import LOCK_HASH_KEY
from tests.helpers import FakeComposerRunner, build_site, installed_versions


def test_core_update_end_to_end(app, site) -> None:
    stage = app.lifecycle()
    stage_id = stage.begin({"drupal": "10.1.1"})
    stage_dir = stage.get_stage_directory()

    assert stage.get_state() == StageState.CREATED
    assert (stage_dir / "composer.json").exists()
    # Site settings never reach the stage.
    assert not (stage_dir / "web" / "sites" / "default" / "settings.php").exists()
    assert not (stage_dir / "web" / "sites" / "default" / "files").exists()

    stage.stage()
    assert stage.get_state() == StageState.STAGED
    diff = changed_versions(
        stage.get_active_manifest().installed_packages,
        stage.get_stage_manifest().installed_packages,
    )
    assert diff == {
        "drupal/core-recommended": ("10.1.0", "10.1.1"),
        "drupal/core": ("10.1.0", "10.1.1"),
        "drupal/core-dev": ("10.1.0", "10.1.1"),
    }

    stage.apply()
    assert stage.get_state() == StageState.APPLIED
    assert not app.failure_marker.exists()
    assert installed_versions(site.root)["drupal/core"] == "10.1.1"
    assert (site.root / "web" / "core" / "VERSION.txt").read_text() == "10.1.1"
    assert (site.root / "web" / "sites" / "default" / "settings.php").exists()
    assert (site.root / "web" / "sites" / "default" / "files" / "logo.png").exists()

    stage.post_apply()
    assert stage.get_state() == StageState.POST_APPLIED

    stage.destroy()
    assert stage.is_available()
    assert not stage_dir.exists()
    with pytest.raises(NoActiveStageError, match="already been applied"):
        app.lifecycle().claim(stage_id)


def test_require_commands_are_run_in_stage(app, composer) -> None:
    stage = app.lifecycle()
    stage.begin({"drupal": "10.1.1"})
    stage.stage()

    assert composer.calls == [
        ("require", "--no-update", "drupal/core-recommended:10.1.1"),
        ("require", "--dev", "--no-update", "drupal/core-dev:10.1.1"),
        (
            "update",
            "--with-all-dependencies",
            "drupal/core-recommended:10.1.1",
            "drupal/core-dev:10.1.1",
        ),
    ]


def test_extension_update_diff_and_apply(app, site) -> None:
    stage = app.extension_lifecycle()
    stage.begin({"token": "1.5.0"})
    assert stage.get_package_versions().production == {"drupal/token": "1.5.0"}
    stage.stage()

    diff = changed_versions(
        stage.get_active_manifest().installed_packages,
        stage.get_stage_manifest().installed_packages,
    )
    assert diff == {"drupal/token": ("1.4.0", "1.5.0")}

    stage.apply()
    assert installed_versions(site.root)["drupal/token"] == "1.5.0"
    stage.post_apply()
    stage.destroy()


def test_staged_version_mismatch_vetoes_apply(make_app, site) -> None:
    composer = FakeComposerRunner(lands_on={"drupal/core-recommended": "10.1.1"})
    app = make_app(tool_runner=composer)
    stage = app.lifecycle()
    stage.begin({"drupal": "10.1.2"})
    stage.stage()

    with pytest.raises(StageValidationError) as excinfo:
        stage.apply()

    message = str(excinfo.value)
    assert "drupal/core-recommended" in message
    assert "10.1.2" in message
    assert "10.1.1" in message
    assert stage.get_state() == StageState.STAGED
    assert not stage.is_applying()
    assert not app.failure_marker.exists()
    assert installed_versions(site.root)["drupal/core-recommended"] == "10.1.0"


def test_second_begin_fails_until_destroyed(app) -> None:
    first = app.lifecycle()
    first.begin({"drupal": "10.1.1"})

    with pytest.raises(AlreadyActiveError):
        first.begin({"drupal": "10.1.1"})
    with pytest.raises(AlreadyActiveError):
        app.lifecycle(owner_id="someone-else").begin({"drupal": "10.1.1"})

    first.destroy()
    third = app.lifecycle()
    assert third.begin({"drupal": "10.1.1"})


def test_unknown_paths_excluded_when_web_root_differs(make_app, tmp_path: Path) -> None:
    fixture = build_site(tmp_path, name="custom", extra_files={"unknown_file.txt": "hello"})
    stage = make_app(fixture=fixture).lifecycle()
    stage.begin({"drupal": "10.1.1"})

    assert not (stage.get_stage_directory() / "unknown_file.txt").exists()


def test_private_files_beside_web_root_are_not_staged(make_app, tmp_path: Path) -> None:
    fixture = build_site(tmp_path, name="custom", extra_files={"private/secret.txt": "x"})
    stage = make_app(fixture=fixture, private_files_path="../private").lifecycle()
    stage.begin({"drupal": "10.1.1"})

    assert stage.get_stage_directory().is_dir()
    assert not (stage.get_stage_directory() / "private").exists()


def test_unknown_paths_copied_when_web_root_is_project_root(make_app, tmp_path: Path) -> None:
    fixture = build_site(tmp_path, web_root="", name="custom", extra_files={"unknown_file.txt": "hello"})
    stage = make_app(fixture=fixture).lifecycle()
    stage.begin({"drupal": "10.1.1"})

    assert (stage.get_stage_directory() / "unknown_file.txt").read_text() == "hello"


def test_claim_by_owner_returns_stored_metadata(app) -> None:
    stage_id = app.lifecycle(owner_id="alice").begin({"drupal": "10.1.1"})

    claimed = app.lifecycle(owner_id="alice").claim(stage_id)
    metadata = claimed.get_metadata()
    assert metadata["packages"]["production"] == {"drupal/core-recommended": "10.1.1"}
    assert metadata[LOCK_HASH_KEY]


def test_claim_by_other_owner_is_rejected(app) -> None:
    stage_id = app.lifecycle(owner_id="alice").begin({"drupal": "10.1.1"})

    with pytest.raises(WrongOwnerError, match="not owned by the current user"):
        app.lifecycle(owner_id="bob").claim(stage_id)


def test_claim_with_other_stage_type_is_rejected(app) -> None:
    stage_id = app.lifecycle().begin({"drupal": "10.1.1"})

    with pytest.raises(WrongOwnerError, match="does not match the stored lock"):
        app.extension_lifecycle().claim(stage_id)


def test_forced_destroy_tells_original_owner(app) -> None:
    stage_id = app.lifecycle(owner_id="alice").begin({"drupal": "10.1.1"})

    app.lifecycle(owner_id="bob").destroy(force=True)

    with pytest.raises(NoActiveStageError, match="canceled by another user"):
        app.lifecycle(owner_id="alice").claim(stage_id)


def test_canceled_stage_cannot_be_claimed(app) -> None:
    stage = app.lifecycle()
    stage_id = stage.begin({"drupal": "10.1.1"})
    stage.destroy()

    with pytest.raises(NoActiveStageError, match="already canceled"):
        app.lifecycle().claim(stage_id)


def test_operations_require_a_claim(app) -> None:
    app.lifecycle().begin({"drupal": "10.1.1"})
    unclaimed = app.lifecycle()

    with pytest.raises(StageError, match="must be claimed"):
        unclaimed.stage()


def test_apply_before_require_is_rejected(app) -> None:
    stage = app.lifecycle()
    stage.begin({"drupal": "10.1.1"})

    with pytest.raises(StageError, match="Cannot apply because the stage is created"):
        stage.apply()
    assert not app.failure_marker.exists()


def test_post_apply_requires_applied_stage(app) -> None:
    stage = app.lifecycle()
    stage.begin({"drupal": "10.1.1"})
    stage.stage()

    with pytest.raises(StageError, match="Cannot run post-apply tasks"):
        stage.post_apply()


def test_destroy_refused_while_applying(app, clock) -> None:
    stage = app.lifecycle()
    stage_id = stage.begin({"drupal": "10.1.1"})
    stage.stage()
    app.lock.update(
        stage_id, state=StageState.APPLYING, apply_time=app.lock.now_timestamp()
    )

    with pytest.raises(StageError, match="while it is being applied"):
        stage.destroy()

    # An apply older than an hour is considered dead.
    clock.advance(hours=2)
    stage.destroy()
    assert stage.is_available()


def test_begin_rejects_non_core_projects_for_core_policy(app) -> None:
    with pytest.raises(ValueError, match="only updates to Drupal core"):
        app.lifecycle().begin({"token": "1.5.0"})
    assert app.lifecycle().is_available()


def test_pre_create_veto_releases_the_lock(app, site) -> None:
    (site.root / "composer.lock").unlink()
    stage = app.lifecycle()

    with pytest.raises(StageValidationError, match="Could not hash the active lock file"):
        stage.begin({"drupal": "10.1.1"})
    assert stage.is_available()
    assert stage.stage_id is None
    assert not app.locator.staging_root.exists()


def test_tool_failure_leaves_stage_for_cleanup(make_app) -> None:
    app = make_app(tool_runner=FakeComposerRunner(fail_on="update"))
    stage = app.lifecycle()
    stage.begin({"drupal": "10.1.1"})

    with pytest.raises(StageError, match="composer update failed"):
        stage.stage()
    assert stage.get_state() == StageState.CREATED

    stage.destroy()
    assert stage.is_available()


def test_lock_file_change_is_detected_before_apply(app, site) -> None:
    stage = app.lifecycle()
    stage.begin({"drupal": "10.1.1"})
    stage.stage()
    (site.root / "composer.lock").write_text('{"content-hash": "changed"}')

    with pytest.raises(StageValidationError, match="Unexpected changes were detected"):
        stage.apply()
