"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
import os
import shutil
from pathlib import Path
from typing import Callable, Generator

import pytest

from pkgstage.app import PkgStageApp
from pkgstage.core.releases import ReleaseCatalog
from pkgstage.settings import Settings
from tests.helpers import FakeComposerRunner, SiteFixture, build_site

PLENTY_OF_SPACE = 10 * 1024 ** 4


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    run_slow = os.getenv("RUN_SLOW", "").lower() in {"1", "true", "yes"}
    has_rsync = shutil.which("rsync") is not None
    for item in items:
        if "slow" in item.keywords and not run_slow:
            item.add_marker(pytest.mark.skip(reason="slow test"))
        if "requires_rsync" in item.keywords and not has_rsync:
            item.add_marker(pytest.mark.skip(reason="rsync not installed"))


class FakeClock:
    """Settable UTC clock for lock expiry and apply staleness."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def site(tmp_path: Path) -> SiteFixture:
    return build_site(tmp_path)


@pytest.fixture
def composer() -> FakeComposerRunner:
    return FakeComposerRunner()


@pytest.fixture
def settings_for(tmp_path: Path) -> Callable[..., Settings]:
    def build(site: SiteFixture, **overrides) -> Settings:
        values = {
            "project_root": site.root,
            "web_root": site.web_root,
            "staging_root": tmp_path / "staging",
            "state_db": tmp_path / "state" / "stages.db",
        }
        values.update(overrides)
        return Settings(**values)

    return build


@pytest.fixture
def make_app(
    site: SiteFixture, composer: FakeComposerRunner, settings_for, clock: FakeClock
) -> Generator[Callable[..., PkgStageApp], None, None]:
    """Build apps over the fake site; every app is closed after the test."""
    apps: list[PkgStageApp] = []

    def build(
        catalog: ReleaseCatalog | None = None,
        tool_runner=None,
        syncer=None,
        fixture: SiteFixture | None = None,
        **overrides,
    ) -> PkgStageApp:
        app = PkgStageApp(
            settings_for(fixture or site, **overrides),
            catalog=catalog,
            tool_runner=tool_runner or composer,
            syncer=syncer,
            free_space=lambda _path: PLENTY_OF_SPACE,
            now_fn=clock,
        )
        apps.append(app)
        return app

    yield build
    for app in apps:
        app.close()


@pytest.fixture
def app(make_app) -> PkgStageApp:
    return make_app()
