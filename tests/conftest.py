"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import io
import os
from pathlib import Path

import pytest
from rich.console import Console

from chrootctl.cli import RuntimeContext, build_runtime
from chrootctl.config import AppConfig, load_config
from tests.fakes import FakeBackend, script_probes


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip expensive tests during mutation runs."""
    if not os.environ.get("MUTANT_UNDER_TEST"):
        return
    skip_marker = pytest.mark.skip(reason="Skipped during mutation run to avoid timeouts.")
    for item in items:
        if "mutation_timeout" in item.keywords:
            item.add_marker(skip_marker)


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    """Configuration rooted in the test's temporary directory with no delays."""
    return load_config(
        config_file=tmp_path / "config.yml",
        env={},
        overrides={
            "chroot_dir": str(tmp_path / "chroot"),
            "state_dir": str(tmp_path / "state"),
            "backend": {"method": "none"},
            "delays": {
                "ui_update": 0,
                "status_refresh": 0,
                "spinner_interval": 0.01,
                "dots_interval": 0.01,
            },
        },
    )


@pytest.fixture
def fake_backend() -> FakeBackend:
    backend = FakeBackend()
    script_probes(backend)
    return backend


@pytest.fixture
def output() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def runtime(app_config: AppConfig, fake_backend: FakeBackend, output: io.StringIO) -> RuntimeContext:
    """Fully wired runtime whose executor talks to ``fake_backend``."""
    ctx = build_runtime(app_config, output=Console(file=output, width=120))
    ctx.executor.backend = fake_backend
    return ctx
