"""Shared fixtures: a PipelineConfig factory rooted in a temporary Cargo workdir."""

from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest

from cargo_coverage_to_coveralls.models import (
    EventKind,
    PipelineConfig,
    PublishCredential,
    RunContext,
    RunEvent,
    ToolchainSpec,
)


@pytest.fixture
def workdir(tmp_path: Path) -> Path:
    project = tmp_path / "project"
    (project / "src").mkdir(parents=True)
    (project / "tests").mkdir()
    (project / "target" / "debug").mkdir(parents=True)
    return project


@pytest.fixture
def make_config(workdir: Path) -> Callable[..., PipelineConfig]:
    def factory(**overrides: object) -> PipelineConfig:
        values: dict[str, object] = {
            "event": RunEvent(EventKind.PUSH, "refs/heads/main"),
            "toolchain": ToolchainSpec(),
            "workdir": workdir,
            "binary_path": workdir / "target" / "debug",
            "source_root": workdir,
            "output": workdir / "lcov.info",
            "credential": PublishCredential("secret-token"),
            "context": RunContext(
                repository="octo/rust_blockchain",
                commit="abc123",
                run_id="42",
                branch="main",
            ),
        }
        values.update(overrides)
        return PipelineConfig(**values)

    return factory
