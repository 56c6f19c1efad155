from __future__ import annotations

import os
import re
import subprocess
from pathlib import Path

from .command_utils import fail, log, run_cmd
from .errors import BuildError, TestFailure
from .models import PipelineConfig, ProfileData

# LLVM_PROFILE_FILE placeholders: %p pid, %h hostname, %m / %Nm module signature (+ pool size), %c continuous mode.
PROFILE_PLACEHOLDER_PATTERN = re.compile(r"%(?:\d*m|[phc])")


def validate_profile_pattern(pattern: str) -> None:
    """Concurrent test binaries must never share one artifact name."""
    if not pattern:
        fail("Profile file pattern cannot be empty")
    if "%p" not in pattern:
        fail(f"Profile file pattern '{pattern}' must contain the %p (process id) placeholder")
    if not re.search(r"%\d*m", pattern):
        fail(f"Profile file pattern '{pattern}' must contain the %m (module id) placeholder")
    if os.path.isabs(pattern) or ".." in Path(pattern).parts:
        fail(f"Profile file pattern '{pattern}' must stay inside the working directory")


def profile_glob(pattern: str) -> str:
    """Turn an LLVM_PROFILE_FILE pattern into a glob matching what it produces."""
    return PROFILE_PLACEHOLDER_PATTERN.sub("*", pattern)


def collect_profile_data(workdir: Path, pattern: str) -> ProfileData:
    artifacts = sorted(path for path in workdir.rglob(profile_glob(pattern)) if path.is_file())
    return ProfileData(root=workdir, artifacts=tuple(artifacts))


def remove_stale_outputs(config: PipelineConfig) -> None:
    """Delete leftovers from an earlier run so nothing stale is aggregated or published."""
    stale = collect_profile_data(config.workdir, config.profile_pattern).artifacts
    for path in stale:
        path.unlink()
    if stale:
        log(f"      removed {len(stale)} stale profile artifact(s)")
    if config.output.exists():
        config.output.unlink()
        log(f"      removed stale report {config.output}")


def instrumented_env(config: PipelineConfig) -> dict[str, str]:
    env = dict(os.environ)
    env["RUSTFLAGS"] = config.rustflags
    # Workspace members run their tests from their own package directory.
    env["LLVM_PROFILE_FILE"] = str(config.workdir / config.profile_pattern)
    return env


def build_project(config: PipelineConfig, env: dict[str, str]) -> None:
    try:
        run_cmd(["cargo", "build"], cwd=config.workdir, env=env)
    except subprocess.CalledProcessError as exc:
        raise BuildError(f"cargo build failed with exit code {exc.returncode}") from exc


def run_tests(config: PipelineConfig, env: dict[str, str]) -> ProfileData:
    try:
        run_cmd(["cargo", "test"], cwd=config.workdir, env=env)
    except subprocess.CalledProcessError as exc:
        raise TestFailure(f"cargo test failed with exit code {exc.returncode}") from exc

    profile_data = collect_profile_data(config.workdir, config.profile_pattern)
    log(f"      collected {len(profile_data.artifacts)} profile artifact(s)")
    return profile_data
