from __future__ import annotations

import shutil
import subprocess
import sys
from pathlib import Path
from typing import Mapping, NoReturn


def log(message: str) -> None:
    print(message, flush=True)


def log_error(message: str) -> None:
    print(f"[ERROR] {message}", file=sys.stderr, flush=True)


def fail(message: str) -> NoReturn:
    log_error(message)
    raise SystemExit(1)


def has_cmd(name: str) -> bool:
    return shutil.which(name) is not None


def need_cmd(name: str) -> None:
    if not has_cmd(name):
        fail(f"Missing required command: {name}")


def run_cmd(
    args: list[str],
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> None:
    """Run one command with inherited stdio; raise CalledProcessError on non-zero exit."""
    subprocess.run(args, check=True, cwd=cwd, env=env)


def capture_cmd(args: list[str], cwd: Path | None = None) -> str:
    """Run a read-only query command and return its stdout."""
    completed = subprocess.run(
        args,
        check=True,
        cwd=cwd,
        stdout=subprocess.PIPE,
        text=True,
    )
    return completed.stdout
