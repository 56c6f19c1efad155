from __future__ import annotations

import argparse
import os
import re
import sys
from pathlib import Path
from typing import Mapping

from .build import validate_profile_pattern
from .command_utils import fail
from .models import (
    DEFAULT_COVERALLS_ENDPOINT,
    DEFAULT_EXCLUDES,
    DEFAULT_PROFILE_PATTERN,
    DEFAULT_RUSTFLAGS,
    EventKind,
    PipelineConfig,
    PublishCredential,
    RunContext,
    RunEvent,
    ToolchainSpec,
)
from .path_filter import parse_excluded_paths

try:
    import yaml
except ModuleNotFoundError:
    fail("Missing required Python package: pyyaml. Install dependencies with: uv sync")

PULL_REQUEST_REF_PATTERN = re.compile(r"^refs/pull/(\d+)/")

STRING_KEYS = {
    "event": "--event",
    "ref": "--ref",
    "workdir": "--workdir",
    "binary_path": "--binary-path",
    "source_root": "--source-root",
    "output": "--output",
    "profile_pattern": "--profile-pattern",
    "rustflags": "--rustflags",
    "toolchain": "--toolchain",
    "instrumentation_tool": "--instrumentation-tool",
    "endpoint": "--endpoint",
}
LIST_KEYS = {
    "exclude": "--exclude",
    "components": "--component",
    "push_branches": "--push-branch",
}
FLAG_KEYS = {
    "no_override": "--no-override",
    "skip_provision": "--skip-provision",
    "skip_publish": "--skip-publish",
}
ALLOWED_KEYS = set(STRING_KEYS) | set(LIST_KEYS) | set(FLAG_KEYS) | {"timeout"}


def parse_string_list_field(payload: dict[str, object], key: str) -> list[str]:
    """Read an optional string-list field from YAML object with strict type checks."""
    value = payload.get(key, [])
    if value is None:
        return []
    if not isinstance(value, list) or any(not isinstance(item, str) for item in value):
        fail(f"YAML field '{key}' must be a string array")
    return value


def load_yaml(yaml_path: Path) -> object:
    """Load args payload from YAML text."""
    try:
        raw_text = yaml_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        fail(f"YAML args file not found: {yaml_path}")
    except OSError as exc:
        fail(f"Failed to read YAML args file {yaml_path}: {exc}")

    try:
        return yaml.safe_load(raw_text)
    except yaml.YAMLError as exc:
        fail(f"Invalid YAML in {yaml_path}: {exc}")


def load_args_from_yaml(yaml_path: Path) -> list[str]:
    """Convert YAML object into flat CLI args; keys mirror the long options with '_'."""
    payload = load_yaml(yaml_path)

    if not isinstance(payload, dict):
        fail("YAML args must be an object with keys: " + ", ".join(sorted(ALLOWED_KEYS)))

    unknown_keys = sorted(str(key) for key in payload if key not in ALLOWED_KEYS)
    if unknown_keys:
        fail("Unsupported key(s) in YAML args: " + ", ".join(unknown_keys))

    args: list[str] = []
    for key, flag in STRING_KEYS.items():
        value = payload.get(key)
        if value is None:
            continue
        if not isinstance(value, str):
            fail(f"YAML field '{key}' must be a string")
        args.append(f"{flag}={value}")

    for key, flag in LIST_KEYS.items():
        for item in parse_string_list_field(payload, key):
            args.append(f"{flag}={item}")

    for key, flag in FLAG_KEYS.items():
        value = payload.get(key)
        if value is None:
            continue
        if not isinstance(value, bool):
            fail(f"YAML field '{key}' must be a boolean")
        if value:
            args.append(flag)

    timeout = payload.get("timeout")
    if timeout is not None:
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)):
            fail("YAML field 'timeout' must be a number")
        args.append(f"--timeout={timeout}")

    return args


def preprocess_argv_with_yaml(argv: list[str]) -> list[str]:
    """Expand --args-yaml before normal argparse parsing."""
    if "-h" in argv or "--help" in argv:
        return argv

    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument("--args-yaml", action="append", metavar="FILE")
    parsed, filtered = parser.parse_known_args(argv)

    yaml_paths = parsed.args_yaml or []
    if len(yaml_paths) > 1:
        fail("--args-yaml can only be provided once")
    if not yaml_paths:
        return filtered

    yaml_args = load_args_from_yaml(Path(yaml_paths[0]))

    # YAML args are applied first so direct CLI flags can override them.
    return yaml_args + filtered


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    raw_argv = sys.argv[1:] if argv is None else argv
    effective_argv = preprocess_argv_with_yaml(raw_argv)

    parser = argparse.ArgumentParser(
        prog="cargo-coverage-to-coveralls",
        description=(
            "Build and test a Cargo project with coverage instrumentation, aggregate "
            "the profiles with grcov into LCOV and publish the report to Coveralls."
        ),
    )
    parser.add_argument(
        "--args-yaml",
        default=None,
        metavar="FILE",
        help="Load arguments from a YAML object file; keys are long option names with '_'.",
    )
    parser.add_argument(
        "--event",
        choices=[kind.value for kind in EventKind],
        default=None,
        help="Trigger event kind (default: $GITHUB_EVENT_NAME).",
    )
    parser.add_argument(
        "--ref",
        default=None,
        help="Branch or ref of the event (default: $GITHUB_HEAD_REF or $GITHUB_REF).",
    )
    parser.add_argument(
        "-C",
        "--workdir",
        default=".",
        metavar="DIR",
        help="Cargo project directory; profile artifacts are written here (default: .).",
    )
    parser.add_argument(
        "--binary-path",
        default=None,
        metavar="DIR",
        help="Directory with the instrumented build binaries (default: <workdir>/target/debug).",
    )
    parser.add_argument(
        "-s",
        "--source-root",
        default=None,
        metavar="DIR",
        help="Source root used to resolve SF paths (default: <workdir>).",
    )
    parser.add_argument(
        "-o",
        "--output",
        default="lcov.info",
        metavar="FILE",
        help="LCOV report path, relative to the workdir (default: lcov.info).",
    )
    parser.add_argument(
        "--exclude",
        action="append",
        default=[],
        metavar="GLOB",
        help=(
            "Exclude SF paths matching GLOB from the report (repeatable). "
            "Default: " + " ".join(DEFAULT_EXCLUDES)
        ),
    )
    parser.add_argument(
        "--profile-pattern",
        default=DEFAULT_PROFILE_PATTERN,
        help="LLVM_PROFILE_FILE pattern; must contain %%p and %%m.",
    )
    parser.add_argument(
        "--rustflags",
        default=DEFAULT_RUSTFLAGS,
        help=f"RUSTFLAGS enabling instrumentation, pass as --rustflags=VALUE (default: {DEFAULT_RUSTFLAGS}).",
    )
    parser.add_argument("--toolchain", default="nightly", help="Rust toolchain channel (default: nightly).")
    parser.add_argument(
        "--component",
        action="append",
        default=[],
        help="rustup component to install (repeatable, default: llvm-tools-preview).",
    )
    parser.add_argument(
        "--instrumentation-tool",
        default="grcov",
        help="Coverage aggregation tool installed with cargo install (default: grcov).",
    )
    parser.add_argument(
        "--no-override",
        action="store_true",
        help="Do not run 'rustup override set' for the workdir.",
    )
    parser.add_argument(
        "--push-branch",
        action="append",
        default=[],
        metavar="GLOB",
        help="Branch patterns whose pushes trigger a run (repeatable, default: *).",
    )
    parser.add_argument(
        "--endpoint",
        default=DEFAULT_COVERALLS_ENDPOINT,
        help="Coveralls jobs API endpoint.",
    )
    parser.add_argument("--timeout", type=float, default=60.0, help="Upload timeout in seconds.")
    parser.add_argument(
        "--skip-provision",
        action="store_true",
        help="Assume the toolchain, components and grcov are already installed.",
    )
    parser.add_argument(
        "--skip-publish",
        action="store_true",
        help="Stop after writing the LCOV report.",
    )
    parser.add_argument("--repository", default=None, help="owner/name (default: $GITHUB_REPOSITORY).")
    parser.add_argument("--commit", default=None, help="Commit SHA (default: $GITHUB_SHA).")
    parser.add_argument("--run-id", default=None, help="CI run id (default: $GITHUB_RUN_ID).")
    return parser.parse_args(effective_argv)


def resolve_event(args: argparse.Namespace, environ: Mapping[str, str]) -> RunEvent | None:
    """Build the RunEvent; event kinds without a trigger rule resolve to None."""
    raw_kind = args.event or environ.get("GITHUB_EVENT_NAME", "")
    if not raw_kind:
        fail("No trigger event: pass --event or set GITHUB_EVENT_NAME")
    try:
        kind = EventKind(raw_kind)
    except ValueError:
        return None

    ref = args.ref
    if ref is None and kind is EventKind.PULL_REQUEST:
        ref = environ.get("GITHUB_HEAD_REF") or None
    if ref is None:
        ref = environ.get("GITHUB_REF", "")
    return RunEvent(event_kind=kind, branch_or_ref=ref)


def resolve_pull_request(environ: Mapping[str, str]) -> str | None:
    matched = PULL_REQUEST_REF_PATTERN.match(environ.get("GITHUB_REF", ""))
    return matched.group(1) if matched else None


def resolve_under(base: Path, raw: str) -> Path:
    path = Path(raw).expanduser()
    if not path.is_absolute():
        path = base / path
    return path


def build_config(
    args: argparse.Namespace,
    environ: Mapping[str, str] | None = None,
) -> PipelineConfig:
    env = os.environ if environ is None else environ

    workdir = Path(args.workdir).expanduser().resolve()
    if not workdir.is_dir():
        fail(f"Working directory not found: {workdir}")

    validate_profile_pattern(args.profile_pattern)
    excludes = parse_excluded_paths(args.exclude) if args.exclude else DEFAULT_EXCLUDES

    event = resolve_event(args, env)
    pull_request = None
    if event is not None and event.event_kind is EventKind.PULL_REQUEST:
        pull_request = resolve_pull_request(env)

    context = RunContext(
        repository=args.repository or env.get("GITHUB_REPOSITORY", ""),
        commit=args.commit or env.get("GITHUB_SHA", ""),
        run_id=args.run_id or env.get("GITHUB_RUN_ID", ""),
        branch=event.branch if event is not None else "",
        pull_request=pull_request,
    )
    credential = PublishCredential(env.get("COVERALLS_REPO_TOKEN") or env.get("GITHUB_TOKEN"))

    return PipelineConfig(
        event=event,
        toolchain=ToolchainSpec(
            compiler_channel=args.toolchain,
            components=frozenset(args.component or ["llvm-tools-preview"]),
            instrumentation_tool=args.instrumentation_tool,
            override=not args.no_override,
        ),
        workdir=workdir,
        binary_path=resolve_under(workdir, args.binary_path or "target/debug"),
        source_root=resolve_under(workdir, args.source_root or "."),
        output=resolve_under(workdir, args.output),
        credential=credential,
        context=context,
        excludes=excludes,
        profile_pattern=args.profile_pattern,
        rustflags=args.rustflags,
        push_branches=tuple(args.push_branch or ["*"]),
        endpoint=args.endpoint,
        timeout=args.timeout,
        skip_provision=args.skip_provision,
        skip_publish=args.skip_publish,
    )
