from __future__ import annotations

import subprocess
from pathlib import Path

from .command_utils import has_cmd, log, run_cmd
from .errors import AggregationError
from .lcov import canonicalize_lcov_file
from .models import CoverageReport, PipelineConfig, ProfileData


def build_grcov_args(
    tool: str,
    search_root: Path,
    binary_path: Path,
    source_root: Path,
    excludes: tuple[str, ...],
    output: Path,
) -> list[str]:
    args = [
        tool,
        str(search_root),
        "--binary-path",
        str(binary_path),
        "-s",
        str(source_root),
        "-t",
        "lcov",
        "--branch",
        "--ignore-not-existing",
    ]
    for pattern in excludes:
        args.extend(["--ignore", pattern])
    args.extend(["-o", str(output)])
    return args


def discard_partial_output(output: Path) -> None:
    if output.exists():
        output.unlink()


def aggregate_coverage(config: PipelineConfig, profile_data: ProfileData) -> CoverageReport:
    """Merge per-process profile artifacts into one canonical LCOV report."""
    if not profile_data.artifacts:
        raise AggregationError(
            f"No profile artifacts matching '{config.profile_pattern}' under {profile_data.root}; "
            "is instrumentation enabled (RUSTFLAGS)?"
        )
    if not config.binary_path.is_dir():
        raise AggregationError(f"Build binary path not found: {config.binary_path}")

    tool = config.toolchain.instrumentation_tool
    if not has_cmd(tool):
        raise AggregationError(f"Missing required command: {tool}")

    args = build_grcov_args(
        tool,
        search_root=profile_data.root,
        binary_path=config.binary_path,
        source_root=config.source_root,
        excludes=config.excludes,
        output=config.output,
    )
    try:
        run_cmd(args, cwd=config.workdir)
    except subprocess.CalledProcessError as exc:
        discard_partial_output(config.output)
        raise AggregationError(f"{tool} failed with exit code {exc.returncode}") from exc

    if not config.output.is_file():
        raise AggregationError(f"{tool} did not write a report to {config.output}")

    try:
        records, removed = canonicalize_lcov_file(config.output, config.source_root, config.excludes)
    except (OSError, UnicodeDecodeError) as exc:
        discard_partial_output(config.output)
        raise AggregationError(f"Failed to read report {config.output}: {exc}") from exc

    if removed:
        log(f"      excluded coverage records: {len(removed)}")
        for path in removed:
            log(f"      - {path}")

    report = CoverageReport(path=config.output, records=tuple(records))
    log(
        f"      {len(report.records)} file(s), line coverage {report.line_percent:.2f}%, "
        f"branch coverage {report.branch_percent:.2f}%"
    )
    return report
