from __future__ import annotations

import enum
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator

DEFAULT_PROFILE_PATTERN = "cargo-test-%p-%m.profraw"
DEFAULT_RUSTFLAGS = "-Zinstrument-coverage"
DEFAULT_EXCLUDES = ("/*", "tests/*")
DEFAULT_COVERALLS_ENDPOINT = "https://coveralls.io/api/v1/jobs"


class EventKind(str, enum.Enum):
    PUSH = "push"
    PULL_REQUEST = "pull_request"


@dataclass(frozen=True)
class RunEvent:
    event_kind: EventKind
    branch_or_ref: str

    @property
    def is_tag(self) -> bool:
        return self.branch_or_ref.startswith("refs/tags/")

    @property
    def branch(self) -> str:
        if self.branch_or_ref.startswith("refs/heads/"):
            return self.branch_or_ref[len("refs/heads/") :]
        return self.branch_or_ref


@dataclass(frozen=True)
class ToolchainSpec:
    compiler_channel: str = "nightly"
    components: frozenset[str] = frozenset({"llvm-tools-preview"})
    instrumentation_tool: str = "grcov"
    override: bool = True
    locked_install: bool = True


@dataclass(frozen=True)
class ProfileData:
    root: Path
    artifacts: tuple[Path, ...]


@dataclass(frozen=True)
class BranchHit:
    line: int
    block: int
    branch: int
    # None means the enclosing block never ran (LCOV '-').
    hits: int | None

    @property
    def taken(self) -> bool:
        return bool(self.hits)


@dataclass(frozen=True)
class FileCoverage:
    source_file: str
    lines: dict[int, int] = field(default_factory=dict)
    branches: tuple[BranchHit, ...] = ()
    functions: dict[str, tuple[int, int]] = field(default_factory=dict)

    @property
    def lines_found(self) -> int:
        return len(self.lines)

    @property
    def lines_hit(self) -> int:
        return sum(1 for hits in self.lines.values() if hits > 0)

    @property
    def branches_found(self) -> int:
        return len(self.branches)

    @property
    def branches_hit(self) -> int:
        return sum(1 for branch in self.branches if branch.taken)

    @property
    def line_percent(self) -> float:
        return percent(self.lines_hit, self.lines_found)

    @property
    def branch_percent(self) -> float:
        return percent(self.branches_hit, self.branches_found)


@dataclass(frozen=True)
class CoverageReport:
    path: Path
    records: tuple[FileCoverage, ...]

    def record_for(self, source_file: str) -> FileCoverage | None:
        for record in self.records:
            if record.source_file == source_file:
                return record
        return None

    @property
    def line_percent(self) -> float:
        return percent(
            sum(record.lines_hit for record in self.records),
            sum(record.lines_found for record in self.records),
        )

    @property
    def branch_percent(self) -> float:
        return percent(
            sum(record.branches_hit for record in self.records),
            sum(record.branches_found for record in self.records),
        )


def percent(hit: int, found: int) -> float:
    if found == 0:
        return 100.0
    return round(100.0 * hit / found, 2)


class PublishCredential:
    """Secret upload token; only readable inside scoped() and cleared afterwards."""

    def __init__(self, token: str | None) -> None:
        self._token = token or None

    def __repr__(self) -> str:
        state = "set" if self._token else "empty"
        return f"PublishCredential(<{state}>)"

    __str__ = __repr__

    @property
    def is_set(self) -> bool:
        return self._token is not None

    def clear(self) -> None:
        self._token = None

    @contextmanager
    def scoped(self) -> Iterator[str]:
        if self._token is None:
            raise ValueError("publish credential is empty or was already released")
        try:
            yield self._token
        finally:
            self.clear()


@dataclass(frozen=True)
class RunContext:
    repository: str = ""
    commit: str = ""
    run_id: str = ""
    branch: str = ""
    pull_request: str | None = None
    service_name: str = "github"


@dataclass(frozen=True)
class PipelineConfig:
    event: RunEvent | None
    toolchain: ToolchainSpec
    workdir: Path
    binary_path: Path
    source_root: Path
    output: Path
    credential: PublishCredential
    context: RunContext
    excludes: tuple[str, ...] = DEFAULT_EXCLUDES
    profile_pattern: str = DEFAULT_PROFILE_PATTERN
    rustflags: str = DEFAULT_RUSTFLAGS
    push_branches: tuple[str, ...] = ("*",)
    endpoint: str = DEFAULT_COVERALLS_ENDPOINT
    timeout: float = 60.0
    skip_provision: bool = False
    skip_publish: bool = False
