from __future__ import annotations

from pathlib import Path

from .models import BranchHit, FileCoverage
from .path_filter import is_excluded, normalize_coverage_path, relative_to_root


class LcovRecordBuilder:
    """Accumulates one SF record; repeated records for the same SF merge into it."""

    def __init__(self, source_file: str) -> None:
        self.source_file = source_file
        self.lines: dict[int, int] = {}
        self.branches: dict[tuple[int, int, int], int | None] = {}
        self.function_lines: dict[str, int] = {}
        self.function_hits: dict[str, int] = {}

    def add_line(self, line_no: int, hits: int) -> None:
        self.lines[line_no] = self.lines.get(line_no, 0) + hits

    def add_branch(self, key: tuple[int, int, int], hits: int | None) -> None:
        previous = self.branches.get(key)
        if previous is None:
            self.branches[key] = hits
        elif hits is not None:
            self.branches[key] = previous + hits

    def add_function(self, name: str, line_no: int) -> None:
        self.function_lines.setdefault(name, line_no)

    def add_function_hits(self, name: str, hits: int) -> None:
        self.function_hits[name] = self.function_hits.get(name, 0) + hits

    def build(self) -> FileCoverage:
        names = set(self.function_lines) | set(self.function_hits)
        return FileCoverage(
            source_file=self.source_file,
            lines=dict(sorted(self.lines.items())),
            branches=tuple(
                BranchHit(line=line, block=block, branch=branch, hits=hits)
                for (line, block, branch), hits in sorted(self.branches.items())
            ),
            functions={
                name: (self.function_lines.get(name, 0), self.function_hits.get(name, 0))
                for name in sorted(names)
            },
        )


def parse_int_fields(payload: str, count: int) -> list[str] | None:
    parts = payload.strip().split(",", count - 1)
    if len(parts) != count:
        return None
    return parts


def parse_lcov(text: str) -> list[FileCoverage]:
    """Parse LCOV tracefile text, merging duplicate SF records."""
    builders: dict[str, LcovRecordBuilder] = {}
    current: LcovRecordBuilder | None = None

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if line.startswith("SF:"):
            source_file = normalize_coverage_path(line[3:])
            current = builders.setdefault(source_file, LcovRecordBuilder(source_file))
            continue
        if line == "end_of_record":
            current = None
            continue
        if current is None:
            continue

        # Malformed numeric payloads are skipped, the same way summary lines are.
        try:
            if line.startswith("DA:"):
                parts = line[3:].split(",")
                if len(parts) >= 2:
                    current.add_line(int(parts[0]), int(parts[1]))
            elif line.startswith("BRDA:"):
                parts = parse_int_fields(line[5:], 4)
                if parts is not None:
                    taken = None if parts[3] == "-" else int(parts[3])
                    current.add_branch((int(parts[0]), int(parts[1]), int(parts[2])), taken)
            elif line.startswith("FN:"):
                parts = line[3:].split(",", 1)
                if len(parts) == 2:
                    current.add_function(parts[1], int(parts[0]))
            elif line.startswith("FNDA:"):
                parts = line[5:].split(",", 1)
                if len(parts) == 2:
                    current.add_function_hits(parts[1], int(parts[0]))
        except ValueError:
            continue
        # TN, LF/LH, BRF/BRH and FNF/FNH are recomputed on write.

    return [builders[key].build() for key in sorted(builders)]


def format_record(record: FileCoverage) -> str:
    output: list[str] = [f"SF:{record.source_file}\n"]

    functions = sorted(record.functions.items(), key=lambda item: (item[1][0], item[0]))
    for name, (line_no, _hits) in functions:
        output.append(f"FN:{line_no},{name}\n")
    for name, (_line_no, hits) in functions:
        output.append(f"FNDA:{hits},{name}\n")
    output.append(f"FNF:{len(functions)}\n")
    output.append(f"FNH:{sum(1 for _name, (_line, hits) in functions if hits > 0)}\n")

    for branch in record.branches:
        taken = "-" if branch.hits is None else str(branch.hits)
        output.append(f"BRDA:{branch.line},{branch.block},{branch.branch},{taken}\n")
    output.append(f"BRF:{record.branches_found}\n")
    output.append(f"BRH:{record.branches_hit}\n")

    for line_no, hits in record.lines.items():
        output.append(f"DA:{line_no},{hits}\n")
    output.append(f"LF:{record.lines_found}\n")
    output.append(f"LH:{record.lines_hit}\n")
    output.append("end_of_record\n")
    return "".join(output)


def format_lcov(records: list[FileCoverage]) -> str:
    return "".join(format_record(record) for record in records)


def read_lcov(info_file: Path) -> list[FileCoverage]:
    return parse_lcov(info_file.read_text(encoding="utf-8"))


def canonicalize_lcov_file(
    info_file: Path,
    source_root: Path,
    excluded_patterns: tuple[str, ...],
) -> tuple[list[FileCoverage], list[str]]:
    """
    Rewrite an LCOV file into canonical form and drop excluded SF records.

    SF paths under source_root become relative, records are sorted by SF and
    every entry list is sorted, so the same input always yields the same bytes.
    Returns the kept records and the excluded SF paths.
    """
    relocated = [
        FileCoverage(
            source_file=relative_to_root(record.source_file, source_root),
            lines=record.lines,
            branches=record.branches,
            functions=record.functions,
        )
        for record in read_lcov(info_file)
    ]
    # Re-parse so records that collapse onto the same relative SF are merged.
    merged = parse_lcov(format_lcov(relocated))

    kept: list[FileCoverage] = []
    removed: list[str] = []
    for record in merged:
        if is_excluded(record.source_file, excluded_patterns):
            removed.append(record.source_file)
        else:
            kept.append(record)

    info_file.write_text(format_lcov(kept), encoding="utf-8")
    return kept, removed
