from __future__ import annotations

from pathlib import Path

from cargo_coverage_to_coveralls.lcov import canonicalize_lcov_file, format_lcov, parse_lcov

GRCOV_OUTPUT = """\
TN:
SF:src/lib.rs
FN:1,_RNvCs_5chain3add
FNDA:2,_RNvCs_5chain3add
FNF:1
FNH:1
BRDA:3,0,1,0
BRDA:3,0,0,2
BRF:2
BRH:1
DA:5,2
DA:1,2
DA:3,2
DA:4,0
LF:4
LH:3
end_of_record
SF:tests/fixture.rs
DA:1,1
LF:1
LH:1
end_of_record
"""


def test_parse_lcov_reads_lines_branches_and_functions() -> None:
    records = parse_lcov(GRCOV_OUTPUT)

    assert [record.source_file for record in records] == ["src/lib.rs", "tests/fixture.rs"]
    lib = records[0]
    assert lib.lines == {1: 2, 3: 2, 4: 0, 5: 2}
    assert [(b.line, b.block, b.branch, b.hits) for b in lib.branches] == [(3, 0, 0, 2), (3, 0, 1, 0)]
    assert lib.functions == {"_RNvCs_5chain3add": (1, 2)}
    assert lib.branch_percent == 50.0
    assert lib.line_percent == 75.0


def test_parse_lcov_merges_duplicate_records() -> None:
    text = (
        "SF:src/a.rs\nDA:1,1\nBRDA:2,0,0,-\nend_of_record\n"
        "SF:src/a.rs\nDA:1,2\nDA:2,0\nBRDA:2,0,0,3\nend_of_record\n"
    )

    (record,) = parse_lcov(text)

    assert record.lines == {1: 3, 2: 0}
    assert record.branches[0].hits == 3


def test_unexecuted_branch_block_is_kept_as_dash() -> None:
    (record,) = parse_lcov("SF:src/a.rs\nBRDA:7,0,0,-\nBRDA:7,0,1,-\nend_of_record\n")

    assert record.branches_found == 2
    assert record.branches_hit == 0
    assert "BRDA:7,0,0,-\n" in format_lcov([record])


def test_format_recomputes_summaries_in_sorted_order() -> None:
    formatted = format_lcov(parse_lcov(GRCOV_OUTPUT))

    lib_record = formatted.split("end_of_record\n")[0]
    assert lib_record.splitlines() == [
        "SF:src/lib.rs",
        "FN:1,_RNvCs_5chain3add",
        "FNDA:2,_RNvCs_5chain3add",
        "FNF:1",
        "FNH:1",
        "BRDA:3,0,0,2",
        "BRDA:3,0,1,0",
        "BRF:2",
        "BRH:1",
        "DA:1,2",
        "DA:3,2",
        "DA:4,0",
        "DA:5,2",
        "LF:4",
        "LH:3",
    ]
    assert "TN:" not in formatted


def test_canonicalize_drops_excluded_records(tmp_path: Path) -> None:
    info = tmp_path / "lcov.info"
    info.write_text(GRCOV_OUTPUT, encoding="utf-8")

    kept, removed = canonicalize_lcov_file(info, tmp_path, ("/*", "tests/*"))

    assert [record.source_file for record in kept] == ["src/lib.rs"]
    assert removed == ["tests/fixture.rs"]
    assert "tests/fixture.rs" not in info.read_text(encoding="utf-8")


def test_canonicalize_relativizes_paths_under_source_root(tmp_path: Path) -> None:
    info = tmp_path / "lcov.info"
    root = tmp_path.resolve()
    info.write_text(
        f"SF:{root}/src/main.rs\nDA:1,1\nend_of_record\n"
        "SF:/rustc/abcdef/library/core/src/option.rs\nDA:10,4\nend_of_record\n",
        encoding="utf-8",
    )

    kept, removed = canonicalize_lcov_file(info, tmp_path, ("/*",))

    assert [record.source_file for record in kept] == ["src/main.rs"]
    assert removed == ["/rustc/abcdef/library/core/src/option.rs"]


def test_canonical_form_is_independent_of_input_order(tmp_path: Path) -> None:
    records = GRCOV_OUTPUT.split("end_of_record\n")
    reordered = "end_of_record\n".join([records[1], records[0], records[2]])
    first = tmp_path / "first.info"
    second = tmp_path / "second.info"
    first.write_text(GRCOV_OUTPUT, encoding="utf-8")
    second.write_text(reordered, encoding="utf-8")

    canonicalize_lcov_file(first, tmp_path, ())
    canonicalize_lcov_file(second, tmp_path, ())

    assert first.read_bytes() == second.read_bytes()
