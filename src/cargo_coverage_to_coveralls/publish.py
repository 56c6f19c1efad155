from __future__ import annotations

import hashlib
import json
from pathlib import Path

import httpx

from .command_utils import log
from .errors import PublishError
from .models import CoverageReport, FileCoverage, PublishCredential, RunContext


def source_digest(source_root: Path, source_file: str) -> str | None:
    path = Path(source_file)
    if not path.is_absolute():
        path = source_root / path
    try:
        return hashlib.md5(path.read_bytes()).hexdigest()
    except OSError:
        return None


def line_coverage_array(record: FileCoverage, line_count: int = 0) -> list[int | None]:
    """Coveralls wants one slot per source line; None marks non-relevant lines."""
    size = max([line_count, *record.lines.keys()])
    coverage: list[int | None] = [None] * size
    for line_no, hits in record.lines.items():
        if line_no >= 1:
            coverage[line_no - 1] = hits
    return coverage


def branch_coverage_array(record: FileCoverage) -> list[int]:
    flat: list[int] = []
    for branch in record.branches:
        flat.extend([branch.line, branch.block, branch.branch, branch.hits or 0])
    return flat


def count_source_lines(source_root: Path, source_file: str) -> int:
    path = Path(source_file)
    if not path.is_absolute():
        path = source_root / path
    try:
        return len(path.read_text(encoding="utf-8", errors="replace").splitlines())
    except OSError:
        return 0


def build_source_files(report: CoverageReport, source_root: Path) -> list[dict[str, object]]:
    source_files: list[dict[str, object]] = []
    for record in report.records:
        entry: dict[str, object] = {
            "name": record.source_file,
            "coverage": line_coverage_array(
                record, count_source_lines(source_root, record.source_file)
            ),
        }
        digest = source_digest(source_root, record.source_file)
        if digest is not None:
            entry["source_digest"] = digest
        if record.branches:
            entry["branches"] = branch_coverage_array(record)
        source_files.append(entry)
    return source_files


def build_job_payload(
    report: CoverageReport,
    token: str,
    context: RunContext,
    source_root: Path,
) -> dict[str, object]:
    payload: dict[str, object] = {
        "repo_token": token,
        "service_name": context.service_name,
        "source_files": build_source_files(report, source_root),
    }
    if context.repository:
        payload["repo_name"] = context.repository
    if context.run_id:
        payload["service_job_id"] = context.run_id
        payload["service_number"] = context.run_id
    if context.pull_request:
        payload["service_pull_request"] = context.pull_request
    if context.commit or context.branch:
        payload["git"] = {"head": {"id": context.commit}, "branch": context.branch}
    return payload


def describe_response_error(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text.strip()[:200]
    if isinstance(body, dict):
        return str(body.get("message", body))
    return str(body)


def publish_report(
    report: CoverageReport,
    credential: PublishCredential,
    context: RunContext,
    source_root: Path,
    endpoint: str,
    timeout: float = 60.0,
) -> str:
    """
    Upload the report as one Coveralls job. Exactly one attempt is made.

    Returns the job URL reported by the service (may be empty).
    """
    if not credential.is_set:
        raise PublishError("No publish token provided (COVERALLS_REPO_TOKEN or GITHUB_TOKEN)")

    with credential.scoped() as token:
        payload = build_job_payload(report, token, context, source_root)
        body = json.dumps(payload, sort_keys=True).encode("utf-8")
        try:
            response = httpx.post(
                endpoint,
                files={"json_file": ("coveralls.json", body, "application/json")},
                timeout=timeout,
            )
        except httpx.HTTPError as exc:
            raise PublishError(f"Upload to {endpoint} failed: {exc}") from exc

    if not response.is_success:
        raise PublishError(
            f"Upload to {endpoint} rejected with HTTP {response.status_code}: "
            f"{describe_response_error(response)}"
        )

    try:
        result = response.json()
    except ValueError:
        result = {}
    if isinstance(result, dict) and result.get("error"):
        raise PublishError(f"Upload to {endpoint} rejected: {result.get('message', 'unknown error')}")

    url = str(result.get("url", "")) if isinstance(result, dict) else ""
    log(f"      published {len(report.records)} file(s) to {url or endpoint}")
    return url
