from __future__ import annotations

import hashlib
import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import httpx
import pytest

from cargo_coverage_to_coveralls.errors import PublishError
from cargo_coverage_to_coveralls.models import (
    BranchHit,
    CoverageReport,
    FileCoverage,
    PublishCredential,
    RunContext,
)
from cargo_coverage_to_coveralls.publish import (
    build_job_payload,
    line_coverage_array,
    publish_report,
)

ENDPOINT = "https://coveralls.example/api/v1/jobs"
SOURCE = "pub fn add(a: i32) -> i32 {\n    if a > 0 {\n        a\n    } else {\n        0\n    }\n}\n"


@pytest.fixture
def report(tmp_path: Path) -> CoverageReport:
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "lib.rs").write_text(SOURCE, encoding="utf-8")
    record = FileCoverage(
        source_file="src/lib.rs",
        lines={1: 3, 2: 3, 3: 3, 5: 0},
        branches=(BranchHit(2, 0, 0, 3), BranchHit(2, 0, 1, None)),
    )
    return CoverageReport(path=tmp_path / "lcov.info", records=(record,))


@pytest.fixture
def context() -> RunContext:
    return RunContext(
        repository="octo/rust_blockchain",
        commit="abc123",
        run_id="42",
        branch="feature/x",
        pull_request="7",
    )


def coveralls_response(status_code: int, body: dict) -> httpx.Response:
    return httpx.Response(status_code, json=body, request=httpx.Request("POST", ENDPOINT))


def ok_response(body: dict | None = None) -> httpx.Response:
    return coveralls_response(200, body or {"url": "https://coveralls.example/jobs/1"})


def sent_payload(mock_post: MagicMock) -> dict:
    _name, content, _content_type = mock_post.call_args.kwargs["files"]["json_file"]
    return json.loads(content)


def test_line_coverage_array_pads_to_source_length() -> None:
    record = FileCoverage(source_file="a.rs", lines={2: 1, 4: 0})

    assert line_coverage_array(record, line_count=5) == [None, 1, None, 0, None]
    assert line_coverage_array(record) == [None, 1, None, 0]


def test_job_payload_carries_run_identity(report: CoverageReport, context: RunContext, tmp_path: Path) -> None:
    payload = build_job_payload(report, "token", context, tmp_path)

    assert payload["repo_token"] == "token"
    assert payload["repo_name"] == "octo/rust_blockchain"
    assert payload["service_name"] == "github"
    assert payload["service_job_id"] == "42"
    assert payload["service_pull_request"] == "7"
    assert payload["git"] == {"head": {"id": "abc123"}, "branch": "feature/x"}
    (source_file,) = payload["source_files"]
    assert source_file["name"] == "src/lib.rs"
    assert source_file["source_digest"] == hashlib.md5(SOURCE.encode()).hexdigest()
    assert source_file["coverage"] == [3, 3, 3, None, 0, None, None]
    assert source_file["branches"] == [2, 0, 0, 3, 2, 0, 1, 0]


@patch("cargo_coverage_to_coveralls.publish.httpx.post")
def test_publish_posts_once_and_releases_token(
    mock_post: MagicMock, report: CoverageReport, context: RunContext, tmp_path: Path
) -> None:
    mock_post.return_value = ok_response()
    credential = PublishCredential("secret-token")

    url = publish_report(report, credential, context, tmp_path, ENDPOINT, timeout=5.0)

    assert url == "https://coveralls.example/jobs/1"
    mock_post.assert_called_once()
    assert mock_post.call_args.args == (ENDPOINT,)
    assert mock_post.call_args.kwargs["timeout"] == 5.0
    assert sent_payload(mock_post)["repo_token"] == "secret-token"
    assert not credential.is_set


@patch("cargo_coverage_to_coveralls.publish.httpx.post")
def test_transport_error_fails_without_retry(
    mock_post: MagicMock, report: CoverageReport, context: RunContext, tmp_path: Path
) -> None:
    mock_post.side_effect = httpx.ConnectError("connection refused")

    with pytest.raises(PublishError, match="connection refused"):
        publish_report(report, PublishCredential("secret-token"), context, tmp_path, ENDPOINT)

    assert mock_post.call_count == 1


@patch("cargo_coverage_to_coveralls.publish.httpx.post")
def test_authentication_failure(
    mock_post: MagicMock, report: CoverageReport, context: RunContext, tmp_path: Path
) -> None:
    mock_post.return_value = coveralls_response(
        422, {"message": "Couldn't find a repository matching this job.", "error": True}
    )

    with pytest.raises(PublishError, match="HTTP 422: Couldn't find a repository"):
        publish_report(report, PublishCredential("bad"), context, tmp_path, ENDPOINT)


@patch("cargo_coverage_to_coveralls.publish.httpx.post")
def test_error_flag_in_success_body(
    mock_post: MagicMock, report: CoverageReport, context: RunContext, tmp_path: Path
) -> None:
    mock_post.return_value = ok_response({"error": True, "message": "Build processing error."})

    with pytest.raises(PublishError, match="Build processing error"):
        publish_report(report, PublishCredential("token"), context, tmp_path, ENDPOINT)


@patch("cargo_coverage_to_coveralls.publish.httpx.post")
def test_missing_token_never_calls_service(
    mock_post: MagicMock, report: CoverageReport, context: RunContext, tmp_path: Path
) -> None:
    with pytest.raises(PublishError, match="No publish token"):
        publish_report(report, PublishCredential(None), context, tmp_path, ENDPOINT)

    mock_post.assert_not_called()


def test_credential_is_redacted() -> None:
    credential = PublishCredential("secret-token")

    assert "secret-token" not in repr(credential)
    assert "secret-token" not in str(credential)


def test_credential_is_single_use() -> None:
    credential = PublishCredential("secret-token")

    with credential.scoped() as token:
        assert token == "secret-token"

    with pytest.raises(ValueError):
        with credential.scoped():
            pass


@patch("cargo_coverage_to_coveralls.publish.httpx.post")
def test_redirect_is_not_a_successful_upload(
    mock_post: MagicMock, report: CoverageReport, context: RunContext, tmp_path: Path
) -> None:
    mock_post.return_value = httpx.Response(
        302,
        headers={"location": "https://coveralls.example/login"},
        request=httpx.Request("POST", ENDPOINT),
    )

    with pytest.raises(PublishError, match="HTTP 302"):
        publish_report(report, PublishCredential("token"), context, tmp_path, ENDPOINT)

    assert mock_post.call_count == 1
