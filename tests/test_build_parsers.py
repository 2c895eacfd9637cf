"""Compiler diagnostics and test-run normalizers."""

from __future__ import annotations

import pytest

from DevProbe.errors import ToolFailedError
from DevProbe.execution.plan import RawResult, Termination
from DevProbe.parsers.build_output import normalize_build, parse_diagnostics
from DevProbe.parsers.common import complete_lines
from DevProbe.parsers.test_output import normalize_tests, parse_test_cases

BUILD_LOG = """\
Building for debugging...
/src/App/Model.swift:12:5: error: cannot find 'foo' in scope
/src/App/Model.swift:12:5: error: cannot find 'foo' in scope
/src/App/View.swift:3:10: warning: variable 'x' was never mutated
/src/App/View.swift:3:10: note: change 'var' to 'let'
ld: symbol(s) not found for architecture arm64
clang: error: linker command failed with exit code 1
"""

XCODEBUILD_FAILED = """\
** BUILD FAILED **

The following build commands failed:
\tCompileSwift normal arm64 /src/App/Model.swift
(1 failure)
"""

TEST_LOG = """\
Test Suite 'All tests' started.
Test Case '-[AppTests.ModelTests testParse]' passed (0.004 seconds).
/src/Tests/ModelTests.swift:40: error: -[AppTests.ModelTests testRender] : XCTAssertEqual failed: ("1") is not equal to ("2")
Test Case '-[AppTests.ModelTests testRender]' failed (0.120 seconds).
Test Case 'ViewTests.testLayout' skipped (0.000 seconds).
✔ Test decodes() passed after 0.008 seconds.
"""


def _raw(stdout: str = "", stderr: str = "", status: int = 0, truncated: bool = False) -> RawResult:
    return RawResult(
        exit_status=status,
        termination=Termination.EXITED,
        stdout=stdout.encode(),
        stderr=stderr.encode(),
        stdout_truncated=truncated,
        duration=1.23456,
    )


def test_diagnostics_are_split_and_deduplicated() -> None:
    errors, warnings = parse_diagnostics(BUILD_LOG.splitlines())
    assert [e.message for e in errors] == [
        "cannot find 'foo' in scope",
        "ld: symbol(s) not found for architecture arm64",
        "linker command failed with exit code 1",
    ]
    assert errors[0].to_dict() == {
        "severity": "error",
        "message": "cannot find 'foo' in scope",
        "file": "/src/App/Model.swift",
        "line": 12,
        "column": 5,
    }
    assert len(warnings) == 1
    assert warnings[0].line == 3


def test_failed_commands_block_becomes_errors() -> None:
    errors, _ = parse_diagnostics(XCODEBUILD_FAILED.splitlines())
    assert [e.message for e in errors] == [
        "Failed: CompileSwift normal arm64 /src/App/Model.swift"
    ]


def test_failed_build_is_a_normal_result() -> None:
    result = normalize_build(_raw(stderr=BUILD_LOG, status=1), {})
    assert result["success"] is False
    assert result["exit_status"] == 1
    assert result["error_count"] == 3
    assert result["warning_count"] == 1
    assert result["duration"] == 1.235
    assert result["truncated"] is False


def test_clean_build_succeeds() -> None:
    result = normalize_build(_raw(stdout="Compiling App\nBuild complete! (3.2s)\n"), {})
    assert result["success"] is True
    assert result["errors"] == []


def test_failed_build_without_diagnostics_is_tool_failure() -> None:
    with pytest.raises(ToolFailedError):
        normalize_build(_raw(stderr="something odd happened", status=1), {})


def test_truncated_build_log_keeps_complete_lines() -> None:
    log = "/src/a.swift:1:1: error: first\n/src/b.swift:2:2: error: sec"
    result = normalize_build(_raw(stdout=log, status=1, truncated=True), {})
    assert result["truncated"] is True
    assert [e["message"] for e in result["errors"]] == ["first"]


def test_cut_stdout_line_is_dropped_when_stderr_is_complete() -> None:
    raw = RawResult(
        exit_status=1,
        termination=Termination.EXITED,
        stdout=b"/a/A.swift:1:1: error: first\n/a/B.swift:2:3: error: cannot find 'fooBarBaz' in sc",
        stderr=b"warning: stderr tail",
        stdout_truncated=True,
    )
    result = normalize_build(raw, {})
    assert result["truncated"] is True
    assert [e["message"] for e in result["errors"]] == ["first"]
    assert [w["message"] for w in result["warnings"]] == ["stderr tail"]


def test_cut_stderr_line_is_dropped_when_stdout_is_complete() -> None:
    raw = RawResult(
        exit_status=1,
        termination=Termination.EXITED,
        stdout=b"warning: from stdout",
        stderr=b"/a/A.swift:1:1: error: kept\n/a/A.swift:9:9: error: half of a mess",
        stderr_truncated=True,
    )
    lines, truncated = complete_lines(raw, stream="combined")
    assert truncated is True
    assert lines == ["warning: from stdout", "/a/A.swift:1:1: error: kept"]


def test_test_cases_in_every_format() -> None:
    cases = parse_test_cases(TEST_LOG.splitlines())
    assert [(c["class_name"], c["name"], c["status"]) for c in cases] == [
        ("AppTests.ModelTests", "testParse", "passed"),
        ("AppTests.ModelTests", "testRender", "failed"),
        ("ViewTests", "testLayout", "skipped"),
        ("SwiftTesting", "decodes", "passed"),
    ]
    failed = cases[1]
    assert failed["failure_location"] == "/src/Tests/ModelTests.swift:40"
    assert failed["failure_message"].startswith("XCTAssertEqual failed")


def test_failing_test_run_summary() -> None:
    result = normalize_tests(_raw(stdout=TEST_LOG, status=1), {})
    assert result["success"] is False
    assert (result["total_tests"], result["passed"], result["failed"], result["skipped"]) == (4, 2, 1, 1)
    assert result["duration"] == 0.132


def test_test_run_that_failed_to_compile_reports_build_errors() -> None:
    log = "/src/Tests/A.swift:4:2: error: missing return\n"
    result = normalize_tests(_raw(stderr=log, status=1), {})
    assert result["total_tests"] == 0
    assert result["build_errors"][0]["message"] == "missing return"


def test_test_run_crash_without_output_is_tool_failure() -> None:
    with pytest.raises(ToolFailedError):
        normalize_tests(_raw(stderr="Segmentation fault", status=139), {})
