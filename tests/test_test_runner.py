from __future__ import annotations

import shlex
import sys
from pathlib import Path

from tcr.tools.test_runner import EMPTY_SUCCESS_OUTPUT, run_test_command, shell_argv

PYTHON = shlex.quote(sys.executable)


def _python(code: str) -> str:
    return f"{PYTHON} -c {shlex.quote(code)}"


def test_shell_argv_wraps_command() -> None:
    argv = shell_argv("pytest -q")

    assert argv[-1] == "pytest -q"
    assert len(argv) == 3


def test_zero_exit_is_pass_with_stdout(tmp_path: Path) -> None:
    result = run_test_command(_python("print('3 passed')"), cwd=tmp_path)

    assert result.ok
    assert result.status == "PASS"
    assert result.exit_code == 0
    assert result.output.strip() == "3 passed"


def test_pass_falls_back_to_stderr_then_placeholder(tmp_path: Path) -> None:
    noisy = run_test_command(_python("import sys; sys.stderr.write('warn only')"), cwd=tmp_path)
    silent = run_test_command(_python("pass"), cwd=tmp_path)

    assert noisy.ok and noisy.output == "warn only"
    assert silent.ok and silent.output == EMPTY_SUCCESS_OUTPUT


def test_nonzero_exit_is_fail_with_both_streams(tmp_path: Path) -> None:
    code = "import sys; print('collected 1'); sys.stderr.write('AssertionError'); sys.exit(1)"

    result = run_test_command(_python(code), cwd=tmp_path)

    assert not result.ok
    assert result.status == "FAIL"
    assert result.exit_code == 1
    assert "collected 1" in result.output
    assert "AssertionError" in result.output


def test_undecodable_output_is_replaced_not_raised(tmp_path: Path) -> None:
    result = run_test_command("printf '\\377\\376bad'; exit 1", cwd=tmp_path)

    assert result.status == "FAIL"
    assert result.exit_code == 1
    assert "bad" in result.output
    assert "\ufffd" in result.output


def test_runs_in_requested_directory(tmp_path: Path) -> None:
    (tmp_path / "marker.txt").write_text("here", encoding="utf-8")

    result = run_test_command("test -f marker.txt", cwd=tmp_path)

    assert result.ok


def test_timeout_is_reported_as_failure(tmp_path: Path) -> None:
    result = run_test_command(_python("import time; time.sleep(10)"), cwd=tmp_path, timeout=0.5)

    assert result.status == "FAIL"
    assert result.exit_code is None
    assert "timed out" in result.output


def test_launch_failure_is_reported_as_failure(tmp_path: Path) -> None:
    result = run_test_command("ignored", cwd=tmp_path, argv=[str(tmp_path / "no-such-binary")])

    assert result.status == "FAIL"
    assert result.exit_code is None
    assert result.output
