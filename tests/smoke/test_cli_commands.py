"""
Smoke Tests for CLI Commands.

These tests verify that CLI commands run without errors and produce output.
Commands that need a database are not exercised here.

Usage:
    pytest tests/smoke/test_cli_commands.py -v -m smoke
"""

import subprocess
import sys
from pathlib import Path

import pytest

# Mark all tests in this module as smoke tests
pytestmark = pytest.mark.smoke

# Project root
PROJECT_ROOT = Path(__file__).parent.parent.parent


def run_cli_command(*args: str, timeout: int = 30) -> tuple[int, str, str]:
    """
    Run a CLI command and return exit code, stdout, stderr.

    Args:
        args: Arguments after 'python -m xp_engine.cli'
        timeout: Maximum time to wait
    """
    result = subprocess.run(
        [sys.executable, "-m", "xp_engine.cli", *args],
        cwd=PROJECT_ROOT,
        capture_output=True,
        text=True,
        timeout=timeout,
    )
    return result.returncode, result.stdout, result.stderr


class TestCLIHelp:
    def test_main_help(self):
        code, stdout, stderr = run_cli_command("--help")

        assert code == 0, f"Help failed: {stderr}"
        assert "calculate" in stdout
        assert "retry-check" in stdout

    def test_db_help(self):
        code, stdout, stderr = run_cli_command("db", "--help")

        assert code == 0, f"db help failed: {stderr}"
        assert "init" in stdout
        assert "check" in stdout


class TestCalculate:
    def test_perfect_first_exercise(self):
        code, stdout, stderr = run_cli_command(
            "calculate", "--type", "Exercise", "--base-xp", "100", "--correct", "4", "--total", "4"
        )

        assert code == 0, f"calculate failed: {stderr}"
        assert "125" in stdout

    def test_quiz_below_threshold(self):
        code, stdout, stderr = run_cli_command(
            "calculate", "--type", "Quiz", "--base-xp", "120", "--correct", "1", "--total", "3",
            "--duration", "90",
        )

        assert code == 0, f"calculate failed: {stderr}"
        assert "40" in stdout
        assert "yes" in stdout

    def test_invalid_counts(self):
        code, stdout, _ = run_cli_command(
            "calculate", "--base-xp", "100", "--correct", "5", "--total", "3"
        )

        assert code == 2

    def test_unknown_content_type(self):
        code, stdout, _ = run_cli_command(
            "calculate", "--type", "Podcast", "--base-xp", "100", "--correct", "1", "--total", "1"
        )

        assert code == 2


class TestRetryCheck:
    def test_below_threshold(self):
        code, stdout, stderr = run_cli_command("retry-check", "75", "8")

        assert code == 0, f"retry-check failed: {stderr}"
        assert "Retry required" in stdout

    def test_proficient_learner(self):
        code, stdout, _ = run_cli_command("retry-check", "75", "8", "--proficient")

        assert code == 0
        assert "No retry required" in stdout
