"""Summary: Tests for the command-line interface.

Importance: Ensures local household setup works end to end without the API.
Alternatives: Test only the underlying services.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from familysync.cli import build_parser, run_cli


@pytest.fixture
def cli_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    db_path = tmp_path / "cli.db"
    monkeypatch.setenv("FAMILYSYNC_DB_PATH", str(db_path))
    return db_path


def test_parser_requires_command() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_members_and_license(cli_env: Path, capsys: pytest.CaptureFixture[str]) -> None:
    run_cli(["add-member", "Mia", "--color", "#ff00ff"])
    run_cli(["list-members"])
    run_cli(["activate-license"])
    output = capsys.readouterr().out
    assert "Added member" in output
    assert "Mia #ff00ff (no accounts)" in output
    assert "License valid until" in output


def test_sync_without_accounts(cli_env: Path, capsys: pytest.CaptureFixture[str]) -> None:
    run_cli(["sync"])
    assert "Synced 0 calendars, 0 events." in capsys.readouterr().out


def test_register_display_and_api_key(cli_env: Path, capsys: pytest.CaptureFixture[str]) -> None:
    run_cli(["register-display", "Kitchen", "--display-id", "kitchen"])
    run_cli(["create-api-key", "--label", "wall"])
    output = capsys.readouterr().out
    assert "Registered display kitchen" in output
    assert "API key 1:" in output
