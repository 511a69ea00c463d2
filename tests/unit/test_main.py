import pytest

from app.main import run


@pytest.mark.unit
def test_cli_returns_non_zero_for_invalid_role(capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = run(["--role", "worker-normalize", "--dry-run-startup"])
    captured = capsys.readouterr()

    assert exit_code == 2
    assert "ERROR:" in captured.err
    assert "worker-dead-letter" in captured.err


@pytest.mark.unit
@pytest.mark.parametrize("role", ["api", "worker-key-events", "worker-dead-letter"])
def test_cli_dry_run_succeeds_for_valid_role(role: str) -> None:
    assert run(["--role", role, "--dry-run-startup"]) == 0
