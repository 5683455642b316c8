"""Command-line entry point exit codes."""

from __future__ import annotations

from pathlib import Path

import pytest

from deal_monitor import __main__ as cli
from deal_monitor.email.client import MailboxError
from deal_monitor.extraction.pipeline import RunSummary


@pytest.fixture
def env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("EMAIL_USERNAME", "deals@example.com")
    monkeypatch.setenv("EMAIL_PASSWORD", "secret")
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")
    monkeypatch.setattr(cli, "setup_logging", lambda **kwargs: None)
    return monkeypatch


def test_missing_key_exits_2(env, capsys):
    env.delenv("GEMINI_API_KEY")
    env.setattr(cli, "run", lambda *a, **k: pytest.fail("run must not start"))

    assert cli.main([]) == 2
    assert "GEMINI_API_KEY is not set" in capsys.readouterr().err


def test_unknown_timezone_exits_2(env, capsys):
    env.setenv("DISPLAY_TIMEZONE", "Mars/Base")
    env.setattr(cli, "run", lambda *a, **k: pytest.fail("run must not start"))

    assert cli.main([]) == 2
    assert "DISPLAY_TIMEZONE" in capsys.readouterr().err


def test_invalid_thread_override_exits_2(env):
    env.setattr(cli, "run", lambda *a, **k: pytest.fail("run must not start"))

    assert cli.main(["--max-threads", "0"]) == 2


def test_successful_run_exits_0(env):
    calls = []

    def fake_run(config, *, max_threads=None):
        calls.append(max_threads)
        return RunSummary()

    env.setattr(cli, "run", fake_run)

    assert cli.main(["--max-threads", "4"]) == 0
    assert calls == [4]


def test_unreachable_mailbox_exits_1(env):
    def fake_run(config, *, max_threads=None):
        raise MailboxError("Cannot select folder: [Gmail]/All Mail")

    env.setattr(cli, "run", fake_run)

    assert cli.main([]) == 1
