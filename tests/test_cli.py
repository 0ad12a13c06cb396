import json
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from main import app
from utils.ui_helpers import OUTPUT_MODE_ENV

runner = CliRunner()


@pytest.fixture(autouse=True)
def plain_output(monkeypatch):
    monkeypatch.setenv(OUTPUT_MODE_ENV, "plain")


def test_init_db(lib):
    result = runner.invoke(app, ["init-db"])
    assert result.exit_code == 0
    assert "Database initialized at" in result.stdout


def test_stats_plain(lib):
    lib.add_book("Ulysses", "9780199535675", 2)
    result = runner.invoke(app, ["stats"])
    assert result.exit_code == 0
    assert "Total Books: 1" in result.stdout
    assert "Available Copies: 2" in result.stdout


def test_stats_json(lib):
    result = runner.invoke(app, ["--output", "json", "stats"])
    assert result.exit_code == 0
    assert json.loads(result.stdout)["total_books"] == 0


def test_create_admin(lib):
    result = runner.invoke(
        app, ["create-admin", "--name", "Root", "--email", "Root@Example.com", "--password", "secret123"]
    )
    assert result.exit_code == 0
    assert "Admin created: Root <root@example.com>" in result.stdout

    user = lib.find_user_by_email("root@example.com")
    assert user.is_admin
    assert user.verified


def test_create_admin_rejects_short_password(lib):
    result = runner.invoke(app, ["create-admin", "--name", "Root", "--email", "root@example.com", "--password", "123"])
    assert result.exit_code == 1
    assert "Password must be between" in result.stdout
    assert lib.find_user_by_email("root@example.com") is None


def test_send_reminders(lib):
    user = lib.create_user("Reader", "reader@example.com", "hash")
    book = lib.add_book("Ulysses", "9780199535675", 1)
    lib.borrow_book(user.id, book.id, now=datetime.now(timezone.utc) - timedelta(days=20))

    result = runner.invoke(app, ["send-reminders"])
    assert result.exit_code == 0
    assert "Overdue: 1" in result.stdout
    assert "Due Soon: 0" in result.stdout


@patch("subprocess.run")
def test_serve_command(mock_subprocess_run, lib):
    result = runner.invoke(app, ["serve", "--port", "8123"])
    assert result.exit_code == 0
    assert "Starting API on" in result.stdout
    mock_subprocess_run.assert_called_once()
    args = mock_subprocess_run.call_args[0][0]
    assert "uvicorn" in args
    assert "api:app" in args
    assert args[args.index("--port") + 1] == "8123"
