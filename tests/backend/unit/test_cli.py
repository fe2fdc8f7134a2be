import json

from agilevibe import cli
from agilevibe.backend.migrate import SCHEMA_PATH

ENV_KEYS = ["AGILEVIBE_DATABASE_URL", "AGILEVIBE_ROOM_ID", "AGILEVIBE_IDENTITY_PATH"]


def _isolate(monkeypatch) -> None:
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr(cli, "configure_logging", lambda level: None)


def test_parse_args_watch_defaults_to_observer() -> None:
    args = cli.parse_args(["--room", "sprint-1", "watch", "--name", "Ana"])

    assert args.command == "watch"
    assert args.room == "sprint-1"
    assert args.name == "Ana"
    assert args.role == "observer"
    assert args.team is None


def test_status_prints_room_summary_for_single_user_mode(monkeypatch, capsys) -> None:
    _isolate(monkeypatch)

    exit_code = cli.main(["--room", "sprint-1", "status"])

    summary = json.loads(capsys.readouterr().out)
    assert exit_code == 0
    assert summary["roomId"] == "sprint-1"
    assert summary["online"] is True
    assert summary["view"] == "LANDING"
    assert summary["task"]["title"] == "New Story"
    assert summary["participants"] == []


def test_migrate_requires_database_url(monkeypatch, capsys) -> None:
    _isolate(monkeypatch)

    exit_code = cli.main(["migrate"])

    assert exit_code == 1
    assert "AGILEVIBE_DATABASE_URL" in capsys.readouterr().err


def test_schema_defines_replica_entries_table() -> None:
    schema = SCHEMA_PATH.read_text(encoding="utf-8")

    assert "CREATE TABLE IF NOT EXISTS replica_entries" in schema
