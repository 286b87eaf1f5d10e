import json

from typer.testing import CliRunner

from team9link import __version__
from team9link.cli.commands import app

runner = CliRunner()


def test_version_flag() -> None:
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_configure_writes_camel_case_account(tmp_path) -> None:
    path = tmp_path / "config.json"

    result = runner.invoke(
        app,
        [
            "configure",
            "--account",
            "opsBot",
            "--base-url",
            "https://team9.example.com/",
            "--token",
            "t9bot_abc",
            "--config",
            str(path),
        ],
    )

    assert result.exit_code == 0, result.stdout
    data = json.loads(path.read_text())
    account = data["team9"]["accounts"]["opsBot"]
    assert account["baseUrl"] == "https://team9.example.com"
    assert account["credentials"]["token"] == "t9bot_abc"


def test_configure_rejects_blank_token(tmp_path) -> None:
    result = runner.invoke(app, ["configure", "--token", "  ", "--config", str(tmp_path / "c.json")])
    assert result.exit_code == 1
    assert not (tmp_path / "c.json").exists()


def test_status_lists_accounts(tmp_path, monkeypatch) -> None:
    monkeypatch.delenv("TEAM9_TOKEN", raising=False)
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"team9": {"baseUrl": "http://team9.local", "credentials": {"token": "t9bot_x"}}}))

    result = runner.invoke(app, ["status", "--config", str(path)])

    assert result.exit_code == 0
    assert "default" in result.stdout
    assert "http://team9.local" in result.stdout


def test_send_without_token_exits_nonzero(tmp_path, monkeypatch) -> None:
    monkeypatch.delenv("TEAM9_TOKEN", raising=False)
    monkeypatch.setenv("HOME", str(tmp_path))

    result = runner.invoke(app, ["send", "c1", "hello", "--config", str(tmp_path / "missing.json")])

    assert result.exit_code == 1
    assert "Send failed" in result.stdout


def test_gateway_rejects_unknown_runtime(tmp_path) -> None:
    result = runner.invoke(
        app,
        ["gateway", "--runtime", "no_such_module_xyz:Runtime", "--config", str(tmp_path / "missing.json")],
    )
    assert result.exit_code == 1
    assert "Could not load runtime" in result.stdout


def test_disable_enable_and_remove_account(tmp_path) -> None:
    path = tmp_path / "config.json"
    runner.invoke(app, ["configure", "--account", "opsBot", "--token", "t9bot_abc", "--config", str(path)])

    result = runner.invoke(app, ["disable", "opsBot", "--config", str(path)])
    assert result.exit_code == 0, result.stdout
    assert json.loads(path.read_text())["team9"]["accounts"]["opsBot"]["enabled"] is False

    result = runner.invoke(app, ["enable", "opsBot", "--config", str(path)])
    assert result.exit_code == 0, result.stdout
    assert json.loads(path.read_text())["team9"]["accounts"]["opsBot"]["enabled"] is True

    result = runner.invoke(app, ["remove", "opsBot", "--config", str(path)])
    assert result.exit_code == 0, result.stdout
    assert "opsBot" not in json.loads(path.read_text())["team9"]["accounts"]


def test_unknown_account_cannot_be_removed(tmp_path) -> None:
    path = tmp_path / "config.json"
    result = runner.invoke(app, ["remove", "ghost", "--config", str(path)])
    assert result.exit_code == 1
    assert "No account named" in result.stdout
    assert not path.exists()
