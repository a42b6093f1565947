import importlib

from prm_cli import __main__ as cli_entry


def test_console_module_entrypoint_runs_typer_app(monkeypatch):
    app_module = importlib.import_module("prm_cli.app")
    calls = []
    monkeypatch.setattr(app_module, "app", lambda prog_name: calls.append(prog_name))

    assert cli_entry.run() == 0
    assert cli_entry.main() == 0
    assert calls == ["prm", "prm"]
