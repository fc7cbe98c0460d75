import importlib

import pytest
import typer
from typer.testing import CliRunner

from helpers.fake_backend import FakeBackend, fast_config
from tamaclient.cli.app import app, parse_fields
from tamaclient.utils.api_client import AsyncPetClient

cli_module = importlib.import_module("tamaclient.cli.app")


runner = CliRunner()


def test_parse_fields_converts_integers():
    assert parse_fields(["target=Manny2", "item_name=Apple", "count=3"]) == {
        "target": "Manny2",
        "item_name": "Apple",
        "count": 3,
    }


def test_parse_fields_keeps_equals_in_values():
    assert parse_fields(["note=a=b"]) == {"note": "a=b"}


@pytest.mark.parametrize("entry", ["target", "=Manny2"])
def test_parse_fields_rejects_malformed_entries(entry):
    with pytest.raises(typer.BadParameter):
        parse_fields([entry])


def test_act_rejects_unknown_transaction(monkeypatch):
    monkeypatch.setattr(cli_module, "load_dotenv", lambda *args, **kwargs: False)
    result = runner.invoke(
        app,
        ["act", "pet-energy", "--email", "email@example.com", "--password", "secret"],
    )
    assert result.exit_code == 2


def test_tick_reports_client_errors(monkeypatch):
    backend = FakeBackend()
    monkeypatch.setattr(cli_module, "load_dotenv", lambda *args, **kwargs: False)
    monkeypatch.setattr(
        cli_module, "make_client", lambda: AsyncPetClient(fast_config(), transport=backend)
    )

    result = runner.invoke(app, ["tick", "--email", "email@example.com", "--password", ""])

    assert result.exit_code == 1
    assert "Error" in result.output


def test_tick_prints_current_tick(monkeypatch):
    backend = FakeBackend()
    backend.set_ticks(42)
    monkeypatch.setattr(cli_module, "load_dotenv", lambda *args, **kwargs: False)
    monkeypatch.setattr(
        cli_module, "make_client", lambda: AsyncPetClient(fast_config(), transport=backend)
    )

    result = runner.invoke(app, ["tick", "--email", "email@example.com", "--password", "secret"])

    assert result.exit_code == 0
    assert "42" in result.output
