import logging
from importlib import import_module

import pytest

from conftest import make_credential

# cli re-exports main(), which shadows the submodule attribute
cli_main = import_module("cli.main")


@pytest.fixture
def cli_manager(manager, monkeypatch):
    monkeypatch.setattr(cli_main, "OAuthManager", lambda: manager)
    return manager


def test_status_lists_accounts(cli_manager, store, capsys):
    store.save_credential(make_credential())

    assert cli_main.main(["status"]) == 0
    output = capsys.readouterr().out
    assert "creator" in output
    assert "T1" not in output


def test_accounts_command(cli_manager, store, capsys):
    store.save_credential(make_credential())

    assert cli_main.main(["accounts"]) == 0
    assert "active" in capsys.readouterr().out


def test_disconnect(cli_manager, store):
    store.save_credential(make_credential())

    assert cli_main.main(["disconnect", "tiktok", "u1"]) == 0
    assert store.load_credential("tiktok", "u1") is None


def test_disconnect_unknown_account_fails(cli_manager, capsys):
    assert cli_main.main(["disconnect", "tiktok", "nobody"]) == 1
    assert "no_account" in capsys.readouterr().out


def test_login_prints_connect_url(capsys):
    assert cli_main.main(["login", "instagram", "--no-browser"]) == 0
    assert "/auth/instagram?redirect=true" in capsys.readouterr().out


def test_rejects_unknown_provider():
    with pytest.raises(SystemExit):
        cli_main.main(["login", "myspace"])


def test_logging_setup_quiets_http_client(cli_manager):
    logging.getLogger("httpx").setLevel(logging.NOTSET)

    assert cli_main.main(["status"]) == 0
    assert logging.getLogger("httpx").level == logging.WARNING
