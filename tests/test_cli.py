import json

import pytest

from nullivote import cli
from nullivote.storage import Storage


@pytest.fixture
def local_env(monkeypatch, tmp_path):
    monkeypatch.setenv("NULLIVOTE_DATABASE", str(tmp_path / "nullivote.db"))
    monkeypatch.setenv("NULLIVOTE_BLOB_DIR", str(tmp_path / "keys"))
    monkeypatch.setenv("NULLIVOTE_SERVER_URL", "http://server.test")
    return tmp_path


def test_derive_key(capsys, local_env):
    assert cli.main(["derive-key", "--voter-id", "alice", "--master-key", "00ff"]) == 0
    first = json.loads(capsys.readouterr().out)
    assert len(first["publicKey"]) == 2
    assert first["signal"].startswith("0x")
    assert "secretScalar" not in first

    assert cli.main(["derive-key", "--voter-id", "alice", "--master-key", "00ff", "--show-secret"]) == 0
    second = json.loads(capsys.readouterr().out)
    assert second["publicKey"] == first["publicKey"]
    assert int(second["secretScalar"]) > 0


def test_derive_key_rejects_short_secret(local_env):
    assert cli.main(["derive-key", "--secret", "abcd"]) == 2
    assert cli.main(["derive-key"]) == 2


def test_setup_publishes_artifact(capsys, local_env):
    assert cli.main(["setup", "--name", "initial", "--created-by", "admin"]) == 0
    out = json.loads(capsys.readouterr().out)
    assert out["isActive"] is True
    assert (local_env / "keys" / out["provingKeyRef"]).exists()

    storage = Storage(str(local_env / "nullivote.db"))
    try:
        assert storage.active_trusted_setup().proving_key_hash == out["provingKeyHash"]
    finally:
        storage.close()


class _FakeResponse:
    def __init__(self, payload, ok=True):
        self._payload = payload
        self.ok = ok

    def json(self):
        return self._payload


def test_tally_and_results_call_server(monkeypatch, capsys, local_env):
    calls = []

    def fake_post(url, json=None, timeout=None):
        calls.append(("POST", url, json))
        return _FakeResponse({"adjustedTotals": {"A": 1}})

    def fake_get(url, timeout=None):
        calls.append(("GET", url, None))
        return _FakeResponse({"error": "TallyError"}, ok=False)

    monkeypatch.setattr(cli.requests, "post", fake_post)
    monkeypatch.setattr(cli.requests, "get", fake_get)

    assert cli.main(["tally", "--election", "e1", "--authority-sk", "42", "--processed-by", "admin"]) == 0
    assert cli.main(["results", "--election", "e1"]) == 1
    assert calls[0] == (
        "POST",
        "http://server.test/elections/e1/tally",
        {"authoritySecretKey": "42", "processedBy": "admin"},
    )
    assert calls[1][:2] == ("GET", "http://server.test/elections/e1/tally")
    assert "adjustedTotals" in capsys.readouterr().out


def test_no_command_prints_help(capsys, local_env):
    assert cli.main([]) == 2
    assert "usage" in capsys.readouterr().out
