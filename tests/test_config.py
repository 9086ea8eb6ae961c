import pytest

from nullivote.config import Settings


def test_defaults():
    s = Settings()
    assert s.proof_backend == "sigma"
    assert s.discrete_log_max == 100
    assert s.k_anonymity == 6
    assert s.nullification_rule == "any"


def test_from_env():
    s = Settings.from_env(
        {
            "NULLIVOTE_PROOF_BACKEND": "mock",
            "NULLIVOTE_DLOG_MAX": "250",
            "NULLIVOTE_NULLIFICATION_RULE": "parity",
            "NULLIVOTE_PROOF_WORKERS": "4",
            "NULLIVOTE_PORT": "",
        }
    )
    assert s.proof_backend == "mock"
    assert s.discrete_log_max == 250
    assert s.nullification_rule == "parity"
    assert s.proof_workers == 4
    assert s.server_port == 5000
    assert s.to_dict()["proof_backend"] == "mock"


@pytest.mark.parametrize(
    "env",
    [
        {"NULLIVOTE_PROOF_BACKEND": "groth16"},
        {"NULLIVOTE_NULLIFICATION_RULE": "majority"},
        {"NULLIVOTE_DLOG_MAX": "many"},
        {"NULLIVOTE_K_ANONYMITY": "0"},
    ],
)
def test_invalid_settings(env):
    with pytest.raises(ValueError):
        Settings.from_env(env)
