"""Runtime configuration.

Every setting can be overridden with a ``NULLIVOTE_*`` environment variable;
the defaults are suitable for local development and tests.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

PROOF_BACKENDS = ("sigma", "mock")
NULLIFICATION_RULES = ("any", "parity")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_LEVEL = "INFO"


def _env_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {raw!r}") from None


@dataclass(frozen=True)
class Settings:
    """Settings shared by the server, the CLI and the tally engine

    Attributes
    - proof_backend: "sigma" (real proofs, needs a trusted setup) or "mock"
    - database_path: SQLite file, or ":memory:"
    - blob_dir: directory holding proving-key blobs
    - discrete_log_max: largest per-voter nullification count the tally can decrypt
    - k_anonymity: batch size for k-anonymous nullification submissions
    - nullification_rule: "any" (count > 0) or "parity" (count is odd)
    - proof_workers: process count for batch proving (1 = in-process)
    """

    proof_backend: str = "sigma"
    database_path: str = "nullivote.db"
    blob_dir: str = "trusted-setups"
    discrete_log_max: int = 100
    k_anonymity: int = 6
    nullification_rule: str = "any"
    proof_workers: int = 1
    log_level: str = LOG_LEVEL
    log_format: str = LOG_FORMAT
    server_host: str = "127.0.0.1"
    server_port: int = 5000
    server_url: str = "http://127.0.0.1:5000"

    def __post_init__(self):
        if self.proof_backend not in PROOF_BACKENDS:
            raise ValueError(f"unknown proof backend {self.proof_backend!r}")
        if self.nullification_rule not in NULLIFICATION_RULES:
            raise ValueError(f"unknown nullification rule {self.nullification_rule!r}")
        if self.discrete_log_max < 1:
            raise ValueError("discrete_log_max must be positive")
        if self.k_anonymity < 1:
            raise ValueError("k_anonymity must be positive")
        if self.proof_workers < 1:
            raise ValueError("proof_workers must be positive")

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        if env is None:
            env = os.environ
        defaults = cls()
        return cls(
            proof_backend=env.get("NULLIVOTE_PROOF_BACKEND", defaults.proof_backend),
            database_path=env.get("NULLIVOTE_DATABASE", defaults.database_path),
            blob_dir=env.get("NULLIVOTE_BLOB_DIR", defaults.blob_dir),
            discrete_log_max=_env_int(env, "NULLIVOTE_DLOG_MAX", defaults.discrete_log_max),
            k_anonymity=_env_int(env, "NULLIVOTE_K_ANONYMITY", defaults.k_anonymity),
            nullification_rule=env.get("NULLIVOTE_NULLIFICATION_RULE", defaults.nullification_rule),
            proof_workers=_env_int(env, "NULLIVOTE_PROOF_WORKERS", defaults.proof_workers),
            log_level=env.get("NULLIVOTE_LOG_LEVEL", defaults.log_level),
            log_format=env.get("NULLIVOTE_LOG_FORMAT", defaults.log_format),
            server_host=env.get("NULLIVOTE_HOST", defaults.server_host),
            server_port=_env_int(env, "NULLIVOTE_PORT", defaults.server_port),
            server_url=env.get("NULLIVOTE_SERVER_URL", defaults.server_url),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Settings safe to expose (no secrets are held here)"""

        return {
            "proof_backend": self.proof_backend,
            "database_path": self.database_path,
            "blob_dir": self.blob_dir,
            "discrete_log_max": self.discrete_log_max,
            "k_anonymity": self.k_anonymity,
            "nullification_rule": self.nullification_rule,
            "proof_workers": self.proof_workers,
        }
