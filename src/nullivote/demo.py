"""Simulated election with nullification, end to end.

Run with ``python -m nullivote.demo`` (add ``--backend mock`` for speed).
Everything lives in memory: keys, storage and the trusted setup.
"""

import argparse
import logging
import secrets
from datetime import timedelta

from . import keys
from .config import Settings
from .curve import ORDER
from .dlog import shared_table
from .models import Election, Participant, VoteRecord, utcnow
from .nullification import generate_k_anonymous_nullifications
from .proofs import make_backend
from .storage import Storage
from .tally import TallyEngine, TallyResult
from .trusted_setup import MemoryBlobStore, TrustedSetupManager, generate_setup

logger = logging.getLogger(__name__)

VOTERS = {
    "alice@example.org": "Alice",
    "bob@example.org": "Bob",
    "carol@example.org": "Alice",
    "dave@example.org": "Bob",
}
# alice revokes her vote; bob only sends dummies
NULLIFIERS = {"alice@example.org": True, "bob@example.org": False}


def _print_heading(msg: str):
    print()
    print(msg)


def _print_kv(key: str, value):
    print(f"  {key}: {value}")


def run(
    backend_name: str = "sigma", k: int = 3, workers: int = 1, election_id: str = "demo"
) -> TallyResult:
    backend = make_backend(backend_name)
    storage = Storage(":memory:")
    try:
        _print_heading("[Step 1] Trusted setup and authority key")
        manager = TrustedSetupManager(storage, MemoryBlobStore())
        context = None
        if backend.requires_setup:
            proving_key, verification_key = generate_setup(1)
            artifact = manager.publish(proving_key, verification_key, name="demo", created_by="demo")
            context = manager.open_context()
            _print_kv("circuit_id", artifact.proving_key_hash[:16] + "..")
        authority = keys.keypair_from_scalar(secrets.randbelow(ORDER - 1) + 1)
        _print_kv("authority_pk", keys.public_key_signal(authority.public_point)[:18] + "..")

        _print_heading("[Step 2] Registration and voting")
        master_key = secrets.token_bytes(32)
        storage.create_election(
            Election(
                id=election_id,
                title="Demo election",
                end_date=utcnow() + timedelta(hours=1),
                authority_public_key=authority.public_point,
            )
        )
        keypairs = {}
        for voter_id, choice in VOTERS.items():
            keypairs[voter_id] = keys.derive_keypair(keys.derive_voter_secret(voter_id, master_key))
            storage.register_participant(election_id, Participant(voter_id, keypairs[voter_id].public_point))
            storage.record_vote(election_id, VoteRecord(voter_id, choice))
            _print_kv(f"voted {voter_id}", choice)

        _print_heading("[Step 3] k-anonymous nullification batches")
        participants = storage.list_participants(election_id)
        for voter_id, is_real in NULLIFIERS.items():
            records = generate_k_anonymous_nullifications(
                election_id,
                voter_id,
                keypairs[voter_id],
                authority.public_point,
                participants,
                is_real,
                backend,
                context,
                k=k,
                workers=workers,
            )
            storage.add_nullifications(records)
            _print_kv(f"batch from {voter_id[:5]}..", f"{len(records)} records")

        _print_heading("[Step 4] Close and tally")
        storage.close_election(election_id)
        engine = TallyEngine(storage, backend, manager, table=shared_table(Settings().discrete_log_max))
        result = engine.run(election_id, authority.secret_scalar, processed_by="demo")
        for entry in result.entries:
            _print_kv(entry.voter_id, f"count={entry.nullification_count} nullified={entry.vote_nullified}")

        _print_heading("[Step 5] Results")
        for choice in sorted(result.raw_totals):
            _print_kv(choice, f"{result.raw_totals[choice]} raw, {result.adjusted_totals[choice]} adjusted")
        return result
    finally:
        storage.close()


def main(argv=None):
    p = argparse.ArgumentParser(description="Run a simulated nullification election")
    p.add_argument("--backend", choices=("sigma", "mock"), default="sigma")
    p.add_argument("-k", type=int, default=None, help="batch size, defaults to NULLIVOTE_K_ANONYMITY")
    args = p.parse_args(argv)
    settings = Settings.from_env()
    logging.basicConfig(format=settings.log_format, level=logging.WARNING)
    k = args.k if args.k is not None else settings.k_anonymity
    return run(args.backend, k, workers=settings.proof_workers)


if __name__ == "__main__":
    main()
