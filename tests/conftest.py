import os
import sys
from datetime import datetime, timedelta, timezone

import pytest


# Ensure repository src directory is on sys.path for tests
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
SRC = os.path.join(ROOT, "src")
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from nullivote import keys  # noqa: E402
from nullivote.models import Election, Participant, VoteRecord  # noqa: E402
from nullivote.proofs import MockProofBackend, SigmaProofBackend  # noqa: E402
from nullivote.storage import Storage  # noqa: E402
from nullivote.trusted_setup import MemoryBlobStore, TrustedSetupManager, generate_setup  # noqa: E402

MASTER_KEY = b"test-master-key"


def voter_keypair(voter_id: str) -> keys.Keypair:
    return keys.derive_keypair(keys.derive_voter_secret(voter_id, MASTER_KEY))


@pytest.fixture
def authority():
    return keys.keypair_from_scalar(123456789123456789)


@pytest.fixture
def alice():
    return voter_keypair("alice@example.org")


@pytest.fixture
def bob():
    return voter_keypair("bob@example.org")


@pytest.fixture
def storage():
    s = Storage(":memory:")
    yield s
    s.close()


@pytest.fixture
def blobs():
    return MemoryBlobStore()


@pytest.fixture
def setup_manager(storage, blobs):
    manager = TrustedSetupManager(storage, blobs)
    proving_key, verification_key = generate_setup(1)
    manager.publish(proving_key, verification_key, name="test", created_by="tests")
    return manager


@pytest.fixture
def context(setup_manager):
    return setup_manager.open_context()


@pytest.fixture
def sigma():
    return SigmaProofBackend()


@pytest.fixture
def mock():
    return MockProofBackend()


@pytest.fixture
def election_factory(storage, authority):
    """Create an election with the given votes; every voter is registered.

    votes: list of (voter_id, choice)
    """

    def make(election_id="e1", votes=(), active=True):
        now = datetime.now(timezone.utc)
        end = now + timedelta(days=1) if active else now - timedelta(minutes=1)
        storage.create_election(
            Election(
                id=election_id,
                title="Test election",
                end_date=end,
                authority_public_key=authority.public_point,
            )
        )
        for voter_id, choice in votes:
            storage.register_participant(
                election_id, Participant(voter_id, voter_keypair(voter_id).public_point)
            )
            storage.record_vote(election_id, VoteRecord(voter_id, choice))
        return storage.get_election(election_id)

    return make
