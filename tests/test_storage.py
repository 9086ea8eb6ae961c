from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from nullivote.errors import (
    AlreadyProcessed,
    ElectionNotFound,
    ElectionStillActive,
    StorageError,
    TallyInProgress,
)
from nullivote.models import ElectionState, Participant, TallyEntry, VoteRecord, utcnow
from nullivote.nullification import create_nullification


def test_election_round_trip(storage, election_factory, authority):
    election = election_factory("e1", [("alice", "A")])
    assert election.authority_public_key == authority.public_point
    assert election.effective_state() is ElectionState.ACTIVE
    with pytest.raises(ElectionNotFound):
        storage.get_election("nope")
    with pytest.raises(StorageError):
        election_factory("e1")


def test_expired_election(election_factory):
    election = election_factory("e1", active=False)
    assert election.status is ElectionState.ACTIVE
    assert election.effective_state() is ElectionState.EXPIRED
    later = datetime.now(timezone.utc) - timedelta(days=2)
    assert election.effective_state(later) is ElectionState.ACTIVE


def test_participants_and_votes(storage, election_factory, alice):
    election_factory("e1", [("alice", "A"), ("bob", "B")])
    assert not storage.register_participant("e1", Participant("alice", alice.public_point))
    assert [p.voter_id for p in storage.list_participants("e1")] == ["alice", "bob"]
    assert storage.list_votes("e1") == [VoteRecord("alice", "A"), VoteRecord("bob", "B")]
    with pytest.raises(StorageError):
        storage.record_vote("e1", VoteRecord("alice", "B"))


def test_nullifications_only_while_active(storage, election_factory, mock, authority, alice):
    election_factory("e1", [("alice", "A")])
    record = create_nullification("e1", "alice", alice, authority.public_point, 1, mock, None)
    storage.add_nullification(record)
    assert storage.list_nullifications("e1") == [record]

    storage.close_election("e1")
    assert storage.get_election("e1").effective_state() is ElectionState.CLOSED_MANUALLY
    with pytest.raises(StorageError):
        storage.add_nullification(record)
    with pytest.raises(StorageError):
        storage.close_election("e1")


def test_tally_state_machine(storage, election_factory):
    election_factory("e1", [("alice", "A")])
    with pytest.raises(ElectionStillActive):
        storage.begin_tally("e1")

    storage.close_election("e1")
    assert storage.begin_tally("e1") is ElectionState.CLOSED_MANUALLY
    with pytest.raises(TallyInProgress):
        storage.begin_tally("e1")

    storage.abort_tally("e1")
    assert storage.get_election("e1").effective_state() is ElectionState.CLOSED_MANUALLY

    storage.begin_tally("e1")
    entry = TallyEntry("e1", "alice", 1, True, utcnow(), "tester")
    storage.commit_tally("e1", [entry])
    assert storage.get_election("e1").status is ElectionState.TALLIED
    assert storage.list_tally_entries("e1") == [entry]
    with pytest.raises(AlreadyProcessed):
        storage.begin_tally("e1")


def test_expired_election_returns_to_expired_after_abort(storage, election_factory):
    election_factory("e1", active=False)
    assert storage.begin_tally("e1") is ElectionState.EXPIRED
    storage.abort_tally("e1")
    assert storage.get_election("e1").effective_state() is ElectionState.EXPIRED


def test_commit_requires_tally_in_progress(storage, election_factory):
    election_factory("e1", active=False)
    with pytest.raises(StorageError):
        storage.commit_tally("e1", [])
    assert storage.list_tally_entries("e1") == []


def test_nullification_batch_is_all_or_nothing(storage, election_factory, mock, authority, alice):
    election_factory("e1", [("alice", "A")])
    election_factory("e2", [("alice", "A")])
    storage.close_election("e2")
    good = create_nullification("e1", "alice", alice, authority.public_point, 1, mock, None)
    late = create_nullification("e2", "alice", alice, authority.public_point, 1, mock, None)

    with pytest.raises(StorageError):
        storage.add_nullifications([good, late])
    assert storage.list_nullifications("e1") == []

    storage.add_nullifications([good, good])
    assert storage.list_nullifications("e1") == [good, good]
    with pytest.raises(ElectionNotFound):
        storage.add_nullifications([good, replace(good, election_id="nope")])

