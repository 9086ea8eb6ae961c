import pytest

from nullivote import curve, elgamal
from nullivote.models import Participant
from nullivote.nullification import create_nullification, generate_k_anonymous_nullifications

from conftest import voter_keypair


def _participants(n):
    ids = [f"voter{i}@example.org" for i in range(n)]
    return [Participant(v, voter_keypair(v).public_point) for v in ids]


def _decrypted_sum(authority, records):
    total = elgamal.combine_all(r.ciphertext for r in records)
    return elgamal.decrypt_to_point(authority.secret_scalar, total)


def test_create_nullification(sigma, context, authority, alice):
    record = create_nullification("e1", "alice", alice, authority.public_point, 1, sigma, context)
    assert record.election_id == "e1" and record.voter_id == "alice"
    assert sigma.verify(record.ciphertext, alice.public_point, authority.public_point, record.proof, context)
    assert _decrypted_sum(authority, [record]) == curve.base_point()


def test_record_serialization(mock, authority, alice):
    record = create_nullification("e1", "alice", alice, authority.public_point, 0, mock, None)
    data = record.to_dict()
    assert set(data) == {"electionId", "voterId", "ciphertext", "proof", "createdAt"}
    assert type(record).from_dict(data) == record


@pytest.mark.parametrize("is_real, expected", [(True, 1), (False, 0)])
def test_k_anonymous_batch(mock, authority, is_real, expected):
    participants = _participants(8)
    me = participants[3]
    keypair = voter_keypair(me.voter_id)

    records = generate_k_anonymous_nullifications(
        "e1", me.voter_id, keypair, authority.public_point, participants, is_real, mock, None, k=6
    )
    assert len(records) == 6
    targets = [r.voter_id for r in records]
    assert me.voter_id in targets
    assert len(set(targets)) == 6

    keys_by_id = {p.voter_id: p.public_key for p in participants}
    for r in records:
        assert mock.verify(r.ciphertext, keys_by_id[r.voter_id], authority.public_point, r.proof)
    # no two slots share a blinding scalar
    assert len({r.ciphertext.c1 for r in records}) == 6
    assert _decrypted_sum(authority, records) == curve.scalar_mul(expected, curve.base_point())


def test_k_anonymous_batch_with_sigma(sigma, context, authority):
    participants = _participants(3)
    me = participants[0]
    records = generate_k_anonymous_nullifications(
        "e1", me.voter_id, voter_keypair(me.voter_id), authority.public_point, participants, True, sigma, context, k=2
    )
    assert len(records) == 2
    keys_by_id = {p.voter_id: p.public_key for p in participants}
    for r in records:
        assert sigma.verify(r.ciphertext, keys_by_id[r.voter_id], authority.public_point, r.proof, context)


def test_batch_is_capped_by_participant_count(mock, authority):
    participants = _participants(3)
    me = participants[1]
    records = generate_k_anonymous_nullifications(
        "e1", me.voter_id, voter_keypair(me.voter_id), authority.public_point, participants, False, mock, None, k=6
    )
    assert sorted(r.voter_id for r in records) == sorted(p.voter_id for p in participants)


def test_batch_requires_participant(mock, authority, alice):
    with pytest.raises(ValueError):
        generate_k_anonymous_nullifications(
            "e1", "outsider", alice, authority.public_point, _participants(3), True, mock, None
        )
