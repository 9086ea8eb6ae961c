"""Voter-side construction of nullification records.

A record is Enc(pk_authority, m; r) plus a proof that m is 0, or that m is 1
and the submitter holds the secret key of the slot's public key. Real
(m = 1) and dummy (m = 0) records look the same to everyone except the
authority, who only ever sees per-voter sums.
"""

from __future__ import annotations

import logging
import random
from typing import List, Optional, Sequence

from . import elgamal
from .curve import Point
from .keys import Keypair
from .models import NullificationRecord, Participant, utcnow
from .proofs import ProofBackend, ProofJob, prove_many
from .trusted_setup import ProvingContext

logger = logging.getLogger(__name__)

_rng = random.SystemRandom()


def _blinding_context(election_id: str, voter_id: str) -> bytes:
    return f"{election_id}|{voter_id}".encode("utf-8")


def _job(
    election_id: str,
    keypair: Keypair,
    authority_pk: Point,
    m: int,
    target_id: str,
    target_pk: Point,
) -> ProofJob:
    r = elgamal.derive_blinding_scalar(
        keypair.secret_scalar, keypair.public_point, _blinding_context(election_id, target_id)
    )
    return ProofJob(
        ciphertext=elgamal.encrypt(authority_pk, m, r),
        r=r,
        m=m,
        sk_voter=keypair.secret_scalar,
        pk_voter=target_pk,
        pk_authority=authority_pk,
    )


def create_nullification(
    election_id: str,
    voter_id: str,
    keypair: Keypair,
    authority_pk: Point,
    m: int,
    backend: ProofBackend,
    context: Optional[ProvingContext],
    target_pk: Optional[Point] = None,
) -> NullificationRecord:
    """Encrypt one flag for voter_id's slot and prove it well-formed

    Args
    - keypair: the submitter's keypair; sk proves m = 1 and seeds r
    - m: 1 for a real nullification, 0 for a dummy
    - target_pk: public key registered for voter_id, defaults to the
      submitter's own key

    Returns: NullificationRecord ready for storage
    """

    if target_pk is None:
        target_pk = keypair.public_point
    job = _job(election_id, keypair, authority_pk, m, voter_id, target_pk)
    proof = prove_many(backend, [job], context)[0]
    return NullificationRecord(
        election_id=election_id,
        voter_id=voter_id,
        ciphertext=job.ciphertext,
        proof=proof,
        created_at=utcnow(),
    )


def generate_k_anonymous_nullifications(
    election_id: str,
    voter_id: str,
    keypair: Keypair,
    authority_pk: Point,
    participants: Sequence[Participant],
    is_real: bool,
    backend: ProofBackend,
    context: Optional[ProvingContext],
    k: int = 6,
    workers: int = 1,
) -> List[NullificationRecord]:
    """Hide a voter's own record among dummies for other participants

    The batch holds min(k, len(participants)) records: one for the voter's
    own slot (m = 1 if is_real, else 0) and m = 0 records for randomly
    chosen other participants. The batch is returned shuffled, so its order
    says nothing about which slot is the voter's.

    Raises ValueError if voter_id is not among the participants.
    """

    if k < 1:
        raise ValueError("k must be at least 1")
    by_id = {p.voter_id: p for p in participants}
    if voter_id not in by_id:
        raise ValueError(f"voter {voter_id!r} is not a participant of {election_id!r}")

    others = [p for p in participants if p.voter_id != voter_id]
    _rng.shuffle(others)
    size = min(k, len(by_id))
    slots = [(by_id[voter_id], 1 if is_real else 0)]
    slots += [(p, 0) for p in others[: size - 1]]
    _rng.shuffle(slots)

    jobs = [
        _job(election_id, keypair, authority_pk, m, p.voter_id, p.public_key)
        for p, m in slots
    ]
    proofs = prove_many(backend, jobs, context, workers=workers)
    now = utcnow()
    records = [
        NullificationRecord(
            election_id=election_id,
            voter_id=p.voter_id,
            ciphertext=job.ciphertext,
            proof=proof,
            created_at=now,
        )
        for (p, _), job, proof in zip(slots, jobs, proofs)
    ]
    logger.info("generated %d nullification records for election %s", len(records), election_id)
    return records
