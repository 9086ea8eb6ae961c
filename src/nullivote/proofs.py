"""Zero-knowledge proofs of well-formed nullification ciphertexts.

Statement (public: ciphertext, pk_voter, pk_authority; private: r, m, sk):

    (c1, c2) = Enc(pk_authority, m; r)  and  (m = 0  or  (m = 1 and pk_voter = sk*G))

Two interchangeable backends sit behind ProofBackend:

- SigmaProofBackend: a non-interactive OR-composition of Chaum-Pedersen and
  Schnorr proofs (Fiat-Shamir over SHA-256). The transcript is bound to the
  trusted setup's circuit id, so proofs only verify under the matching
  verification key.
- MockProofBackend: deterministic digests for tests and offline use; no
  trusted setup needed.

A backend is chosen once (make_backend) and every proof carries its
protocol tag, so one backend never accepts the other's proofs.
"""

from __future__ import annotations

import abc
import hashlib
import json
import logging
import secrets
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from . import curve, elgamal
from .curve import ORDER, Point
from .elgamal import Ciphertext
from .errors import (
    NullivoteError,
    ProofInvalid,
    TrustedSetupMissing,
    WitnessComputationFailed,
)
from .trusted_setup import PROTOCOL, ProvingContext

logger = logging.getLogger(__name__)

MOCK_PROTOCOL = "nullivote-mock"


def _rand_scalar() -> int:
    """Return a random scalar in [1 to ORDER-1]"""

    return secrets.randbelow(ORDER - 1) + 1


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def check_witness(ciphertext: Ciphertext, r: int, m: int, sk_voter: int, pk_authority: Point):
    """Reject malformed private inputs before any proving work

    Raises WitnessComputationFailed if m is not 0/1, r or sk are out of
    range, or the ciphertext is not Enc(pk_authority, m; r). A secret key
    that does not match pk_voter is not rejected here: it yields a proof
    that fails verification.
    """

    if not _is_int(m) or m not in (0, 1):
        raise WitnessComputationFailed("m must be 0 or 1")
    if not _is_int(r) or not 0 < r < ORDER:
        raise WitnessComputationFailed("r must be in [1, ORDER)")
    if not _is_int(sk_voter) or not 0 <= sk_voter < ORDER:
        raise WitnessComputationFailed("sk_voter must be in [0, ORDER)")
    if elgamal.encrypt(pk_authority, m, r) != ciphertext:
        raise WitnessComputationFailed("ciphertext is not the encryption of m under pk_authority with r")


def _public_strings(ciphertext: Ciphertext, pk_voter: Point, pk_authority: Point) -> List[str]:
    return ciphertext.to_strings() + curve.point_to_strings(pk_voter) + curve.point_to_strings(pk_authority)


class ProofBackend(abc.ABC):
    """Common interface for the real and the mock proof systems"""

    name: str = ""
    protocol: str = ""
    requires_setup: bool = True

    @abc.abstractmethod
    def prove(
        self,
        ciphertext: Ciphertext,
        r: int,
        m: int,
        sk_voter: int,
        pk_voter: Point,
        pk_authority: Point,
        context: Optional[ProvingContext],
    ) -> Dict[str, Any]:
        ...

    @abc.abstractmethod
    def verify(
        self,
        ciphertext: Ciphertext,
        pk_voter: Point,
        pk_authority: Point,
        proof: Dict[str, Any],
        context: Optional[ProvingContext],
    ) -> bool:
        ...

    def require_valid(self, ciphertext, pk_voter, pk_authority, proof, context):
        """verify(), raising ProofInvalid instead of returning False"""

        if not self.verify(ciphertext, pk_voter, pk_authority, proof, context):
            raise ProofInvalid("nullification proof did not verify")

    def _require_context(self, context: Optional[ProvingContext]) -> ProvingContext:
        if context is None:
            raise TrustedSetupMissing(f"the {self.name} backend needs a trusted setup")
        context.check()
        return context


## --- sigma OR-proof ---------------------------------------------------------


def _challenge(circuit_id: str, *points: Point) -> int:
    h = hashlib.sha256()
    h.update(PROTOCOL.encode("utf-8"))
    h.update(b"|")
    h.update(circuit_id.encode("utf-8"))
    for p in points:
        h.update(curve.int_to_bytes32(p.x))
        h.update(curve.int_to_bytes32(p.y))
    return int.from_bytes(h.digest(), "big") % ORDER


class SigmaProofBackend(ProofBackend):
    """Fiat-Shamir OR-proof over Baby Jubjub

    Branch 0 (m = 0): know r with c1 = r*G and c2 = r*pk_authority.
    Branch 1 (m = 1): know r with c1 = r*G and c2 - G = r*pk_authority,
                      and know sk with pk_voter = sk*G.
    The prover runs the true branch honestly and simulates the other; the
    two branch challenges must sum to the transcript hash.
    """

    name = "sigma"
    protocol = PROTOCOL
    requires_setup = True

    def prove(self, ciphertext, r, m, sk_voter, pk_voter, pk_authority, context):
        context = self._require_context(context)
        check_witness(ciphertext, r, m, sk_voter, pk_authority)

        G = curve.base_point()
        c1, c2 = ciphertext.c1, ciphertext.c2
        c2_minus_g = curve.subtract(c2, G)
        mul = curve.scalar_mul

        if m == 0:
            w = _rand_scalar()
            A0 = mul(w, G)
            B0 = mul(w, pk_authority)
            e1, z1, s1 = _rand_scalar(), _rand_scalar(), _rand_scalar()
            A1 = curve.subtract(mul(z1, G), mul(e1, c1))
            B1 = curve.subtract(mul(z1, pk_authority), mul(e1, c2_minus_g))
            C1 = curve.subtract(mul(s1, G), mul(e1, pk_voter))
            e = _challenge(context.circuit_id, c1, c2, pk_voter, pk_authority, A0, B0, A1, B1, C1)
            e0 = (e - e1) % ORDER
            z0 = (w + e0 * r) % ORDER
        else:
            w, v = _rand_scalar(), _rand_scalar()
            A1 = mul(w, G)
            B1 = mul(w, pk_authority)
            C1 = mul(v, G)
            e0, z0 = _rand_scalar(), _rand_scalar()
            A0 = curve.subtract(mul(z0, G), mul(e0, c1))
            B0 = curve.subtract(mul(z0, pk_authority), mul(e0, c2))
            e = _challenge(context.circuit_id, c1, c2, pk_voter, pk_authority, A0, B0, A1, B1, C1)
            e1 = (e - e0) % ORDER
            z1 = (w + e1 * r) % ORDER
            s1 = (v + e1 * sk_voter) % ORDER

        return {
            "protocol": self.protocol,
            "circuit_id": context.circuit_id,
            "commitments": {
                "A0": curve.point_to_strings(A0),
                "B0": curve.point_to_strings(B0),
                "A1": curve.point_to_strings(A1),
                "B1": curve.point_to_strings(B1),
                "C1": curve.point_to_strings(C1),
            },
            "challenges": [str(e0), str(e1)],
            "responses": {"z0": str(z0), "z1": str(z1), "s1": str(s1)},
        }

    def verify(self, ciphertext, pk_voter, pk_authority, proof, context):
        context = self._require_context(context)
        try:
            if proof.get("protocol") != self.protocol or proof.get("circuit_id") != context.circuit_id:
                return False
            com = proof["commitments"]
            # commitments only enter equality checks against subgroup points
            A0, B0, A1, B1, C1 = (
                curve.point_from_strings(*com[k], check_subgroup=False)
                for k in ("A0", "B0", "A1", "B1", "C1")
            )
            e0, e1 = (int(x) for x in proof["challenges"])
            resp = proof["responses"]
            z0, z1, s1 = int(resp["z0"]), int(resp["z1"]), int(resp["s1"])
        except (KeyError, TypeError, ValueError, AttributeError):
            logger.debug("malformed sigma proof", exc_info=True)
            return False
        if not all(0 <= s < ORDER for s in (e0, e1, z0, z1, s1)):
            return False

        G = curve.base_point()
        c1, c2 = ciphertext.c1, ciphertext.c2
        c2_minus_g = curve.subtract(c2, G)
        mul = curve.scalar_mul

        e = _challenge(context.circuit_id, c1, c2, pk_voter, pk_authority, A0, B0, A1, B1, C1)
        if (e0 + e1) % ORDER != e:
            return False
        checks = (
            mul(z0, G) == curve.add(A0, mul(e0, c1)),
            mul(z0, pk_authority) == curve.add(B0, mul(e0, c2)),
            mul(z1, G) == curve.add(A1, mul(e1, c1)),
            mul(z1, pk_authority) == curve.add(B1, mul(e1, c2_minus_g)),
            mul(s1, G) == curve.add(C1, mul(e1, pk_voter)),
        )
        return all(checks)


## --- mock -------------------------------------------------------------------


class MockProofBackend(ProofBackend):
    """Deterministic stand-in: a digest over the public inputs

    prove() still checks the witness, and records whether an m = 1 proof
    was made with the secret key matching pk_voter; verify() accepts only
    digests of well-formed statements.
    """

    name = "mock"
    protocol = MOCK_PROTOCOL
    requires_setup = False

    def _digest(self, ciphertext, pk_voter, pk_authority, valid: bool) -> str:
        payload = {
            "protocol": self.protocol,
            "public": _public_strings(ciphertext, pk_voter, pk_authority),
            "valid": valid,
        }
        return hashlib.sha256(json.dumps(payload, sort_keys=True).encode("utf-8")).hexdigest()

    def prove(self, ciphertext, r, m, sk_voter, pk_voter, pk_authority, context=None):
        check_witness(ciphertext, r, m, sk_voter, pk_authority)
        valid = m == 0 or curve.scalar_mul(sk_voter, curve.base_point()) == pk_voter
        return {
            "protocol": self.protocol,
            "valid": valid,
            "digest": self._digest(ciphertext, pk_voter, pk_authority, valid),
        }

    def verify(self, ciphertext, pk_voter, pk_authority, proof, context=None):
        if not isinstance(proof, dict) or proof.get("protocol") != self.protocol:
            return False
        if proof.get("valid") is not True:
            return False
        return proof.get("digest") == self._digest(ciphertext, pk_voter, pk_authority, True)


_BACKENDS = {
    SigmaProofBackend.name: SigmaProofBackend,
    MockProofBackend.name: MockProofBackend,
}


def make_backend(name: str) -> ProofBackend:
    """Instantiate the backend named in configuration ("sigma" or "mock")"""

    try:
        return _BACKENDS[name]()
    except KeyError:
        raise ValueError(f"unknown proof backend {name!r}") from None


## --- batch proving ----------------------------------------------------------


@dataclass(frozen=True)
class ProofJob:
    """Inputs for one prove() call"""

    ciphertext: Ciphertext
    r: int
    m: int
    sk_voter: int
    pk_voter: Point
    pk_authority: Point


def _run_job(backend: ProofBackend, job: ProofJob, context: Optional[ProvingContext]) -> Dict[str, Any]:
    return backend.prove(job.ciphertext, job.r, job.m, job.sk_voter, job.pk_voter, job.pk_authority, context)


def prove_many(
    backend: ProofBackend,
    jobs: List[ProofJob],
    context: Optional[ProvingContext],
    workers: int = 1,
) -> List[Dict[str, Any]]:
    """Generate proofs for several jobs, in order

    With workers > 1 the CPU-bound proving runs in a process pool; any
    failure aborts the whole batch.
    """

    if workers <= 1 or len(jobs) <= 1:
        return [_run_job(backend, job, context) for job in jobs]

    n = len(jobs)
    logger.info("generating %d proofs with %d workers", n, min(workers, n))
    with ProcessPoolExecutor(max_workers=min(workers, n)) as pool:
        futures = [pool.submit(_run_job, backend, job, context) for job in jobs]
        try:
            return [f.result() for f in futures]
        except NullivoteError:
            for f in futures:
                f.cancel()
            raise
