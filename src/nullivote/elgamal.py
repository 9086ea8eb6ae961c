"""Exponential ElGamal over Baby Jubjub.

Enc(pk, m; r) = (r*G, r*pk + m*G). Ciphertexts add componentwise, so the
sum of several encrypted 0/1 flags decrypts to (m1 + m2 + ...)*G; turning
that point back into an integer is the job of ``dlog``.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from functools import reduce
from typing import Iterable, List, Sequence

from . import curve
from .curve import ORDER, Point
from .errors import InvalidScalar, PointNotOnCurve


@dataclass(frozen=True)
class Ciphertext:
    """ElGamal ciphertext (c1, c2) = (r*G, r*pk + m*G)"""

    c1: Point
    c2: Point

    def to_strings(self) -> List[str]:
        """Wire encoding: [c1.x, c1.y, c2.x, c2.y] as decimal strings"""

        return curve.point_to_strings(self.c1) + curve.point_to_strings(self.c2)


def ciphertext_from_strings(values: Sequence) -> Ciphertext:
    """Parse and validate the four-coordinate wire encoding (fails closed)"""

    if isinstance(values, (str, bytes)) or len(values) != 4:
        raise PointNotOnCurve("ciphertext must have exactly four coordinates")
    c1 = curve.point_from_strings(values[0], values[1])
    c2 = curve.point_from_strings(values[2], values[3])
    return Ciphertext(c1=c1, c2=c2)


def encrypt(pk: Point, m: int, r: int) -> Ciphertext:
    """Encrypt a small non-negative integer m under pk with blinding scalar r

    Args
    - pk: recipient (authority) public key
    - m: message; nullification flags are 0 (dummy) or 1 (real)
    - r: blinding scalar, non-zero mod ORDER
    """

    if isinstance(m, bool) or not isinstance(m, int) or m < 0:
        raise ValueError("message must be a non-negative int")
    if isinstance(r, bool) or not isinstance(r, int) or r % ORDER == 0:
        raise InvalidScalar("blinding scalar must be non-zero mod ORDER")

    G = curve.base_point()
    c1 = curve.scalar_mul(r, G)
    c2 = curve.add(curve.scalar_mul(r, pk), curve.scalar_mul(m, G))
    return Ciphertext(c1=c1, c2=c2)


def combine(ct1: Ciphertext, ct2: Ciphertext) -> Ciphertext:
    """Homomorphic addition: Enc(m1; r1) + Enc(m2; r2) = Enc(m1 + m2; r1 + r2)"""

    return Ciphertext(c1=curve.add(ct1.c1, ct2.c1), c2=curve.add(ct1.c2, ct2.c2))


def combine_all(cts: Iterable[Ciphertext]) -> Ciphertext:
    cts = list(cts)
    if not cts:
        raise ValueError("cannot combine an empty list of ciphertexts")
    return reduce(combine, cts)


def decrypt_to_point(sk: int, ct: Ciphertext) -> Point:
    """Recover M = c2 - sk*c1, which equals (sum of messages)*G"""

    return curve.add(ct.c2, curve.negate(curve.scalar_mul(sk, ct.c1)))


def derive_blinding_scalar(sk: int, pk: Point, context: bytes = b"") -> int:
    """Deterministic blinding scalar r = SHA-256(sk || pk.x || pk.y || context) mod ORDER

    Recomputable from the voter's own keypair, so r never has to be stored.
    With the default empty context every submission by the same voter reuses
    the same r; callers that emit several ciphertexts at once pass a
    distinct context per ciphertext.
    """

    h = hashlib.sha256()
    h.update(curve.int_to_bytes32(sk % ORDER))
    h.update(curve.int_to_bytes32(pk.x))
    h.update(curve.int_to_bytes32(pk.y))
    h.update(context)
    r = int.from_bytes(h.digest(), "big") % ORDER
    return r or 1
