"""Deterministic voter and authority keypairs.

A voter's keypair is a pure function of a 32-byte secret handed over by an
external authenticator (passkey PRF output, hashed identity proof, ...):

    sk = int.from_bytes(secret, "big") mod ORDER   (0 is remapped to 1)
    pk = sk * G

The same secret gives the same keypair on every call and every machine, so
the secret scalar never has to be stored.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass, field

from . import curve
from .curve import ORDER, Point
from .errors import InvalidScalar, InvalidSecretLength

logger = logging.getLogger(__name__)

SECRET_LENGTH = 32


@dataclass(frozen=True)
class Keypair:
    """Keypair where public_point == secret_scalar * G

    The secret is excluded from repr so keypairs can appear in logs and
    tracebacks without leaking it.
    """

    secret_scalar: int = field(repr=False)
    public_point: Point


def derive_keypair(secret: bytes) -> Keypair:
    """Derive a keypair from a 32-byte secret

    Raises InvalidSecretLength if the secret is not exactly 32 bytes.
    """

    if not isinstance(secret, (bytes, bytearray)) or len(secret) != SECRET_LENGTH:
        raise InvalidSecretLength(f"secret must be exactly {SECRET_LENGTH} bytes")

    sk = int.from_bytes(bytes(secret), "big") % ORDER
    if sk == 0:
        sk = 1
    pk = curve.scalar_mul(sk, curve.base_point())
    logger.debug("derived keypair with public key %s", pk)
    return Keypair(secret_scalar=sk, public_point=pk)


def keypair_from_scalar(sk: int) -> Keypair:
    """Build a keypair from an already-reduced secret scalar (authority keys)"""

    if isinstance(sk, bool) or not isinstance(sk, int) or not 0 < sk < ORDER:
        raise InvalidScalar("secret scalar must be an int in [1, ORDER)")
    return Keypair(secret_scalar=sk, public_point=curve.scalar_mul(sk, curve.base_point()))


def verify_keypair(keypair: Keypair) -> bool:
    """Check that the public point matches the secret scalar"""

    try:
        expected = curve.scalar_mul(keypair.secret_scalar, curve.base_point())
    except InvalidScalar:
        return False
    return expected == keypair.public_point


def derive_voter_secret(voter_id: str, master_key: bytes) -> bytes:
    """Derive a per-voter 32-byte secret using HMAC(master_key, voter_id)

    Stand-in for an external authenticator: the holder of the master key can
    recompute any voter's secret on demand without storing it.
    """

    if not isinstance(master_key, (bytes, bytearray)):
        raise TypeError("master_key must be bytes")

    return hmac.new(master_key, voter_id.encode("utf-8"), hashlib.sha256).digest()


def public_key_signal(pk: Point) -> str:
    """Hash a public key into a signal for binding it to an identity proof

    signal = "0x" + hex(SHA-256(x_32 || y_32))
    """

    digest = hashlib.sha256(curve.int_to_bytes32(pk.x) + curve.int_to_bytes32(pk.y)).hexdigest()
    return "0x" + digest
