"""nullivote package - anonymous vote nullification over Baby Jubjub

Voters derive deterministic keypairs, submit ElGamal-encrypted revocation
flags with zero-knowledge proofs, and the election authority tallies the
per-voter sums without learning which submissions were real.
"""

from . import curve, dlog, elgamal, keys, nullification, proofs, storage, tally, trusted_setup

__all__ = [
    "curve",
    "dlog",
    "elgamal",
    "keys",
    "nullification",
    "proofs",
    "storage",
    "tally",
    "trusted_setup",
]
