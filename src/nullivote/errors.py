"""Exception types raised by the nullification core.

Validation failures on untrusted input also subclass ValueError so callers
that only care about "bad input" can catch the builtin.
"""


class NullivoteError(Exception):
    """Base class for every error raised by this package"""


## --- curve / keys ---------------------------------------------------------


class PointNotOnCurve(NullivoteError, ValueError):
    """A point from external input is not on the curve (or not in the subgroup)"""


class InvalidSecretLength(NullivoteError, ValueError):
    """Key derivation was given a secret that is not exactly 32 bytes"""


class InvalidScalar(NullivoteError, ValueError):
    """A scalar is outside the range required by the operation"""


## --- trusted setup / proofs -----------------------------------------------


class TrustedSetupMissing(NullivoteError):
    """No active trusted setup artifact is available"""


class IntegrityMismatch(NullivoteError):
    """The proving key bytes do not hash to the published digest"""


class WitnessComputationFailed(NullivoteError, ValueError):
    """The private inputs handed to the prover are malformed"""


class ProofInvalid(NullivoteError):
    """A proof did not verify"""


## --- discrete log ---------------------------------------------------------


class DiscreteLogOutOfRange(NullivoteError):
    """A decrypted point is not in the precomputed table"""


## --- storage / tally ------------------------------------------------------


class StorageError(NullivoteError):
    """The storage collaborator failed or was asked for something it lacks"""


class ElectionNotFound(StorageError):
    pass


class TallyError(NullivoteError):
    """Base class for errors that stop a tally before anything is written"""


class ElectionStillActive(TallyError):
    pass


class AlreadyProcessed(TallyError):
    pass


class TallyInProgress(TallyError):
    pass


class AuthorityKeyMismatch(TallyError):
    pass


class TallyCancelled(TallyError):
    pass
