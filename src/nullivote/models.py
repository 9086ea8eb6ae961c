"""Records exchanged with the storage collaborator."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .curve import Point
from .elgamal import Ciphertext, ciphertext_from_strings


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    ts = datetime.fromisoformat(value)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


class ElectionState(str, enum.Enum):
    ACTIVE = "active"
    CLOSED_MANUALLY = "closed_manually"
    EXPIRED = "expired"
    TALLY_IN_PROGRESS = "tally_in_progress"
    TALLIED = "tallied"


TALLYABLE_STATES = (ElectionState.CLOSED_MANUALLY, ElectionState.EXPIRED)


@dataclass(frozen=True)
class Election:
    """Just enough of an election to gate and run a tally

    Attributes
    - status: the stored status; see effective_state for what a tally sees
    - authority_public_key: the key nullifications are encrypted under
    """

    id: str
    title: str
    end_date: datetime
    authority_public_key: Point
    status: ElectionState = ElectionState.ACTIVE
    closed_manually_at: Optional[datetime] = None

    def effective_state(self, now: Optional[datetime] = None) -> ElectionState:
        """Stored status, except that an active election past its end date is Expired"""

        if self.status is not ElectionState.ACTIVE:
            return self.status
        if self.closed_manually_at is not None:
            return ElectionState.CLOSED_MANUALLY
        if (now or utcnow()) >= self.end_date:
            return ElectionState.EXPIRED
        return ElectionState.ACTIVE


@dataclass(frozen=True)
class VoteRecord:
    voter_id: str
    choice: str


@dataclass(frozen=True)
class Participant:
    """A voter registered for an election together with their public key"""

    voter_id: str
    public_key: Point


@dataclass(frozen=True)
class NullificationRecord:
    """One encrypted revocation flag plus its proof; append-only"""

    election_id: str
    voter_id: str
    ciphertext: Ciphertext
    proof: Dict[str, Any]
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "electionId": self.election_id,
            "voterId": self.voter_id,
            "ciphertext": self.ciphertext.to_strings(),
            "proof": self.proof,
            "createdAt": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NullificationRecord":
        """Parse the storage/wire form; ciphertext points are validated"""

        proof = data.get("proof")
        if not isinstance(proof, dict):
            raise ValueError("proof must be a JSON object")
        created = parse_timestamp(data.get("createdAt")) or utcnow()
        return cls(
            election_id=str(data["electionId"]),
            voter_id=str(data["voterId"]),
            ciphertext=ciphertext_from_strings(data["ciphertext"]),
            proof=proof,
            created_at=created,
        )


@dataclass(frozen=True)
class TrustedSetupArtifact:
    """Published proving/verification key pair; immutable once stored

    The proving key itself lives in a blob store under proving_key_ref and
    must hash (SHA-256) to proving_key_hash before it is used.
    """

    version: int
    name: str
    verification_key: Dict[str, Any]
    proving_key_ref: str
    proving_key_hash: str
    created_by: str
    description: str = ""
    is_active: bool = False
    id: Optional[int] = None
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "version": self.version,
            "name": self.name,
            "description": self.description,
            "verificationKey": self.verification_key,
            "provingKeyRef": self.proving_key_ref,
            "provingKeyHash": self.proving_key_hash,
            "isActive": self.is_active,
            "createdAt": self.created_at.isoformat(),
            "createdBy": self.created_by,
        }


@dataclass(frozen=True)
class TallyEntry:
    """Per-voter tally outcome; written exactly once

    nullification_count is None when the aggregate could not be decrypted
    within the discrete-log bound; such entries carry needs_review=True.
    """

    election_id: str
    voter_id: str
    nullification_count: Optional[int]
    vote_nullified: bool
    processed_at: datetime
    processed_by: Optional[str] = None
    needs_review: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "electionId": self.election_id,
            "voterId": self.voter_id,
            "nullificationCount": self.nullification_count,
            "voteNullified": self.vote_nullified,
            "needsReview": self.needs_review,
            "processedAt": self.processed_at.isoformat(),
            "processedBy": self.processed_by,
        }
