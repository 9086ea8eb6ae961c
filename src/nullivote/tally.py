"""Authority-side tally of nullification records.

For every voter with a recorded vote:

1. parse and verify each of the voter's nullification records against
   their registered public key (unreadable or failing records are dropped,
   not fatal)
2. add the surviving ciphertexts homomorphically
3. decrypt the aggregate with the authority key and look the point up in
   the discrete-log table
4. decide whether the vote is nullified and subtract it from the totals

The run is bracketed by Storage.begin_tally / commit_tally, so either all
TallyEntry rows are written and the election becomes Tallied, or nothing
is written and the election returns to the state it was in.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from . import elgamal, keys
from .config import NULLIFICATION_RULES, Settings
from .dlog import DiscreteLogTable, shared_table
from .errors import (
    AuthorityKeyMismatch,
    DiscreteLogOutOfRange,
    InvalidScalar,
    TallyCancelled,
    TallyError,
    TrustedSetupMissing,
)
from .models import ElectionState, TallyEntry, VoteRecord, utcnow
from .proofs import ProofBackend, make_backend
from .storage import Storage, record_from_row
from .trusted_setup import TrustedSetupManager

logger = logging.getLogger(__name__)


def is_nullified(count: int, rule: str = "any") -> bool:
    """Apply the nullification rule to a decrypted per-voter count

    - "any": any real nullification revokes the vote (count > 0)
    - "parity": each real nullification toggles the vote (count is odd)
    """

    if rule == "parity":
        return count % 2 == 1
    return count > 0


def compute_totals(votes: List[VoteRecord], nullified_voters) -> Dict[str, Dict[str, int]]:
    """Raw per-choice totals and the totals after removing nullified votes"""

    raw = Counter(v.choice for v in votes)
    adjusted = Counter(raw)
    nullified_voters = set(nullified_voters)
    for v in votes:
        if v.voter_id in nullified_voters:
            adjusted[v.choice] -= 1
    return {"raw": dict(sorted(raw.items())), "adjusted": dict(sorted(adjusted.items()))}


@dataclass
class TallyResult:
    election_id: str
    entries: List[TallyEntry]
    raw_totals: Dict[str, int]
    adjusted_totals: Dict[str, int]
    nullified_votes: int
    flagged_voters: List[str] = field(default_factory=list)
    rejected_records: int = 0
    processed_at: Optional[datetime] = None
    processed_by: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "electionId": self.election_id,
            "entries": [e.to_dict() for e in self.entries],
            "rawTotals": self.raw_totals,
            "adjustedTotals": self.adjusted_totals,
            "nullifiedVotes": self.nullified_votes,
            "flaggedVoters": self.flagged_voters,
            "rejectedRecords": self.rejected_records,
            "processedAt": self.processed_at.isoformat() if self.processed_at else None,
            "processedBy": self.processed_by,
        }


class TallyEngine:
    """Runs tallies against one storage and one proof backend

    Args
    - storage: Storage holding elections, votes, participants and records
    - backend: proof backend used to verify every record
    - setup_manager: required when backend.requires_setup
    - table: discrete-log table; defaults to the shared table for 100
    - rule: "any" or "parity", see is_nullified
    """

    def __init__(
        self,
        storage: Storage,
        backend: ProofBackend,
        setup_manager: Optional[TrustedSetupManager] = None,
        table: Optional[DiscreteLogTable] = None,
        rule: str = "any",
    ):
        if rule not in NULLIFICATION_RULES:
            raise ValueError(f"unknown nullification rule {rule!r}")
        self.storage = storage
        self.backend = backend
        self.setup_manager = setup_manager
        self.table = table if table is not None else shared_table(100)
        self.rule = rule

    @classmethod
    def from_settings(cls, settings: Settings, storage: Storage, setup_manager=None) -> "TallyEngine":
        return cls(
            storage,
            make_backend(settings.proof_backend),
            setup_manager=setup_manager,
            table=shared_table(settings.discrete_log_max),
            rule=settings.nullification_rule,
        )

    def run(
        self,
        election_id: str,
        authority_sk: int,
        processed_by: Optional[str] = None,
        cancel: Optional[threading.Event] = None,
        now: Optional[datetime] = None,
    ) -> TallyResult:
        """Tally an election and commit the result

        Raises
        - ElectionNotFound for an unknown election
        - AuthorityKeyMismatch if authority_sk does not match the election
        - ElectionStillActive, AlreadyProcessed, TallyInProgress from the
          state guard
        - TrustedSetupMissing / IntegrityMismatch if the proving context
          cannot be opened
        - TallyCancelled if cancel is set before the commit
        Nothing is written in any of these cases.
        """

        election = self.storage.get_election(election_id)
        try:
            authority = keys.keypair_from_scalar(authority_sk)
        except InvalidScalar:
            raise AuthorityKeyMismatch(f"authority key does not match election {election_id!r}") from None
        if authority.public_point != election.authority_public_key:
            raise AuthorityKeyMismatch(f"authority key does not match election {election_id!r}")

        previous = self.storage.begin_tally(election_id, now)
        logger.info("tally started for %s (was %s)", election_id, previous.value)
        try:
            result = self._process(election_id, authority, processed_by, cancel, now or utcnow())
            if cancel is not None and cancel.is_set():
                raise TallyCancelled(f"tally for {election_id!r} was cancelled")
            self.storage.commit_tally(election_id, result.entries)
        except BaseException as e:
            logger.warning("tally for %s aborted: %s", election_id, e)
            self.storage.abort_tally(election_id)
            raise

        logger.info(
            "tally committed for %s: %d entries, %d nullified, %d flagged, %d rejected records",
            election_id,
            len(result.entries),
            result.nullified_votes,
            len(result.flagged_voters),
            result.rejected_records,
        )
        return result

    def _process(self, election_id, authority, processed_by, cancel, processed_at) -> TallyResult:
        context = None
        if self.backend.requires_setup:
            if self.setup_manager is None:
                raise TrustedSetupMissing(f"the {self.backend.name} backend needs a trusted setup")
            context = self.setup_manager.open_context()

        votes = self.storage.list_votes(election_id)
        public_keys = {p.voter_id: p.public_key for p in self.storage.list_participants(election_id)}
        by_voter = defaultdict(list)
        for row in self.storage.list_nullification_rows(election_id):
            by_voter[row["voterId"]].append(row)

        authority_pk = authority.public_point
        entries: List[TallyEntry] = []
        nullified: List[str] = []
        flagged: List[str] = []
        rejected = 0

        for vote in votes:
            if cancel is not None and cancel.is_set():
                raise TallyCancelled(f"tally for {election_id!r} was cancelled")

            voter_pk = public_keys.get(vote.voter_id)
            accepted = []
            for row in by_voter.get(vote.voter_id, []):
                try:
                    record = record_from_row(row)
                except (KeyError, TypeError, ValueError) as e:
                    rejected += 1
                    logger.warning("unreadable nullification record for voter %s: %s", vote.voter_id, e)
                    continue
                if voter_pk is None or not self.backend.verify(
                    record.ciphertext, voter_pk, authority_pk, record.proof, context
                ):
                    rejected += 1
                    logger.warning("rejected nullification record for voter %s", vote.voter_id)
                    continue
                accepted.append(record.ciphertext)

            count: Optional[int] = 0
            if accepted:
                point = elgamal.decrypt_to_point(authority.secret_scalar, elgamal.combine_all(accepted))
                try:
                    count = self.table.resolve(point)
                except DiscreteLogOutOfRange:
                    logger.warning("nullification count for voter %s is out of range", vote.voter_id)
                    count = None

            if count is None:
                flagged.append(vote.voter_id)
                vote_nullified = False
            else:
                vote_nullified = is_nullified(count, self.rule)
            if vote_nullified:
                nullified.append(vote.voter_id)

            entries.append(
                TallyEntry(
                    election_id=election_id,
                    voter_id=vote.voter_id,
                    nullification_count=count,
                    vote_nullified=vote_nullified,
                    processed_at=processed_at,
                    processed_by=processed_by,
                    needs_review=count is None,
                )
            )

        totals = compute_totals(votes, nullified)
        return TallyResult(
            election_id=election_id,
            entries=entries,
            raw_totals=totals["raw"],
            adjusted_totals=totals["adjusted"],
            nullified_votes=len(nullified),
            flagged_voters=flagged,
            rejected_records=rejected,
            processed_at=processed_at,
            processed_by=processed_by,
        )

    def final_results(self, election_id: str) -> Dict[str, Any]:
        """Totals recomputed from the stored entries of a tallied election"""

        election = self.storage.get_election(election_id)
        if election.effective_state() is not ElectionState.TALLIED:
            raise TallyError(f"election {election_id!r} has not been tallied")

        entries = self.storage.list_tally_entries(election_id)
        votes = self.storage.list_votes(election_id)
        nullified = [e.voter_id for e in entries if e.vote_nullified]
        totals = compute_totals(votes, nullified)
        return {
            "electionId": election_id,
            "status": ElectionState.TALLIED.value,
            "rawTotals": totals["raw"],
            "adjustedTotals": totals["adjusted"],
            "nullifiedVotes": len(nullified),
            "flaggedVoters": [e.voter_id for e in entries if e.needs_review],
            "entries": [e.to_dict() for e in entries],
        }
