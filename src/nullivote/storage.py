"""SQLite storage collaborator.

Holds elections, registered participants, raw votes, nullification records,
trusted-setup artifacts and tally entries. Tally bookkeeping relies on two
transactional operations:

- begin_tally: compare-and-swap from ClosedManually/Expired to
  TallyInProgress under SQLite's write lock, so a second concurrent run
  fails fast instead of double-processing
- commit_tally: all TallyEntry rows plus the flip to Tallied in one
  transaction (all-or-nothing)
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

from . import curve
from .errors import (
    AlreadyProcessed,
    ElectionNotFound,
    ElectionStillActive,
    StorageError,
    TallyInProgress,
)
from .models import (
    TALLYABLE_STATES,
    Election,
    ElectionState,
    NullificationRecord,
    Participant,
    TallyEntry,
    TrustedSetupArtifact,
    VoteRecord,
    parse_timestamp,
    utcnow,
)

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS elections (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    end_date TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'active',
    closed_manually_at TEXT,
    authority_pk_x TEXT NOT NULL,
    authority_pk_y TEXT NOT NULL,
    status_before_tally TEXT
);

CREATE TABLE IF NOT EXISTS participants (
    election_id TEXT NOT NULL REFERENCES elections(id),
    voter_id TEXT NOT NULL,
    public_key_x TEXT NOT NULL,
    public_key_y TEXT NOT NULL,
    joined_at TEXT NOT NULL,
    PRIMARY KEY (election_id, voter_id)
);

CREATE TABLE IF NOT EXISTS votes (
    election_id TEXT NOT NULL REFERENCES elections(id),
    voter_id TEXT NOT NULL,
    choice TEXT NOT NULL,
    created_at TEXT NOT NULL,
    UNIQUE (election_id, voter_id)
);

CREATE TABLE IF NOT EXISTS nullifications (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    election_id TEXT NOT NULL REFERENCES elections(id),
    voter_id TEXT NOT NULL,
    ciphertext TEXT NOT NULL,
    proof TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS trusted_setups (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    version INTEGER NOT NULL,
    name TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    verification_key TEXT NOT NULL,
    proving_key_ref TEXT NOT NULL,
    proving_key_hash TEXT NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    created_by TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS trusted_setups_one_active
    ON trusted_setups (is_active) WHERE is_active = 1;

CREATE TABLE IF NOT EXISTS tally_entries (
    election_id TEXT NOT NULL REFERENCES elections(id),
    voter_id TEXT NOT NULL,
    nullification_count INTEGER,
    vote_nullified INTEGER NOT NULL,
    needs_review INTEGER NOT NULL DEFAULT 0,
    processed_at TEXT NOT NULL,
    processed_by TEXT,
    PRIMARY KEY (election_id, voter_id)
);
"""


class Storage:
    """Thread-safe wrapper around a single SQLite connection

    Args
    - path: database file, or ":memory:" for a throwaway database
    """

    def __init__(self, path: str = ":memory:"):
        self.path = path
        self._lock = threading.RLock()
        try:
            self._conn = sqlite3.connect(path, check_same_thread=False, isolation_level=None)
            self._conn.row_factory = sqlite3.Row
            self._conn.executescript(_SCHEMA)
        except sqlite3.Error as e:
            raise StorageError(f"cannot open database {path!r}: {e}") from e

    def close(self):
        with self._lock:
            self._conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """BEGIN IMMEDIATE ... COMMIT, rolled back on any exception"""

        with self._lock:
            try:
                self._conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StorageError(f"cannot start transaction: {e}") from e
            try:
                yield self._conn
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            try:
                self._conn.execute("COMMIT")
            except sqlite3.Error as e:
                self._conn.execute("ROLLBACK")
                raise StorageError(f"commit failed: {e}") from e

    def _query(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise StorageError(str(e)) from e

    ## --- elections ---------------------------------------------------------

    def create_election(self, election: Election) -> Election:
        pk = election.authority_public_key
        try:
            with self._transaction() as conn:
                conn.execute(
                    "INSERT INTO elections (id, title, end_date, status, closed_manually_at,"
                    " authority_pk_x, authority_pk_y) VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (
                        election.id,
                        election.title,
                        election.end_date.isoformat(),
                        election.status.value,
                        election.closed_manually_at.isoformat() if election.closed_manually_at else None,
                        str(pk.x),
                        str(pk.y),
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise StorageError(f"election {election.id!r} already exists") from e
        return election

    def get_election(self, election_id: str) -> Election:
        rows = self._query("SELECT * FROM elections WHERE id = ?", (election_id,))
        if not rows:
            raise ElectionNotFound(f"no election {election_id!r}")
        return _election_from_row(rows[0])

    def close_election(self, election_id: str, at: Optional[datetime] = None) -> Election:
        """Close an active election early"""

        at = at or utcnow()
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM elections WHERE id = ?", (election_id,)).fetchone()
            if row is None:
                raise ElectionNotFound(f"no election {election_id!r}")
            if _election_from_row(row).effective_state(at) is not ElectionState.ACTIVE:
                raise StorageError(f"election {election_id!r} is not active")
            conn.execute(
                "UPDATE elections SET status = ?, closed_manually_at = ? WHERE id = ?",
                (ElectionState.CLOSED_MANUALLY.value, at.isoformat(), election_id),
            )
        return self.get_election(election_id)

    ## --- participants and votes -------------------------------------------

    def register_participant(self, election_id: str, participant: Participant) -> bool:
        """Register a voter's public key; returns False if already registered"""

        self.get_election(election_id)
        pk = participant.public_key
        try:
            with self._transaction() as conn:
                conn.execute(
                    "INSERT INTO participants (election_id, voter_id, public_key_x, public_key_y,"
                    " joined_at) VALUES (?, ?, ?, ?, ?)",
                    (election_id, participant.voter_id, str(pk.x), str(pk.y), utcnow().isoformat()),
                )
        except sqlite3.IntegrityError:
            logger.info("participant %s already registered for %s", participant.voter_id, election_id)
            return False
        return True

    def list_participants(self, election_id: str) -> List[Participant]:
        rows = self._query(
            "SELECT voter_id, public_key_x, public_key_y FROM participants"
            " WHERE election_id = ? ORDER BY joined_at, voter_id",
            (election_id,),
        )
        return [
            Participant(
                voter_id=row["voter_id"],
                public_key=curve.point_from_strings(row["public_key_x"], row["public_key_y"]),
            )
            for row in rows
        ]

    def record_vote(self, election_id: str, vote: VoteRecord):
        self.get_election(election_id)
        try:
            with self._transaction() as conn:
                conn.execute(
                    "INSERT INTO votes (election_id, voter_id, choice, created_at) VALUES (?, ?, ?, ?)",
                    (election_id, vote.voter_id, vote.choice, utcnow().isoformat()),
                )
        except sqlite3.IntegrityError as e:
            raise StorageError(f"voter {vote.voter_id!r} already voted in {election_id!r}") from e

    def list_votes(self, election_id: str) -> List[VoteRecord]:
        rows = self._query(
            "SELECT voter_id, choice FROM votes WHERE election_id = ? ORDER BY rowid", (election_id,)
        )
        return [VoteRecord(voter_id=row["voter_id"], choice=row["choice"]) for row in rows]

    ## --- nullifications ----------------------------------------------------

    def add_nullification(self, record: NullificationRecord):
        """Append a record; records are never updated or deleted"""

        self.add_nullifications([record])

    def add_nullifications(self, records: List[NullificationRecord]):
        """Append several records in one transaction (all or none)"""

        with self._transaction() as conn:
            for election_id in {r.election_id for r in records}:
                row = conn.execute("SELECT * FROM elections WHERE id = ?", (election_id,)).fetchone()
                if row is None:
                    raise ElectionNotFound(f"no election {election_id!r}")
                if _election_from_row(row).effective_state() is not ElectionState.ACTIVE:
                    raise StorageError(f"election {election_id!r} no longer accepts nullifications")
            conn.executemany(
                "INSERT INTO nullifications (election_id, voter_id, ciphertext, proof, created_at)"
                " VALUES (?, ?, ?, ?, ?)",
                [
                    (
                        record.election_id,
                        record.voter_id,
                        json.dumps(record.ciphertext.to_strings()),
                        json.dumps(record.proof, sort_keys=True),
                        record.created_at.isoformat(),
                    )
                    for record in records
                ],
            )

    def list_nullification_rows(self, election_id: str) -> List[Dict[str, Any]]:
        """Stored records as raw rows; nothing is parsed or validated"""

        rows = self._query(
            "SELECT * FROM nullifications WHERE election_id = ? ORDER BY id", (election_id,)
        )
        return [
            {
                "electionId": row["election_id"],
                "voterId": row["voter_id"],
                "ciphertext": row["ciphertext"],
                "proof": row["proof"],
                "createdAt": row["created_at"],
            }
            for row in rows
        ]

    def list_nullifications(self, election_id: str) -> List[NullificationRecord]:
        """All records for an election; every stored point is re-validated"""

        return [record_from_row(row) for row in self.list_nullification_rows(election_id)]

    ## --- trusted setups ----------------------------------------------------

    def publish_trusted_setup(self, artifact: TrustedSetupArtifact) -> TrustedSetupArtifact:
        """Insert a new active artifact and deactivate the previous one atomically"""

        with self._transaction() as conn:
            conn.execute("UPDATE trusted_setups SET is_active = 0 WHERE is_active = 1")
            cur = conn.execute(
                "INSERT INTO trusted_setups (version, name, description, verification_key,"
                " proving_key_ref, proving_key_hash, is_active, created_at, created_by)"
                " VALUES (?, ?, ?, ?, ?, ?, 1, ?, ?)",
                (
                    artifact.version,
                    artifact.name,
                    artifact.description,
                    json.dumps(artifact.verification_key, sort_keys=True),
                    artifact.proving_key_ref,
                    artifact.proving_key_hash,
                    artifact.created_at.isoformat(),
                    artifact.created_by,
                ),
            )
            new_id = cur.lastrowid
        logger.info("published trusted setup %s v%d (id=%d)", artifact.name, artifact.version, new_id)
        return self._setup_by_id(new_id)

    def active_trusted_setup(self) -> Optional[TrustedSetupArtifact]:
        rows = self._query("SELECT * FROM trusted_setups WHERE is_active = 1")
        return _artifact_from_row(rows[0]) if rows else None

    def list_trusted_setups(self) -> List[TrustedSetupArtifact]:
        return [_artifact_from_row(r) for r in self._query("SELECT * FROM trusted_setups ORDER BY id")]

    def _setup_by_id(self, setup_id: int) -> TrustedSetupArtifact:
        rows = self._query("SELECT * FROM trusted_setups WHERE id = ?", (setup_id,))
        if not rows:
            raise StorageError(f"no trusted setup with id {setup_id}")
        return _artifact_from_row(rows[0])

    ## --- tally bookkeeping -------------------------------------------------

    def begin_tally(self, election_id: str, now: Optional[datetime] = None) -> ElectionState:
        """Move a closed election to TallyInProgress; returns the state it left

        Raises AlreadyProcessed, TallyInProgress or ElectionStillActive when
        the election is not in a tallyable state. Nothing else is written.
        """

        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM elections WHERE id = ?", (election_id,)).fetchone()
            if row is None:
                raise ElectionNotFound(f"no election {election_id!r}")
            state = _election_from_row(row).effective_state(now)
            if state is ElectionState.TALLIED:
                raise AlreadyProcessed(f"election {election_id!r} has already been tallied")
            if state is ElectionState.TALLY_IN_PROGRESS:
                raise TallyInProgress(f"a tally for {election_id!r} is already running")
            if state not in TALLYABLE_STATES:
                raise ElectionStillActive(f"election {election_id!r} is still active")
            cur = conn.execute(
                "UPDATE elections SET status = ?, status_before_tally = ? WHERE id = ? AND status = ?",
                (ElectionState.TALLY_IN_PROGRESS.value, state.value, election_id, row["status"]),
            )
            if cur.rowcount != 1:
                raise TallyInProgress(f"a tally for {election_id!r} is already running")
        return state

    def commit_tally(self, election_id: str, entries: List[TallyEntry]):
        """Write every entry and mark the election Tallied, atomically"""

        try:
            with self._transaction() as conn:
                row = conn.execute("SELECT status FROM elections WHERE id = ?", (election_id,)).fetchone()
                if row is None or row["status"] != ElectionState.TALLY_IN_PROGRESS.value:
                    raise StorageError(f"election {election_id!r} has no tally in progress")
                conn.executemany(
                    "INSERT INTO tally_entries (election_id, voter_id, nullification_count,"
                    " vote_nullified, needs_review, processed_at, processed_by)"
                    " VALUES (?, ?, ?, ?, ?, ?, ?)",
                    [
                        (
                            e.election_id,
                            e.voter_id,
                            e.nullification_count,
                            int(e.vote_nullified),
                            int(e.needs_review),
                            e.processed_at.isoformat(),
                            e.processed_by,
                        )
                        for e in entries
                    ],
                )
                conn.execute(
                    "UPDATE elections SET status = ?, status_before_tally = NULL WHERE id = ?",
                    (ElectionState.TALLIED.value, election_id),
                )
        except sqlite3.IntegrityError as e:
            raise StorageError(f"tally entries for {election_id!r} already exist") from e

    def abort_tally(self, election_id: str):
        """Return an in-progress election to the state it had before begin_tally"""

        with self._transaction() as conn:
            conn.execute(
                "UPDATE elections SET status = COALESCE(status_before_tally, status),"
                " status_before_tally = NULL WHERE id = ? AND status = ?",
                (election_id, ElectionState.TALLY_IN_PROGRESS.value),
            )

    def list_tally_entries(self, election_id: str) -> List[TallyEntry]:
        rows = self._query(
            "SELECT * FROM tally_entries WHERE election_id = ? ORDER BY voter_id", (election_id,)
        )
        return [
            TallyEntry(
                election_id=row["election_id"],
                voter_id=row["voter_id"],
                nullification_count=row["nullification_count"],
                vote_nullified=bool(row["vote_nullified"]),
                needs_review=bool(row["needs_review"]),
                processed_at=parse_timestamp(row["processed_at"]),
                processed_by=row["processed_by"],
            )
            for row in rows
        ]


def _election_from_row(row: sqlite3.Row) -> Election:
    return Election(
        id=row["id"],
        title=row["title"],
        end_date=parse_timestamp(row["end_date"]),
        authority_public_key=curve.point_from_strings(row["authority_pk_x"], row["authority_pk_y"]),
        status=ElectionState(row["status"]),
        closed_manually_at=parse_timestamp(row["closed_manually_at"]),
    )


def _artifact_from_row(row: sqlite3.Row) -> TrustedSetupArtifact:
    return TrustedSetupArtifact(
        id=row["id"],
        version=row["version"],
        name=row["name"],
        description=row["description"],
        verification_key=json.loads(row["verification_key"]),
        proving_key_ref=row["proving_key_ref"],
        proving_key_hash=row["proving_key_hash"],
        is_active=bool(row["is_active"]),
        created_at=parse_timestamp(row["created_at"]),
        created_by=row["created_by"],
    )


def record_from_row(row: Dict[str, Any]) -> NullificationRecord:
    """Parse a raw nullification row; raises ValueError on anything malformed"""

    try:
        ciphertext = json.loads(row["ciphertext"])
        proof = json.loads(row["proof"])
    except (TypeError, json.JSONDecodeError) as e:
        raise ValueError(f"stored nullification is not valid JSON: {e}") from e
    return NullificationRecord.from_dict(dict(row, ciphertext=ciphertext, proof=proof))
