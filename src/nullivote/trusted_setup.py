"""Trusted-setup artifacts for the nullification proof system.

An artifact pairs a proving key (a content-addressed blob: canonical JSON
describing the proof circuit) with a verification key (JSON stored next to
the artifact record). The proving key is fetched from a blob store by
reference name and its SHA-256 is compared to the published digest before
every use; a mismatch is IntegrityMismatch and the key is never handed to a
proof backend.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from . import curve
from .errors import IntegrityMismatch, StorageError, TrustedSetupMissing
from .models import TrustedSetupArtifact

logger = logging.getLogger(__name__)

PROTOCOL = "nullivote-sigma-or"


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def canonical_json(obj: Any) -> bytes:
    return json.dumps(obj, sort_keys=True, separators=(",", ":")).encode("utf-8")


def generate_setup(version: int = 1) -> Tuple[bytes, Dict[str, Any]]:
    """Produce a (proving_key_bytes, verification_key) pair

    The proving key fixes the statement being proved (protocol id, version,
    curve and generator); the verification key names the same protocol and
    commits to the proving key through its digest, the circuit id.
    """

    proving_key = {
        "protocol": PROTOCOL,
        "version": version,
        "curve": "babyjubjub",
        "field": str(curve.FIELD_P),
        "order": str(curve.ORDER),
        "a": str(curve.A),
        "d": str(curve.D),
        "generator": curve.point_to_strings(curve.base_point()),
        "hash": "sha256",
        "statement": "enc(pk_authority, m, r) and (m = 0 or (m = 1 and pk_voter = sk*G))",
    }
    pk_bytes = canonical_json(proving_key)
    verification_key = {
        "protocol": PROTOCOL,
        "version": version,
        "circuit_id": sha256_hex(pk_bytes),
    }
    return pk_bytes, verification_key


## --- blob stores -----------------------------------------------------------


def _check_ref(ref: str) -> str:
    if not ref or os.path.basename(ref) != ref or ref in (".", ".."):
        raise StorageError(f"invalid blob reference {ref!r}")
    return ref


class FileBlobStore:
    """Proving-key blobs stored as files in one directory"""

    def __init__(self, root: str):
        self.root = root

    def get(self, ref: str) -> bytes:
        path = os.path.join(self.root, _check_ref(ref))
        try:
            with open(path, "rb") as fh:
                return fh.read()
        except FileNotFoundError:
            raise TrustedSetupMissing(f"proving key {ref!r} not found in {self.root}") from None
        except OSError as e:
            raise StorageError(f"cannot read proving key {ref!r}: {e}") from e

    def put(self, ref: str, data: bytes):
        os.makedirs(self.root, exist_ok=True)
        path = os.path.join(self.root, _check_ref(ref))
        with open(path, "wb") as fh:
            fh.write(data)


class MemoryBlobStore:
    def __init__(self):
        self._blobs: Dict[str, bytes] = {}

    def get(self, ref: str) -> bytes:
        try:
            return self._blobs[_check_ref(ref)]
        except KeyError:
            raise TrustedSetupMissing(f"proving key {ref!r} not found") from None

    def put(self, ref: str, data: bytes):
        self._blobs[_check_ref(ref)] = bytes(data)


## --- proving context -------------------------------------------------------


@dataclass(frozen=True)
class ProvingContext:
    """Loaded, integrity-checked trusted setup handed to prove/verify

    Built once (TrustedSetupManager.open_context) and shared read-only by
    every proof operation; ``check`` re-hashes the proving key each time.
    """

    artifact: TrustedSetupArtifact
    proving_key: bytes

    @property
    def verification_key(self) -> Dict[str, Any]:
        return self.artifact.verification_key

    @property
    def circuit_id(self) -> str:
        return self.artifact.proving_key_hash

    def check(self):
        """Raise IntegrityMismatch unless the proving key still matches its digest"""

        if not hmac.compare_digest(sha256_hex(self.proving_key), self.artifact.proving_key_hash):
            raise IntegrityMismatch(
                f"proving key {self.artifact.proving_key_ref!r} does not match its published hash"
            )
        vk = self.artifact.verification_key
        if vk.get("protocol") != PROTOCOL or vk.get("circuit_id") != self.artifact.proving_key_hash:
            raise IntegrityMismatch("verification key does not belong to this proving key")


class TrustedSetupManager:
    """Loads, checks and publishes trusted-setup artifacts

    Args
    - storage: anything with active_trusted_setup() and publish_trusted_setup()
    - blobs: blob store holding proving keys by reference name
    """

    def __init__(self, storage, blobs):
        self.storage = storage
        self.blobs = blobs

    def load(self) -> TrustedSetupArtifact:
        artifact = self.storage.active_trusted_setup()
        if artifact is None:
            raise TrustedSetupMissing("no active trusted setup has been published")
        return artifact

    def verify_integrity(self, artifact: TrustedSetupArtifact) -> bool:
        """Recompute SHA-256 over the raw proving-key bytes and compare"""

        data = self.blobs.get(artifact.proving_key_ref)
        ok = hmac.compare_digest(sha256_hex(data), artifact.proving_key_hash)
        logger.info("proving key integrity check for %s v%d: %s",
                    artifact.name, artifact.version, "passed" if ok else "FAILED")
        return ok

    def open_context(self, artifact: Optional[TrustedSetupArtifact] = None) -> ProvingContext:
        """Load the active artifact (or the given one) into a checked ProvingContext"""

        if artifact is None:
            artifact = self.load()
        data = self.blobs.get(artifact.proving_key_ref)
        context = ProvingContext(artifact=artifact, proving_key=data)
        context.check()
        return context

    def publish(
        self,
        proving_key: bytes,
        verification_key: Dict[str, Any],
        name: str,
        created_by: str,
        description: str = "",
        version: Optional[int] = None,
        proving_key_ref: Optional[str] = None,
    ) -> TrustedSetupArtifact:
        """Store the proving key blob and activate a new artifact for it

        The previously active artifact is deactivated in the same transaction.
        """

        if version is None:
            version = verification_key.get("version", 1)
        if proving_key_ref is None:
            proving_key_ref = f"proving-key-v{version}.key"
        self.blobs.put(proving_key_ref, proving_key)
        artifact = TrustedSetupArtifact(
            version=version,
            name=name,
            description=description,
            verification_key=verification_key,
            proving_key_ref=proving_key_ref,
            proving_key_hash=sha256_hex(proving_key),
            created_by=created_by,
        )
        return self.storage.publish_trusted_setup(artifact)
