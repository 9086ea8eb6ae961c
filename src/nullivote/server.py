"""Minimal Flask API around the nullification core.

Endpoints:
- GET /health -> {"status": "ok", "proofBackend": ...}
- GET /trusted-setup -> the active trusted-setup artifact (no proving key)
- POST /elections/<id>/nullifications -> submit one record or {"records": [...]}
- POST /elections/<id>/tally -> run the tally with {"authoritySecretKey": "..."}
- GET /elections/<id>/tally -> final results of a tallied election

All scalars and coordinates travel as decimal strings.
"""

import logging
from typing import Any, Dict, Optional

from flask import Blueprint, Flask, current_app, jsonify, request

from .config import Settings
from .errors import (
    AuthorityKeyMismatch,
    ElectionNotFound,
    IntegrityMismatch,
    NullivoteError,
    ProofInvalid,
    TallyError,
    TrustedSetupMissing,
)
from .models import ElectionState, NullificationRecord
from .storage import Storage
from .tally import TallyEngine
from .trusted_setup import FileBlobStore, TrustedSetupManager

logger = logging.getLogger(__name__)

api = Blueprint("nullivote", __name__)


def _services() -> Dict[str, Any]:
    return current_app.config["NULLIVOTE"]


def _status_for(error: NullivoteError) -> int:
    if isinstance(error, ElectionNotFound):
        return 404
    if isinstance(error, AuthorityKeyMismatch):
        return 403
    if isinstance(error, TallyError):
        return 409
    if isinstance(error, TrustedSetupMissing):
        return 503
    if isinstance(error, IntegrityMismatch):
        return 500
    if isinstance(error, (ProofInvalid, ValueError)):
        return 400
    return 500


def _handle_error(error: NullivoteError):
    status = _status_for(error)
    if status >= 500:
        logger.error("%s: %s", type(error).__name__, error)
    else:
        logger.warning("%s: %s", type(error).__name__, error)
    return jsonify({"error": type(error).__name__, "detail": str(error)}), status


@api.route("/health", methods=["GET"])
def health():
    return jsonify({"status": "ok", "proofBackend": _services()["backend"].name})


@api.route("/trusted-setup", methods=["GET"])
def trusted_setup():
    artifact = _services()["setup_manager"].load()
    return jsonify(artifact.to_dict())


@api.route("/elections/<election_id>/nullifications", methods=["POST"])
def submit_nullifications(election_id: str):
    """Verify and store nullification records.

    Expects a single record {"voterId", "ciphertext", "proof"} or a batch
    {"records": [...]}. The batch is stored only if every record verifies.
    """
    svc = _services()
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "body must be a JSON object"}), 400
    raw_records = data.get("records", [data])
    if not isinstance(raw_records, list) or not raw_records:
        return jsonify({"error": "records must be a non-empty list"}), 400

    storage: Storage = svc["storage"]
    election = storage.get_election(election_id)
    if election.effective_state() is not ElectionState.ACTIVE:
        return jsonify({"error": "election no longer accepts nullifications"}), 409

    records = []
    for raw in raw_records:
        if not isinstance(raw, dict) or "voterId" not in raw or "ciphertext" not in raw:
            return jsonify({"error": "each record needs voterId, ciphertext and proof"}), 400
        try:
            records.append(NullificationRecord.from_dict(dict(raw, electionId=election_id)))
        except (KeyError, ValueError) as e:
            return jsonify({"error": "malformed record", "detail": str(e)}), 400

    public_keys = {p.voter_id: p.public_key for p in storage.list_participants(election_id)}
    backend = svc["backend"]
    context = svc["setup_manager"].open_context() if backend.requires_setup else None
    for record in records:
        voter_pk = public_keys.get(record.voter_id)
        if voter_pk is None:
            return jsonify({"error": f"unknown participant {record.voter_id}"}), 400
        backend.require_valid(record.ciphertext, voter_pk, election.authority_public_key, record.proof, context)

    storage.add_nullifications(records)
    logger.info("stored %d nullification records for election %s", len(records), election_id)
    return jsonify({"status": "stored", "count": len(records)}), 201


@api.route("/elections/<election_id>/tally", methods=["POST"])
def run_tally(election_id: str):
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return jsonify({"error": "body must be a JSON object"}), 400
    raw_sk = data.get("authoritySecretKey")
    try:
        authority_sk = int(raw_sk)
    except (TypeError, ValueError):
        return jsonify({"error": "authoritySecretKey must be a decimal string"}), 400
    processed_by: Optional[str] = data.get("processedBy")

    result = _services()["engine"].run(election_id, authority_sk, processed_by=processed_by)
    return jsonify(result.to_dict())


@api.route("/elections/<election_id>/tally", methods=["GET"])
def tally_results(election_id: str):
    return jsonify(_services()["engine"].final_results(election_id))


def create_app(
    settings: Optional[Settings] = None,
    storage: Optional[Storage] = None,
    blobs=None,
) -> Flask:
    """Build the Flask app; storage and blob store default to the configured paths"""

    settings = settings or Settings.from_env()
    storage = storage or Storage(settings.database_path)
    blobs = blobs or FileBlobStore(settings.blob_dir)
    setup_manager = TrustedSetupManager(storage, blobs)
    engine = TallyEngine.from_settings(settings, storage, setup_manager)

    app = Flask(__name__)
    app.config["NULLIVOTE"] = {
        "settings": settings,
        "storage": storage,
        "setup_manager": setup_manager,
        "backend": engine.backend,
        "engine": engine,
    }
    app.register_blueprint(api)
    app.register_error_handler(NullivoteError, _handle_error)
    logger.info("app created with %s backend", settings.proof_backend)
    return app


def main():
    settings = Settings.from_env()
    logging.basicConfig(format=settings.log_format, level=settings.log_level)
    app = create_app(settings)
    logger.info("Starting nullivote server on %s:%d", settings.server_host, settings.server_port)
    app.run(host=settings.server_host, port=settings.server_port)


if __name__ == "__main__":
    main()
